"""
Symptom Service - adapter between client apps and a local Ollama engine.
"""

__version__ = "0.1.0"
