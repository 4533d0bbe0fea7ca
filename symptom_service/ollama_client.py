"""
Ollama Client - async HTTP client for a locally hosted Ollama server.

Two call shapes are used:
  - /api/chat with stream=false for the structured analysis pipeline
  - /api/generate with stream=true for the chat relay, handed back as a
    live httpx.Response so the caller owns reading and closing it
"""
import logging
from typing import Optional

import httpx

from .config import Settings

logger = logging.getLogger(__name__)


class UpstreamUnavailable(RuntimeError):
    """The inference engine could not be reached or answered with an error."""


class OllamaClient:
    """HTTP client for the Ollama REST API."""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.base_url = settings.ollama_base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(settings.timeout, connect=settings.connect_timeout),
            transport=transport,
        )

    async def complete(self, prompt: str) -> str:
        """Send one user message and return the full reply text.

        Args:
            prompt: Complete prompt, sent as a single user message

        Returns:
            The assistant message content

        Raises:
            UpstreamUnavailable: connection failure, timeout, non-2xx status,
                or a reply without message content
        """
        payload = {
            "model": self.settings.analysis_model,
            "messages": [{"role": "user", "content": prompt}],
            "stream": False,
        }

        try:
            response = await self.client.post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Ollama HTTP error: {e.response.status_code} - {e.response.text[:200]}")
            raise UpstreamUnavailable(f"Ollama request failed: {e.response.status_code}") from e
        except httpx.RequestError as e:
            logger.error(f"Ollama connection error: {e!r}")
            raise UpstreamUnavailable(f"Ollama connection failed: {e}") from e
        except ValueError as e:
            logger.error(f"Ollama returned a non-JSON body: {e}")
            raise UpstreamUnavailable("Ollama returned an unreadable response") from e

        message = data.get("message") if isinstance(data, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            logger.error(f"Ollama chat response missing message content: {str(data)[:200]}")
            raise UpstreamUnavailable("Ollama response contained no message content")

        logger.info(f"Ollama chat completed ({len(content)} chars)")
        return content

    async def open_generate_stream(self, prompt: str) -> httpx.Response:
        """Start a streaming generation and return the un-read response.

        The caller must close the returned response (``aclose()``) once it
        stops reading, whether the stream finished or not.

        Raises:
            UpstreamUnavailable: connection failure, timeout or non-2xx status
                before any body bytes are read
        """
        payload = {
            "model": self.settings.chat_model,
            "prompt": prompt,
            "stream": True,
        }
        request = self.client.build_request("POST", "/api/generate", json=payload)

        try:
            response = await self.client.send(request, stream=True)
        except httpx.RequestError as e:
            logger.error(f"Ollama connection error: {e!r}")
            raise UpstreamUnavailable(f"Ollama connection failed: {e}") from e

        if response.is_error:
            await response.aclose()
            logger.error(f"Ollama HTTP error on stream start: {response.status_code}")
            raise UpstreamUnavailable(f"Ollama request failed: {response.status_code}")

        return response

    async def health_check(self) -> bool:
        """Check if the Ollama server answers."""
        try:
            response = await self.client.get("/api/version")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def aclose(self) -> None:
        """Close the pooled HTTP client."""
        await self.client.aclose()
