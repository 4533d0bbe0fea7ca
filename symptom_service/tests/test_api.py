"""End-to-end tests for the /analyze, /chat and /health endpoints."""
import json
import logging

from conftest import ndjson_line
from symptom_service import main
from symptom_service.extraction import FALLBACK_CONDITION_NAME

GOOD_SYMPTOMS = "persistent headache for 3 days with nausea and light sensitivity"

MODEL_ANALYSIS = {
    "conditions": [
        {"name": "Migraine", "description": "Primary headache disorder.", "likelihood": 75, "severity": "medium"},
        {"name": "Viral Infection", "description": "Systemic viral illness.", "likelihood": 30, "severity": "low"},
    ],
    "recommendedSpecialist": "Neurologist",
    "insights": [
        {"category": "red_flags", "title": "Warning Signs", "content": "Worst headache of your life."},
        {"category": "prevention", "title": "Triggers", "content": "Track sleep and caffeine."},
    ],
    "confidenceScores": [
        {"condition": "Migraine", "confidence": 75, "reasoning": "Nausea and photophobia."},
    ],
}


class TestAnalyze:
    """Test POST /analyze."""

    def test_single_word_rejected_without_engine_call(self, client, fake_ollama):
        response = client.post("/analyze", json={"symptoms": "headache"})
        assert response.status_code == 400
        assert "error" in response.json()
        assert fake_ollama.requests == []

    def test_greeting_is_too_short(self, client, fake_ollama):
        response = client.post("/analyze", json={"symptoms": "hello"})
        assert response.status_code == 400
        assert "at least 10 characters" in response.json()["error"]
        assert fake_ollama.requests == []

    def test_long_junk_rejected(self, client, fake_ollama):
        response = client.post("/analyze", json={"symptoms": "1234567890 !!!"})
        assert response.status_code == 400
        assert "actual medical symptoms" in response.json()["error"]
        assert fake_ollama.requests == []

    def test_missing_symptoms(self, client):
        response = client.post("/analyze", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "Symptoms are required"}

    def test_empty_symptoms(self, client):
        response = client.post("/analyze", json={"symptoms": ""})
        assert response.status_code == 400
        assert response.json() == {"error": "Symptoms are required"}

    def test_non_json_body(self, client):
        response = client.post("/analyze", content=b"not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

    def test_structured_analysis_returned(self, client, fake_ollama):
        fake_ollama.chat_reply = "Based on your symptoms:\n" + json.dumps(MODEL_ANALYSIS)
        response = client.post("/analyze", json={"symptoms": GOOD_SYMPTOMS})

        assert response.status_code == 200
        body = response.json()
        for key in ("conditions", "recommendedSpecialist", "insights", "confidenceScores"):
            assert key in body
        assert body == MODEL_ANALYSIS

    def test_prompt_sent_to_engine(self, client, fake_ollama, settings):
        fake_ollama.chat_reply = json.dumps(MODEL_ANALYSIS)
        client.post("/analyze", json={"symptoms": f"  {GOOD_SYMPTOMS}  "})

        [payload] = fake_ollama.payloads("/api/chat")
        assert payload["model"] == settings.analysis_model
        assert payload["stream"] is False
        assert f"Input: {GOOD_SYMPTOMS}\n" in payload["messages"][0]["content"]

    def test_model_rejection_is_400(self, client, fake_ollama):
        fake_ollama.chat_reply = '{"error": "invalid_input", "message": "Please describe your actual medical symptoms with proper context"}'
        response = client.post("/analyze", json={"symptoms": "test cold please check this"})
        assert response.status_code == 400
        assert response.json() == {"error": "Please describe your actual medical symptoms with proper context"}

    def test_prose_reply_uses_fallback(self, client, fake_ollama):
        fake_ollama.chat_reply = "You might have a migraine. Please see a doctor."
        response = client.post("/analyze", json={"symptoms": GOOD_SYMPTOMS})
        assert response.status_code == 200
        body = response.json()
        assert body["conditions"][0]["name"] == FALLBACK_CONDITION_NAME
        assert body["recommendedSpecialist"] == "General Practitioner"

    def test_out_of_range_values_pass_through(self, client, fake_ollama):
        analysis = json.loads(json.dumps(MODEL_ANALYSIS))
        analysis["conditions"][0]["likelihood"] = 140
        fake_ollama.chat_reply = json.dumps(analysis)
        response = client.post("/analyze", json={"symptoms": GOOD_SYMPTOMS})
        assert response.status_code == 200
        assert response.json()["conditions"][0]["likelihood"] == 140

    def test_string_values_returned_as_sent(self, client, fake_ollama):
        analysis = json.loads(json.dumps(MODEL_ANALYSIS))
        analysis["conditions"][0]["likelihood"] = "75"
        fake_ollama.chat_reply = json.dumps(analysis)
        response = client.post("/analyze", json={"symptoms": GOOD_SYMPTOMS})
        assert response.status_code == 200
        assert response.json() == analysis

    def test_non_finite_number_uses_fallback(self, client, fake_ollama):
        fake_ollama.chat_reply = json.dumps(MODEL_ANALYSIS).replace('"likelihood": 75', '"likelihood": 1e999')
        response = client.post("/analyze", json={"symptoms": GOOD_SYMPTOMS})
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/json"
        assert response.json()["conditions"][0]["name"] == FALLBACK_CONDITION_NAME

    def test_unrenderable_result_is_500_json(self, client, fake_ollama, monkeypatch):
        class Unrenderable:
            payload = {"likelihood": float("nan")}

        monkeypatch.setattr(main, "extract_analysis", lambda raw: Unrenderable())
        fake_ollama.chat_reply = json.dumps(MODEL_ANALYSIS)
        response = client.post("/analyze", json={"symptoms": GOOD_SYMPTOMS})
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to analyze symptoms"}

    def test_outcome_in_access_log(self, client, fake_ollama, caplog):
        caplog.set_level(logging.INFO)
        fake_ollama.chat_reply = "I am not sure."
        client.post("/analyze", json={"symptoms": GOOD_SYMPTOMS})

        [record] = [r for r in caplog.records if r.name == "http"]
        assert record.extra_data["outcome"] == "fallback"
        assert record.extra_data["status_code"] == 200
        assert record.levelno == logging.WARNING

    def test_engine_unreachable_is_500(self, client, fake_ollama):
        fake_ollama.unreachable = True
        response = client.post("/analyze", json={"symptoms": GOOD_SYMPTOMS})
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to analyze symptoms"}

    def test_engine_error_status_is_500(self, client, fake_ollama):
        fake_ollama.chat_status = 503
        response = client.post("/analyze", json={"symptoms": GOOD_SYMPTOMS})
        assert response.status_code == 500
        assert "error" in response.json()

    def test_request_id_header(self, client, fake_ollama):
        response = client.post("/analyze", json={"symptoms": "hi"}, headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"


class TestChat:
    """Test POST /chat."""

    def test_relays_text(self, client, fake_ollama):
        fake_ollama.stream_chunks = [
            ndjson_line(response="Hel", done=False),
            ndjson_line(response="lo", done=False),
            ndjson_line(done=True),
        ]
        response = client.post("/chat", json={"messages": [{"role": "user", "content": "Say hello"}]})

        assert response.status_code == 200
        assert response.text == "Hello"
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["cache-control"] == "no-cache"

    def test_only_last_message_is_prompt(self, client, fake_ollama, settings):
        fake_ollama.stream_chunks = [ndjson_line(response="ok", done=True)]
        messages = [
            {"role": "user", "content": "first question"},
            {"role": "assistant", "content": "first answer"},
            {"role": "user", "content": "follow-up question"},
        ]
        client.post("/chat", json={"messages": messages})

        [payload] = fake_ollama.payloads("/api/generate")
        assert payload == {"model": settings.chat_model, "prompt": "follow-up question", "stream": True}

    def test_chunk_split_lines_reassembled(self, client, fake_ollama):
        fake_ollama.stream_chunks = [b'{"response":"Good ', b'morning","done":false}\n{"done"', b':true}\n']
        response = client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]})
        assert response.text == "Good morning"

    def test_malformed_lines_skipped(self, client, fake_ollama):
        fake_ollama.stream_chunks = [
            ndjson_line(response="A", done=False),
            b"{garbage\n",
            ndjson_line(response="B", done=False),
            ndjson_line(done=True),
        ]
        response = client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]})
        assert response.text == "AB"

    def test_engine_unreachable_is_500(self, client, fake_ollama):
        fake_ollama.unreachable = True
        response = client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]})
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to process chat message"}

    def test_engine_error_status_is_500(self, client, fake_ollama):
        fake_ollama.generate_status = 404
        response = client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]})
        assert response.status_code == 500

    def test_empty_messages_is_400(self, client, fake_ollama):
        response = client.post("/chat", json={"messages": []})
        assert response.status_code == 400
        assert "error" in response.json()
        assert fake_ollama.requests == []

    def test_missing_messages_is_400(self, client):
        response = client.post("/chat", json={"prompt": "hi"})
        assert response.status_code == 400

    def test_relay_outcome_logged_after_release(self, client, fake_ollama, caplog):
        caplog.set_level(logging.INFO)
        fake_ollama.stream_chunks = [ndjson_line(response="Hi", done=True)]
        client.post("/chat", json={"messages": [{"role": "user", "content": "hi"}]})

        [record] = [r for r in caplog.records if r.name == "relay"]
        assert record.extra_data["state"] == "completed"
        assert record.extra_data["fragments"] == 1
        assert record.extra_data["bytes_sent"] == 2
        [access] = [r for r in caplog.records if r.name == "http"]
        assert access.extra_data["outcome"] == "streaming"


class TestHealth:
    """Test GET /health."""

    def test_engine_reachable(self, client, settings):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["engine_reachable"] is True
        assert body["analysis_model"] == settings.analysis_model

    def test_engine_unreachable(self, client, fake_ollama):
        fake_ollama.unreachable = True
        body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["engine_reachable"] is False
