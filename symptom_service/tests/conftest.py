import asyncio
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from symptom_service.config import Settings
from symptom_service.main import create_app
from symptom_service.ollama_client import OllamaClient


def ndjson_line(**event) -> bytes:
    return json.dumps(event, ensure_ascii=False).encode("utf-8") + b"\n"


class FakeOllama:
    """Stands in for the Ollama HTTP API behind an httpx.MockTransport."""

    def __init__(self):
        self.chat_reply = ""
        self.chat_status = 200
        self.generate_status = 200
        self.stream_chunks: list[bytes] = []
        self.unreachable = False
        self.requests: list[httpx.Request] = []

    def payloads(self, path: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.url.path == path]

    async def _stream(self):
        for chunk in self.stream_chunks:
            yield chunk

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)

        path = request.url.path
        if path == "/api/chat":
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, json={"error": "model not found"})
            return httpx.Response(
                200,
                json={"model": "llama3:latest", "message": {"role": "assistant", "content": self.chat_reply}, "done": True},
            )
        if path == "/api/generate":
            if self.generate_status != 200:
                return httpx.Response(self.generate_status, json={"error": "model not found"})
            return httpx.Response(200, content=self._stream())
        if path == "/api/version":
            return httpx.Response(200, json={"version": "0.5.0"})
        return httpx.Response(404)


@pytest.fixture
def settings():
    return Settings(log_json=False)


@pytest.fixture
def fake_ollama():
    return FakeOllama()


@pytest.fixture
def ollama_client(settings, fake_ollama):
    client = OllamaClient(settings, transport=httpx.MockTransport(fake_ollama.handler))
    yield client
    asyncio.run(client.aclose())


@pytest.fixture
def client(settings, ollama_client):
    app = create_app(settings, ollama_client=ollama_client)
    with TestClient(app) as test_client:
        yield test_client
