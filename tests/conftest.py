import os

# The module-level app must never try to reach Postgres or start polling under test
os.environ["DATA_BACKEND"] = "memory"
os.environ["REALTIME_POLLING_ENABLED"] = "false"

from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

from disaster_response.config import Settings
from disaster_response.dependencies import build_services
from disaster_response.main import create_app


def make_settings(**overrides) -> Settings:
    values = dict(
        data_backend="memory",
        realtime_polling_enabled=False,
        cache_sweep_interval_seconds=3600,
        gemini_api_key=None,
        bluesky_identifier=None,
        bluesky_password=None,
    )
    values.update(overrides)
    return Settings(**values)


def offline(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, json={"error": "offline"})


class FakeModel:
    """Answers every prompt with the same canned text."""

    def __init__(self, text: str):
        self.text = text
        self.prompts = []
        self.request_options = []

    async def generate_content_async(self, contents, request_options=None):
        self.prompts.append(contents)
        self.request_options.append(request_options)
        return SimpleNamespace(text=self.text)


def make_client(settings=None, transport=None, **service_kwargs) -> TestClient:
    settings = settings or make_settings()
    services = build_services(settings, transport=transport or httpx.MockTransport(offline), **service_kwargs)
    return TestClient(create_app(settings, services))


@pytest.fixture()
def client():
    with make_client() as test_client:
        yield test_client


@pytest.fixture()
def services(client):
    return client.app.state.services
