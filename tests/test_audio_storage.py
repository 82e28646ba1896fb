from __future__ import annotations

import base64
from datetime import timedelta
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from kaiwa.config import Settings
from kaiwa.routers.audio import router
from kaiwa.routers.dependencies import get_generation_orchestrator
from kaiwa.services import gcs
from kaiwa.services.audio_storage import (
    AudioStorageError,
    GcsAudioStore,
    InlineAudioStore,
    create_audio_store,
    to_data_uri,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def gcs_calls(monkeypatch: pytest.MonkeyPatch) -> dict[str, list[Any]]:
    calls: dict[str, list[Any]] = {"upload": [], "delete": [], "sign": []}

    def fake_upload(blob_name, data, *, content_type, settings=None):
        calls["upload"].append((blob_name, data, content_type))

    def fake_delete(blob_name, *, settings=None):
        calls["delete"].append(blob_name)

    def fake_sign(blob_name, *, expires_delta, settings=None):
        calls["sign"].append((blob_name, expires_delta))
        return f"https://storage.example/{blob_name}?sig=abc"

    monkeypatch.setattr(gcs, "upload_bytes", fake_upload)
    monkeypatch.setattr(gcs, "delete_blob", fake_delete)
    monkeypatch.setattr(gcs, "sign_get_url", fake_sign)
    return calls


def test_to_data_uri() -> None:
    uri = to_data_uri(b"ID3")

    assert uri == "data:audio/mp3;base64," + base64.b64encode(b"ID3").decode("ascii")


def test_create_audio_store_follows_settings() -> None:
    assert isinstance(create_audio_store(Settings(audio_storage="inline")), InlineAudioStore)
    assert isinstance(create_audio_store(Settings(audio_storage="gcs")), GcsAudioStore)


@pytest.mark.anyio
async def test_inline_store_embeds_audio() -> None:
    store = InlineAudioStore()

    url = await store.store("gen", 0, b"mp3-bytes")

    assert url.startswith("data:audio/mp3;base64,")
    await store.discard([url])


@pytest.mark.anyio
async def test_gcs_store_uploads_and_discards(gcs_calls) -> None:
    store = GcsAudioStore(Settings(audio_storage="gcs"))

    url = await store.store("gen123", 3, b"mp3-bytes")

    assert url == "/api/audio/gen123/03.mp3"
    assert gcs_calls["upload"] == [("gen123/03.mp3", b"mp3-bytes", "audio/mpeg")]

    await store.discard([url, "data:audio/mp3;base64,AAAA"])
    assert gcs_calls["delete"] == ["gen123/03.mp3"]


@pytest.mark.anyio
async def test_gcs_store_wraps_upload_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_upload(*args, **kwargs):
        raise RuntimeError("precondition failed")

    monkeypatch.setattr(gcs, "upload_bytes", failing_upload)
    store = GcsAudioStore(Settings(audio_storage="gcs"))

    with pytest.raises(AudioStorageError):
        await store.store("gen", 0, b"x")


class FakeOrchestrator:
    def __init__(self, audio_store) -> None:
        self.audio_store = audio_store


def make_client(audio_store) -> TestClient:
    app = FastAPI()
    orchestrator = FakeOrchestrator(audio_store)
    app.dependency_overrides[get_generation_orchestrator] = lambda: orchestrator
    app.include_router(router)
    return TestClient(app)


def test_audio_route_redirects_to_signed_url(gcs_calls) -> None:
    store = GcsAudioStore(Settings(audio_storage="gcs", audio_url_ttl_minutes=15))
    client = make_client(store)

    response = client.get("/api/audio/gen123/03.mp3", follow_redirects=False)

    assert response.status_code == 307
    assert response.headers["location"] == "https://storage.example/gen123/03.mp3?sig=abc"
    assert gcs_calls["sign"] == [("gen123/03.mp3", timedelta(minutes=15))]


def test_audio_route_requires_hosted_mp3(gcs_calls) -> None:
    assert make_client(InlineAudioStore()).get("/api/audio/a/00.mp3").status_code == 404

    client = make_client(GcsAudioStore(Settings(audio_storage="gcs")))
    assert client.get("/api/audio/secrets.txt").status_code == 404
    assert gcs_calls["sign"] == []


def test_audio_route_reports_signing_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_sign(*args, **kwargs):
        raise RuntimeError("no credentials")

    monkeypatch.setattr(gcs, "sign_get_url", failing_sign)
    client = make_client(GcsAudioStore(Settings(audio_storage="gcs")))

    assert client.get("/api/audio/gen/00.mp3").status_code == 502
