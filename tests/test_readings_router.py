from fastapi import FastAPI
from fastapi.testclient import TestClient

from kaiwa.routers.readings import router


def make_client() -> TestClient:
    app = FastAPI()
    app.include_router(router)
    return TestClient(app)


def test_align_endpoint_returns_segments_and_ruby_html() -> None:
    client = make_client()

    response = client.post(
        "/api/readings/align", json={"text": "私は", "reading": "わたしは"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["segments"] == [
        {"literal": "私", "reading": "わたし"},
        {"literal": "は", "reading": None},
    ]
    assert body["html"] == "<ruby>私<rt>わたし</rt></ruby>は"


def test_align_endpoint_without_reading() -> None:
    client = make_client()

    response = client.post("/api/readings/align", json={"text": "東京"})

    assert response.json() == {
        "segments": [{"literal": "東京", "reading": None}],
        "html": "東京",
    }
