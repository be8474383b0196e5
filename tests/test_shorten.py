"""Shorten endpoint behavior tests."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_shorten_text_body(client: AsyncClient) -> None:
    response = await client.post("/", content="https://practicum.example/")
    assert response.status_code == 201
    assert response.headers["content-type"].startswith("text/plain")
    short_url = response.text
    assert short_url.startswith("http://test/")
    assert len(short_url.rsplit("/", 1)[-1]) == 8


@pytest.mark.asyncio
async def test_shorten_text_body_twice_conflicts(client: AsyncClient) -> None:
    first = await client.post("/", content="https://practicum.example/")
    second = await client.post("/", content="https://practicum.example/")
    assert first.status_code == 201
    assert second.status_code == 409
    assert second.text == first.text


@pytest.mark.asyncio
async def test_shorten_text_body_invalid_url(client: AsyncClient) -> None:
    response = await client.post("/", content="not-a-url")
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_shorten_json(client: AsyncClient) -> None:
    response = await client.post("/api/shorten", json={"url": "https://www.google.com"})
    assert response.status_code == 201
    assert response.json()["result"].startswith("http://test/")


@pytest.mark.asyncio
async def test_shorten_json_duplicate_returns_existing(client: AsyncClient) -> None:
    first = await client.post("/api/shorten", json={"url": "https://www.google.com"})
    second = await client.post("/api/shorten", json={"url": "https://www.google.com"})
    assert second.status_code == 409
    assert second.json() == first.json()


@pytest.mark.asyncio
async def test_same_url_from_two_users(client: AsyncClient, other_client: AsyncClient) -> None:
    mine = await client.post("/api/shorten", json={"url": "https://www.google.com"})
    theirs = await other_client.post("/api/shorten", json={"url": "https://www.google.com"})
    assert mine.status_code == theirs.status_code == 201
    assert mine.json()["result"] != theirs.json()["result"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs",
    [
        {"json": {"url": "not-a-url"}},
        {"json": {"url": ""}},
        {"json": {}},
        {"json": {"url": "https://www.google.com", "extra": 1}},
        {"content": "{not json", "headers": {"Content-Type": "application/json"}},
    ],
)
async def test_shorten_json_rejects_bad_input(client: AsyncClient, kwargs) -> None:
    response = await client.post("/api/shorten", **kwargs)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_first_request_sets_token_cookie(client: AsyncClient) -> None:
    first = await client.post("/api/shorten", json={"url": "https://a.example/"})
    assert "token=" in first.headers.get("set-cookie", "")
    assert "httponly" in first.headers["set-cookie"].lower()

    # The cookie is sent back, so no new identity is issued
    second = await client.post("/api/shorten", json={"url": "https://b.example/"})
    assert "set-cookie" not in second.headers


@pytest.mark.asyncio
async def test_tampered_cookie_gets_new_identity(client: AsyncClient) -> None:
    response = await client.post(
        "/api/shorten", json={"url": "https://a.example/"}, headers={"Cookie": "token=garbage"}
    )
    assert response.status_code == 201
    assert "token=" in response.headers.get("set-cookie", "")
