"""Batch shorten endpoint tests."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_batch_shorten(client: AsyncClient) -> None:
    payload = [
        {"correlation_id": "a", "original_url": "https://one.example/"},
        {"correlation_id": "b", "original_url": "https://two.example/"},
    ]
    response = await client.post("/api/shorten/batch", json=payload)
    assert response.status_code == 201
    data = response.json()
    assert [item["correlation_id"] for item in data] == ["a", "b"]
    assert all(item["short_url"].startswith("http://test/") for item in data)
    assert data[0]["short_url"] != data[1]["short_url"]

    redirect = await client.get(data[1]["short_url"].removeprefix("http://test"))
    assert redirect.status_code == 307
    assert redirect.headers["location"] == "https://two.example/"


@pytest.mark.asyncio
async def test_batch_reuses_existing_keys(client: AsyncClient) -> None:
    single = await client.post("/api/shorten", json={"url": "https://one.example/"})
    payload = [
        {"correlation_id": "1", "original_url": "https://one.example/"},
        {"correlation_id": "2", "original_url": "https://one.example/"},
    ]
    response = await client.post("/api/shorten/batch", json=payload)
    assert response.status_code == 201
    assert {item["short_url"] for item in response.json()} == {single.json()["result"]}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        [],
        [{"correlation_id": "", "original_url": "https://one.example/"}],
        [{"original_url": "https://one.example/"}],
        [{"correlation_id": "1", "original_url": "https://one.example/"}, {"correlation_id": "2", "original_url": "x"}],
        {"correlation_id": "1", "original_url": "https://one.example/"},
    ],
)
async def test_batch_rejects_bad_input(client: AsyncClient, payload) -> None:
    response = await client.post("/api/shorten/batch", json=payload)
    assert response.status_code == 400
