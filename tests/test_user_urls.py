"""Per-user listing and asynchronous deletion endpoint tests."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_list_requires_existing_token(client: AsyncClient) -> None:
    response = await client.get("/api/user/urls")
    assert response.status_code == 401
    # A fresh identity is still handed out with the rejection
    assert "token=" in response.headers.get("set-cookie", "")

    retry = await client.get("/api/user/urls")
    assert retry.status_code == 204


@pytest.mark.asyncio
async def test_list_returns_own_urls(client: AsyncClient, other_client: AsyncClient) -> None:
    created = await client.post("/api/shorten", json={"url": "https://mine.example/"})
    await other_client.post("/api/shorten", json={"url": "https://theirs.example/"})

    response = await client.get("/api/user/urls")
    assert response.status_code == 200
    assert response.json() == [{"short_url": created.json()["result"], "original_url": "https://mine.example/"}]


@pytest.mark.asyncio
async def test_delete_requires_existing_token(client: AsyncClient) -> None:
    response = await client.request("DELETE", "/api/user/urls", json=["abc12345"])
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_delete_is_accepted_then_applied(client: AsyncClient, wait_until) -> None:
    first = await client.post("/api/shorten", json={"url": "https://one.example/"})
    second = await client.post("/api/shorten", json={"url": "https://two.example/"})
    first_key = first.json()["result"].rsplit("/", 1)[-1]

    response = await client.request("DELETE", "/api/user/urls", json=[first_key])
    assert response.status_code == 202

    async def only_second_left() -> bool:
        listing = await client.get("/api/user/urls")
        return [item["short_url"] for item in listing.json()] == [second.json()["result"]]

    await wait_until(only_second_left)


@pytest.mark.asyncio
async def test_delete_ignores_other_users_keys(client: AsyncClient, other_client: AsyncClient, wait_until) -> None:
    mine = await client.post("/api/shorten", json={"url": "https://mine.example/"})
    theirs = await other_client.post("/api/shorten", json={"url": "https://theirs.example/"})
    my_key = mine.json()["result"].rsplit("/", 1)[-1]
    their_key = theirs.json()["result"].rsplit("/", 1)[-1]

    response = await other_client.request("DELETE", "/api/user/urls", json=[my_key, their_key])
    assert response.status_code == 202

    async def theirs_gone() -> bool:
        return (await other_client.get(f"/{their_key}")).status_code == 410

    await wait_until(theirs_gone)
    assert (await client.get(f"/{my_key}")).status_code == 307


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [[], [""], {"keys": ["abc"]}, "abc"])
async def test_delete_rejects_bad_payload(client: AsyncClient, payload) -> None:
    await client.post("/api/shorten", json={"url": "https://one.example/"})
    response = await client.request("DELETE", "/api/user/urls", json=payload)
    assert response.status_code == 400
