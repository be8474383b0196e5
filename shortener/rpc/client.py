"""Async client for the ``shortener.Shortener`` gRPC service.

The client remembers the token the server hands out and sends it on every
later call, mirroring what a browser does with the HTTP cookie.

How to Use
===========
::
    async with ShortenerClient("localhost:3200") as client:
        short_url = await client.create_short_url("https://example.com/")
        original = await client.get_original_url(short_url.rsplit("/", 1)[-1])
"""

from collections.abc import Sequence

import grpc

from shortener.rpc import messages as pb
from shortener.rpc.servicer import method_path

__all__ = ["ShortenerClient"]


class ShortenerClient:
    def __init__(self, target: str, token: str | None = None, metadata_key: str = "token") -> None:
        self._channel = grpc.aio.insecure_channel(target)
        self._metadata_key = metadata_key
        self.token = token

    async def __aenter__(self) -> "ShortenerClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._channel.close()

    async def create_short_url(self, original_url: str, metadata: Sequence[tuple[str, str]] = ()) -> str:
        request = pb.CreateRequest(original_url=original_url)
        response = await self._call("CreateShortURL", request, pb.CreateResponse, metadata)
        return response.short_url

    async def get_original_url(self, short_key: str, metadata: Sequence[tuple[str, str]] = ()) -> str:
        response = await self._call("GetOriginalURL", pb.GetRequest(short_url=short_key), pb.GetResponse, metadata)
        return response.original_url

    async def batch_create(
        self, items: Sequence[tuple[str, str]], metadata: Sequence[tuple[str, str]] = ()
    ) -> list[pb.BatchCreateResult]:
        request = pb.BatchCreateRequest(
            items=[pb.BatchCreateItem(correlation_id=cid, original_url=url) for cid, url in items]
        )
        response = await self._call("BatchCreate", request, pb.BatchCreateResponse, metadata)
        return response.items

    async def get_user_urls(self, metadata: Sequence[tuple[str, str]] = ()) -> list[pb.UserURL]:
        response = await self._call("GetUserURLs", pb.UserURLsRequest(), pb.UserURLsResponse, metadata)
        return response.urls

    async def delete_user_urls(self, short_keys: Sequence[str], metadata: Sequence[tuple[str, str]] = ()) -> None:
        await self._call("DeleteUserURLs", pb.DeleteRequest(short_urls=list(short_keys)), pb.DeleteResponse, metadata)

    async def get_stats(self, metadata: Sequence[tuple[str, str]] = ()) -> pb.StatsResponse:
        return await self._call("GetStats", pb.StatsRequest(), pb.StatsResponse, metadata)

    async def ping(self, metadata: Sequence[tuple[str, str]] = ()) -> bool:
        response = await self._call("Ping", pb.PingRequest(), pb.PingResponse, metadata)
        return response.ok

    async def _call(self, name: str, request: pb.Message, response_type: type[pb.Message], metadata):
        stub = self._channel.unary_unary(
            method_path(name),
            request_serializer=pb.Message.serialize,
            response_deserializer=response_type.deserialize,
        )
        outgoing = list(metadata)
        if self.token:
            outgoing.append((self._metadata_key, self.token))

        call = stub(request, metadata=outgoing)
        try:
            response = await call
        except grpc.aio.AioRpcError as exc:
            self._remember_token(exc.initial_metadata())
            raise
        self._remember_token(await call.initial_metadata())
        return response

    def _remember_token(self, metadata) -> None:
        for key, value in metadata or ():
            if key == self._metadata_key and isinstance(value, str):
                self.token = value
