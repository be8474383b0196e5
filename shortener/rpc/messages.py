"""Wire messages of the ``shortener.Shortener`` gRPC service.

Messages are JSON documents validated with pydantic, so no generated
protobuf code is needed on either side.

Message Overview
================
::
    CreateShortURL   CreateRequest{original_url}        → CreateResponse{short_url}
    GetOriginalURL   GetRequest{short_url}              → GetResponse{original_url}
    BatchCreate      BatchCreateRequest{items[]}        → BatchCreateResponse{items[]}
    GetUserURLs      UserURLsRequest{}                  → UserURLsResponse{urls[]}
    DeleteUserURLs   DeleteRequest{short_urls[]}        → DeleteResponse{}
    GetStats         StatsRequest{}                     → StatsResponse{urls, users}
    Ping             PingRequest{}                      → PingResponse{ok}
"""

from pydantic import BaseModel, ConfigDict

__all__ = [
    "Message",
    "CreateRequest",
    "CreateResponse",
    "GetRequest",
    "GetResponse",
    "BatchCreateItem",
    "BatchCreateRequest",
    "BatchCreateResult",
    "BatchCreateResponse",
    "UserURLsRequest",
    "UserURL",
    "UserURLsResponse",
    "DeleteRequest",
    "DeleteResponse",
    "StatsRequest",
    "StatsResponse",
    "PingRequest",
    "PingResponse",
]


class Message(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def serialize(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def deserialize(cls, data: bytes):
        return cls.model_validate_json(data or b"{}")


class CreateRequest(Message):
    original_url: str = ""


class CreateResponse(Message):
    short_url: str


class GetRequest(Message):
    short_url: str = ""


class GetResponse(Message):
    original_url: str


class BatchCreateItem(Message):
    correlation_id: str
    original_url: str


class BatchCreateRequest(Message):
    items: list[BatchCreateItem] = []


class BatchCreateResult(Message):
    correlation_id: str
    short_url: str


class BatchCreateResponse(Message):
    items: list[BatchCreateResult] = []


class UserURLsRequest(Message):
    pass


class UserURL(Message):
    short_url: str
    original_url: str


class UserURLsResponse(Message):
    urls: list[UserURL] = []


class DeleteRequest(Message):
    short_urls: list[str] = []


class DeleteResponse(Message):
    pass


class StatsRequest(Message):
    pass


class StatsResponse(Message):
    urls: int
    users: int


class PingRequest(Message):
    pass


class PingResponse(Message):
    ok: bool
