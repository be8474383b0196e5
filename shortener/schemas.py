"""Pydantic schemas for request/response validation on the HTTP surface.

Schema Hierarchy
=================
::
    ShortenRequest (Input, unknown fields rejected)
    └─ url: str

    ShortenResponse (Output)
    └─ result: str (short URL)

    BatchShortenItem (Input, unknown fields rejected)
    ├─ correlation_id: str
    └─ original_url: str

    BatchShortenResult (Output)
    ├─ correlation_id: str
    └─ short_url: str

    UserURLResponse (Output)
    ├─ short_url: str
    └─ original_url: str

    StatsResponse (Output)
    ├─ urls: int
    └─ users: int

    HealthResponse (Output)
    ├─ status: HealthStatus
    └─ storage: HealthStatus

Key Behaviours
===============
- Write payloads forbid unknown fields; malformed bodies surface as 400.
- URL validity is checked in the service so HTTP and gRPC reject the same inputs.
"""

from pydantic import BaseModel, ConfigDict, Field

from shortener.enums import HealthStatus

__all__ = [
    "ShortenRequest",
    "ShortenResponse",
    "BatchShortenItem",
    "BatchShortenResult",
    "UserURLResponse",
    "StatsResponse",
    "HealthResponse",
]


class ShortenRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str


class ShortenResponse(BaseModel):
    result: str


class BatchShortenItem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    correlation_id: str = Field(..., min_length=1)
    original_url: str


class BatchShortenResult(BaseModel):
    correlation_id: str
    short_url: str


class UserURLResponse(BaseModel):
    short_url: str
    original_url: str


class StatsResponse(BaseModel):
    urls: int
    users: int


class HealthResponse(BaseModel):
    status: HealthStatus
    storage: HealthStatus

