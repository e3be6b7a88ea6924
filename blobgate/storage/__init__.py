from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class StoreError(RuntimeError):
    """Raised when an object store operation fails."""


class RangeNotSatisfiable(StoreError):
    def __init__(self, size: int) -> None:
        super().__init__(f"range not satisfiable for object of {size} bytes")
        self.size = size


@dataclass(frozen=True)
class HttpMetadata:
    content_type: str | None = None
    content_language: str | None = None
    content_disposition: str | None = None
    content_encoding: str | None = None
    cache_control: str | None = None
    expires: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> HttpMetadata:
        return cls(**{name: headers.get(header) for name, header in _HTTP_METADATA_HEADERS.items()})

    def to_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        for name, header in _HTTP_METADATA_HEADERS.items():
            value = getattr(self, name)
            if value is not None:
                headers[header] = value
        return headers


_HTTP_METADATA_HEADERS = {
    "content_type": "content-type",
    "content_language": "content-language",
    "content_disposition": "content-disposition",
    "content_encoding": "content-encoding",
    "cache_control": "cache-control",
    "expires": "expires",
}


@dataclass(frozen=True)
class ObjectMeta:
    key: str
    size: int
    etag: str
    uploaded: datetime | None = None
    http_metadata: HttpMetadata = field(default_factory=HttpMetadata)

    @property
    def http_etag(self) -> str:
        return f'"{self.etag}"'


@dataclass(frozen=True)
class ByteRange:
    offset: int
    end: int | None = None

    def resolve_end(self, size: int) -> int:
        return self.end if self.end is not None else size - 1

    def length(self, size: int) -> int:
        return self.resolve_end(size) - self.offset + 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.offset}-{self.resolve_end(size)}/{size}"


@dataclass(frozen=True)
class NotFound:
    pass


@dataclass(frozen=True)
class NotModified:
    meta: ObjectMeta


@dataclass(frozen=True)
class Partial:
    meta: ObjectMeta
    byte_range: ByteRange
    body: AsyncIterator[bytes]


@dataclass(frozen=True)
class Full:
    meta: ObjectMeta
    body: AsyncIterator[bytes]


GetOutcome = Union[NotFound, NotModified, Partial, Full]


class UploadSession(BaseModel):
    """A multipart upload, identified purely by the key and the store-issued id."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    key: str
    upload_id: str


class UploadedPart(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    part_number: int
    etag: str


class ObjectStore(Protocol):
    async def get(self, key: str, headers: Mapping[str, str]) -> GetOutcome: ...

    async def put(
        self, key: str, body: AsyncIterator[bytes], http_metadata: HttpMetadata | None = None
    ) -> ObjectMeta: ...

    async def create_multipart_upload(
        self, key: str, http_metadata: HttpMetadata | None = None
    ) -> UploadSession: ...

    async def upload_part(
        self, session: UploadSession, part_number: int, body: AsyncIterator[bytes]
    ) -> UploadedPart: ...

    async def complete_multipart_upload(
        self, session: UploadSession, parts: Sequence[UploadedPart]
    ) -> ObjectMeta: ...
