from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from hashlib import md5
from uuid import uuid4

from blobgate.storage import (
    Full,
    GetOutcome,
    HttpMetadata,
    NotFound,
    NotModified,
    ObjectMeta,
    ObjectStore,
    Partial,
    StoreError,
    UploadedPart,
    UploadSession,
)
from blobgate.storage.headers import RANGE_HEADER, parse_range, preconditions_hold

MIN_PART_NUMBER = 1
MAX_PART_NUMBER = 10_000


@dataclass
class Object:
    body: bytes
    meta: ObjectMeta


@dataclass
class Upload:
    http_metadata: HttpMetadata
    parts: dict[int, tuple[str, bytes]] = field(default_factory=dict)


async def _read(body: AsyncIterator[bytes]) -> bytes:
    return b"".join([chunk async for chunk in body])


@dataclass
class InMemoryStore(ObjectStore):
    storage: dict[str, Object] = field(default_factory=dict)
    uploads: dict[tuple[str, str], Upload] = field(default_factory=dict)
    chunk_size: int = 64 * 1024

    async def _stream(self, data: bytes) -> AsyncIterator[bytes]:
        for start in range(0, len(data), self.chunk_size):
            yield data[start : start + self.chunk_size]

    def _store(self, key: str, body: bytes, etag: str, http_metadata: HttpMetadata) -> ObjectMeta:
        meta = ObjectMeta(
            key=key,
            size=len(body),
            etag=etag,
            uploaded=datetime.now(timezone.utc),
            http_metadata=http_metadata,
        )
        self.storage[key] = Object(body=body, meta=meta)
        return meta

    async def get(self, key: str, headers: Mapping[str, str]) -> GetOutcome:
        obj = self.storage.get(key)
        if obj is None:
            return NotFound()
        meta = obj.meta
        if not preconditions_hold(headers, meta.etag, meta.uploaded):
            return NotModified(meta)
        byte_range = parse_range(headers.get(RANGE_HEADER), meta.size)
        if byte_range is None:
            return Full(meta, self._stream(obj.body))
        data = obj.body[byte_range.offset : byte_range.resolve_end(meta.size) + 1]
        return Partial(meta, byte_range, self._stream(data))

    async def put(
        self, key: str, body: AsyncIterator[bytes], http_metadata: HttpMetadata | None = None
    ) -> ObjectMeta:
        data = await _read(body)
        return self._store(key, data, md5(data).hexdigest(), http_metadata or HttpMetadata())

    async def create_multipart_upload(
        self, key: str, http_metadata: HttpMetadata | None = None
    ) -> UploadSession:
        session = UploadSession(key=key, upload_id=uuid4().hex)
        self.uploads[(key, session.upload_id)] = Upload(http_metadata=http_metadata or HttpMetadata())
        return session

    def _upload(self, session: UploadSession) -> Upload:
        upload = self.uploads.get((session.key, session.upload_id))
        if upload is None:
            raise StoreError(f"no such upload: {session.upload_id} for key {session.key!r}")
        return upload

    async def upload_part(
        self, session: UploadSession, part_number: int, body: AsyncIterator[bytes]
    ) -> UploadedPart:
        upload = self._upload(session)
        if not MIN_PART_NUMBER <= part_number <= MAX_PART_NUMBER:
            raise StoreError(
                f"part number must be between {MIN_PART_NUMBER} and {MAX_PART_NUMBER}, got {part_number}"
            )
        data = await _read(body)
        etag = md5(data).hexdigest()
        # a retried part replaces the previous upload for the same number
        upload.parts[part_number] = (etag, data)
        return UploadedPart(part_number=part_number, etag=etag)

    async def complete_multipart_upload(
        self, session: UploadSession, parts: Sequence[UploadedPart]
    ) -> ObjectMeta:
        upload = self._upload(session)
        if not parts:
            raise StoreError("at least one part is required to complete an upload")
        ordered = sorted(parts, key=lambda part: part.part_number)
        chunks: list[bytes] = []
        digests = md5()
        previous: int | None = None
        for part in ordered:
            if part.part_number == previous:
                raise StoreError(f"part {part.part_number} listed more than once")
            previous = part.part_number
            stored = upload.parts.get(part.part_number)
            if stored is None:
                raise StoreError(f"part {part.part_number} was never uploaded")
            etag, data = stored
            if part.etag.strip('"') != etag:
                raise StoreError(f"etag mismatch for part {part.part_number}")
            chunks.append(data)
            digests.update(bytes.fromhex(etag))
        del self.uploads[(session.key, session.upload_id)]
        return self._store(
            session.key,
            b"".join(chunks),
            f"{digests.hexdigest()}-{len(ordered)}",
            upload.http_metadata,
        )
