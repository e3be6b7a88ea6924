from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any
from xml.etree import ElementTree
from xml.sax.saxutils import escape

from aioaws.core import AwsClient, RequestError
from aioaws.s3 import S3Client, S3Config
from httpx import AsyncClient, HTTPError, Response

from blobgate.storage import (
    ByteRange,
    Full,
    GetOutcome,
    HttpMetadata,
    NotFound,
    NotModified,
    ObjectMeta,
    ObjectStore,
    Partial,
    RangeNotSatisfiable,
    StoreError,
    UploadedPart,
    UploadSession,
)
from blobgate.storage.headers import CONDITIONAL_HEADERS, RANGE_HEADER

logger = logging.getLogger(__name__)

_NS = "{http://s3.amazonaws.com/doc/2006-03-01/}"
_FORWARDED_HEADERS = (RANGE_HEADER, *CONDITIONAL_HEADERS)


def _find(root: ElementTree.Element, tag: str) -> str | None:
    # S3 answers namespaced, most compatible stores do not
    value = root.findtext(f"{_NS}{tag}")
    if value is None:
        value = root.findtext(tag)
    return value


def _parse_xml(response: Response) -> ElementTree.Element:
    try:
        root = ElementTree.fromstring(response.content)
    except ElementTree.ParseError as exc:
        raise StoreError(f"unparseable response from S3: {exc}") from exc
    if root.tag.rsplit("}", 1)[-1] == "Error":
        raise StoreError(f"{_find(root, 'Code')}: {_find(root, 'Message')}")
    return root


def _parse_content_range(value: str) -> tuple[ByteRange | None, int]:
    # "bytes 0-3/13" or "bytes */13"
    _, _, spec = value.partition(" ")
    bounds, _, total = spec.partition("/")
    try:
        if bounds == "*":
            return None, int(total)
        start, _, end = bounds.partition("-")
        return ByteRange(offset=int(start), end=int(end)), int(total)
    except ValueError as exc:
        raise StoreError(f"malformed content-range {value!r}") from exc


def _content_length(headers: Mapping[str, str]) -> int | None:
    value = headers.get("content-length")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise StoreError(f"malformed content-length {value!r}") from exc


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def _meta_from_headers(key: str, headers: Mapping[str, str], size: int) -> ObjectMeta:
    return ObjectMeta(
        key=key,
        size=size,
        etag=headers.get("etag", "").strip('"'),
        uploaded=_parse_date(headers.get("last-modified")),
        http_metadata=HttpMetadata.from_headers(headers),
    )


async def _read(body: AsyncIterator[bytes]) -> bytes:
    return b"".join([chunk async for chunk in body])


async def _stream(response: Response) -> AsyncIterator[bytes]:
    try:
        # raw, so a stored content-encoding reaches the client untouched
        async for chunk in response.aiter_raw():
            yield chunk
    finally:
        await response.aclose()


@dataclass
class S3Store(ObjectStore):
    """Object store backed by an S3 compatible bucket.

    Reads are streamed from a presigned URL. Writes are signed with the payload
    hash, so each object or part is held in memory while it is uploaded.
    """

    client: AsyncClient
    config: S3Config

    @classmethod
    @asynccontextmanager
    async def connect(
        cls,
        access_key_id: str,
        access_key_secret: str,
        region: str,
        bucket: str,
        endpoint: str | None = None,
    ) -> AsyncIterator[S3Store]:
        async with AsyncClient() as client:
            yield cls(
                client,
                S3Config(
                    aws_access_key=access_key_id,
                    aws_secret_key=access_key_secret,
                    aws_region=region,
                    aws_s3_bucket=bucket,
                    aws_host=endpoint,
                ),
            )

    def _get_client(self) -> S3Client:
        return S3Client(self.client, self.config)

    def _get_aws_client(self) -> AwsClient:
        return AwsClient(self.client, self.config, "s3")

    async def _request(self, method: str, key: str, **kwargs: Any) -> Response:
        try:
            return await self._get_aws_client().request(method, path=f"/{key}", **kwargs)  # type: ignore
        except RequestError as exc:
            raise StoreError(str(exc)) from exc
        except HTTPError as exc:
            raise StoreError(f"{method} {key}: {exc}") from exc

    async def head(self, key: str) -> ObjectMeta | None:
        url = self._get_client().signed_download_url(key, method="HEAD")
        try:
            response = await self.client.head(url)
        except HTTPError as exc:
            raise StoreError(f"HEAD {key}: {exc}") from exc
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise StoreError(f"unexpected response from HEAD {key}: {response.status_code}")
        size = _content_length(response.headers)
        if size is None:
            raise StoreError(f"HEAD {key} answered without a content-length")
        return _meta_from_headers(key, response.headers, size)

    async def _read_outcome(self, key: str, response: Response) -> GetOutcome:
        if response.status_code == 206:
            byte_range, size = _parse_content_range(response.headers.get("content-range", ""))
            if byte_range is None:
                raise StoreError(f"partial response for {key} carries no byte range")
            return Partial(_meta_from_headers(key, response.headers, size), byte_range, _stream(response))
        size = _content_length(response.headers)
        if size is None:
            # chunked responses leave the size to a HEAD
            head = await self.head(key)
            if head is None:
                raise StoreError(f"{key} disappeared while being read")
            size = head.size
        return Full(_meta_from_headers(key, response.headers, size), _stream(response))

    async def get(self, key: str, headers: Mapping[str, str]) -> GetOutcome:
        url = self._get_client().signed_download_url(key, method="GET")
        forwarded = {name: headers[name] for name in _FORWARDED_HEADERS if name in headers}
        request = self.client.build_request("GET", url, headers=forwarded)
        try:
            response = await self.client.send(request, stream=True)
        except HTTPError as exc:
            raise StoreError(f"GET {key}: {exc}") from exc

        if response.status_code in (200, 206):
            try:
                return await self._read_outcome(key, response)
            except StoreError:
                await response.aclose()
                raise

        await response.aclose()
        if response.status_code == 404:
            return NotFound()
        if response.status_code in (304, 412):
            # a failed precondition still describes the object, just without a body
            meta = await self.head(key)
            if meta is None:
                return NotFound()
            return NotModified(meta)
        if response.status_code == 416:
            _, size = _parse_content_range(response.headers.get("content-range", "bytes */0"))
            raise RangeNotSatisfiable(size)
        raise StoreError(f"unexpected response from GET {key}: {response.status_code}")

    async def put(
        self, key: str, body: AsyncIterator[bytes], http_metadata: HttpMetadata | None = None
    ) -> ObjectMeta:
        http_metadata = http_metadata or HttpMetadata()
        data = await _read(body)
        response = await self._request(
            "PUT",
            key,
            params=None,
            data=data,
            content_type=http_metadata.content_type or "application/octet-stream",
        )
        return ObjectMeta(
            key=key,
            size=len(data),
            etag=response.headers.get("etag", "").strip('"'),
            http_metadata=http_metadata,
        )

    async def create_multipart_upload(
        self, key: str, http_metadata: HttpMetadata | None = None
    ) -> UploadSession:
        content_type = http_metadata.content_type if http_metadata else None
        response = await self._request(
            "POST",
            key,
            params={"uploads": ""},
            content_type=content_type or "application/octet-stream",
        )
        upload_id = _find(_parse_xml(response), "UploadId")
        if not upload_id:
            raise StoreError("S3 response missing UploadId")
        logger.debug("multipart upload created", extra={"extra": {"key": key, "upload_id": upload_id}})
        return UploadSession(key=key, upload_id=upload_id)

    async def upload_part(
        self, session: UploadSession, part_number: int, body: AsyncIterator[bytes]
    ) -> UploadedPart:
        data = await _read(body)
        response = await self._request(
            "PUT",
            session.key,
            params={"partNumber": part_number, "uploadId": session.upload_id},
            data=data,
        )
        etag = response.headers.get("etag")
        if not etag:
            raise StoreError("S3 response missing ETag")
        return UploadedPart(part_number=part_number, etag=etag.strip('"'))

    async def complete_multipart_upload(
        self, session: UploadSession, parts: Sequence[UploadedPart]
    ) -> ObjectMeta:
        elements = []
        for part in sorted(parts, key=lambda part: part.part_number):
            etag = escape(part.etag.strip('"'))
            elements.append(
                f"<Part><PartNumber>{part.part_number}</PartNumber><ETag>&quot;{etag}&quot;</ETag></Part>"
            )
        xml = f"<CompleteMultipartUpload>{''.join(elements)}</CompleteMultipartUpload>"
        response = await self._request(
            "POST",
            session.key,
            params={"uploadId": session.upload_id},
            data=xml.encode(),
            content_type="application/xml",
        )
        # S3 can report a failed completion with a 200 and an <Error> document
        _parse_xml(response)
        meta = await self.head(session.key)
        if meta is None:
            raise StoreError(f"completed object {session.key!r} is not readable")
        return meta
