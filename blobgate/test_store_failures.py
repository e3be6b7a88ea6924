from collections.abc import AsyncIterator, Mapping, Sequence

import pytest
from httpx import AsyncClient

from blobgate.storage import (
    GetOutcome,
    HttpMetadata,
    ObjectMeta,
    ObjectStore,
    StoreError,
    UploadedPart,
    UploadSession,
)


class BrokenStore(ObjectStore):
    async def get(self, key: str, headers: Mapping[str, str]) -> GetOutcome:
        raise StoreError("bucket unavailable")

    async def put(
        self, key: str, body: AsyncIterator[bytes], http_metadata: HttpMetadata | None = None
    ) -> ObjectMeta:
        raise StoreError("bucket is read only")

    async def create_multipart_upload(
        self, key: str, http_metadata: HttpMetadata | None = None
    ) -> UploadSession:
        raise StoreError("too many uploads")

    async def upload_part(
        self, session: UploadSession, part_number: int, body: AsyncIterator[bytes]
    ) -> UploadedPart:
        raise StoreError("part rejected")

    async def complete_multipart_upload(
        self, session: UploadSession, parts: Sequence[UploadedPart]
    ) -> ObjectMeta:
        raise StoreError("parts too small")


@pytest.fixture
def fs() -> ObjectStore:
    return BrokenStore()


@pytest.mark.anyio
@pytest.mark.parametrize(
    "method, url, content, message",
    [
        ("GET", "/key", None, "bucket unavailable"),
        ("POST", "/upload/key", b"data", "bucket is read only"),
        ("POST", "/upload-part/init/key", None, "too many uploads"),
        ("PUT", "/upload-part/put/key/upload?partNumber=1", b"data", "part rejected"),
        ("POST", "/upload-part/finish/key/upload", b'[{"partNumber": 1, "etag": "x"}]', "parts too small"),
    ],
)
async def test_store_failures_surface_as_500(
    endpoint: str,
    auth_headers: dict[str, str],
    method: str,
    url: str,
    content: bytes | None,
    message: str,
) -> None:
    async with AsyncClient(base_url=endpoint) as client:
        resp = await client.request(method, url, content=content, headers=auth_headers)
        assert resp.status_code == 500
        assert resp.text == message

        # one failing request leaves the gateway serving others
        resp = await client.get("/")
        assert resp.status_code == 200
