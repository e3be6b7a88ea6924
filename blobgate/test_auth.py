import hashlib

import pytest
from httpx import AsyncClient

from blobgate.auth import Authenticator

ROUTES = [
    ("GET", "/some-key"),
    ("POST", "/upload/some-key"),
    ("POST", "/upload-part/init/some-key"),
    ("PUT", "/upload-part/put/some-key/some-upload?partNumber=1"),
    ("POST", "/upload-part/finish/some-key/some-upload"),
]


def test_expected_token_is_hex_digest_of_secret() -> None:
    authenticator = Authenticator("s3cret")
    assert authenticator.expected_token == hashlib.sha1(b"s3cret").hexdigest()
    assert authenticator.verify(hashlib.sha1(b"s3cret").hexdigest())


def test_verify_rejects_other_tokens() -> None:
    authenticator = Authenticator("s3cret")
    assert not authenticator.verify(None)
    assert not authenticator.verify("")
    assert not authenticator.verify("s3cret")
    assert not authenticator.verify(hashlib.sha1(b"other").hexdigest())


def test_hash_algorithm_is_configurable() -> None:
    authenticator = Authenticator("s3cret", algorithm="sha256")
    assert authenticator.verify(hashlib.sha256(b"s3cret").hexdigest())
    assert not authenticator.verify(hashlib.sha1(b"s3cret").hexdigest())


@pytest.mark.anyio
@pytest.mark.parametrize("method, url", ROUTES)
async def test_missing_token_is_rejected(endpoint: str, method: str, url: str) -> None:
    async with AsyncClient(base_url=endpoint) as client:
        resp = await client.request(method, url, content=b"[]")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"].startswith("Bearer")


@pytest.mark.anyio
@pytest.mark.parametrize("method, url", ROUTES)
async def test_wrong_token_is_rejected(endpoint: str, method: str, url: str) -> None:
    async with AsyncClient(base_url=endpoint) as client:
        resp = await client.request(
            method, url, content=b"[]", headers={"Authorization": "Bearer not-the-token"}
        )
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == 'Bearer error="invalid_token"'


@pytest.mark.anyio
@pytest.mark.parametrize("method, url", ROUTES)
async def test_correct_token_is_accepted(
    endpoint: str, auth_headers: dict[str, str], method: str, url: str
) -> None:
    async with AsyncClient(base_url=endpoint) as client:
        resp = await client.request(method, url, content=b"[]", headers=auth_headers)
        assert resp.status_code != 401


@pytest.mark.anyio
async def test_rejected_upload_has_no_side_effects(endpoint: str, auth_headers: dict[str, str]) -> None:
    async with AsyncClient(base_url=endpoint) as client:
        resp = await client.post("/upload/key", content=b"data", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 401

        resp = await client.get("/key", headers=auth_headers)
        assert resp.status_code == 404
