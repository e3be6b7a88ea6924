import hashlib
import socket
from typing import AsyncIterator

import anyio
import httpx
import pytest
import uvicorn
from httpx import AsyncClient

from blobgate.config import Config
from blobgate.main import make_app
from blobgate.storage import ObjectStore
from blobgate.storage.memory import InMemoryStore

SECRET = "correct horse battery staple"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def fs() -> ObjectStore:
    """Fixture to provide the store behind the gateway."""
    return InMemoryStore()


@pytest.fixture
def config() -> Config:
    return Config(token=SECRET)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {hashlib.sha1(SECRET.encode()).hexdigest()}"}


@pytest.fixture
async def endpoint(fs: ObjectStore, config: Config) -> AsyncIterator[str]:
    """Fixture to provide the endpoint of a running gateway."""
    app = make_app(fs, config)
    # find an open port
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("", 0))
        port = s.getsockname()[1]

    host = f"http://127.0.0.1:{port}"

    async with AsyncClient(base_url=host) as client:

        async def is_healthy() -> bool:
            try:
                resp = await client.get("/")
                return resp.status_code == 200
            except httpx.HTTPError:
                return False

        server = uvicorn.Server(uvicorn.Config(app, host="127.0.0.1", port=port))
        async with anyio.create_task_group() as tg:
            tg.start_soon(server.serve)
            while not (await is_healthy()):
                await anyio.sleep(0.05)

            yield host
            server.should_exit = True
            tg.cancel_scope.cancel()


async def send_without_body(
    client: AsyncClient, method: str, url: str, headers: dict[str, str] | None = None
) -> httpx.Response:
    """Send a request that carries no body at all, not even an empty one."""
    request = client.build_request(method, url, headers=headers)
    # httpx adds "Content-Length: 0" to bodiless POST/PUT requests
    request.headers.pop("Content-Length", None)
    return await client.send(request)
