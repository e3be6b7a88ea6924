import logging
from contextlib import AsyncExitStack

import anyio
from fastapi import FastAPI

from blobgate import api, multipart
from blobgate.auth import Authenticator
from blobgate.config import Config
from blobgate.depends import bind
from blobgate.errors import install_error_handlers
from blobgate.log import setup_logging
from blobgate.storage import ObjectStore

logger = logging.getLogger(__name__)


def make_app(store: ObjectStore, config: Config) -> FastAPI:
    # every other path names an object, so the generated docs routes are off
    app = FastAPI(title="blobgate", docs_url=None, redoc_url=None, openapi_url=None)
    app.include_router(api.router)
    app.include_router(api.protected)
    app.include_router(multipart.router)
    install_error_handlers(app)

    authenticator = Authenticator(config.token, config.token_hash)
    # derive the expected token once, before any request can race for it
    authenticator.expected_token

    bind(app, ObjectStore, store)  # type: ignore[type-abstract]
    bind(app, Authenticator, authenticator)
    return app


async def main() -> None:
    import uvicorn

    from blobgate.storage.memory import InMemoryStore
    from blobgate.storage.s3 import S3Store

    config = Config.from_environment()
    setup_logging(config.log_level)

    async with AsyncExitStack() as stack:
        store: ObjectStore
        if config.store == "s3":
            store = await stack.enter_async_context(
                S3Store.connect(
                    access_key_id=config.s3_access_key_id or "",
                    access_key_secret=config.s3_secret_access_key or "",
                    region=config.s3_region,
                    bucket=config.s3_bucket or "",
                    endpoint=config.s3_endpoint,
                )
            )
        else:
            store = InMemoryStore()
        logger.info("starting gateway", extra={"extra": {"store": config.store, "port": config.port}})
        app = make_app(store, config)

        server = uvicorn.Server(uvicorn.Config(app, host=config.host, port=config.port, log_config=None))
        await server.serve()


def run() -> None:
    anyio.run(main)


if __name__ == "__main__":
    run()
