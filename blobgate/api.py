import logging
from datetime import timezone
from email.utils import format_datetime

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import PlainTextResponse, StreamingResponse

from blobgate.auth import require_token
from blobgate.depends import Injected
from blobgate.errors import EmptyBody
from blobgate.storage import HttpMetadata, NotFound, NotModified, ObjectMeta, ObjectStore, Partial

logger = logging.getLogger(__name__)

WELCOME = "Welcome to blobgate."

router = APIRouter()
protected = APIRouter(dependencies=[Depends(require_token)])


def has_body(request: Request) -> bool:
    """Whether the request carries a body stream at all, possibly a zero-length one."""
    return "content-length" in request.headers or "transfer-encoding" in request.headers


def object_headers(meta: ObjectMeta) -> dict[str, str]:
    headers = meta.http_metadata.to_headers()
    headers["etag"] = meta.http_etag
    headers["accept-ranges"] = "bytes"
    if meta.uploaded is not None:
        headers["last-modified"] = format_datetime(meta.uploaded.astimezone(timezone.utc), usegmt=True)
    return headers


@router.get("/")
async def welcome() -> Response:
    return PlainTextResponse(WELCOME)


@protected.get("/{name}")
async def download_object(
    name: str,
    request: Request,
    store: Injected[ObjectStore],
) -> Response:
    outcome = await store.get(name, request.headers)
    if isinstance(outcome, NotFound):
        return PlainTextResponse("not found", status_code=404)

    headers = object_headers(outcome.meta)
    if isinstance(outcome, NotModified):
        return Response(status_code=304, headers=headers)

    size = outcome.meta.size
    if isinstance(outcome, Partial):
        headers["content-range"] = outcome.byte_range.content_range(size)
        headers["content-length"] = str(outcome.byte_range.length(size))
        return StreamingResponse(outcome.body, status_code=206, headers=headers)

    headers["content-length"] = str(size)
    return StreamingResponse(outcome.body, status_code=200, headers=headers)


@protected.post("/upload/{name}")
async def upload_object(
    name: str,
    request: Request,
    store: Injected[ObjectStore],
) -> Response:
    if not has_body(request):
        raise EmptyBody()
    meta = await store.put(name, request.stream(), HttpMetadata.from_headers(request.headers))
    logger.info("object stored", extra={"extra": {"key": meta.key, "size": meta.size}})
    return PlainTextResponse(meta.key)
