"""Three-phase multipart upload: init, put one part at a time, finish.

Nothing is remembered between calls. Every put and finish names its session by
(key, uploadId), so any process can serve any phase of any upload.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import TypeAdapter, ValidationError

from blobgate.api import has_body
from blobgate.auth import require_token
from blobgate.depends import Injected
from blobgate.errors import InvalidPartNumber, InvalidParts, MissingBody, MissingPartNumber, MissingParts
from blobgate.storage import HttpMetadata, ObjectStore, UploadedPart, UploadSession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload-part", dependencies=[Depends(require_token)])

_parts_adapter = TypeAdapter(list[UploadedPart])


@router.post("/init/{name}")
async def init_upload(
    name: str,
    request: Request,
    store: Injected[ObjectStore],
) -> Response:
    session = await store.create_multipart_upload(name, HttpMetadata.from_headers(request.headers))
    logger.info("multipart upload started", extra={"extra": {"key": session.key, "upload_id": session.upload_id}})
    return JSONResponse(session.model_dump(by_alias=True))


@router.put("/put/{name}/{upload_id}")
async def put_part(
    name: str,
    upload_id: str,
    request: Request,
    store: Injected[ObjectStore],
    part_number: Annotated[str | None, Query(alias="partNumber")] = None,
) -> Response:
    if part_number is None:
        raise MissingPartNumber()
    try:
        number = int(part_number)
    except ValueError:
        raise InvalidPartNumber() from None
    if not has_body(request):
        raise MissingBody()

    session = UploadSession(key=name, upload_id=upload_id)
    part = await store.upload_part(session, number, request.stream())
    return JSONResponse(part.model_dump(by_alias=True))


@router.post("/finish/{name}/{upload_id}")
async def finish_upload(
    name: str,
    upload_id: str,
    request: Request,
    store: Injected[ObjectStore],
) -> Response:
    if not has_body(request):
        raise MissingParts()
    try:
        parts = _parts_adapter.validate_json(await request.body())
    except ValidationError:
        raise InvalidParts() from None

    session = UploadSession(key=name, upload_id=upload_id)
    meta = await store.complete_multipart_upload(session, parts)
    logger.info(
        "multipart upload finished",
        extra={"extra": {"key": meta.key, "upload_id": upload_id, "parts": len(parts)}},
    )
    return PlainTextResponse(meta.key)
