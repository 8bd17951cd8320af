"""FastAPI exception handlers translating domain errors into JSON responses."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from libs.common.errors import CommerceError, InternalError
from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)


async def commerce_error_handler(request: Request, exc: CommerceError) -> JSONResponse:
    if exc.public:
        logger.info("%s on %s: %s", exc.kind, request.url.path, exc.message)
    else:
        logger.error("%s on %s: %s", exc.kind, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    content = InternalError(str(exc)).to_dict()
    request_id = get_request_id()
    if request_id:
        content["request_id"] = request_id
    return JSONResponse(status_code=500, content=content)


def add_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CommerceError, commerce_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
