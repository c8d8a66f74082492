"""
Error taxonomy shared by the storage core and the HTTP layer.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class SiteStoreError(Exception):
    """Base class for every error raised by this package."""


class MirrorError(SiteStoreError):
    """Something went wrong talking to the remote mirror."""


class MirrorUnreachable(MirrorError):
    """Connection or login to the mirror failed, or mirror writes are disabled."""


class MirrorNotFound(MirrorError):
    """The requested remote file does not exist."""


class MirrorTransferError(MirrorError):
    """A transfer started but did not complete or did not verify."""


class CorruptPayload(SiteStoreError):
    """Bytes failed the size or magic-number check."""


class SnapshotParseError(SiteStoreError):
    """A snapshot document could not be decoded."""


class NotFound(SiteStoreError):
    """A file or row is absent from the queried store."""


class ValidationError(SiteStoreError):
    """Request input was rejected before any store mutation."""


class AuthenticationError(SiteStoreError):
    """Credentials were missing or did not match."""


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFound)
    async def handle_not_found(request: Request, error: NotFound):
        return JSONResponse(
            status_code=404,
            content={"error": "NotFound", "message": str(error)},
        )

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, error: ValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "ValidationError", "message": str(error)},
        )

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, error: AuthenticationError):
        return JSONResponse(
            status_code=401,
            content={"error": "AuthenticationError", "message": str(error)},
        )
