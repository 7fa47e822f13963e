from fastapi import HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

# Checked in order: IntegrityError before its SQLAlchemyError base.
_HTTP_ERRORS: tuple[tuple[type[Exception], int, str | None], ...] = (
    (LookupError, 404, None),
    (ValueError, 400, None),
    (IntegrityError, 409, "database constraint violation"),
    (SQLAlchemyError, 500, "database error"),
)


def error_response(status_code: int, message: str) -> JSONResponse:
    """Checkout-facing error body: {"error": message}."""
    return JSONResponse(status_code=status_code, content={"error": message})


def raise_http_error_from_exception(exc: Exception, db: Session | None = None) -> None:
    if db is not None and isinstance(exc, SQLAlchemyError):
        db.rollback()

    for exc_type, status_code, detail in _HTTP_ERRORS:
        if isinstance(exc, exc_type):
            raise HTTPException(status_code=status_code, detail=detail or str(exc)) from exc

    raise exc
