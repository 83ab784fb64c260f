"""
Turn service outcomes into HTTP responses.
"""
from typing import Any, NoReturn

from fastapi import HTTPException, Request, status

from rfpgate.services.outcomes import Outcome, OutcomeKind, DenyReason, RecordNotFound

STATUS_BY_KIND = {
    OutcomeKind.DENIED: status.HTTP_403_FORBIDDEN,
    OutcomeKind.CONFLICT: status.HTTP_409_CONFLICT,
    OutcomeKind.INVALID: status.HTTP_422_UNPROCESSABLE_ENTITY,
    OutcomeKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def error_detail(code: str, message: str, **extra) -> dict:
    detail = {"code": code, "message": message}
    detail.update({k: v for k, v in extra.items() if v is not None})
    return detail


def unwrap(outcome: Outcome) -> Any:
    """Return the outcome's value or raise the matching HTTPException."""
    if outcome.ok:
        return outcome.value

    status_code = STATUS_BY_KIND[outcome.kind]
    if outcome.reason == DenyReason.AUTHENTICATION_REQUIRED.value:
        status_code = status.HTTP_401_UNAUTHORIZED
    raise HTTPException(
        status_code=status_code,
        detail=error_detail(
            outcome.reason,
            outcome.message or outcome.reason.replace("_", " ").capitalize(),
            field=outcome.field,
        ),
    )


def raise_not_found(exc: RecordNotFound) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=error_detail("not_found", str(exc)),
    )


def raise_denied(reason: str, message: str = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=error_detail(reason, message or reason.replace("_", " ").capitalize()),
    )


def client_context(request: Request) -> dict:
    """IP address and user agent recorded with audit entries."""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }
