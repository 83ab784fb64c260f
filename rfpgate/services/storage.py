"""
Signed download URLs.

Callers must already hold an Allow decision for the document. No storage I/O
happens here; the storage gateway verifies the token on its side.
"""
from datetime import timedelta
from typing import Optional
from urllib.parse import quote

from jose import jwt, JWTError

from rfpgate.core.config import settings
from rfpgate.core.logging import get_logger
from rfpgate.db.models import Document, utcnow

logger = get_logger(__name__)

TOKEN_PURPOSE = "document_download"


def issue_signed_url(document: Document, user_id: Optional[int] = None, expires_in: Optional[int] = None) -> dict:
    """Return ``{"url", "expires_at"}`` for a short-lived download link."""
    expires_in = expires_in or settings.SIGNED_URL_EXPIRE_SECONDS
    expires_at = utcnow() + timedelta(seconds=expires_in)
    claims = {
        "purpose": TOKEN_PURPOSE,
        "doc": document.id,
        "path": document.file_path,
        "exp": expires_at,
    }
    if user_id is not None:
        claims["sub"] = str(user_id)
    token = jwt.encode(
        claims,
        settings.SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    base = settings.STORAGE_BASE_URL.rstrip("/")
    url = f"{base}/{quote(document.file_path.lstrip('/'))}?token={token}"
    logger.info(
        f"Issued signed URL for document {document.id}",
        extra={"user_id": user_id, "rfp_id": document.rfp_id, "entity_type": "document", "entity_id": document.id},
    )
    return {"url": url, "expires_at": expires_at}


def verify_signed_token(token: str) -> dict:
    """Decode a download token. Raises ``jose.JWTError`` when invalid or expired."""
    claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if claims.get("purpose") != TOKEN_PURPOSE:
        raise JWTError("Token is not a document download token")
    return claims
