# tenant_backup/core/security.py

import hmac

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader

from tenant_backup.core.config import Settings, get_settings
from tenant_backup.utils.logger import get_logger

logger = get_logger(__name__)

API_KEY_HEADER = "s3-api-key"

api_key_header = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def verify_api_key(
    api_key: str = Security(api_key_header),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Check the shared intake key in constant time.

    Rejects every request when no key is configured.
    """
    expected = settings.api_secret_key
    if not expected:
        logger.error("API_SECRET_KEY is not configured; rejecting request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )

    if not api_key or not hmac.compare_digest(api_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Rejected request with missing or invalid API key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return api_key
