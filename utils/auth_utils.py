import logging

from fastapi import HTTPException
from firebase_admin import auth

logger = logging.getLogger(__name__)


def verify_token(token: str) -> dict:
    """Verify a Firebase ID token and return its decoded claims."""
    try:
        payload = auth.verify_id_token(token)
    except (auth.InvalidIdTokenError, auth.ExpiredIdTokenError, auth.RevokedIdTokenError,
            auth.UserDisabledError) as e:
        raise HTTPException(
            status_code=401,
            detail=f"Could not validate credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except (ValueError, auth.CertificateFetchError) as e:
        logger.warning("ID token verification failed: %s", e)
        raise HTTPException(
            status_code=401,
            detail=f"Could not validate credentials: Unexpected error ({type(e).__name__})",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if "uid" not in payload:
        raise HTTPException(
            status_code=401,
            detail="Could not validate credentials: missing 'uid' claim",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload
