import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from jwks_server.api.deps import get_key_manager, get_settings
from jwks_server.api.routing import ERROR_RESPONSES, add_method_not_allowed
from jwks_server.core import security
from jwks_server.core.config import Settings
from jwks_server.core.exceptions import TokenIssueError
from jwks_server.core.keys import KeyManager
from jwks_server.schemas.auth import TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/auth", response_model=TokenResponse, responses=ERROR_RESPONSES)
async def issue_token(
    request: Request,
    key_manager: KeyManager = Depends(get_key_manager),
    settings: Settings = Depends(get_settings)
):
    """
    Issue a signed RS256 token for the demo subject.

    With the `expired` query parameter (any value) the token is signed by an
    expired key and carries that key's past expiry.
    """
    want_expired = "expired" in request.query_params

    try:
        if want_expired:
            record = await key_manager.expired_signing_key()
        else:
            record = await key_manager.signing_key()

        token = security.create_token(
            {"sub": settings.TOKEN_SUBJECT, "name": settings.TOKEN_NAME},
            kid=record.kid,
            private_key=record.private_key,
            issued_at=datetime.now(timezone.utc),
            expires_at=record.expires_at,
        )
    except Exception as e:
        raise TokenIssueError("Could not issue token") from e

    logger.debug("Issued token", extra={"kid": record.kid, "expired": want_expired})

    return TokenResponse(
        token=token,
        kid=record.kid,
        # exp claims carry whole seconds
        expires_at=record.expires_at.replace(microsecond=0),
        expired=want_expired
    )

add_method_not_allowed(router, "/auth", allow="POST")
