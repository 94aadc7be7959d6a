from fastapi import APIRouter, Depends

from jwks_server.api.deps import get_key_manager
from jwks_server.api.routing import ERROR_RESPONSES, add_method_not_allowed
from jwks_server.core.keys import KeyManager
from jwks_server.schemas.auth import JWKSResponse

router = APIRouter()

@router.api_route("/.well-known/jwks.json", methods=["GET", "HEAD"], response_model=JWKSResponse, responses=ERROR_RESPONSES)
@router.api_route("/jwks", methods=["GET", "HEAD"], response_model=JWKSResponse, responses=ERROR_RESPONSES)
async def jwks(key_manager: KeyManager = Depends(get_key_manager)):
    """
    Serve the currently valid public keys in JWK Set format.
    Expired keys are never published here.
    """
    return key_manager.active_jwks()

add_method_not_allowed(router, "/.well-known/jwks.json", allow="GET")
add_method_not_allowed(router, "/jwks", allow="GET")
