from fastapi import Request

from jwks_server.core.config import Settings
from jwks_server.core.keys import KeyManager

def get_key_manager(request: Request) -> KeyManager:
    """
    Dependency returning the KeyManager owned by the running application.
    """
    return request.app.state.key_manager

def get_settings(request: Request) -> Settings:
    return request.app.state.settings
