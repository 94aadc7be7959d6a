from typing import Any, Awaitable, Callable, Dict

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from jwks_server.schemas.auth import ErrorResponse

ERROR_RESPONSES: Dict[int, Dict[str, Any]] = {
    status.HTTP_405_METHOD_NOT_ALLOWED: {"model": ErrorResponse, "description": "Method not allowed"},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse, "description": "Internal error"},
}

def method_not_allowed(allow: str) -> Callable[[Request], Awaitable[JSONResponse]]:
    async def handler(request: Request) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
            content={"error": "method_not_allowed"},
            headers={"Allow": allow}
        )
    return handler

def add_method_not_allowed(router: APIRouter, path: str, allow: str) -> None:
    """
    Answers any method on `path` with a JSON 405, including nonstandard verbs.
    Register it after the real route for the path, which takes precedence.
    """
    router.add_route(
        path,
        method_not_allowed(allow),
        methods=None,
        include_in_schema=False
    )
