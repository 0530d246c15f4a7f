from typing import Optional
from fastapi import HTTPException, Header
from kbrag.core.context import RequestContext
from kbrag.core.security import verify_jwt_token


async def get_request_context(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> RequestContext:
    """
    Build the request-scoped caller context from the Bearer token.

    A missing or invalid token yields an anonymous context (no user, no roles);
    services decide how to answer such callers.
    """
    if not authorization:
        return RequestContext(user_id=None, roles=[])

    if not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid Authorization header format")

    payload = verify_jwt_token(token=authorization[len("Bearer "):])
    if not payload:
        return RequestContext(user_id=None, roles=[])

    roles = payload.get("roles") or []
    return RequestContext(user_id=payload.get("user_id"), roles=[str(r) for r in roles])
