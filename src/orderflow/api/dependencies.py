"""FastAPI dependencies shared by the orderflow routers."""

import hmac

from fastapi import Header, HTTPException, Request

from orderflow.services import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_operator(request: Request, x_operator_token: str = Header(default="")) -> str:
    """Reject requests that do not carry the configured operator token."""
    expected = get_services(request).settings.operator_token
    if not expected or not hmac.compare_digest(x_operator_token.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Operator authentication required")
    return x_operator_token
