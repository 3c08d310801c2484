from fastapi import Header, Request

from fitlife_billing.exceptions import AuthenticationError
from fitlife_billing.services.identity import (
    CallerIdentity,
    extract_bearer_token,
    verify_id_token,
)


def require_caller(
    request: Request,
    authorization: str | None = Header(default=None),
) -> CallerIdentity:
    token = extract_bearer_token(authorization)
    if not token:
        raise AuthenticationError("No authorization header")
    caller = verify_id_token(token)
    request.state.actor_id = caller.account_id
    return caller
