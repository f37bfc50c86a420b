"""
Request authentication for web actions.

The API gateway has already validated the bearer token; we only decode it
to learn who is calling (client id) and pick the org and app from the
gateway headers. Signatures are not verified here.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Optional

import jwt

from .errors import HttpError

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class AuthInfo:
    """Caller identity extracted from request headers."""
    access_token: str
    client_id: Optional[str] = None
    app_name: Optional[str] = None
    org_id: Optional[str] = None
    org_name: Optional[str] = None

    def to_params(self) -> dict[str, Any]:
        """Wire representation passed on to the async invocation."""
        return {
            "accessToken": self.access_token,
            "clientId": self.client_id,
            "appName": self.app_name,
            "orgId": self.org_id,
            "orgName": self.org_name,
        }


def strip_bearer_prefix(value: str) -> str:
    if value.startswith(BEARER_PREFIX):
        return value[len(BEARER_PREFIX):]
    return value


def parse_token(token: str) -> dict[str, Any]:
    """Decode a JWT's claims. Raises HttpError(401) if it is not a JWT."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        raise HttpError(401, "Invalid token")
    if not claims:
        raise HttpError(401, "Invalid token")
    return claims


def get_auth(headers: Mapping[str, str]) -> AuthInfo:
    """
    Build the caller identity from lowercase request headers.

    Raises HttpError(401) for a missing or undecodable token.
    """
    authorization = headers.get("authorization")
    if not authorization:
        raise HttpError(401, "Missing Oauth token")

    token = strip_bearer_prefix(authorization)
    claims = parse_token(token)

    return AuthInfo(
        access_token=token,
        client_id=claims.get("client_id"),
        app_name=headers.get("x-app-name"),
        org_id=headers.get("x-gw-ims-org-id"),
        org_name=headers.get("x-gw-ims-org-name"),
    )
