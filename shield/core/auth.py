"""Service authentication for the session routes.

Session routes accept identity claims (user id, email) from the caller and
answer with data resolved through third-party APIs, so only the app backend
holding ``SESSION_API_TOKEN`` may call them. The token travels as a bearer
credential.
"""

import hmac
from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from shield.core.exceptions import InvalidTokenError, NotConfiguredError
from shield.core.settings import Settings, get_settings

security = HTTPBearer(auto_error=False)


def require_service_token(
    settings: Annotated[Settings, Depends(get_settings)],
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(security)
    ] = None,
) -> None:
    """Reject the request unless it carries the configured service token.

    Use as a router-level dependency:
        router = APIRouter(dependencies=[Depends(require_service_token)])

    Raises:
        NotConfiguredError: No token is configured, so the routes stay closed
        InvalidTokenError: The bearer token is missing or wrong
    """
    expected = settings.session_api_token
    if not expected:
        raise NotConfiguredError("Session API token is not configured")
    if credentials is None or not hmac.compare_digest(
        credentials.credentials.encode(), expected.encode()
    ):
        raise InvalidTokenError()
