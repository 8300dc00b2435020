"""Session domain schemas."""

from pydantic import BaseModel, Field

from shield.core.constants import AppRoute
from shield.session.models import DeviceInfo, UserRecord


class SessionEvaluate(BaseModel):
    """Request schema for one evaluation pass."""

    # Path the app is currently showing, e.g. "/auth/verify".
    path: str | None = Field(default=None, max_length=512)


class SessionReplace(BaseModel):
    """Request schema for replacing the persisted session state."""

    is_onboarded: bool = False
    is_authenticated: bool = False
    user: UserRecord | None = None
    device: DeviceInfo | None = None


class SessionRead(BaseModel):
    """Response schema for a session after evaluation."""

    redirect: AppRoute | None
    ready: bool
    is_onboarded: bool
    is_authenticated: bool
    coverage_plan: str | None
    effects: dict[str, str]
    user: UserRecord | None


class SessionLogout(BaseModel):
    message: str
