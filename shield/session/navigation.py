"""Navigation resolution for the session bootstrap.

Pure function of the session flags and the route group the app is showing.
"""

from dataclasses import dataclass

from shield.core.constants import PRE_AUTH_ROUTE_GROUPS, AppRoute


@dataclass(frozen=True)
class NavigationState:
    ready: bool
    is_onboarded: bool
    is_authenticated: bool
    route_group: str | None = None


def resolve_navigation(state: NavigationState) -> AppRoute | None:
    """Return the route the app must be redirected to, or None to stay put.

    Plan selection is optional: free-tier users are never redirected to plans.
    """
    if not state.ready:
        return None
    if not state.is_onboarded:
        return AppRoute.onboarding
    if not state.is_authenticated:
        return AppRoute.auth
    if state.route_group in PRE_AUTH_ROUTE_GROUPS:
        return AppRoute.home
    return None


def route_group_of(path: str | None) -> str | None:
    """First segment of an app path: ``/auth/verify`` -> ``auth``."""
    if not path:
        return None
    segments = [segment for segment in path.split("/") if segment]
    return segments[0] if segments else None
