"""
App-wide constants for route configuration.

Single source of truth for HTTP route prefixes and tags, the app screens the
navigation resolver can redirect to, and common response definitions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class RouteConfig:
    """Configuration for a route group."""

    prefix: str
    tag: str


class Routes:
    """Route configurations for all API endpoints."""

    SESSIONS = RouteConfig(prefix="/sessions", tag="sessions")
    OTP = RouteConfig(prefix="/otp", tag="otp")
    HEALTH = RouteConfig(prefix="/health", tag="health")


class AppRoute(str, Enum):
    """App screens the session bootstrap may redirect to."""

    onboarding = "/onboarding"
    auth = "/auth"
    home = "/(tabs)"


# First path segment of the screens that only make sense before login.
PRE_AUTH_ROUTE_GROUPS = frozenset({"auth", "onboarding"})


class CommonResponses:
    """Standard HTTP error response definitions for OpenAPI documentation."""

    UNAUTHORIZED: dict[int, dict[str, Any]] = {
        401: {"description": "Missing or invalid service token"}
    }
    BAD_REQUEST: dict[int, dict[str, Any]] = {
        400: {"description": "Invalid request data"}
    }
    RATE_LIMITED: dict[int, dict[str, Any]] = {
        429: {"description": "Retry after the cooldown expires"}
    }
    UPSTREAM_ERROR: dict[int, dict[str, Any]] = {
        502: {"description": "Upstream provider failed"}
    }
