"""Courial driver API collaborators.

Two collaborators share one HTTP client: the identifier resolver (email ->
Courial id) and the discount-eligibility checker. The checker owns stamping
``discount_checked_at`` on the session when a check succeeds.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Protocol

import httpx

from shield.core.http import get_service_client
from shield.core.retry import with_retry
from shield.session.models import Session, UserRecord, is_valid_courial_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CourialIdResult:
    success: bool
    courial_id: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class DiscountEligibility:
    eligible: bool
    discount_percentage: float
    completed_rides: int


@dataclass(frozen=True)
class DiscountCheckResult:
    success: bool
    data: DiscountEligibility | None = None
    error: str | None = None


NOT_ELIGIBLE = DiscountEligibility(eligible=False, discount_percentage=0, completed_rides=0)


class CourialIdResolver(Protocol):
    async def resolve(self, user: UserRecord) -> CourialIdResult: ...


class DiscountChecker(Protocol):
    async def check(self, session: Session) -> DiscountCheckResult: ...


class CourialApi:
    """Thin async client for the Courial driver API."""

    def __init__(self, base_url: str):
        self._base_url = base_url

    async def _request(
        self, method: str, path: str, *, json: dict[str, Any] | None = None
    ) -> httpx.Response:
        client = get_service_client("courial", self._base_url)
        return await with_retry(
            lambda: client.request(method, path, json=json),
            exceptions=(httpx.RequestError,),
            label=f"courial.{method.lower()}",
        )

    async def fetch_courial_id(self, email: str) -> CourialIdResult:
        try:
            response = await self._request(
                "POST", "/users/courial_id", json={"email": email}
            )
        except httpx.RequestError as e:
            # Expected while the API is unreachable; the scheduler retries.
            logger.info("Courial API unavailable: %s", e)
            return CourialIdResult(success=False, error=str(e) or "Network error")

        if response.is_error:
            logger.info("Courial id lookup unavailable: status=%s", response.status_code)
            return CourialIdResult(
                success=False, error=f"API error: {response.status_code}"
            )

        data = _json_or_empty(response)
        courial_id = data.get("courial_id")
        if not data.get("success") or not is_valid_courial_id(courial_id):
            return CourialIdResult(
                success=False,
                error=data.get("error") or "Failed to resolve Courial ID",
            )
        return CourialIdResult(success=True, courial_id=courial_id)

    async def fetch_discount_eligibility(self, courial_id: int) -> DiscountCheckResult:
        if not is_valid_courial_id(courial_id):
            return DiscountCheckResult(success=False, error="Invalid Courial ID")

        try:
            response = await self._request(
                "GET", f"/users/{courial_id}/discount-eligibility"
            )
        except httpx.RequestError as e:
            logger.warning("Discount eligibility request failed: %s", e)
            return DiscountCheckResult(success=False, error=str(e) or "Network error")

        # No eligibility record means the driver is simply not eligible.
        if response.status_code == 404:
            return DiscountCheckResult(success=True, data=NOT_ELIGIBLE)

        if response.is_error:
            logger.warning(
                "Discount eligibility request rejected: status=%s",
                response.status_code,
            )
            return DiscountCheckResult(
                success=False, error=f"API error: {response.status_code}"
            )

        data = _json_or_empty(response)
        if not data.get("success"):
            return DiscountCheckResult(
                success=False,
                error=data.get("error") or "Failed to check discount eligibility",
            )

        payload = data.get("data") or {}
        return DiscountCheckResult(
            success=True,
            data=DiscountEligibility(
                eligible=bool(payload.get("eligible", False)),
                discount_percentage=payload.get("discountPercentage", 0),
                completed_rides=payload.get("completedRides", 0),
            ),
        )


def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class CourialIdLookup:
    """Resolves a user's Courial id from their email."""

    def __init__(self, api: CourialApi):
        self._api = api

    async def resolve(self, user: UserRecord) -> CourialIdResult:
        if user.has_valid_courial_id:
            return CourialIdResult(success=True, courial_id=user.courial_id)
        if not user.email:
            return CourialIdResult(success=False, error="User has no email")
        return await self._api.fetch_courial_id(user.email)


class CourialDiscountChecker:
    """Checks discount eligibility and records the outcome on the session."""

    def __init__(self, api: CourialApi):
        self._api = api

    async def check(self, session: Session) -> DiscountCheckResult:
        user = session.user
        if user is None:
            return DiscountCheckResult(success=False, error="User not logged in")
        if not user.has_valid_courial_id:
            return DiscountCheckResult(success=False, error="No valid Courial ID")

        user_id = user.id
        result = await self._api.fetch_discount_eligibility(user.courial_id)
        current = session.user
        if current is None or current.id != user_id:
            logger.info("Dropping discount eligibility of a previous session user")
            return DiscountCheckResult(success=False, error="Session user changed")
        if result.success and result.data is not None:
            session.stamp_discount(
                eligible=result.data.eligible,
                discount_percentage=result.data.discount_percentage,
                completed_rides=result.data.completed_rides,
            )
        return result


@lru_cache
def get_courial_api() -> CourialApi:
    from shield.core.settings import get_settings

    return CourialApi(base_url=get_settings().courial_api_base_url)
