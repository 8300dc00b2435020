"""Billing collaborator backed by the RevenueCat REST API.

One provider instance belongs to one device session: ``identify`` binds it to
the session's user, the way the mobile SDK binds a device.
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from shield.core.exceptions import ProviderError
from shield.core.http import get_service_client
from shield.core.retry import with_retry
from shield.session.models import DEFAULT_PLAN, PlanTier

logger = logging.getLogger(__name__)

DEFAULT_ENTITLEMENT_ID = "premium"


@dataclass(frozen=True)
class SubscriptionSnapshot:
    """Active entitlements of one subscriber: entitlement id -> product id."""

    app_user_id: str
    active_entitlements: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SubscriptionState:
    plan: PlanTier
    has_active_subscription: bool


def plan_for_product(product_identifier: str) -> PlanTier | None:
    """Map a store product identifier to a paid plan.

    ``professional`` is checked before ``pro`` since it contains it.
    """
    product_id = product_identifier.lower()
    if "basic" in product_id:
        return PlanTier.basic
    if "professional" in product_id:
        return PlanTier.professional
    if "pro" in product_id:
        return PlanTier.pro
    return None


def derive_subscription_state(
    snapshot: SubscriptionSnapshot,
    entitlement_id: str = DEFAULT_ENTITLEMENT_ID,
) -> SubscriptionState:
    """Pure mapping from a billing snapshot to the session's plan state."""
    product_id = snapshot.active_entitlements.get(entitlement_id)
    plan = plan_for_product(product_id) if product_id else None
    if plan is None:
        return SubscriptionState(plan=DEFAULT_PLAN, has_active_subscription=False)
    return SubscriptionState(plan=plan, has_active_subscription=True)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_subscriber(app_user_id: str, data: dict[str, Any]) -> SubscriptionSnapshot:
    """Build a snapshot from a ``GET /v1/subscribers/{id}`` response body."""
    now = datetime.now(UTC)
    entitlements = data.get("subscriber", {}).get("entitlements", {}) or {}
    active: dict[str, str] = {}
    for name, entitlement in entitlements.items():
        expires = _parse_timestamp(entitlement.get("expires_date"))
        if expires is not None and expires <= now:
            continue
        product_id = entitlement.get("product_identifier")
        if product_id:
            active[name] = product_id
    return SubscriptionSnapshot(app_user_id=app_user_id, active_entitlements=active)


class BillingProvider(Protocol):
    """Contract the subscription sync relies on."""

    entitlement_id: str

    async def initialize(self) -> None: ...

    def is_configured(self) -> bool: ...

    async def identify(self, user_id: str) -> None: ...

    async def fetch_snapshot(self) -> SubscriptionSnapshot | None: ...

    async def log_out(self) -> None: ...


class RevenueCatBilling:
    """Billing provider for one device session."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.revenuecat.com",
        entitlement_id: str = DEFAULT_ENTITLEMENT_ID,
    ):
        self._api_key = api_key
        self._base_url = base_url
        self.entitlement_id = entitlement_id
        self._configured = False
        self._app_user_id: str | None = None
        self.last_init_error: str | None = None

    async def initialize(self) -> None:
        """Validate credentials once. Idempotent; never raises."""
        if self._configured:
            return
        if not self._api_key:
            self.last_init_error = "RevenueCat API key is missing"
            logger.warning("%s, set REVENUECAT_API_KEY", self.last_init_error)
            return
        self._configured = True
        self.last_init_error = None

    def is_configured(self) -> bool:
        return self._configured

    async def identify(self, user_id: str) -> None:
        if not self._configured:
            logger.warning("RevenueCat not configured, skipping identify")
            return
        self._app_user_id = user_id

    async def fetch_snapshot(self) -> SubscriptionSnapshot | None:
        """Fetch the identified subscriber.

        Returns:
            The snapshot, or None when nothing is identified or RevenueCat
            has no such subscriber

        Raises:
            ProviderError: On network failure or an unexpected response
        """
        if not self._configured or self._app_user_id is None:
            return None

        app_user_id = self._app_user_id
        client = get_service_client(
            "revenuecat",
            self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

        try:
            response = await with_retry(
                lambda: client.get(f"/v1/subscribers/{app_user_id}"),
                exceptions=(httpx.RequestError,),
                label="revenuecat.subscriber",
            )
        except httpx.RequestError as e:
            raise ProviderError("Billing provider unavailable") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ProviderError(f"Billing provider error: {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError("Billing provider returned an invalid response") from e

        return parse_subscriber(app_user_id, data)

    async def log_out(self) -> None:
        self._app_user_id = None


def create_billing_provider() -> RevenueCatBilling:
    """Create a fresh billing provider for a new device session."""
    from shield.core.settings import get_settings

    settings = get_settings()
    return RevenueCatBilling(
        api_key=settings.revenuecat_api_key,
        base_url=settings.revenuecat_base_url,
        entitlement_id=settings.revenuecat_entitlement_id,
    )
