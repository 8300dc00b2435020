"""Session domain models.

The ``Session`` aggregate is the single owned record of the current device
session: onboarding/auth flags, the user record, the coverage plan and the
per-session effect ledger. It is created by the store at hydration, mutated
only through the methods below and reset on logout.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from shield.core.mixins import utc_now


class PlanTier(str, Enum):
    """Subscription plans. ``free`` is the default and the safe fallback."""

    free = "free"
    basic = "basic"
    pro = "pro"
    professional = "professional"


DEFAULT_PLAN = PlanTier.free
PAID_PLANS = frozenset({PlanTier.basic, PlanTier.pro, PlanTier.professional})


def normalize_plan(value: Any) -> PlanTier:
    """Coerce a stored plan value to a PlanTier, falling back to free."""
    if isinstance(value, PlanTier):
        return value
    if isinstance(value, str):
        try:
            return PlanTier(value.strip().lower())
        except ValueError:
            pass
    return DEFAULT_PLAN


def is_paid_plan(plan: PlanTier) -> bool:
    return plan in PAID_PLANS


def is_valid_courial_id(value: Any) -> bool:
    """A Courial id is valid iff it is a positive integer."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def is_valid_uuid(value: Any) -> bool:
    """Check that value is a canonical (hyphenated, lowercase-insensitive) UUID."""
    if not isinstance(value, str):
        return False
    try:
        parsed = uuid.UUID(value)
    except ValueError:
        return False
    return str(parsed) == value.lower()


class UserRecord(BaseModel):
    """Locally persisted user profile as seen by the session bootstrap."""

    model_config = ConfigDict(frozen=True, extra="allow")

    id: str
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None

    current_plan: PlanTier = DEFAULT_PLAN
    has_active_subscription: bool = False

    courial_id: int | None = None
    courial_id_fetched_at: datetime | None = None
    courial_id_error: str | None = None

    discount_eligible: bool = False
    discount_percentage: float = 0
    completed_rides: int = 0
    discount_checked_at: datetime | None = None

    @property
    def has_valid_courial_id(self) -> bool:
        return is_valid_courial_id(self.courial_id)


class DeviceInfo(BaseModel):
    """What the device reported about itself for push registration."""

    push_token: str | None = None
    platform: str | None = None


class EffectName(str, Enum):
    push_registration = "push_registration"
    subscription_sync = "subscription_sync"
    identifier_resolution = "identifier_resolution"
    discount_check = "discount_check"


class EffectStatus(str, Enum):
    """Execution state of a session effect.

    ``failed`` is the retry path: the next evaluation moves it back to
    ``in_flight``. ``succeeded`` is terminal for the session.
    """

    not_started = "not_started"
    in_flight = "in_flight"
    succeeded = "succeeded"
    failed = "failed"


class EffectRecord(BaseModel):
    status: EffectStatus = EffectStatus.not_started
    attempts: int = 0
    last_error: str | None = None

    @property
    def is_held(self) -> bool:
        """Whether the guard blocks a new attempt."""
        return self.status in (EffectStatus.in_flight, EffectStatus.succeeded)


def _empty_records() -> dict[EffectName, EffectRecord]:
    return {name: EffectRecord() for name in EffectName}


class EffectLedger(BaseModel):
    """Per-session guard state for every effect. Never persisted."""

    records: dict[EffectName, EffectRecord] = Field(default_factory=_empty_records)
    # User id the last subscription sync was started for.
    synced_user_id: str | None = None

    def get(self, name: EffectName) -> EffectRecord:
        return self.records[name]

    def try_acquire(self, name: EffectName) -> bool:
        """Take the guard for an effect; False if it is already held."""
        record = self.records[name]
        if record.is_held:
            return False
        record.status = EffectStatus.in_flight
        record.attempts += 1
        return True

    def succeed(self, name: EffectName) -> None:
        record = self.records[name]
        record.status = EffectStatus.succeeded
        record.last_error = None

    def fail(self, name: EffectName, error: str | None) -> None:
        record = self.records[name]
        record.status = EffectStatus.failed
        record.last_error = error

    def snapshot(self) -> dict[str, str]:
        return {name.value: record.status.value for name, record in self.records.items()}


class Session(BaseModel):
    """Process-wide session aggregate for one device."""

    is_onboarded: bool = False
    is_authenticated: bool = False
    user: UserRecord | None = None
    coverage_plan: PlanTier | None = None
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    effects: EffectLedger = Field(default_factory=EffectLedger, exclude=True)

    def replace_user(self, user: UserRecord | None) -> None:
        """Install a user record, normalizing its subscription state."""
        if user is None:
            self.user = None
            self.coverage_plan = None
            return
        plan = normalize_plan(user.current_plan)
        active = user.has_active_subscription and is_paid_plan(plan)
        effective = plan if active else DEFAULT_PLAN
        self.user = user.model_copy(
            update={"current_plan": effective, "has_active_subscription": active}
        )
        self.coverage_plan = effective

    def update_user(self, **changes: Any) -> UserRecord | None:
        """Apply changes to the current user record.

        Always patches the record as it is now, never a copy captured before
        an await. A no-op once the user has been logged out.
        """
        if self.user is None:
            return None
        self.user = self.user.model_copy(update=changes)
        return self.user

    def set_current_plan(
        self, plan: PlanTier | str, has_active_subscription: bool = False
    ) -> None:
        """Commit plan state; anything but an active paid plan becomes free."""
        normalized = normalize_plan(plan)
        is_active_paid = has_active_subscription and is_paid_plan(normalized)
        effective = normalized if is_active_paid else DEFAULT_PLAN
        self.update_user(
            current_plan=effective, has_active_subscription=is_active_paid
        )
        self.coverage_plan = effective

    def stamp_discount(
        self,
        *,
        eligible: bool,
        discount_percentage: float,
        completed_rides: int,
        checked_at: datetime | None = None,
    ) -> None:
        self.update_user(
            discount_eligible=eligible,
            discount_percentage=discount_percentage,
            completed_rides=completed_rides,
            discount_checked_at=checked_at or utc_now(),
        )

    def logout(self) -> None:
        """Tear the session down to its initial state."""
        self.is_authenticated = False
        self.is_onboarded = False
        self.user = None
        self.coverage_plan = None
        self.effects = EffectLedger()
