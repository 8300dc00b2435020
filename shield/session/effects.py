"""Session effect scheduler.

Runs the four session effects (push registration, subscription sync,
identifier resolution, discount check) whenever their preconditions hold.

Every effect follows the same contract:

1. Preconditions are checked synchronously.
2. The effect's guard in the session's ``EffectLedger`` is taken before the
   first ``await``, so re-evaluations while a call is in flight are no-ops.
3. On success the guard stays held for the rest of the session.
4. On failure the guard is released (status ``failed``) so the next
   evaluation retries, a safe default is written where one exists, and the
   failure is logged. Nothing is raised to the caller.

Effects run as tasks on the running event loop and are never cancelled
mid-flight. Every write re-reads the session's current user first.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from shield.core.mixins import utc_now
from shield.integrations.billing import BillingProvider, derive_subscription_state
from shield.integrations.courial import (
    CourialIdResolver,
    CourialIdResult,
    DiscountChecker,
    DiscountCheckResult,
)
from shield.integrations.push import PushRegistrar, PushRegistrationResult
from shield.session.models import (
    DEFAULT_PLAN,
    EffectLedger,
    EffectName,
    EffectStatus,
    PlanTier,
    Session,
    is_valid_courial_id,
)

logger = logging.getLogger(__name__)


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


class SessionEffectScheduler:
    """Schedules session effects for one device session.

    Usage:
        scheduler = SessionEffectScheduler(session, push=..., billing=...,
                                           resolver=..., discounts=...)
        scheduler.evaluate(ready=barrier.ready)  # on every state change
        await scheduler.drain()                  # wait for in-flight effects
    """

    def __init__(
        self,
        session: Session,
        *,
        push: PushRegistrar,
        billing: BillingProvider,
        resolver: CourialIdResolver,
        discounts: DiscountChecker,
    ):
        self._session = session
        self._push = push
        self._billing = billing
        self._resolver = resolver
        self._discounts = discounts
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def _spawn(self, name: EffectName, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=f"effect:{name.value}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait until no effect is in flight, including chained ones."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def evaluate(self, *, ready: bool) -> None:
        """Start every effect whose preconditions hold and whose guard is free."""
        session = self._session
        if not ready or not session.is_authenticated or session.user is None:
            return

        self._schedule_push_registration()
        self._schedule_subscription_sync()
        self._schedule_identifier_resolution()
        self._schedule_discount_check()

    # Push registration

    def _schedule_push_registration(self) -> None:
        ledger = self._session.effects
        if not ledger.try_acquire(EffectName.push_registration):
            return
        self._spawn(EffectName.push_registration, self._register_push(ledger))

    async def _register_push(self, ledger: EffectLedger) -> None:
        name = EffectName.push_registration
        user = self._session.user
        if user is None:
            ledger.fail(name, "User not logged in")
            return

        logger.info(
            "Registering push token", extra={"effect": name.value, "user_id": user.id}
        )
        try:
            result = await self._push.register(user.id, self._session.device)
        except Exception as e:
            result = PushRegistrationResult(success=False, error=_describe(e))

        if result.success:
            ledger.succeed(name)
            logger.info("Push token registered", extra={"effect": name.value})
        else:
            ledger.fail(name, result.error)
            logger.warning(
                "Push token registration failed: %s",
                result.error,
                extra={"effect": name.value, "user_id": user.id},
            )

    # Subscription sync

    def _schedule_subscription_sync(self) -> None:
        user = self._session.user
        if user is None or not user.id:
            return

        # Compared synchronously so two overlapping syncs for one id cannot start.
        ledger = self._session.effects
        if ledger.synced_user_id == user.id:
            return
        ledger.synced_user_id = user.id
        record = ledger.get(EffectName.subscription_sync)
        record.status = EffectStatus.in_flight
        record.attempts += 1

        self._spawn(
            EffectName.subscription_sync, self._sync_subscription(ledger, user.id)
        )

    def _commit_plan(
        self, user_id: str, plan: PlanTier, has_active_subscription: bool
    ) -> None:
        current = self._session.user
        if current is None or current.id != user_id:
            return
        self._session.set_current_plan(plan, has_active_subscription)

    async def _sync_subscription(self, ledger: EffectLedger, user_id: str) -> None:
        name = EffectName.subscription_sync
        extra = {"effect": name.value, "user_id": user_id}
        billing = self._billing

        try:
            await billing.initialize()
            if not billing.is_configured():
                logger.warning(
                    "Billing provider not configured, using free plan", extra=extra
                )
                self._commit_plan(user_id, DEFAULT_PLAN, False)
                ledger.succeed(name)
                return

            await billing.identify(user_id)
            snapshot = await billing.fetch_snapshot()
            if snapshot is None:
                logger.warning("No subscriber info from billing provider", extra=extra)
                self._commit_plan(user_id, DEFAULT_PLAN, False)
                ledger.succeed(name)
                return

            state = derive_subscription_state(snapshot, billing.entitlement_id)
            current = self._session.user
            unchanged = (
                current is not None
                and current.current_plan == state.plan
                and current.has_active_subscription == state.has_active_subscription
                and self._session.coverage_plan == state.plan
            )
            if not unchanged:
                logger.info(
                    "Syncing plan state from billing provider: %s",
                    state.plan.value,
                    extra=extra,
                )
                self._commit_plan(user_id, state.plan, state.has_active_subscription)
            ledger.succeed(name)
        except Exception as e:
            logger.warning(
                "Subscription sync failed: %s", _describe(e), extra=extra
            )
            self._commit_plan(user_id, DEFAULT_PLAN, False)
            if ledger.synced_user_id == user_id:
                ledger.synced_user_id = None
            ledger.fail(name, _describe(e))

    # Identifier resolution

    def _schedule_identifier_resolution(self) -> None:
        user = self._session.user
        if user is None or user.has_valid_courial_id:
            return
        ledger = self._session.effects
        if not ledger.try_acquire(EffectName.identifier_resolution):
            return
        self._spawn(EffectName.identifier_resolution, self._resolve_identifier(ledger))

    async def _resolve_identifier(self, ledger: EffectLedger) -> None:
        name = EffectName.identifier_resolution
        user = self._session.user
        if user is None:
            ledger.fail(name, "User not logged in")
            return

        extra = {"effect": name.value, "user_id": user.id}
        logger.info("Resolving Courial id", extra=extra)
        try:
            result = await self._resolver.resolve(user)
        except Exception as e:
            result = CourialIdResult(success=False, error=_describe(e))

        current = self._session.user
        if current is None or current.id != user.id:
            ledger.fail(name, "Session user changed")
            return

        if not result.success or not is_valid_courial_id(result.courial_id):
            error = result.error or "Failed to resolve Courial ID"
            self._session.update_user(courial_id_error=error)
            ledger.fail(name, error)
            logger.warning("Courial id resolution failed: %s", error, extra=extra)
            return
        # Immutable once valid: never overwrite an id that is already set.
        if not current.has_valid_courial_id:
            self._session.update_user(
                courial_id=result.courial_id,
                courial_id_fetched_at=utc_now(),
                courial_id_error=None,
            )
            logger.info("Courial id resolved: %s", result.courial_id, extra=extra)

        await self.run_discount_check(trigger="identifier_resolution")
        ledger.succeed(name)

    # Discount check

    def _schedule_discount_check(self) -> None:
        user = self._session.user
        if (
            user is None
            or not user.has_valid_courial_id
            or user.discount_checked_at is not None
        ):
            return
        if self._session.effects.get(EffectName.discount_check).is_held:
            return
        self._spawn(EffectName.discount_check, self.run_discount_check(trigger="scheduled"))

    async def run_discount_check(self, *, trigger: str) -> bool:
        """Check discount eligibility at most once per session.

        Both the scheduler and identifier resolution call this; the guard
        taken here, before the first await, is what keeps it at most once.

        Returns:
            True if this call ran the check and it succeeded
        """
        name = EffectName.discount_check
        user = self._session.user
        if user is None or not user.has_valid_courial_id:
            return False
        ledger = self._session.effects
        if not ledger.try_acquire(name):
            return False

        extra = {
            "effect": name.value,
            "user_id": user.id,
            "attempt": ledger.get(name).attempts,
        }
        logger.info("Checking discount eligibility (%s)", trigger, extra=extra)
        try:
            result = await self._discounts.check(self._session)
        except Exception as e:
            result = DiscountCheckResult(success=False, error=_describe(e))

        current = self._session.user
        if current is None or current.id != user.id:
            ledger.fail(name, "Session user changed")
            return False

        if result.success:
            ledger.succeed(name)
            logger.info("Discount eligibility checked: %s", result.data, extra=extra)
            return True

        ledger.fail(name, result.error)
        logger.warning("Discount check failed: %s", result.error, extra=extra)
        return False
