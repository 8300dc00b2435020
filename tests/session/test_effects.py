"""Tests for shield/session/effects.py - the session effect scheduler."""

import asyncio

import pytest

from shield.core.exceptions import ProviderError
from shield.integrations.billing import SubscriptionSnapshot
from shield.integrations.courial import (
    NOT_ELIGIBLE,
    CourialIdResult,
    DiscountCheckResult,
)
from shield.integrations.push import PushRegistrationResult
from shield.session.effects import SessionEffectScheduler
from shield.session.models import (
    EffectLedger,
    EffectName,
    EffectStatus,
    PlanTier,
    UserRecord,
)

USER_ID = "0b8f1d3e-6f0a-4c55-9d7e-2f1c8f5b7a10"
OTHER_USER_ID = "5c2a7e91-3b4d-4f60-8a1e-9d0c6b2f4e37"


@pytest.fixture(name="scheduler")
def scheduler_fixture(shield_session, mock_push, mock_billing, mock_resolver, mock_discounts):
    return SessionEffectScheduler(
        shield_session,
        push=mock_push,
        billing=mock_billing,
        resolver=mock_resolver,
        discounts=mock_discounts,
    )


def _status(session, name: EffectName) -> EffectStatus:
    return session.effects.get(name).status


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_nothing_runs_before_ready(
        self, scheduler, mock_push, mock_billing, mock_resolver
    ):
        scheduler.evaluate(ready=False)
        await scheduler.drain()

        mock_push.register.assert_not_awaited()
        mock_billing.fetch_snapshot.assert_not_awaited()
        mock_resolver.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_nothing_runs_when_signed_out(self, scheduler, shield_session, mock_push):
        shield_session.is_authenticated = False

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        mock_push.register.assert_not_awaited()
        assert scheduler.in_flight == 0


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_all_effects_run_once(
        self,
        scheduler,
        shield_session,
        mock_push,
        mock_billing,
        mock_resolver,
        mock_discounts,
    ):
        scheduler.evaluate(ready=True)
        await scheduler.drain()

        mock_push.register.assert_awaited_once_with(USER_ID, shield_session.device)
        mock_billing.identify.assert_awaited_once_with(USER_ID)
        mock_billing.fetch_snapshot.assert_awaited_once()
        mock_resolver.resolve.assert_awaited_once()
        mock_discounts.check.assert_awaited_once()

        user = shield_session.user
        assert user.courial_id == 4242
        assert user.courial_id_fetched_at is not None
        assert user.courial_id_error is None
        assert user.discount_checked_at is not None
        assert set(shield_session.effects.snapshot().values()) == {"succeeded"}

    @pytest.mark.asyncio
    async def test_reevaluation_after_success_is_noop(
        self, scheduler, mock_push, mock_billing, mock_resolver, mock_discounts
    ):
        scheduler.evaluate(ready=True)
        await scheduler.drain()
        scheduler.evaluate(ready=True)
        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert mock_push.register.await_count == 1
        assert mock_billing.fetch_snapshot.await_count == 1
        assert mock_resolver.resolve.await_count == 1
        assert mock_discounts.check.await_count == 1

    @pytest.mark.asyncio
    async def test_reevaluation_while_in_flight_is_noop(self, scheduler, mock_push):
        release = asyncio.Event()

        async def slow_register(user_id, device):
            await release.wait()
            return PushRegistrationResult(success=True, token=device.push_token)

        mock_push.register.side_effect = slow_register

        scheduler.evaluate(ready=True)
        await asyncio.sleep(0)
        scheduler.evaluate(ready=True)
        release.set()
        await scheduler.drain()

        assert mock_push.register.await_count == 1


class TestPushRegistration:
    @pytest.mark.asyncio
    async def test_failure_is_retried_on_next_evaluation(
        self, scheduler, shield_session, mock_push
    ):
        mock_push.register.side_effect = [
            PushRegistrationResult(success=False, error="API error: 503"),
            PushRegistrationResult(success=True, token="ExponentPushToken[test]"),
        ]

        scheduler.evaluate(ready=True)
        await scheduler.drain()
        record = shield_session.effects.get(EffectName.push_registration)
        assert record.status == EffectStatus.failed
        assert record.last_error == "API error: 503"

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert mock_push.register.await_count == 2
        assert record.status == EffectStatus.succeeded

    @pytest.mark.asyncio
    async def test_exception_is_contained(self, scheduler, shield_session, mock_push):
        mock_push.register.side_effect = ConnectionError("offline")

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert _status(shield_session, EffectName.push_registration) == EffectStatus.failed


class TestSubscriptionSync:
    @pytest.mark.asyncio
    async def test_same_user_fetches_once(self, scheduler, mock_billing):
        """Two evaluations for one user id start a single fetch."""
        scheduler.evaluate(ready=True)
        scheduler.evaluate(ready=True)
        await scheduler.drain()

        mock_billing.fetch_snapshot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_active_entitlement_sets_plan(
        self, scheduler, shield_session, mock_billing
    ):
        mock_billing.fetch_snapshot.return_value = SubscriptionSnapshot(
            app_user_id=USER_ID,
            active_entitlements={"premium": "shield_professional_monthly"},
        )

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert shield_session.user.current_plan == PlanTier.professional
        assert shield_session.user.has_active_subscription is True
        assert shield_session.coverage_plan == PlanTier.professional

    @pytest.mark.asyncio
    async def test_unchanged_state_is_not_rewritten(self, scheduler, shield_session):
        """A matching (plan, active, coverage) triple leaves the record alone."""
        shield_session.update_user(courial_id=4242)
        shield_session.stamp_discount(
            eligible=False, discount_percentage=0, completed_rides=0
        )
        before = shield_session.user

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert shield_session.user is before
        assert _status(shield_session, EffectName.subscription_sync) == EffectStatus.succeeded

    @pytest.mark.asyncio
    async def test_error_falls_back_to_free_and_retries(
        self, scheduler, shield_session, mock_billing
    ):
        shield_session.set_current_plan(PlanTier.pro, True)
        mock_billing.fetch_snapshot.side_effect = [
            ProviderError("Billing provider unavailable"),
            SubscriptionSnapshot(
                app_user_id=USER_ID, active_entitlements={"premium": "shield_pro_yearly"}
            ),
        ]

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert shield_session.user.current_plan == PlanTier.free
        assert shield_session.coverage_plan == PlanTier.free
        assert shield_session.effects.synced_user_id is None
        assert _status(shield_session, EffectName.subscription_sync) == EffectStatus.failed

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert mock_billing.fetch_snapshot.await_count == 2
        assert shield_session.user.current_plan == PlanTier.pro

    @pytest.mark.asyncio
    async def test_not_configured_uses_free_plan(
        self, scheduler, shield_session, mock_billing
    ):
        mock_billing.is_configured.return_value = False
        shield_session.set_current_plan(PlanTier.basic, True)

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        mock_billing.identify.assert_not_awaited()
        assert shield_session.user.current_plan == PlanTier.free
        assert shield_session.effects.synced_user_id == USER_ID

    @pytest.mark.asyncio
    async def test_missing_subscriber_uses_free_plan(
        self, scheduler, shield_session, mock_billing
    ):
        mock_billing.fetch_snapshot.return_value = None
        shield_session.set_current_plan(PlanTier.pro, True)

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert shield_session.user.current_plan == PlanTier.free
        assert _status(shield_session, EffectName.subscription_sync) == EffectStatus.succeeded


class TestIdentifierResolution:
    @pytest.mark.asyncio
    async def test_failure_records_error_and_retries(
        self, scheduler, shield_session, mock_resolver, mock_discounts
    ):
        mock_resolver.resolve.side_effect = [
            CourialIdResult(success=False, error="API error: 500"),
            CourialIdResult(success=True, courial_id=77),
        ]

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert shield_session.user.courial_id is None
        assert shield_session.user.courial_id_error == "API error: 500"
        mock_discounts.check.assert_not_awaited()

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert shield_session.user.courial_id == 77
        assert shield_session.user.courial_id_error is None
        mock_discounts.check.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_invalid_id_counts_as_failure(
        self, scheduler, shield_session, mock_resolver
    ):
        mock_resolver.resolve.return_value = CourialIdResult(success=True, courial_id=0)

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert shield_session.user.courial_id is None
        assert (
            _status(shield_session, EffectName.identifier_resolution)
            == EffectStatus.failed
        )

    @pytest.mark.asyncio
    async def test_skipped_when_id_already_valid(
        self, scheduler, shield_session, mock_resolver, mock_discounts
    ):
        shield_session.update_user(courial_id=555)

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        mock_resolver.resolve.assert_not_awaited()
        mock_discounts.check.assert_awaited_once()
        assert shield_session.user.courial_id == 555

    @pytest.mark.asyncio
    async def test_chained_discount_check_finishes_before_success(
        self, scheduler, shield_session, mock_discounts
    ):
        observed = []

        async def check(session):
            observed.append(_status(session, EffectName.identifier_resolution))
            session.stamp_discount(eligible=True, discount_percentage=15, completed_rides=40)
            return DiscountCheckResult(success=True, data=NOT_ELIGIBLE)

        mock_discounts.check.side_effect = check

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert observed == [EffectStatus.in_flight]
        assert (
            _status(shield_session, EffectName.identifier_resolution)
            == EffectStatus.succeeded
        )
        assert shield_session.user.discount_percentage == 15

    @pytest.mark.asyncio
    async def test_late_result_after_logout_is_dropped(
        self, scheduler, shield_session, mock_resolver, mock_discounts
    ):
        release = asyncio.Event()

        async def slow_resolve(user):
            await release.wait()
            return CourialIdResult(success=True, courial_id=88)

        mock_resolver.resolve.side_effect = slow_resolve

        scheduler.evaluate(ready=True)
        await asyncio.sleep(0)
        shield_session.logout()
        release.set()
        await scheduler.drain()

        assert shield_session.user is None
        mock_discounts.check.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_late_failure_does_not_touch_new_user(
        self, scheduler, shield_session, mock_resolver
    ):
        release = asyncio.Event()

        async def slow_resolve(user):
            await release.wait()
            return CourialIdResult(success=False, error="API error: 500")

        mock_resolver.resolve.side_effect = slow_resolve

        scheduler.evaluate(ready=True)
        await asyncio.sleep(0)
        shield_session.replace_user(UserRecord(id=OTHER_USER_ID, email="other@example.com"))
        shield_session.effects = EffectLedger()
        release.set()
        await scheduler.drain()

        assert shield_session.user.id == OTHER_USER_ID
        assert shield_session.user.courial_id_error is None


class TestDiscountCheck:
    @pytest.mark.asyncio
    async def test_concurrent_triggers_run_once(
        self, scheduler, shield_session, mock_discounts
    ):
        """Chained and scheduled triggers racing in one tick check once."""
        shield_session.update_user(courial_id=4242)

        results = await asyncio.gather(
            scheduler.run_discount_check(trigger="identifier_resolution"),
            scheduler.run_discount_check(trigger="scheduled"),
        )

        assert sorted(results) == [False, True]
        mock_discounts.check.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_check_in_flight_across_user_switch_reruns_for_new_user(
        self, scheduler, shield_session, mock_discounts
    ):
        shield_session.update_user(courial_id=111)
        release = asyncio.Event()
        checked = []

        async def slow_check(session):
            checked.append(session.user.courial_id)
            if len(checked) == 1:
                await release.wait()
            return DiscountCheckResult(success=True, data=NOT_ELIGIBLE)

        mock_discounts.check.side_effect = slow_check

        first = asyncio.create_task(scheduler.run_discount_check(trigger="scheduled"))
        await asyncio.sleep(0)
        shield_session.replace_user(UserRecord(id=OTHER_USER_ID, courial_id=222))
        shield_session.effects = EffectLedger()
        release.set()

        assert await first is False
        assert (
            _status(shield_session, EffectName.discount_check)
            == EffectStatus.not_started
        )
        assert await scheduler.run_discount_check(trigger="scheduled") is True
        assert checked == [111, 222]

    @pytest.mark.asyncio
    async def test_scheduled_check_skipped_while_chained_in_flight(
        self, scheduler, shield_session, mock_resolver, mock_discounts
    ):
        release = asyncio.Event()
        started = asyncio.Event()

        async def slow_check(session):
            started.set()
            await release.wait()
            session.stamp_discount(eligible=False, discount_percentage=0, completed_rides=0)
            return DiscountCheckResult(success=True, data=NOT_ELIGIBLE)

        mock_discounts.check.side_effect = slow_check

        scheduler.evaluate(ready=True)
        await asyncio.wait_for(started.wait(), timeout=1)
        # The id is now valid and discount_checked_at is unset.
        scheduler.evaluate(ready=True)
        release.set()
        await scheduler.drain()

        mock_discounts.check.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failure_leaves_timestamp_unset_and_retries(
        self, scheduler, shield_session, mock_discounts
    ):
        shield_session.update_user(courial_id=4242)
        calls = 0

        async def flaky(session):
            nonlocal calls
            calls += 1
            if calls == 1:
                return DiscountCheckResult(success=False, error="Network error")
            session.stamp_discount(eligible=True, discount_percentage=10, completed_rides=12)
            return DiscountCheckResult(success=True, data=NOT_ELIGIBLE)

        mock_discounts.check.side_effect = flaky

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert shield_session.user.discount_checked_at is None
        assert _status(shield_session, EffectName.discount_check) == EffectStatus.failed

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        assert calls == 2
        assert shield_session.user.discount_eligible is True
        assert shield_session.user.discount_checked_at is not None

    @pytest.mark.asyncio
    async def test_not_scheduled_once_checked(
        self, scheduler, shield_session, mock_discounts
    ):
        shield_session.update_user(courial_id=4242)
        shield_session.stamp_discount(eligible=False, discount_percentage=0, completed_rides=0)

        scheduler.evaluate(ready=True)
        await scheduler.drain()

        mock_discounts.check.assert_not_awaited()
