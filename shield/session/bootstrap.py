"""Session bootstrap orchestrator.

Ties together hydration, the readiness barrier, identity normalization, the
effect scheduler and navigation resolution for one device session.
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache

from shield.core.constants import AppRoute
from shield.integrations.billing import BillingProvider, create_billing_provider
from shield.integrations.courial import (
    CourialDiscountChecker,
    CourialIdLookup,
    CourialIdResolver,
    DiscountChecker,
    get_courial_api,
)
from shield.integrations.push import PushRegistrar, get_push_registrar
from shield.session.effects import SessionEffectScheduler
from shield.session.identity import ensure_canonical_user_id
from shield.session.models import DeviceInfo, EffectLedger, Session, UserRecord
from shield.session.navigation import NavigationState, resolve_navigation
from shield.session.readiness import DEFAULT_READINESS_DELAY, ReadinessBarrier
from shield.session.store import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    push: PushRegistrar
    billing: BillingProvider
    resolver: CourialIdResolver
    discounts: DiscountChecker


def default_collaborators() -> Collaborators:
    api = get_courial_api()
    return Collaborators(
        push=get_push_registrar(),
        billing=create_billing_provider(),
        resolver=CourialIdLookup(api),
        discounts=CourialDiscountChecker(api),
    )


class SessionBootstrap:
    """Bootstrap for one device session.

    Usage:
        bootstrap = SessionBootstrap(collaborators)
        await bootstrap.start(store, key)
        await bootstrap.wait_ready()
        redirect = bootstrap.evaluate(route_group="auth")
        await bootstrap.settle()
        bootstrap.close()
    """

    def __init__(
        self,
        collaborators: Collaborators,
        *,
        session: Session | None = None,
        readiness_delay: float = DEFAULT_READINESS_DELAY,
    ):
        self.session = session if session is not None else Session()
        self.collaborators = collaborators
        self.hydrated = asyncio.Event()
        self.barrier = ReadinessBarrier(delay=readiness_delay, hydrated=self.hydrated)
        self.scheduler = SessionEffectScheduler(
            self.session,
            push=collaborators.push,
            billing=collaborators.billing,
            resolver=collaborators.resolver,
            discounts=collaborators.discounts,
        )

    @property
    def ready(self) -> bool:
        return self.barrier.ready

    async def start(self, store: SessionStore | None = None, key: str | None = None) -> None:
        """Arm the barrier and hydrate. Without a store the session is used as is."""
        self.barrier.start()
        if store is None or key is None:
            self.hydrated.set()
            return
        await store.hydrate(key, self.session, self.hydrated)

    async def wait_ready(self) -> None:
        await self.barrier.wait()

    def navigate(self, route_group: str | None = None) -> AppRoute | None:
        return resolve_navigation(
            NavigationState(
                ready=self.barrier.ready,
                is_onboarded=self.session.is_onboarded,
                is_authenticated=self.session.is_authenticated,
                route_group=route_group,
            )
        )

    def evaluate(self, route_group: str | None = None) -> AppRoute | None:
        """Run one evaluation pass: normalize identity, start effects, resolve route."""
        if self.barrier.ready:
            ensure_canonical_user_id(self.session)
        self.scheduler.evaluate(ready=self.barrier.ready)
        return self.navigate(route_group)

    async def settle(self) -> None:
        await self.scheduler.drain()

    def apply(
        self,
        *,
        is_onboarded: bool,
        is_authenticated: bool,
        user: UserRecord | None,
        device: DeviceInfo | None = None,
    ) -> None:
        """Replace the session flags and user, e.g. after onboarding or login.

        A different user starts with a fresh effect ledger.
        """
        session = self.session
        previous = session.user
        session.is_onboarded = is_onboarded
        session.is_authenticated = is_authenticated
        session.replace_user(user)
        if device is not None:
            session.device = device
        if user is None or previous is None or previous.id != user.id:
            session.effects = EffectLedger()

    async def logout(self) -> None:
        """Unregister push and log the billing provider out, then reset state.

        Both teardown calls are best-effort; the session is reset either way.
        """
        session = self.session
        user = session.user
        if user is not None:
            try:
                await self.collaborators.push.unregister(user.id, session.device)
            except Exception as e:
                logger.warning("Push unregistration failed on logout: %s", e)
        try:
            await self.collaborators.billing.log_out()
        except Exception as e:
            logger.warning("Billing log out failed: %s", e)
        session.logout()
        logger.info("Session logged out")

    def close(self) -> None:
        self.barrier.close()


class SessionRegistry:
    """Live bootstraps keyed by session key, for the HTTP surface."""

    def __init__(
        self,
        store: SessionStore,
        collaborators_factory=default_collaborators,
        readiness_delay: float = DEFAULT_READINESS_DELAY,
    ):
        self.store = store
        self._factory = collaborators_factory
        self._readiness_delay = readiness_delay
        self._bootstraps: dict[str, SessionBootstrap] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def live_sessions(self) -> int:
        return len(self._bootstraps)

    async def open(self, key: str) -> SessionBootstrap:
        """Return the live bootstrap for key.

        On first use the session is hydrated and the call waits for the
        readiness barrier, so every request sees a ready bootstrap. Opens of
        different keys do not wait on each other.
        """
        bootstrap = self._bootstraps.get(key)
        if bootstrap is not None:
            return bootstrap

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            bootstrap = self._bootstraps.get(key)
            if bootstrap is None:
                bootstrap = SessionBootstrap(
                    self._factory(), readiness_delay=self._readiness_delay
                )
                try:
                    await bootstrap.start(self.store, key)
                    await bootstrap.wait_ready()
                except BaseException:
                    bootstrap.close()
                    raise
                self._bootstraps[key] = bootstrap
        self._locks.pop(key, None)
        return bootstrap

    def save(self, key: str) -> None:
        bootstrap = self._bootstraps.get(key)
        if bootstrap is not None:
            self.store.save(key, bootstrap.session)

    def discard(self, key: str) -> None:
        bootstrap = self._bootstraps.pop(key, None)
        if bootstrap is not None:
            bootstrap.close()

    def close(self) -> None:
        for bootstrap in self._bootstraps.values():
            bootstrap.close()
        self._bootstraps.clear()


@lru_cache
def get_registry() -> SessionRegistry:
    from shield.core.settings import get_settings
    from shield.db.engine import get_engine

    return SessionRegistry(
        SessionStore(get_engine()),
        readiness_delay=get_settings().readiness_delay_seconds,
    )
