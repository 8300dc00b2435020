"""Session domain router.

Drives the session bootstrap for a device session identified by ``key``.
Every route requires the service token.
"""

from fastapi import APIRouter, Depends, Path

from shield.core.auth import require_service_token
from shield.core.constants import CommonResponses, Routes
from shield.core.deps import RegistryDep
from shield.session.bootstrap import SessionBootstrap
from shield.session.navigation import route_group_of
from shield.session.schemas import (
    SessionEvaluate,
    SessionLogout,
    SessionRead,
    SessionReplace,
)

router = APIRouter(
    prefix=Routes.SESSIONS.prefix,
    tags=[Routes.SESSIONS.tag],
    dependencies=[Depends(require_service_token)],
    responses={**CommonResponses.UNAUTHORIZED, **CommonResponses.BAD_REQUEST},
)

SessionKey = Path(min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_.:-]+$")


def _read(bootstrap: SessionBootstrap, redirect) -> SessionRead:
    session = bootstrap.session
    return SessionRead(
        redirect=redirect,
        ready=bootstrap.ready,
        is_onboarded=session.is_onboarded,
        is_authenticated=session.is_authenticated,
        coverage_plan=session.coverage_plan.value if session.coverage_plan else None,
        effects=session.effects.snapshot(),
        user=session.user,
    )


@router.post("/{key}/evaluate", response_model=SessionRead)
async def evaluate_session(
    registry: RegistryDep,
    body: SessionEvaluate | None = None,
    key: str = SessionKey,
):
    """Run one bootstrap evaluation and wait for the effects it started."""
    bootstrap = await registry.open(key)
    route_group = route_group_of(body.path if body else None)
    redirect = bootstrap.evaluate(route_group)
    await bootstrap.settle()
    registry.save(key)
    return _read(bootstrap, redirect)


@router.put("/{key}", response_model=SessionRead)
async def replace_session(
    registry: RegistryDep, body: SessionReplace, key: str = SessionKey
):
    """Replace the session flags and user, as the app does after login."""
    bootstrap = await registry.open(key)
    bootstrap.apply(
        is_onboarded=body.is_onboarded,
        is_authenticated=body.is_authenticated,
        user=body.user,
        device=body.device,
    )
    registry.save(key)
    return _read(bootstrap, bootstrap.navigate())


@router.post("/{key}/logout", response_model=SessionLogout)
async def logout_session(registry: RegistryDep, key: str = SessionKey):
    """Log the session out and reset it to its initial state."""
    bootstrap = await registry.open(key)
    await bootstrap.logout()
    registry.save(key)
    return SessionLogout(message="Logged out")
