"""Health domain router.

Reports database connectivity, the OTP mode this build runs in and the
number of live device sessions.
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shield.core.constants import Routes
from shield.core.deps import RegistryDep, SessionDep
from shield.otp.gate import get_otp_mode_info

router = APIRouter(prefix=Routes.HEALTH.prefix, tags=[Routes.HEALTH.tag])


@router.get("")
async def health(session: SessionDep, registry: RegistryDep):
    otp_mode = get_otp_mode_info().mode.value
    try:
        session.exec(text("SELECT 1"))
    except SQLAlchemyError:
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "database": "error", "otp_mode": otp_mode},
        )
    return {
        "status": "ok",
        "database": "ok",
        "otp_mode": otp_mode,
        "live_sessions": registry.live_sessions,
    }
