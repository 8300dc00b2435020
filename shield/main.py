import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI

from shield.core.cors import add_cors_middleware
from shield.core.exception_handlers import register_exception_handlers
from shield.core.http import close_http_clients
from shield.core.logging import configure_logging
from shield.core.request_logging import add_request_logging_middleware
from shield.db.engine import init_db
from shield.health.router import router as health_router
from shield.otp.gate import get_otp_mode_info
from shield.otp.router import router as otp_router
from shield.session.bootstrap import get_registry
from shield.session.router import router as session_router

configure_logging()

logger = logging.getLogger("shield")


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    info = get_otp_mode_info()
    logger.info("OTP mode: %s (%s)", info.mode.value, info.reason, extra={"otp_mode": info.mode.value})
    yield
    get_registry().close()
    await close_http_clients()


app = FastAPI(title="Shield Session Bootstrap", version="0.1.0", lifespan=lifespan)

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(otp_router)
api_router.include_router(session_router)

app.include_router(api_router)

add_request_logging_middleware(app)
add_cors_middleware(app)
register_exception_handlers(app)
