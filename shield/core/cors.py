from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shield.core.settings import get_settings


def add_cors_middleware(app: FastAPI) -> None:
    """Allow the configured origins to call the session and OTP endpoints."""
    settings = get_settings()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT"],
        allow_headers=["Authorization", "Content-Type"],
    )
