"""Centralized dependency type aliases for FastAPI routes.

Import all dependencies from this single module:
    from shield.core.deps import SessionDep, SettingsDep, RegistryDep, SmsSenderDep
"""

from typing import Annotated

from fastapi import Depends
from sqlmodel import Session

from shield.core.settings import Settings, get_settings
from shield.db.engine import get_session
from shield.integrations.sms import SmsSender, get_sms_sender
from shield.otp.challenges import OtpChallengeStore, get_challenge_store
from shield.session.bootstrap import SessionRegistry, get_registry

# Database session
SessionDep = Annotated[Session, Depends(get_session)]

# Application settings
SettingsDep = Annotated[Settings, Depends(get_settings)]

# Live session bootstraps
RegistryDep = Annotated[SessionRegistry, Depends(get_registry)]

# OTP delivery and pending challenges
SmsSenderDep = Annotated[SmsSender, Depends(get_sms_sender)]
ChallengeStoreDep = Annotated[OtpChallengeStore, Depends(get_challenge_store)]
