"""OTP entry state machine.

Models the six-box code entry screen: per-digit input with auto-advance,
auto-submit once every box is filled, manual submit, and resend with a
cooldown. Verification runs at most once at a time.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from shield.otp.gate import OTP_LENGTH

logger = logging.getLogger(__name__)

RESEND_COOLDOWN_SECONDS = 60

INVALID_CODE_MESSAGE = "Invalid code. Please try again."
VERIFY_FAILED_MESSAGE = "Verification failed. Please try again."
RESEND_FAILED_MESSAGE = "Failed to resend code. Please try again."


class EntryState(str, Enum):
    idle = "idle"
    entering = "entering"
    complete = "complete"
    verifying = "verifying"
    accepted = "accepted"


class OtpEntry:
    """State of one OTP entry screen.

    ``verify`` receives the six-digit code and returns whether it was
    accepted. ``send_code`` dispatches a new code on resend. Resend is
    available right away unless ``initial_cooldown`` is given, in which case
    the countdown starts at once (this needs a running event loop).

    Usage:
        entry = OtpEntry(verify=check_code, send_code=resend_sms)
        await entry.input_digit(0, "1")
        ...
        entry.close()
    """

    def __init__(
        self,
        verify: Callable[[str], Awaitable[bool]],
        send_code: Callable[[], Awaitable[None]],
        cooldown_seconds: int = RESEND_COOLDOWN_SECONDS,
        initial_cooldown: int = 0,
    ):
        self._verify = verify
        self._send_code = send_code
        self._cooldown_seconds = cooldown_seconds

        self.digits: list[str] = [""] * OTP_LENGTH
        self.focus = 0
        self.cooldown = initial_cooldown
        self.error_message: str | None = None
        self.is_verifying = False
        self.accepted = False
        self._timer: asyncio.Task[None] | None = None
        self._closed = False
        if initial_cooldown > 0:
            self.run_cooldown()

    @property
    def code(self) -> str:
        return "".join(self.digits)

    @property
    def is_complete(self) -> bool:
        return all(self.digits)

    @property
    def state(self) -> EntryState:
        if self.accepted:
            return EntryState.accepted
        if self.is_verifying:
            return EntryState.verifying
        if self.error_message:
            return EntryState.entering
        if self.is_complete:
            return EntryState.complete
        if any(self.digits):
            return EntryState.entering
        return EntryState.idle

    async def input_digit(self, index: int, text: str) -> None:
        """Handle a change of box ``index``; completing the code auto-submits."""
        if self.is_verifying or self.accepted:
            return
        if not 0 <= index < OTP_LENGTH:
            raise IndexError(f"OTP position out of range: {index}")

        # Paste or autofill may deliver several characters: keep the last digit.
        digits = [ch for ch in text if "0" <= ch <= "9"]
        digit = digits[-1] if digits else ""
        self.digits[index] = digit
        self.error_message = None

        if digit and index < OTP_LENGTH - 1:
            self.focus = index + 1

        if digit and self.is_complete:
            await self.submit()

    def backspace(self, index: int) -> None:
        """Backspace on an empty box moves focus back without editing it."""
        if self.is_verifying or self.accepted:
            return
        if index > 0 and not self.digits[index]:
            self.focus = index - 1

    async def submit(self) -> bool:
        """Verify the entered code.

        Returns:
            True if the code was accepted. False when it was rejected or when
            no verification could start (incomplete code, already verifying).
        """
        if not self.is_complete or self.is_verifying or self.accepted:
            return False

        self.is_verifying = True
        code = self.code
        try:
            accepted = await self._verify(code)
        except Exception as e:
            logger.warning("OTP verification failed: %s", type(e).__name__)
            self.error_message = VERIFY_FAILED_MESSAGE
            return False
        finally:
            self.is_verifying = False

        if accepted:
            self.accepted = True
            return True
        self.error_message = INVALID_CODE_MESSAGE
        return False

    async def resend(self) -> bool:
        """Dispatch a new code. A no-op while the cooldown is running."""
        if self.cooldown > 0 or self.is_verifying or self.accepted:
            return False

        self.digits = [""] * OTP_LENGTH
        self.focus = 0
        self.cooldown = self._cooldown_seconds
        self.run_cooldown()
        try:
            await self._send_code()
        except Exception as e:
            logger.warning("OTP resend failed: %s", type(e).__name__)
            self.error_message = RESEND_FAILED_MESSAGE
            return False
        return True

    def tick(self) -> None:
        if self.cooldown > 0:
            self.cooldown -= 1

    def run_cooldown(self) -> None:
        """Start the one-second countdown unless it is already running."""
        if self._closed or (self._timer is not None and not self._timer.done()):
            return
        self._timer = asyncio.get_running_loop().create_task(self._count_down())

    async def _count_down(self) -> None:
        while self.cooldown > 0:
            await asyncio.sleep(1)
            self.tick()

    def close(self) -> None:
        self._closed = True
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
