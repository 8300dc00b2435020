"""Readiness barrier for the session bootstrap.

Session effects must not read persisted state before it has hydrated. The
barrier flips ``ready`` after a short fixed delay and, when the store provides
one, after its hydration-complete signal as well.
"""

import asyncio
import logging

logger = logging.getLogger(__name__)

DEFAULT_READINESS_DELAY = 0.1  # seconds


class ReadinessBarrier:
    """Single-shot gate opened once persisted state is usable.

    Usage:
        barrier = ReadinessBarrier(delay=0.1, hydrated=store.hydrated)
        barrier.start()
        await barrier.wait()
        ...
        barrier.close()  # on teardown; a closed barrier never opens
    """

    def __init__(
        self,
        delay: float = DEFAULT_READINESS_DELAY,
        hydrated: asyncio.Event | None = None,
    ) -> None:
        self._delay = delay
        self._hydrated = hydrated
        self._ready = asyncio.Event()
        self._timer: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Arm the timer. Calling start() again, or after close(), does nothing."""
        if self._timer is not None or self._closed:
            return
        self._timer = asyncio.get_running_loop().create_task(self._open_when_ready())

    async def _open_when_ready(self) -> None:
        await asyncio.sleep(self._delay)
        if self._hydrated is not None:
            await self._hydrated.wait()
        self._ready.set()
        logger.debug("Session state ready")

    async def wait(self) -> None:
        await self._ready.wait()

    def close(self) -> None:
        """Cancel a pending timer so it cannot fire against discarded state."""
        self._closed = True
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
