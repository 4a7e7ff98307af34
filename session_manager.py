"""
M365 Sizing - Archive Session Manager
Keeps one Exchange Online session alive across a long per-mailbox loop,
renewing it before the service cuts it off and retrying failed handshakes
"""

import logging
import time
from enum import Enum
from typing import Callable, Optional

from config import (
    SESSION_REFRESH_SECONDS, SESSION_SETTLE_OFFSET_SECONDS,
    SESSION_RETRY_DELAY_SECONDS, SESSION_MAX_FAILURES
)
from errors import SessionFailedError

logger = logging.getLogger(__name__)

# State reported by a usable session object
SESSION_OPEN = "Opened"


class SessionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    EXPIRING = "expiring"
    FAILED = "failed"


class ArchiveSessionManager:
    """
    Owns the single live archive enumeration session

    `connect` must return an object with a `state` attribute (SESSION_OPEN
    while usable) and a `close()` method. `clock` and `sleep` default to
    time.monotonic and time.sleep.
    """

    def __init__(self, connect: Callable,
                 refresh_seconds: float = SESSION_REFRESH_SECONDS,
                 settle_offset_seconds: float = SESSION_SETTLE_OFFSET_SECONDS,
                 retry_delay_seconds: float = SESSION_RETRY_DELAY_SECONDS,
                 max_failures: int = SESSION_MAX_FAILURES,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self._connect = connect
        self.refresh_seconds = refresh_seconds
        self.settle_offset_seconds = settle_offset_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.max_failures = max_failures
        self._clock = clock
        self._sleep = sleep

        self.session = None
        self.state = SessionState.DISCONNECTED
        self.started_at: Optional[float] = None
        self.failure_count = 0

    @property
    def settle_seconds(self) -> float:
        """Pause between tearing a session down and opening the next one"""
        return max(0, self.refresh_seconds / 2 - self.settle_offset_seconds)

    def ensure_healthy_session(self):
        """
        Return a live session, connecting or renewing first if needed

        Call before every per-mailbox remote call.
        Raises SessionFailedError once the handshake has failed too often.
        """
        if self.state == SessionState.FAILED:
            raise SessionFailedError("Archive session failed earlier in this run")

        if self.session is None or getattr(self.session, "state", None) != SESSION_OPEN:
            if self.session is not None:
                logger.info("Archive session is no longer open, reconnecting")
                self._teardown()
            return self._establish()

        elapsed = self._clock() - self.started_at
        if elapsed > self.refresh_seconds:
            logger.info("Archive session open for %.0fs, renewing", elapsed)
            self.state = SessionState.EXPIRING
            return self.invalidate_and_reconnect()

        return self.session

    def invalidate_and_reconnect(self):
        """Tear down the current session and open a new one"""
        self._teardown()
        settle = self.settle_seconds
        if settle > 0:
            logger.debug("Waiting %.0fs before reconnecting", settle)
            self._sleep(settle)
        return self._establish()

    def close(self) -> None:
        self._teardown()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _establish(self):
        self.state = SessionState.CONNECTING

        while True:
            try:
                session = self._connect()
            except Exception as e:
                self.failure_count += 1
                logger.warning(
                    "Archive session handshake failed (%d/%d): %s",
                    self.failure_count, self.max_failures, e
                )
                if self.failure_count >= self.max_failures:
                    self.state = SessionState.FAILED
                    raise SessionFailedError(
                        f"Could not open an archive session after "
                        f"{self.failure_count} attempts: {e}"
                    ) from e
                self._sleep(self.retry_delay_seconds)
                continue

            self.session = session
            self.started_at = self._clock()
            self.failure_count = 0
            self.state = SessionState.CONNECTED
            logger.debug("Archive session connected")
            return session

    def _teardown(self) -> None:
        if self.session is not None:
            try:
                self.session.close()
            except Exception as e:
                logger.warning("Error closing archive session: %s", e)
        self.session = None
        self.started_at = None
        if self.state != SessionState.FAILED:
            self.state = SessionState.DISCONNECTED
