"""
Connection Supervision

asyncua's Client does not reconnect on its own. The supervisor keeps a
session alive: it connects, runs the session setup, watches the
connection with Client.check_connection(), and on loss reconnects with
exponential backoff:

    delay(retry) = min(initial * factor ** (retry - 1), max)

Each backoff step is published as a BackoffEvent to listeners; the
ReconnectReporter logs them and nothing else.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional
import asyncio
import logging

from asyncua import ua

logger = logging.getLogger(__name__)

# Errors that mean the connection is gone and should be re-established
CONNECTION_ERRORS = (OSError, asyncio.TimeoutError, ua.UaError)


@dataclass(frozen=True)
class BackoffEvent:
    """A scheduled reconnection attempt."""
    retry: int
    delay_ms: int
    error: str = ""

    @property
    def delay_s(self) -> float:
        return self.delay_ms / 1000.0


class ExponentialBackoff:
    """Exponential backoff without jitter."""

    def __init__(self, initial_delay_ms: int = 1000, max_delay_ms: int = 20000,
                 factor: float = 2.0):
        if initial_delay_ms <= 0 or max_delay_ms < initial_delay_ms or factor < 1.0:
            raise ValueError("Invalid backoff parameters")
        self.initial_delay_ms = initial_delay_ms
        self.max_delay_ms = max_delay_ms
        self.factor = factor

    @classmethod
    def from_config(cls, config: Any) -> "ExponentialBackoff":
        return cls(
            initial_delay_ms=config.RECONNECT_INITIAL_DELAY_MS,
            max_delay_ms=config.RECONNECT_MAX_DELAY_MS,
            factor=config.RECONNECT_BACKOFF_FACTOR,
        )

    def delay_ms(self, retry: int) -> int:
        """Delay before the given retry (1-based)."""
        delay = self.initial_delay_ms * (self.factor ** (max(retry, 1) - 1))
        return int(min(delay, self.max_delay_ms))


class ReconnectReporter:
    """Logs backoff events."""

    def __init__(self):
        self.events: List[BackoffEvent] = []

    def __call__(self, event: BackoffEvent) -> None:
        self.events.append(event)
        logger.info(f"Reconnecting: retry {event.retry}, next attempt in {event.delay_s:.1f}s")

    @property
    def retry_count(self) -> int:
        return len(self.events)


class ConnectionSupervisor:
    """
    Keeps a client session established until stopped.

    Args:
        client_factory: returns a fresh, unconnected asyncua Client
        on_connected: coroutine run on every new connection (discovery,
            monitoring); its return value is kept as `session`
        backoff: reconnection delay policy
        watchdog_interval_s: period of Client.check_connection()
        max_retries: consecutive failed attempts before giving up, 0 = never
        listeners: callables receiving each BackoffEvent
    """

    def __init__(
        self,
        client_factory: Callable[[], Any],
        on_connected: Callable[[Any], Awaitable[Any]],
        backoff: Optional[ExponentialBackoff] = None,
        watchdog_interval_s: float = 5.0,
        max_retries: int = 0,
        listeners: Optional[List[Callable[[BackoffEvent], None]]] = None,
    ):
        self.client_factory = client_factory
        self.on_connected = on_connected
        self.backoff = backoff or ExponentialBackoff()
        self.watchdog_interval_s = watchdog_interval_s
        self.max_retries = max_retries
        self.listeners = list(listeners or [])

        self.client: Optional[Any] = None
        self.session: Optional[Any] = None
        self.connected = False
        self.connection_count = 0

    def add_listener(self, listener: Callable[[BackoffEvent], None]) -> None:
        self.listeners.append(listener)

    def _emit(self, event: BackoffEvent) -> None:
        for listener in self.listeners:
            listener(event)

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Connect and supervise until stop_event is set.

        Raises:
            ConnectionError: max_retries consecutive attempts failed
        """
        retry = 0

        while not stop_event.is_set():
            error = ""
            client = self.client_factory()
            self.client = client
            try:
                await client.connect()
                self.connected = True
                self.connection_count += 1
                retry = 0
                logger.info("Connected to OPC UA server")

                self.session = await self.on_connected(client)
                await self._watch(client, stop_event)
            except CONNECTION_ERRORS as e:
                error = str(e) or type(e).__name__
                logger.warning(f"Connection to OPC UA server lost: {error}")
            finally:
                if self.connected:
                    self.connected = False
                    await self._disconnect(client)

            if stop_event.is_set():
                break

            retry += 1
            if self.max_retries and retry > self.max_retries:
                raise ConnectionError(
                    f"Could not reconnect after {self.max_retries} attempts"
                )

            self._emit(BackoffEvent(retry, self.backoff.delay_ms(retry), error))
            await self._sleep(self.backoff.delay_ms(retry) / 1000.0, stop_event)

        logger.info("Connection supervisor stopped")

    async def _watch(self, client: Any, stop_event: asyncio.Event) -> None:
        """Return when stopped; raise when the connection is lost."""
        while not stop_event.is_set():
            if await self._sleep(self.watchdog_interval_s, stop_event):
                return
            await client.check_connection()

    @staticmethod
    async def _sleep(seconds: float, stop_event: asyncio.Event) -> bool:
        """Wait up to `seconds`; True if stop_event was set meanwhile."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    @staticmethod
    async def _disconnect(client: Any) -> None:
        try:
            await client.disconnect()
        except CONNECTION_ERRORS as e:
            logger.debug(f"Error while disconnecting: {e}")
