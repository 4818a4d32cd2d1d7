"""
OPC UA Client Adapter - CNC Fleet

Connects to the CNC fleet server and, on every established connection:
- discovers the machine instances
- subscribes to their live attributes
- logs a snapshot of all machines
- runs the demonstration method calls (first connection only)

then waits for change notifications until stopped. Connection loss is
handled by the ConnectionSupervisor.

Usage:
    python -m cnc_fleet.services.edge.protocol_adapters.opcua_adapter
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import asyncio
import logging
import signal
import sys

from asyncua import Client

from ....config import get_config
from .discovery import InstanceRef, discover
from .invoker import InvocationResult, run_demo
from .monitor import ChangeHandler, dump_all_statuses, setup_monitoring
from .reconnect import ConnectionSupervisor, ExponentialBackoff, ReconnectReporter

logger = logging.getLogger(__name__)


@dataclass
class ClientContext:
    """State of one client session, owned by its connection."""
    client: Any
    endpoint_url: str
    instances: List[InstanceRef] = field(default_factory=list)
    handler: Optional[ChangeHandler] = None
    subscription: Any = None
    snapshot: List[Dict[str, Any]] = field(default_factory=list)
    demo_results: List[Optional[InvocationResult]] = field(default_factory=list)
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'endpoint_url': self.endpoint_url,
            'instances': [ref.to_dict() for ref in self.instances],
            'monitoring': self.subscription is not None,
            'snapshot': self.snapshot,
            'demo_results': [r.to_dict() if r else None for r in self.demo_results],
            'connected_at': self.connected_at.isoformat(),
        }


class CNCFleetClient:
    """
    OPC UA client for the CNC fleet.

    Usage:
        client = CNCFleetClient()
        await client.run(stop_event)
    """

    def __init__(self, config=None, client_factory: Optional[Callable[[], Any]] = None):
        self.config = config or get_config()
        self.endpoint_url = self.config.OPCUA_ENDPOINT
        self._client_factory = client_factory or self._create_client
        self._demo_done = False

        self.context: Optional[ClientContext] = None
        self.reporter = ReconnectReporter()
        self.supervisor = ConnectionSupervisor(
            client_factory=self._client_factory,
            on_connected=self.run_session,
            backoff=ExponentialBackoff.from_config(self.config),
            watchdog_interval_s=self.config.WATCHDOG_INTERVAL_S,
            max_retries=self.config.RECONNECT_MAX_RETRIES,
            listeners=[self.reporter],
        )

    def _create_client(self) -> Client:
        return Client(url=self.endpoint_url)

    async def run_session(self, client: Any) -> ClientContext:
        """Discovery, monitoring, snapshot and demo on a connected client."""
        context = ClientContext(client=client, endpoint_url=self.endpoint_url)
        self.context = context

        context.instances = await discover(client.nodes.root)
        if not context.instances:
            return context

        context.handler = ChangeHandler()
        context.subscription = await setup_monitoring(
            client, context.instances, context.handler, self.config
        )
        context.snapshot = await dump_all_statuses(context.instances)

        if not self._demo_done:
            context.demo_results = await run_demo(context.instances)
            self._demo_done = True

        logger.info("Monitoring active. Press Ctrl+C to exit.")
        return context

    async def run(self, stop_event: asyncio.Event) -> None:
        logger.info(f"Connecting to {self.endpoint_url}")
        await self.supervisor.run(stop_event)

    def get_status(self) -> Dict[str, Any]:
        return {
            'endpoint_url': self.endpoint_url,
            'connected': self.supervisor.connected,
            'connection_count': self.supervisor.connection_count,
            'retries': self.reporter.retry_count,
            'session': self.context.to_dict() if self.context else None,
        }


# =============================================================================
# ENTRY POINT
# =============================================================================

async def main() -> int:
    """Run the client until SIGINT/SIGTERM."""
    config = get_config()
    logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)

    client = CNCFleetClient(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await client.run(stop_event)
    except ConnectionError as e:
        logger.error(f"OPC UA client giving up: {e}")
        return 1

    logger.info("Client closed")
    return 0


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
