"""ONVIF event worker for receiving camera motion/analytics events.

Connects to a single camera, keeps a PullPoint subscription alive and logs
every notification together with its category and the typed record
extracted from it.

Usage:
    python -m ronin_onvif discover --timeout 3
    python -m ronin_onvif events --host 192.168.1.100 --username admin --password secret
    python -m ronin_onvif serve --port 8000
"""

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import uvicorn

from ronin_onvif.config import Settings, get_settings
from ronin_onvif.dependencies import build_client
from ronin_onvif.services.onvif import DiscoveryService, ONVIFClient
from ronin_onvif.services.onvif.extractors import extract_event
from ronin_onvif.services.onvif.models import NotificationMessage
from ronin_onvif.services.onvif.topics import EventCategory, categorize_event
from ronin_onvif.utils.timezone import utc_now

logger = logging.getLogger("onvif_events")


@dataclass
class DebounceTracker:
    """Track event cooldowns per camera/category to prevent notification spam."""

    cooldown_seconds: float = 30.0
    _last_notified: dict[tuple[str, str], datetime] = field(default_factory=dict)

    def should_notify(self, host: str, category: str) -> bool:
        """Check if enough time has passed since last notification."""
        last = self._last_notified.get((host, category))
        if last is None:
            return True
        elapsed = (utc_now() - last).total_seconds()
        return elapsed >= self.cooldown_seconds

    def mark_notified(self, host: str, category: str) -> None:
        """Record notification time for debouncing."""
        self._last_notified[(host, category)] = utc_now()


class ONVIFEventWorker:
    """Worker that keeps an event subscription running for one camera."""

    def __init__(
        self,
        client: ONVIFClient,
        message_limit: int = 10,
        auto_renew: bool = True,
        cooldown_seconds: float = 30.0,
        connect_timeout: float = 10.0,
    ):
        self.client = client
        self.message_limit = message_limit
        self.auto_renew = auto_renew
        self.connect_timeout = connect_timeout
        self._debounce = DebounceTracker(cooldown_seconds=cooldown_seconds)

    async def start(self) -> bool:
        """Connect and start the event loop; False if the camera is unreachable."""
        logger.info(f"Starting ONVIF event worker for {self.client.host}...")
        if not await self.client.connect(timeout=self.connect_timeout):
            return False
        if "events" not in self.client.uri:
            logger.warning(f"{self.client.host} does not advertise an event service")

        self.client.events.on("event", self._process_event)
        self.client.events.on("error", self._process_error)
        self.client.events.start_event_loop(
            message_limit=self.message_limit,
            auto_renew=self.auto_renew,
        )
        return True

    async def stop(self) -> None:
        """Stop the event loop and release the connection."""
        logger.info("Stopping ONVIF event worker...")
        await self.client.close()

        categories = ", ".join(sorted(c.value for c in self.client.events.get_observed_categories()))
        logger.info(f"ONVIF event worker stopped (observed: {categories or 'none'})")

    def _process_event(self, message: NotificationMessage) -> None:
        category = categorize_event(message.topic)
        if category == EventCategory.UNKNOWN:
            logger.debug(f"Unclassified event from {self.client.host}: {message.topic}")
            return

        if not self._debounce.should_notify(self.client.host, category.value):
            logger.debug(f"Debounced {category.value} from {self.client.host}")
            return

        logger.info(
            f"ONVIF event from {self.client.host}: {category.value} "
            f"({message.topic}) {extract_event(message)}"
        )
        self._debounce.mark_notified(self.client.host, category.value)

    def _process_error(self, error: Exception) -> None:
        logger.warning(f"Event loop error from {self.client.host}: {error!r}")


async def run_discover(timeout: float) -> int:
    """Print the devices answering a discovery probe."""
    devices = await DiscoveryService(timeout=timeout).probe()
    if not devices:
        logger.info("No ONVIF devices found")
    for device in devices:
        print(f"{device.address}\t{device.service_url or '-'}\t{device.name or ''}\t{device.urn}")
    return 0


def run_events(args: argparse.Namespace, settings: Settings) -> int:
    """Run the event worker until SIGINT/SIGTERM."""
    try:
        client = build_client(
            settings,
            host=args.host,
            port=args.port,
            username=args.username,
            password=args.password,
        )
    except ValueError as e:
        logger.error(str(e))
        return 1

    worker = ONVIFEventWorker(
        client,
        message_limit=args.message_limit or settings.message_limit,
        auto_renew=settings.auto_renew and not args.no_renew,
        cooldown_seconds=settings.event_cooldown_seconds,
        connect_timeout=settings.connect_timeout_seconds,
    )

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    shutdown_event = asyncio.Event()

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    async def run() -> int:
        try:
            if not await worker.start():
                return 1
            await shutdown_event.wait()
            return 0
        finally:
            await worker.stop()

    try:
        return loop.run_until_complete(run())
    finally:
        loop.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ronin-onvif", description="ONVIF event tools")
    subparsers = parser.add_subparsers(dest="command", required=True)

    discover = subparsers.add_parser("discover", help="Find ONVIF devices on the network")
    discover.add_argument("--timeout", type=float, default=None, help="Collection window (s)")

    events = subparsers.add_parser("events", help="Log events from a camera")
    events.add_argument("--host", default=None, help="Camera IP or hostname")
    events.add_argument("--port", type=int, default=None, help="ONVIF port")
    events.add_argument("--username", default=None)
    events.add_argument("--password", default=None)
    events.add_argument("--message-limit", type=int, default=None)
    events.add_argument("--no-renew", action="store_true", help="Do not renew after each pull")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--bind", default="127.0.0.1", help="Listen address")
    serve.add_argument("--port", type=int, default=8000)
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    settings = get_settings()
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "discover":
        timeout = args.timeout if args.timeout is not None else settings.discovery_timeout_seconds
        sys.exit(asyncio.run(run_discover(timeout)))
    if args.command == "serve":
        uvicorn.run("ronin_onvif.main:app", host=args.bind, port=args.port)
        return
    sys.exit(run_events(args, settings))


if __name__ == "__main__":
    main()
