#!/usr/bin/env python3
"""
Automated VRF Lottery Application

Main entry point. On a development chain the whole system runs in-process:
an in-memory ledger, a local VRF coordinator, the lottery state machine, the
upkeep scheduler, the randomness relay and the HTTP API. On a live network
the scheduler acts as a self-hosted keeper for a deployed Lottery contract.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from dotenv import load_dotenv

from vrf_lottery.blockchain.client import LotteryContractClient
from vrf_lottery.blockchain.ledger import InMemoryLedger
from vrf_lottery.blockchain.vrf import DEFAULT_COORDINATOR_ADDRESS, VRFCoordinatorV2Mock
from vrf_lottery.lottery.engine import Lottery
from vrf_lottery.lottery.event_manager import EventLog
from vrf_lottery.lottery.operator import RandomnessRelay
from vrf_lottery.lottery.scheduler import UpkeepScheduler
from vrf_lottery.utils.config import (
    build_lottery_config,
    get_config_value,
    get_network_name,
    is_development_chain,
    load_config,
)
from vrf_lottery.utils.logger import get_logger
from vrf_lottery.web_server import LotteryWebServer

logger = get_logger(__name__)


def first_task_error(tasks: Iterable[asyncio.Task]) -> Optional[BaseException]:
    """Exception of the first finished background task that failed; cancelled tasks are skipped."""
    for task in tasks:
        if task.done() and not task.cancelled() and task.exception() is not None:
            return task.exception()
    return None


class LotteryApp:
    """Builds and runs the lottery services for the configured network."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.network = get_network_name(config)
        self.running = True

        self.ledger: Optional[InMemoryLedger] = None
        self.coordinator: Optional[VRFCoordinatorV2Mock] = None
        self.lottery: Optional[Lottery] = None
        self.scheduler: Optional[UpkeepScheduler] = None
        self.relay: Optional[RandomnessRelay] = None
        self.web_server: Optional[LotteryWebServer] = None
        self.contract_client: Optional[LotteryContractClient] = None

    def _display_config_summary(self) -> None:
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Network: {self.network}")
        logger.info(f"Entrance fee: {get_config_value(self.config, 'lottery.entrance_fee', 'network default')} ETH")
        logger.info(f"Interval: {get_config_value(self.config, 'lottery.interval', 'network default')}s")
        logger.info(f"Upkeep check interval: {get_config_value(self.config, 'operator.check_interval', 10)}s")
        logger.info(f"Server: {get_config_value(self.config, 'server.host', '0.0.0.0')}:"
                    f"{get_config_value(self.config, 'server.port', 6080)}")
        logger.info("=" * 60)

    async def initialize(self) -> None:
        self._display_config_summary()
        check_interval = float(get_config_value(self.config, "operator.check_interval", 10))

        if not is_development_chain(self.config):
            self.contract_client = LotteryContractClient(self.config)
            await self.contract_client.initialize()
            self.scheduler = UpkeepScheduler(self.contract_client, check_interval=check_interval)
            return

        coordinator_address = get_config_value(self.config, "vrf.coordinator") or DEFAULT_COORDINATOR_ADDRESS
        lottery_config = build_lottery_config(self.config, coordinator_address=coordinator_address)

        self.ledger = InMemoryLedger()
        self.coordinator = VRFCoordinatorV2Mock(address=coordinator_address)
        self.lottery = Lottery(
            lottery_config,
            self.ledger,
            self.coordinator,
            address=get_config_value(self.config, "lottery.address", "lottery"),
            events=EventLog(),
        )
        self._fund_development_accounts()

        self.scheduler = UpkeepScheduler(self.lottery, check_interval=check_interval)
        self.relay = RandomnessRelay(
            self.coordinator,
            self.lottery,
            delay=float(get_config_value(self.config, "vrf.fulfillment_delay", 2.0)),
        )
        await self.relay.initialize()
        self.web_server = LotteryWebServer(self.config, self.lottery, self.scheduler, self.relay)

    def _fund_development_accounts(self) -> None:
        """Credit the accounts listed under ``lottery.dev_accounts`` so they can enter."""
        accounts = get_config_value(self.config, "lottery.dev_accounts", {}) or {}
        if not isinstance(accounts, dict):
            logger.warning("lottery.dev_accounts must map addresses to wei amounts; ignoring")
            return
        for address, amount in accounts.items():
            self.ledger.mint(address, int(amount))
            logger.info(f"Funded development account {address} with {amount} wei")

    async def start(self) -> None:
        try:
            await self.initialize()
            tasks = [asyncio.create_task(self.scheduler.start())]
            if self.relay:
                await self.relay.start()
            if self.web_server:
                host = get_config_value(self.config, "server.host", "0.0.0.0")
                port = int(get_config_value(self.config, "server.port", 6080))
                tasks.append(asyncio.create_task(self.web_server.start(host=host, port=port)))

            while self.running:
                await asyncio.sleep(1)
                error = first_task_error(tasks)
                if error is not None:
                    raise error
            logger.info("Shutdown signal received, stopping application...")
        finally:
            await self.stop()

    async def stop(self) -> None:
        self.running = False
        if self.scheduler:
            await self.scheduler.stop()
        if self.relay:
            await self.relay.stop()
        if self.web_server:
            await self.web_server.stop()
        if self.contract_client:
            await self.contract_client.close()
        logger.info("Lottery application stopped")

    def handle_signal(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the automated VRF lottery")
    parser.add_argument("--config", "-c", type=Path, default=None, help="Path to a JSON config file")
    parser.add_argument("--env-file", type=Path, default=Path(".env"), help="dotenv file to load first")
    return parser.parse_args(argv)


async def run(argv=None) -> None:
    args = parse_args(argv)
    load_dotenv(args.env_file)
    app = LotteryApp(load_config(args.config))

    signal.signal(signal.SIGINT, app.handle_signal)
    signal.signal(signal.SIGTERM, app.handle_signal)

    await app.start()


def main(argv=None) -> None:
    try:
        asyncio.run(run(argv))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.exception(f"Lottery application failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
