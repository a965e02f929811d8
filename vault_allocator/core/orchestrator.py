"""Orchestrator for wiring and managing all components."""
import asyncio
import logging

import aiohttp

from vault_allocator.collectors.chain.connection import ChainConnection
from vault_allocator.collectors.euler.collector import EulerEarnCollector
from vault_allocator.collectors.merkl import MerklRewardsProvider
from vault_allocator.core.config import Config
from vault_allocator.core.data_store import FileDataStore
from vault_allocator.core.decision_gate import DecisionGate
from vault_allocator.core.execution_engine import ExecutionEngine
from vault_allocator.models import RunRecord
from vault_allocator.notifications.notifier import Notifier

logger = logging.getLogger(__name__)

# Failures of the RPC transport itself, as opposed to reverts or bad data
RPC_CONNECTION_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError, ConnectionError)


class Orchestrator:
    """Wires all components together and manages lifecycle.

    Responsibilities:
    1. Initialize data store, chain connection and collectors
    2. Build the decision gate and its executor
    3. Run one allocation cycle per interval, serialized
    4. Manage startup and shutdown
    """

    def __init__(self, config: Config):
        """Initialize the orchestrator.

        Args:
            config: System configuration
        """
        self.config = config
        self._running = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self.vault_label = config.vault.name or config.vault.address

        # Initialize components
        self.data_store = FileDataStore(config.data_store.path)
        self.notifier = Notifier(config.notifications, config.chain.chain_id)

        # Initialize chain connection
        self.connection = ChainConnection(
            rpc_url=config.chain.rpc_url,
            chain_id=config.chain.chain_id,
            private_key=config.chain.private_key,
        )

        # Initialize collector
        self.rewards_provider = MerklRewardsProvider(
            chain_id=config.chain.chain_id,
            api_url=config.merkl.api_url,
            price_api_url=config.merkl.price_api_url,
            timeout_seconds=config.merkl.timeout_seconds,
        )
        self.collector = EulerEarnCollector(
            connection=self.connection,
            earn_vault_address=config.vault.address,
            rewards_provider=self.rewards_provider,
            strategies_override=config.vault.strategies_override,
        )

        # Without a key there is no sender to simulate from: runs stay dry
        self.executor: ExecutionEngine | None = None
        if config.chain.private_key:
            self.executor = ExecutionEngine(
                connection=self.connection,
                earn_vault_address=config.vault.address,
                evc_address=config.vault.evc_address,
                broadcast=config.chain.broadcast,
                max_gas_cost=config.chain.max_gas_cost,
            )
            self.executor.on_submitted = self._on_submitted

        self.gate = DecisionGate(
            constraints=config.constraints,
            mode=config.allocator.mode,
            executor=self.executor,
            annealing_config=config.annealing,
            equalization_config=config.equalization,
            cash_percentage=config.vault.cash_percentage,
            vault_label=self.vault_label,
        )

        logger.info(f"Orchestrator initialized for vault {self.vault_label}")

    @property
    def is_running(self) -> bool:
        """Check if orchestrator is currently running."""
        return self._running

    async def run_once(self) -> RunRecord | None:
        """Run one allocation cycle: snapshot, decide, audit, notify.

        Returns:
            The run's RunRecord, or None if there was nothing to allocate
        """
        vault = await self.collector.fetch_vault()
        record = await self.gate.run(vault)
        if record is None:
            return None

        self.data_store.log_run(record)
        logger.info(
            f"Run finished: result={record.result}, returns "
            f"{record.current.total_returns:.4f}% -> {record.new.total_returns:.4f}% ({record.reasoning})"
        )
        logger.debug(
            "Run record",
            extra={"extra_data": {"action": "run_record", **record.to_dict()}},
        )

        await self.notifier.notify_run(record, vault)
        return record

    async def _on_submitted(self, tx_hash: str) -> None:
        # Sent before the receipt arrives
        await self.notifier.send(f"Reallocation submitted for vault {self.vault_label}: tx {tx_hash}")

    async def _run_async(self, once: bool = False) -> None:
        """Run the orchestrator asynchronously.

        Args:
            once: Exit after a single run instead of looping
        """
        connected = await self.connection.connect()
        if not connected:
            logger.error(f"Failed to connect to RPC at {self.config.chain.rpc_url}")
            return

        try:
            while self._running:
                try:
                    await self.run_once()
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.exception(f"Allocation run failed: {e}")
                    await self.notifier.send(
                        f"Allocation run failed for vault {self.vault_label}: {type(e).__name__}: {e}",
                        is_error=True,
                    )
                    if isinstance(e, RPC_CONNECTION_ERRORS) and not once:
                        await self.connection.reconnect()

                if once or not self._running:
                    break
                logger.debug(f"Next run in {self.config.allocator.interval_seconds}s")
                await asyncio.sleep(self.config.allocator.interval_seconds)
        except asyncio.CancelledError:
            logger.info("Orchestrator cancelled")
        finally:
            await self.connection.disconnect()

    def start(self, once: bool = False) -> None:
        """Start the orchestrator.

        This method blocks until stop() is called, or after one run if `once`.
        """
        logger.info("Starting orchestrator...")
        self._running = True

        # Get or create event loop
        try:
            self._loop = asyncio.get_event_loop()
        except RuntimeError:
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)

        try:
            self._loop.run_until_complete(self._run_async(once=once))
        except KeyboardInterrupt:
            logger.info("Interrupted by user")
        finally:
            self._running = False
            logger.info("Orchestrator stopped")

    def stop(self) -> None:
        """Stop the orchestrator after the current run."""
        logger.info("Stopping orchestrator...")
        self._running = False
