"""EVM JSON-RPC connection manager using web3.py."""
import asyncio
import logging
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3

logger = logging.getLogger(__name__)


class ChainConnection:
    """Manages the RPC connection and the allocator's signing account.

    Attributes:
        rpc_url: JSON-RPC endpoint
        chain_id: Expected chain id of the endpoint
    """

    def __init__(self, rpc_url: str, chain_id: int, private_key: str | None = None):
        """Initialize connection manager.

        Args:
            rpc_url: JSON-RPC endpoint
            chain_id: Expected chain id; a mismatch fails the connection
            private_key: Allocator key, required only to sign transactions
        """
        self.rpc_url = rpc_url
        self.chain_id = chain_id

        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._account: LocalAccount | None = Account.from_key(private_key) if private_key else None
        self._connected = False
        self._reconnect_delay = 5
        self._max_reconnect_delay = 60

        logger.debug(
            "INIT: ChainConnection initialized",
            extra={
                "extra_data": {
                    "action": "connection_init",
                    "chain_id": chain_id,
                    "has_account": self._account is not None,
                }
            },
        )

    @property
    def w3(self) -> AsyncWeb3:
        """Get the underlying web3 client."""
        return self._w3

    @property
    def account(self) -> LocalAccount:
        """Signing account.

        Raises:
            RuntimeError: If no private key was configured
        """
        if self._account is None:
            raise RuntimeError("No allocator private key configured")
        return self._account

    @property
    def address(self) -> str | None:
        return self._account.address if self._account else None

    def is_connected(self) -> bool:
        """Check if the last connection attempt succeeded."""
        return self._connected

    async def connect(self) -> bool:
        """Check the endpoint is reachable and serves the expected chain.

        Returns:
            True if connected successfully
        """
        logger.info(f"Connecting to chain {self.chain_id}...")

        try:
            if not await self._w3.is_connected():
                logger.error("RPC endpoint is not reachable")
                self._connected = False
                return False

            remote_chain_id = await self._w3.eth.chain_id
            if remote_chain_id != self.chain_id:
                logger.error(f"RPC chain id mismatch: expected {self.chain_id}, got {remote_chain_id}")
                self._connected = False
                return False

        except Exception as e:
            logger.error(f"Failed to connect to RPC: {e}")
            logger.debug(
                "Connection failed",
                extra={
                    "extra_data": {
                        "action": "connect_failed",
                        "error": str(e),
                        "error_type": type(e).__name__,
                    }
                },
            )
            self._connected = False
            return False

        self._connected = True
        logger.info(f"Connected to chain {self.chain_id}")
        return True

    async def disconnect(self) -> None:
        """Close the provider session."""
        logger.info("Disconnecting from RPC...")
        await self._w3.provider.disconnect()
        self._connected = False

    async def reconnect(self) -> bool:
        """Attempt to reconnect with exponential backoff.

        Returns:
            True if reconnected successfully
        """
        delay = self._reconnect_delay

        while True:
            logger.info(f"Attempting to reconnect in {delay}s...")
            await asyncio.sleep(delay)

            if await self.connect():
                return True

            delay = min(delay * 2, self._max_reconnect_delay)

    def contract(self, address: str, abi: list[dict[str, Any]]):
        """Contract handle at a checksummed address."""
        return self._w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=abi)
