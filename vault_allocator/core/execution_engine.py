"""Execution engine for vault reallocation transactions."""
import logging
from typing import Awaitable, Callable

from web3 import Web3

from vault_allocator.collectors.chain.connection import ChainConnection
from vault_allocator.collectors.euler.abis import EULER_EARN_ABI, EVC_ABI
from vault_allocator.models import Allocation, RESULT_SIMULATION

logger = logging.getLogger(__name__)

MAX_UINT256 = 2**256 - 1


class ExecutionError(Exception):
    """Raised when a reallocation cannot be submitted."""

    pass


def build_market_allocations(allocation: Allocation) -> list[tuple[str, int]]:
    """Order reallocation steps for the earn vault.

    Withdrawals come before deposits. The last step deposits `2**256 - 1` so
    any amount withdrawn in excess is swept into it.

    Returns:
        List of (strategy address, target assets)
    """
    ordered = sorted(allocation.items(), key=lambda item: item[1].diff)
    steps = []
    for index, (strategy_id, entry) in enumerate(ordered):
        assets = MAX_UINT256 if index == len(ordered) - 1 else entry.new_amount
        steps.append((Web3.to_checksum_address(strategy_id), assets))
    return steps


class ExecutionEngine:
    """Submits reallocations to an Euler Earn vault through an EVC batch.

    Every batch is simulated first. Only when broadcasting is enabled is it
    signed and sent; otherwise the run ends as a simulation.
    """

    def __init__(
        self,
        connection: ChainConnection,
        earn_vault_address: str,
        evc_address: str,
        broadcast: bool = False,
        max_gas_cost: int = 0,
    ):
        """Initialize execution engine.

        Args:
            connection: Chain connection holding the allocator account
            earn_vault_address: Euler Earn vault to reallocate
            evc_address: Ethereum Vault Connector used to batch the call
            broadcast: If False, only simulate
            max_gas_cost: Refuse to broadcast above this cost in wei (0 = unlimited)
        """
        self.connection = connection
        self.earn_vault_address = earn_vault_address
        self.evc_address = evc_address
        self.broadcast = broadcast
        self.max_gas_cost = max_gas_cost

        # Callbacks
        self.on_submitted: Callable[[str], Awaitable[None]] | None = None

    def build_batch(self, allocation: Allocation) -> list[tuple[str, str, int, bytes]]:
        """EVC batch items wrapping a single `reallocate` call."""
        earn = self.connection.contract(self.earn_vault_address, EULER_EARN_ABI)
        data = earn.encode_abi("reallocate", args=[build_market_allocations(allocation)])
        return [
            (
                Web3.to_checksum_address(self.earn_vault_address),
                self.connection.account.address,
                0,
                Web3.to_bytes(hexstr=data),
            )
        ]

    async def execute(self, allocation: Allocation) -> str:
        """Simulate and, if enabled, broadcast a reallocation.

        Args:
            allocation: Verified allocation to apply

        Returns:
            "simulation", or the transaction hash once the receipt is in

        Raises:
            ExecutionError: If the gas cost exceeds the limit or the tx reverts
        """
        account = self.connection.account
        evc = self.connection.contract(self.evc_address, EVC_ABI)
        call = evc.functions.batch(self.build_batch(allocation))

        changed = allocation.changed()
        logger.info(f"Simulating reallocation of {len(changed)} strategies")

        # Reverts raise here
        await call.call({"from": account.address})

        if not self.broadcast:
            logger.info("Simulation succeeded, broadcast disabled")
            return RESULT_SIMULATION

        w3 = self.connection.w3
        gas = await call.estimate_gas({"from": account.address})
        gas_price = await w3.eth.gas_price
        gas_cost = gas * gas_price

        logger.debug(
            "Estimated reallocation gas",
            extra={
                "extra_data": {
                    "action": "gas_estimate",
                    "gas": gas,
                    "gas_price": gas_price,
                    "gas_cost": gas_cost,
                    "max_gas_cost": self.max_gas_cost,
                }
            },
        )

        if self.max_gas_cost and gas_cost > self.max_gas_cost:
            raise ExecutionError(f"Gas cost {gas_cost} wei exceeds limit {self.max_gas_cost} wei")

        tx = await call.build_transaction({
            "from": account.address,
            "nonce": await w3.eth.get_transaction_count(account.address),
            "gas": gas,
            "chainId": self.connection.chain_id,
        })
        signed = account.sign_transaction(tx)
        tx_hash = await w3.eth.send_raw_transaction(signed.raw_transaction)

        logger.info(f"Submitted reallocation {Web3.to_hex(tx_hash)}")
        if self.on_submitted:
            await self.on_submitted(Web3.to_hex(tx_hash))

        receipt = await w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            raise ExecutionError(f"Reallocation reverted: {Web3.to_hex(tx_hash)}")

        return Web3.to_hex(receipt["transactionHash"])
