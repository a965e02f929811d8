"""Run notifications over Telegram and Slack."""
import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal

import aiohttp

from vault_allocator.core.config import NotificationConfig
from vault_allocator.models import RunRecord, SpreadSummary, Vault, RESULT_ABORT, RESULT_ERROR

logger = logging.getLogger(__name__)

CHAIN_NAMES = {
    1: "mainnet",
    8453: "base",
    42161: "arbitrum",
    9745: "plasma",
}

TELEGRAM_API_URL = "https://api.telegram.org"


def chain_name(chain_id: int) -> str:
    return CHAIN_NAMES.get(chain_id, str(chain_id))


def format_percent(value: float | None, digits: int = 3) -> str:
    return "n/a" if value is None else f"{value:.{digits}f}%"


def format_amount(value: int, decimals: int, with_sign: bool = False) -> str:
    """Asset amount with two decimals, rounded half away from zero."""
    amount = (Decimal(value) / Decimal(10) ** decimals).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if amount == 0:
        return "0.00"
    text = f"{amount:.2f}"
    return f"+{text}" if with_sign and amount > 0 else text


def _spread_line(spread: SpreadSummary | None) -> str | None:
    if spread is None or (spread.current is None and spread.final is None):
        return None

    limit = f" (limit {format_percent(spread.tolerance)})" if spread.tolerance is not None else ""
    if spread.current is not None and spread.final is not None:
        return f"Spread {format_percent(spread.current)} → {format_percent(spread.final)}{limit}"
    return f"Spread {format_percent(spread.current if spread.current is not None else spread.final)}{limit}"


def _allocation_lines(record: RunRecord, vault: Vault | None) -> list[str]:
    decimals = vault.asset_decimals if vault is not None else 18
    changed = record.new.allocation.changed()
    if not changed:
        return []

    lines = ["Allocation changes:"]
    for strategy_id, entry in changed.items():
        label = strategy_id
        if vault is not None and strategy_id in vault.strategies:
            label = vault.strategies[strategy_id].details.symbol or strategy_id
        lines.append(
            f"- {label}: {format_amount(entry.old_amount, decimals)} → "
            f"{format_amount(entry.new_amount, decimals)} "
            f"({format_amount(entry.diff, decimals, with_sign=True)})"
        )
    return lines


def result_label(result: str) -> str:
    if result.startswith("0x"):
        return "broadcast"
    if result == RESULT_ABORT:
        return "skipped"
    return result


def format_run_message(record: RunRecord, chain_id: int, vault: Vault | None = None) -> str:
    """Human-readable summary of a run.

    Args:
        record: Finished run
        chain_id: Chain the vault lives on
        vault: Snapshot the run used, for asset decimals and strategy symbols

    Returns:
        Multi-line message
    """
    current, new = record.current.total_returns, record.new.total_returns
    is_error = record.result == RESULT_ERROR
    label = "error" if is_error else result_label(record.result)

    lines = [
        f"Rebalance {label.upper()} (mode: {record.mode.value})",
        f"chain {chain_name(chain_id)} vault {record.vault}",
        f"APY {format_percent(current)} → {format_percent(new)} ({new - current:+.3f}%)",
        _spread_line(record.spread),
        *_allocation_lines(record, vault),
    ]
    if is_error:
        lines.append(f"Error: {record.error if record.error is not None else record.reasoning}")
    elif record.is_transaction:
        lines.append(f"tx {record.result}")

    return "\n".join(line for line in lines if line)


class Notifier:
    """Delivers messages to every configured channel.

    Delivery failures are logged and never raised.
    """

    def __init__(self, config: NotificationConfig, chain_id: int, timeout_seconds: float = 10.0):
        self.config = config
        self.chain_id = chain_id
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.config.telegram_bot_token and self.config.telegram_chat_id)

    @property
    def slack_enabled(self) -> bool:
        return bool(self.config.slack_webhook)

    async def _post(self, url: str, payload: dict) -> None:
        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            async with session.post(url, json=payload) as response:
                response.raise_for_status()

    async def send_telegram(self, message: str, is_error: bool = False) -> None:
        if not self.telegram_enabled:
            return
        text = f"❌ {message}" if is_error else message
        await self._post(
            f"{TELEGRAM_API_URL}/bot{self.config.telegram_bot_token}/sendMessage",
            {"chat_id": self.config.telegram_chat_id, "text": text},
        )

    async def send_slack(self, message: str, is_error: bool = False) -> None:
        if not self.slack_enabled:
            return
        text = f"🚨 {message}" if is_error else message
        await self._post(self.config.slack_webhook, {"text": text})

    async def send(self, message: str, is_error: bool = False) -> None:
        """Send a message to all channels concurrently."""
        results = await asyncio.gather(
            self.send_telegram(message, is_error),
            self.send_slack(message, is_error),
            return_exceptions=True,
        )
        for channel, result in zip(("telegram", "slack"), results):
            if isinstance(result, Exception):
                logger.error(f"Error sending {channel} message: {result}")

    async def notify_run(self, record: RunRecord, vault: Vault | None = None) -> None:
        message = format_run_message(record, self.chain_id, vault)
        await self.send(message, is_error=record.result == RESULT_ERROR)
