"""Configuration loading and validation."""
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from vault_allocator.models import OptimizationMode

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class ChainConfig:
    """Chain connection and signing configuration."""

    rpc_url: str
    chain_id: int
    private_key: str | None = None
    broadcast: bool = False
    max_gas_cost: int = 0           # Wei, 0 = unlimited


@dataclass
class VaultConfig:
    """Managed Euler Earn vault."""

    address: str
    evc_address: str
    name: str = ""
    cash_percentage: float = 0.0    # Fraction of total assets kept in the idle strategy
    strategies_override: list[str] = field(default_factory=list)


@dataclass
class AllocatorConfig:
    """Run scheduling and optimizer selection."""

    mode: OptimizationMode = OptimizationMode.ANNEALING
    interval_seconds: float = 600.0


@dataclass(frozen=True)
class SoftCap:
    """Configured [min, max] band for one strategy, in asset units."""

    min: int
    max: int

    @property
    def disabled(self) -> bool:
        """A band collapsed to a point pins the strategy and takes it out of the search."""
        return self.min == self.max


@dataclass(frozen=True)
class Constraints:
    """Tolerances and bounds applied to every candidate allocation."""

    max_utilization: float = 0.0            # 0 disables the check
    max_strategy_apy_diff: float = 0.0      # 0 disables the check
    min_deposit: int = 10
    allocation_diff_tolerance: float = 0.0
    apy_spread_tolerance: float = 0.0       # 0 = any strict decrease
    soft_caps: dict[str, SoftCap] = field(default_factory=dict)

    def soft_cap(self, strategy_id: str) -> SoftCap | None:
        """Soft cap for a strategy (addresses match case-insensitively)."""
        return self.soft_caps.get(strategy_id.lower())


@dataclass
class AnnealingConfig:
    """Simulated annealing schedule."""

    initial_temp: float = 1.0
    min_temp: float = 0.001
    cooling_rate: float = 0.97
    iterations_per_temp: int = 3000
    min_acceptance_rate: float = 0.01
    max_consecutive_failures: int = 1000
    max_duration_seconds: float | None = None


@dataclass
class EqualizationConfig:
    """Greedy APY equalization bounds."""

    max_iterations: int = 250
    spread_epsilon: float = 1e-6


@dataclass
class NotificationConfig:
    """Notification channels. A channel missing its credentials is skipped."""

    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    slack_webhook: str | None = None


@dataclass
class DataStoreConfig:
    """Data store configuration."""

    path: str = "./data"


@dataclass
class MerklConfig:
    """Reward campaign and price API endpoints."""

    api_url: str = "https://api.merkl.xyz/v4"
    price_api_url: str = "https://coins.llama.fi"
    timeout_seconds: float = 15.0


@dataclass
class Config:
    """Main configuration container."""

    chain: ChainConfig
    vault: VaultConfig
    allocator: AllocatorConfig
    constraints: Constraints = field(default_factory=Constraints)
    annealing: AnnealingConfig = field(default_factory=AnnealingConfig)
    equalization: EqualizationConfig = field(default_factory=EqualizationConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    data_store: DataStoreConfig = field(default_factory=DataStoreConfig)
    merkl: MerklConfig = field(default_factory=MerklConfig)


def _parse_soft_caps(raw: dict[str, Any] | None) -> dict[str, SoftCap]:
    soft_caps = {}
    for address, bounds in (raw or {}).items():
        if not isinstance(bounds, dict) or "min" not in bounds or "max" not in bounds:
            raise ConfigError(f"Soft cap for {address} must define 'min' and 'max'")
        soft_cap = SoftCap(min=int(bounds["min"]), max=int(bounds["max"]))
        if soft_cap.min < 0 or soft_cap.min > soft_cap.max:
            raise ConfigError(f"Invalid soft cap for {address}: min={soft_cap.min}, max={soft_cap.max}")
        soft_caps[str(address).lower()] = soft_cap
    return soft_caps


def _parse_mode(value: str) -> OptimizationMode:
    try:
        return OptimizationMode(value)
    except ValueError as e:
        valid = ", ".join(m.value for m in OptimizationMode)
        raise ConfigError(f"Invalid allocator mode '{value}' (expected one of: {valid})") from e


def load_config(path: str) -> Config:
    """Load configuration from YAML file.

    Secrets in the environment (ALLOCATOR_PRIVATE_KEY, TELEGRAM_BOT_TOKEN,
    SLACK_WEBHOOK) take precedence over the file.

    Args:
        path: Path to YAML configuration file

    Returns:
        Config object with validated configuration

    Raises:
        ConfigError: If file not found, invalid YAML, missing required fields
                     or invalid values
    """
    config_path = Path(path)

    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML: {e}") from e

    if raw is None:
        raise ConfigError("Configuration file is empty")

    # Validate required sections
    required_sections = ["chain", "vault", "allocator"]
    for section in required_sections:
        if section not in raw:
            raise ConfigError(f"Missing required configuration section: {section}")

    try:
        # Parse chain config
        chain_raw = raw["chain"]
        chain = ChainConfig(
            rpc_url=chain_raw["rpc_url"],
            chain_id=int(chain_raw["chain_id"]),
            private_key=os.environ.get("ALLOCATOR_PRIVATE_KEY", chain_raw.get("private_key")),
            broadcast=bool(chain_raw.get("broadcast", False)),
            max_gas_cost=int(chain_raw.get("max_gas_cost", 0)),
        )

        # Parse vault config
        vault_raw = raw["vault"]
        vault = VaultConfig(
            address=vault_raw["address"],
            evc_address=vault_raw["evc_address"],
            name=vault_raw.get("name", ""),
            cash_percentage=float(vault_raw.get("cash_percentage", 0.0)),
            strategies_override=list(vault_raw.get("strategies_override") or []),
        )

        # Parse allocator config
        alloc_raw = raw["allocator"] or {}
        allocator = AllocatorConfig(
            mode=_parse_mode(alloc_raw.get("mode", "annealing")),
            interval_seconds=float(alloc_raw.get("interval_seconds", 600)),
        )

        # Parse constraints
        cons_raw = raw.get("constraints") or {}
        constraints = Constraints(
            max_utilization=float(cons_raw.get("max_utilization", 0.0)),
            max_strategy_apy_diff=float(cons_raw.get("max_strategy_apy_diff", 0.0)),
            min_deposit=int(cons_raw.get("min_deposit", 10)),
            allocation_diff_tolerance=float(cons_raw.get("allocation_diff_tolerance", 0.0)),
            apy_spread_tolerance=float(cons_raw.get("apy_spread_tolerance", 0.0)),
            soft_caps=_parse_soft_caps(cons_raw.get("soft_caps")),
        )

        # Parse optimizer schedules
        annealing = AnnealingConfig(**(raw.get("annealing") or {}))
        equalization = EqualizationConfig(**(raw.get("equalization") or {}))

        # Parse notification channels
        notif_raw = raw.get("notifications") or {}
        notifications = NotificationConfig(
            telegram_bot_token=os.environ.get("TELEGRAM_BOT_TOKEN", notif_raw.get("telegram_bot_token")),
            telegram_chat_id=notif_raw.get("telegram_chat_id"),
            slack_webhook=os.environ.get("SLACK_WEBHOOK", notif_raw.get("slack_webhook")),
        )

        data_store = DataStoreConfig(**(raw.get("data_store") or {}))
        merkl = MerklConfig(**(raw.get("merkl") or {}))
    except KeyError as e:
        raise ConfigError(f"Missing required configuration field: {e.args[0]}") from e
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}") from e

    if not 0 <= vault.cash_percentage <= 1:
        raise ConfigError(f"cash_percentage must be within [0, 1], got {vault.cash_percentage}")

    if chain.broadcast and not chain.private_key:
        raise ConfigError("A private key is required when broadcast is enabled")

    config = Config(
        chain=chain,
        vault=vault,
        allocator=allocator,
        constraints=constraints,
        annealing=annealing,
        equalization=equalization,
        notifications=notifications,
        data_store=data_store,
        merkl=merkl,
    )

    logger.info(f"Loaded configuration from {path}")
    logger.debug(f"Chain: id={chain.chain_id}, broadcast={chain.broadcast}")
    logger.debug(f"Vault: {vault.name or vault.address}, mode={allocator.mode.value}")
    logger.debug(f"Soft caps: {list(constraints.soft_caps)}")

    return config
