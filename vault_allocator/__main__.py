"""Command line entry point: `python -m vault_allocator`."""
import argparse
import logging
import signal
import sys

from vault_allocator.core.config import Config, ConfigError, load_config
from vault_allocator.core.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty third-party loggers capped at WARNING
QUIET_LOGGERS = ("web3", "urllib3", "aiohttp")


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Command line arguments (defaults to sys.argv[1:])
    """
    parser = argparse.ArgumentParser(
        prog="python -m vault_allocator",
        description="Periodically rebalance an Euler Earn vault across its strategies",
    )
    parser.add_argument(
        "-c", "--config",
        default="config/default.yaml",
        help="YAML configuration file (default: config/default.yaml)",
    )
    parser.add_argument(
        "-l", "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single allocation cycle and exit",
    )
    return parser.parse_args(args)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def describe_execution(config: Config) -> str:
    """How accepted allocations will be handled, for the startup log."""
    if not config.chain.private_key:
        return "dry run (no allocator key)"
    if not config.chain.broadcast:
        return "simulate only"
    return "broadcast"


def install_signal_handlers(orchestrator: Orchestrator) -> None:
    def handle(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current run")
        orchestrator.stop()
        sys.exit(0)

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, handle)


def main(args: list[str] | None = None) -> int:
    """Load the configuration and run the allocator.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parsed_args = parse_args(args)
    setup_logging(parsed_args.log_level)

    try:
        config = load_config(parsed_args.config)
    except ConfigError as e:
        logger.error(f"Configuration error in {parsed_args.config}: {e}")
        return 1

    logger.info(
        f"Allocating vault {config.vault.name or config.vault.address} on chain {config.chain.chain_id} "
        f"(mode: {config.allocator.mode.value}, execution: {describe_execution(config)})"
    )

    orchestrator = None
    try:
        orchestrator = Orchestrator(config)
        install_signal_handlers(orchestrator)
        orchestrator.start(once=parsed_args.once)
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1

    finally:
        if orchestrator is not None:
            orchestrator.stop()


if __name__ == "__main__":
    sys.exit(main())
