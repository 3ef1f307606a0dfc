#!/usr/bin/env python3
"""
Entry point for the candle-close trading agent.

Loads configuration, wires the loop controller, serves the control API and
runs one scheduler per instrument until SIGINT/SIGTERM.
"""

import argparse
import asyncio
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from kline_agent.config import Config
from kline_agent.errors import SelfCheckError
from kline_agent.loop_controller import LoopController
from kline_agent.services.log_stream import LogBroadcaster
from kline_agent.services.shutdown_service import ShutdownService

__version__ = "1.0.0"

LOG_DIR = Path("logs")
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "openai._base_client", "ccxt", "matplotlib")
LIVE_ABORT_SECONDS = 5

logger = logging.getLogger("kline_agent.main")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(verbose: bool = False, json_logs: bool = False) -> None:
    """
    Configure root logging: stdout plus logs/agent.log, optionally logs/agent.json.

    Args:
        verbose: DEBUG instead of INFO
        json_logs: Emit JSON records instead of plain text
    """
    LOG_DIR.mkdir(exist_ok=True)
    formatter = JSONFormatter() if json_logs else logging.Formatter(TEXT_FORMAT, DATE_FORMAT)

    handlers: List[logging.Handler] = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(LOG_DIR / "agent.log", mode="a", encoding="utf-8"),
    ]
    if json_logs:
        handlers.append(logging.FileHandler(LOG_DIR / "agent.json", mode="a", encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, handlers=handlers)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def attach_log_broadcaster(capacity: int) -> LogBroadcaster:
    """Stream formatted log lines to the control API's /api/logs endpoint."""
    broadcaster = LogBroadcaster(capacity=capacity, fmt=logging.Formatter(TEXT_FORMAT, DATE_FORMAT))
    logging.getLogger().addHandler(broadcaster)
    return broadcaster


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="kline-agent",
        description="Candle-close LLM trading agent for OKX perpetual swaps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "examples:\n"
            "  kline-agent                       use ./.env\n"
            "  kline-agent --env .env.paper      use another env file\n"
            "  kline-agent --verbose --no-api    debug logging, no control API\n"
            "\n"
            "See .env.example for every setting. Keep PAPER_TRADE=true until the\n"
            "setup has been verified on OKX simulated trading."
        ),
    )
    parser.add_argument("--env", default=".env", help="environment file to load (default: .env)")
    parser.add_argument("--verbose", action="store_true", help="log at DEBUG level")
    parser.add_argument("--json-logs", action="store_true", help="also write JSON records to logs/agent.json")
    parser.add_argument("--no-api", action="store_true", help="do not serve the control API")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def load_config(env_file: str) -> Optional[Config]:
    """Load configuration, returning None (after logging why) when it is unusable."""
    if env_file != ".env":
        if not Path(env_file).exists():
            logger.error(f"Environment file not found: {env_file}")
            return None
        from dotenv import load_dotenv
        load_dotenv(env_file, override=True)

    try:
        return Config.from_env()
    except ValueError as e:
        logger.error(f"[ERROR] Configuration error: {e}")
        logger.error("Check your environment file against .env.example.")
        return None


def confirm_live_mode() -> bool:
    """Give the operator a short window to abort before real orders are possible."""
    logger.warning("!" * 80)
    logger.warning("LIVE MODE: orders will be sent to OKX with real funds")
    logger.warning(f"Press Ctrl+C within {LIVE_ABORT_SECONDS} seconds to abort...")
    logger.warning("!" * 80)
    try:
        time.sleep(LIVE_ABORT_SECONDS)
    except KeyboardInterrupt:
        logger.info("Aborted by user")
        return False
    return True


async def run_agent(config: Config, broadcaster: Optional[LogBroadcaster], serve_api: bool = True) -> int:
    """
    Run the controller (and the control API) until a shutdown signal arrives.

    Returns:
        Process exit code
    """
    controller = LoopController.from_config(config)
    shutdown = ShutdownService()
    shutdown.register_signal_handlers()

    try:
        await controller.start()
    except SelfCheckError as e:
        logger.error(f"[ERROR] Startup self-check failed: {e}")
        await controller.shutdown()
        return 1

    server = None
    waiters = [asyncio.create_task(shutdown.wait(), name="shutdown-wait")]
    if serve_api:
        import uvicorn
        from kline_agent.api_server import create_app

        server = uvicorn.Server(uvicorn.Config(
            create_app(controller, broadcaster),
            host=config.api_host,
            port=config.api_port,
            log_level="warning",
        ))
        waiters.append(asyncio.create_task(server.serve(), name="api-server"))
        logger.info(f"Control API listening on http://{config.api_host}:{config.api_port}")

    logger.info("Agent running, press Ctrl+C to stop")
    # Either a signal or the API server exiting ends the run
    done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"{task.get_name()} failed: {task.exception()}")

    if server is not None:
        server.should_exit = True
    waiters[0].cancel()
    await asyncio.gather(*waiters, return_exceptions=True)

    await controller.shutdown()
    logger.info("Agent stopped")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    setup_logging(verbose=args.verbose, json_logs=args.json_logs)
    logger.info(f"Kline Agent v{__version__} starting (env file: {args.env})")

    config = load_config(args.env)
    if config is None:
        return 1
    broadcaster = attach_log_broadcaster(config.log_buffer_size)

    logger.info(
        f"Mode: {config.run_mode.upper()} | instruments: {', '.join(config.symbols)} | "
        f"trade timeframe: {config.trade_interval} | topology: {config.decision_topology}"
    )
    if config.run_mode == "live" and not confirm_live_mode():
        return 0

    try:
        return asyncio.run(run_agent(config, broadcaster, serve_api=not args.no_api))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    except Exception as e:
        logger.error(f"[ERROR] Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
