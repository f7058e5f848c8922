"""Command-line interface for the controller bridge."""

import argparse
import asyncio
import logging
import signal

from dotenv import load_dotenv

import erbridge.config as cfg
from erbridge.config import TRACE, BridgeConfig
from erbridge.server.async_logging import AsyncLogHandler
from erbridge.server.bridge import Bridge
from erbridge.server.transports import MockController, resolve_protocol

logger = logging.getLogger("erbridge.server.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ER-series robot controller bridge")
    parser.add_argument("--robot-ip", help="Controller IP address")
    parser.add_argument("--robot-port", type=int, help="Controller port (502 selects Modbus)")
    parser.add_argument(
        "--protocol",
        choices=["auto", "string", "modbus"],
        help="Controller protocol (default: by port)",
    )
    parser.add_argument("--host", help="WebSocket listen address")
    parser.add_argument("--port", type=int, help="WebSocket listen port")
    parser.add_argument("--timeout", type=float, help="Command timeout in seconds")
    parser.add_argument(
        "--no-autoconnect",
        action="store_true",
        help="Wait for a CONNECT from the browser instead of connecting at startup",
    )
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="Start a local mock controller and connect to it",
    )
    parser.add_argument("--env-file", help="Load settings from this .env file")

    # Verbose logging options
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG, -vvv=TRACE",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Enable quiet logging (WARNING level)",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set specific log level",
    )
    return parser


def _log_level(args: argparse.Namespace) -> int:
    # Precedence:
    #   1) Explicit --log-level
    #   2) Verbose / quiet flags
    #   3) Environment-driven TRACE (ERBRIDGE_TRACE=1)
    #   4) Default INFO
    if args.log_level:
        if args.log_level == "TRACE":
            cfg.TRACE_ENABLED = True
            return TRACE
        return getattr(logging, args.log_level)
    if args.verbose >= 3:
        cfg.TRACE_ENABLED = True
        return TRACE
    if args.verbose >= 2:
        return logging.DEBUG
    if args.verbose == 1:
        return logging.INFO
    if args.quiet:
        return logging.WARNING
    if cfg.TRACE_ENABLED:
        return TRACE
    return logging.INFO


def config_from_args(args: argparse.Namespace) -> BridgeConfig:
    """Environment first, then command-line overrides."""
    config = BridgeConfig.from_env()
    if args.robot_ip:
        config.robot_ip = args.robot_ip
    if args.robot_port is not None:
        config.robot_port = args.robot_port
    if args.protocol:
        config.protocol = args.protocol
    if args.host:
        config.gateway_host = args.host
    if args.port is not None:
        config.gateway_port = args.port
    if args.timeout is not None:
        config.command_timeout = args.timeout
    if args.no_autoconnect:
        config.autoconnect = False
    # Reject unknown ERBRIDGE_PROTOCOL values up front
    resolve_protocol(config.robot_port, config.protocol)
    return config


async def run(config: BridgeConfig, simulate: bool = False) -> None:
    """Run the bridge until cancelled."""
    mock = None
    if simulate:
        mock = MockController()
        config.robot_ip = mock.host
        config.robot_port = await mock.start()
        config.protocol = "string"
        logger.info(f"Simulation: mock controller on {mock.host}:{mock.port}")

    bridge = Bridge(config)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()

    def handle_sigterm() -> None:
        logger.info("Received SIGTERM, shutting down...")
        stop.set()

    try:
        loop.add_signal_handler(signal.SIGTERM, handle_sigterm)
    except (NotImplementedError, RuntimeError):
        # Not available on Windows event loops
        pass

    try:
        await bridge.start()
        logger.info(
            f"Bridge ready: ws://{config.gateway_host}:{bridge.session.port} -> "
            f"{config.robot_ip}:{config.robot_port} ({bridge.protocol})"
        )
        await stop.wait()
    finally:
        await bridge.stop()
        if mock is not None:
            await mock.stop()


def main() -> int:
    """Main entry point for the bridge."""
    parser = build_parser()
    args = parser.parse_args()

    if args.env_file:
        load_dotenv(args.env_file)
    else:
        load_dotenv()

    log_level = _log_level(args)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    third_party_log_level = log_level if log_level >= logging.INFO else logging.INFO
    logging.getLogger("websockets").setLevel(third_party_log_level)
    logging.getLogger("pymodbus").setLevel(max(third_party_log_level, logging.WARNING))

    try:
        config = config_from_args(args)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    async_log = AsyncLogHandler()
    async_log.start()

    try:
        asyncio.run(run(config, simulate=args.simulate))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except OSError as e:
        logger.error(f"Failed to start bridge: {e}")
        return 1
    finally:
        async_log.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
