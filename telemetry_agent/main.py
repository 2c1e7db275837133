"""
Main entry point for the Host Telemetry Agent.
This script handles command-line arguments for running the worker in the
foreground and for watching its live stream.
"""
import argparse
import signal
import sys
from typing import Dict, List, Optional

from telemetry_agent.config import load_app_config
from telemetry_agent.core import AgentContext, TelemetryAgent
from telemetry_agent.ipc import iter_stream_lines
from telemetry_agent.monitoring import PsutilMetricSource
from telemetry_agent.system import (
    determine_base_directory,
    determine_channel_address,
    setup_directory_structure
)
from telemetry_agent.utils.logger import setup_logger, get_logger
from telemetry_agent.version import __version__, __app_name__

COMMANDS = ('run', 'watch')

logger = get_logger("main")


def _install_signal_handlers(agent: TelemetryAgent) -> Dict[int, object]:
    """Routes SIGINT/SIGTERM to a graceful stop. Returns the previous handlers."""
    def handle_signal(signum, frame):
        logger.info(f"Received signal {signal.Signals(signum).name}.")
        agent.request_stop()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[signum] = signal.signal(signum, handle_signal)
        except (ValueError, OSError) as e:
            logger.warning(f"Could not install handler for signal {signum}: {e}")
    return previous


def _restore_signal_handlers(previous: Dict[int, object]):
    for signum, handler in previous.items():
        try:
            signal.signal(signum, handler)
        except (ValueError, OSError, TypeError) as e:
            logger.debug(f"Could not restore handler for signal {signum}: {e}")


def _run_agent_command(args: argparse.Namespace) -> int:
    """Handles the 'run' CLI command."""
    base_directory = determine_base_directory(args.base_dir)
    logs_dir = setup_directory_structure(base_directory)

    console_level = args.log_level or 'INFO'
    setup_logger(console_level_name=console_level, log_directory_path=logs_dir)

    logger.info(f"{__app_name__} v{__version__} starting. Base directory: {base_directory}")

    config = load_app_config(base_directory, args.config)
    if not args.log_level and config.log_level.upper() != console_level:
        setup_logger(console_level_name=config.log_level, log_directory_path=logs_dir)

    previous_handlers: Dict[int, object] = {}
    try:
        context = AgentContext.build(config, base_directory)
        source = PsutilMetricSource(hyper_v=config.hyper_v)
        agent = TelemetryAgent(context, source)

        previous_handlers = _install_signal_handlers(agent)
        agent.start()
    except Exception as e:
        logger.critical(f"Agent terminated by an unexpected error: {e}", exc_info=True)
    finally:
        _restore_signal_handlers(previous_handlers)
        logger.info("Worker exited.")

    return 0


def _run_watch_command(args: argparse.Namespace) -> int:
    """Handles the 'watch' CLI command."""
    setup_logger(console_level_name=args.log_level or 'WARNING')

    base_directory = determine_base_directory(args.base_dir)
    pipe_name = args.pipe_name or load_app_config(base_directory, args.config).pipe_name
    address = determine_channel_address(pipe_name, base_directory)

    try:
        for line in iter_stream_lines(address, max_lines=args.count):
            print(line, flush=True)
    except KeyboardInterrupt:
        pass
    except OSError as e:
        logger.error(f"Error reading live stream at {address}: {e}")
        print(f"ERROR: Could not read the live stream at {address}: {e}", file=sys.stderr)
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="telemetry-agent", description=f"{__app_name__} CLI.")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument('--base-dir', help='Agent base directory (config, Logs/, stream socket).')
    common.add_argument('--log-level', help='Console log level (DEBUG, INFO, WARNING, ...).')
    common.add_argument('--config', help='Explicit configuration file path.')

    run_parser = subparsers.add_parser('run', parents=[common],
                                       help='Run the telemetry worker in the foreground (default).')
    run_parser.set_defaults(func=_run_agent_command)

    watch_parser = subparsers.add_parser('watch', parents=[common], help='Print the live snapshot stream.')
    watch_parser.add_argument('--pipe-name', help='Live stream channel name (defaults to pipeName from the config).')
    watch_parser.add_argument('--count', type=int, default=None, help='Exit after this many snapshots.')
    watch_parser.set_defaults(func=_run_watch_command)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main function to parse arguments and dispatch commands.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or (argv[0] not in COMMANDS and argv[0] not in ('-h', '--help', '--version')):
        argv = ['run'] + argv

    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
