import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from . import __appname__, __version__
from .config import Config
from .logger import setup_logging
from .supervisor import EXIT_FATAL, EXIT_OK, Receiver
from .tool import Tool


def parse_args(argv=None) -> argparse.Namespace:
    args_parser = argparse.ArgumentParser(description=__appname__)
    args_parser.add_argument('-c', '--config', type=str, help='Path to config file', required=True)
    args_parser.add_argument('-v', '--verbose', action='store_true', required=False,
                             help='Enable debug logging')
    args_parser.add_argument('--version', action='version', version='%(prog)s ' + __version__)
    return args_parser.parse_args(argv)


async def run(cmd_args: argparse.Namespace, tool: Tool) -> int:
    """
        Run the main program
    """
    try:
        config = Config(tool, cmd_args.config)
    except Config.ConfigError as config_error:
        logging.critical(str(config_error))
        return EXIT_FATAL

    logging.info("Starting %s %s with %i account(s)" % (__appname__, __version__, len(config.accounts)))
    receiver = Receiver(config, tool)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):  # not available on Windows
            loop.add_signal_handler(sig, stop_event.set)

    return await receiver.run(stop_event)


def main(argv=None):
    cmd_args = parse_args(argv)
    tool = Tool()
    setup_logging(tool, cmd_args.verbose)

    exit_code = EXIT_OK
    try:
        exit_code = asyncio.run(run(cmd_args, tool))
    except KeyboardInterrupt:
        logging.critical('Stopping user aborted with CTRL+C')
    logging.info('%s stopped!' % __appname__)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
