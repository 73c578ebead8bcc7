import logging
import sys

from .tool import Tool


class SystemdHandler(logging.Handler):
    """
        Class to handle logging options.
    """
    PREFIX = {
        logging.CRITICAL: "🔥 CRITICAL: ",
        logging.ERROR:    "❌ ERROR:    ",
        logging.WARNING:  "⚠️  WARNING:  ",
        logging.INFO:     "ℹ️  INFO:     ",
        logging.DEBUG:    "🐛 DEBUG:    ",
        logging.NOTSET:   "❓ NOTSET:   ",
    }
    tool: Tool | None

    def __init__(self, stream=sys.stdout, tool: Tool | None = None):
        self.stream = stream
        self.tool = tool
        logging.Handler.__init__(self)

    def emit(self, record):
        try:
            if self.tool is not None:
                # Normalize message and replace sensitive data
                record.msg = self.tool.build_error_message(record.getMessage())
                record.args = None
            prefix = self.PREFIX.get(record.levelno, self.PREFIX[logging.NOTSET])
            self.stream.write(prefix + self.format(record) + "\n")
            self.stream.flush()
        except Exception:
            self.handleError(record)


def setup_logging(tool: Tool, verbose: bool = False, stream=sys.stdout) -> SystemdHandler:
    sys_handler = SystemdHandler(stream=stream, tool=tool)
    sys_handler.setFormatter(logging.Formatter('%(asctime)s %(message)s', datefmt='%Y-%m-%d %H:%M:%S'))
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    root_logger.addHandler(sys_handler)

    # Suppress verbose HTTP logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    return sys_handler
