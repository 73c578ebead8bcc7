import configparser
import logging
from dataclasses import dataclass

from .tool import Tool

DEFAULT_IMAP_PORT = 993
DEFAULT_POLL_INTERVAL = 60
DEFAULT_IDLE_TIMEOUT = 20  # minutes
DEFAULT_IMAP_TIMEOUT = 60
DEFAULT_FOLDER = 'INBOX'
DEFAULT_HEARTBEAT_INTERVAL = 60
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 30

ACCOUNT_SECTION_PREFIX = 'Account '
APP_SECTION = 'App'


@dataclass(frozen=True)
class AccountConfig:
    """Connection and delivery settings of one watched mailbox."""
    name: str
    server: str
    user: str
    password: str
    port: int = DEFAULT_IMAP_PORT
    folders: tuple[str, ...] = (DEFAULT_FOLDER,)
    poll_interval: int = DEFAULT_POLL_INTERVAL
    idle_timeout: int = DEFAULT_IDLE_TIMEOUT
    push_url: str = ''
    timeout: int = DEFAULT_IMAP_TIMEOUT

    @property
    def folder(self) -> str:
        # only the first configured folder is watched
        return self.folders[0]

    @property
    def idle_timeout_seconds(self) -> float:
        return float(self.idle_timeout * 60)


@dataclass(frozen=True)
class AppConfig:
    heartbeat_url: str = ''
    heartbeat_interval: int = DEFAULT_HEARTBEAT_INTERVAL
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: int = DEFAULT_RETRY_DELAY


class Config:
    config_parser: configparser.ConfigParser
    tool: Tool
    accounts: dict[str, AccountConfig]
    app: AppConfig

    class ConfigError(Exception):
        pass

    def __init__(self, tool: Tool, path: str):
        """
            Parse config file for the application settings and one section per
            mail account ("[Account <name>]") holding server, credentials and
            push endpoint.
        """
        self.tool = tool
        self.accounts = {}
        self.config_parser = configparser.ConfigParser(interpolation=None)
        try:
            files = self.config_parser.read(path, encoding='utf-8')
        except configparser.Error as parse_error:
            raise self.ConfigError("Error parsing config file '%s': %s" % (path, parse_error))
        if len(files) == 0:
            raise self.ConfigError("Error parsing config file: File '%s' not found!" % path)

        max_retries = self.get_config(APP_SECTION, 'max_retries', DEFAULT_MAX_RETRIES, int)
        if max_retries < 1:
            raise self.ConfigError("Error parsing config file: 'max_retries' must be at least 1.")
        heartbeat_interval = self.get_config(APP_SECTION, 'heartbeat_interval', 0, int)
        if heartbeat_interval <= 0:
            heartbeat_interval = DEFAULT_HEARTBEAT_INTERVAL
        self.app = AppConfig(
            heartbeat_url=self.get_config(APP_SECTION, 'heartbeat_url', '').strip(),
            heartbeat_interval=heartbeat_interval,
            max_retries=max_retries,
            retry_delay=max(0, self.get_config(APP_SECTION, 'retry_delay', DEFAULT_RETRY_DELAY, int)),
        )

        for section in self.config_parser.sections():
            if not section.startswith(ACCOUNT_SECTION_PREFIX):
                if section != APP_SECTION:
                    logging.warning("Ignoring unknown config section '%s'." % section)
                continue
            name = section[len(ACCOUNT_SECTION_PREFIX):].strip()
            if not name:
                raise self.ConfigError("Error parsing config file: account section '%s' has no name." % section)
            self.accounts[name] = self._load_account(name, section)

        if len(self.accounts) == 0:
            raise self.ConfigError("Error parsing config file: no '[%s<name>]' section found." % ACCOUNT_SECTION_PREFIX)

    def _load_account(self, name: str, section: str) -> AccountConfig:
        server = self.get_config(section, 'server', '').strip()
        user = self.get_config(section, 'user', '').strip()
        password = self.get_config(section, 'password', '')
        if not server or not user or not password:
            raise self.ConfigError("Account '%s' is missing required fields (server/user/password)." % name)
        self.tool.mask(password)

        # zero or missing numbers fall back to their defaults
        port = self.get_config(section, 'port', 0, int) or DEFAULT_IMAP_PORT
        poll_interval = self.get_config(section, 'poll_interval', 0, int) or DEFAULT_POLL_INTERVAL
        idle_timeout = self.get_config(section, 'idle_timeout', 0, int) or DEFAULT_IDLE_TIMEOUT
        timeout = self.get_config(section, 'timeout', 0, int) or DEFAULT_IMAP_TIMEOUT
        folders = tuple(self._parse_list(self.get_config(section, 'folders', ''))) or (DEFAULT_FOLDER,)
        push_url = self.get_config(section, 'push_url', '').strip()
        # push URLs usually carry the device key
        self.tool.mask(push_url)

        return AccountConfig(
            name=name,
            server=server,
            user=user,
            password=password,
            port=port,
            folders=folders,
            poll_interval=poll_interval,
            idle_timeout=idle_timeout,
            push_url=push_url,
            timeout=timeout,
        )

    def get_config(self, section, key, default=None, value_type=None):
        value = default
        try:
            if self.config_parser.has_option(section, key):
                # get value based on type of default value
                if value_type is int:
                    value = self.config_parser.getint(section, key)
                elif value_type is float:
                    value = self.config_parser.getfloat(section, key)
                elif value_type is bool:
                    value = self.config_parser.getboolean(section, key)
                else:
                    # use string as default
                    value = self.config_parser.get(section, key)

        except (configparser.Error, ValueError) as get_val_error:
            raise self.ConfigError("Get config value error for '%s'.'%s' (default: '%s'): %s."
                                   % (section, key, default, get_val_error))

        return value

    @staticmethod
    def _parse_list(value: str) -> list:
        """Parse comma-separated string into list of trimmed items."""
        if not value or not value.strip():
            return []
        return [item.strip() for item in value.split(',') if item.strip()]
