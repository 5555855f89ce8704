# phpremote/config.py

import os
import sys
import shutil
import logging
import tempfile

from phpremote.errors import ConfigError

# --- Configuration ---
APP_NAME = 'php-remote-interpreter'
APP_DIR = os.path.join(os.path.expanduser("~"), ".local", "share", APP_NAME)
DAEMON_LOG_FILE = os.path.join(APP_DIR, 'daemon.log')
DAEMON_PID_FILE = os.path.join(APP_DIR, 'daemon.pid') # Used by Daemonize when detaching
LOCK_FILE = os.path.join(tempfile.gettempdir(), f'{APP_NAME}.lock')

DEFAULT_HOST = 'localhost'
DEFAULT_PORT = 1337
DEFAULT_BINARY = 'php'
DEFAULT_POLL_INTERVAL = 0.01

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


class InterpreterConfig:
    """Settings shared by the daemon and every client session."""

    def __init__(self, host=DEFAULT_HOST, port=DEFAULT_PORT, debug=False, binary=DEFAULT_BINARY,
                 timeout=None, poll_interval=DEFAULT_POLL_INTERVAL, lock_file=LOCK_FILE):
        self.host = host
        self.port = port
        self.debug = debug
        self.binary = binary
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.lock_file = lock_file

    @property
    def address(self):
        return f"{self.host}:{self.port}"

    def __repr__(self):
        return (f"InterpreterConfig(host={self.host!r}, port={self.port!r}, debug={self.debug!r}, "
                f"binary={self.binary!r}, timeout={self.timeout!r})")


def find_php_binary():
    """Resolves the PHP executable on PATH."""
    binary = shutil.which(DEFAULT_BINARY)
    if binary is None:
        raise ConfigError("Unable to find the PHP binary. Set PHP_INTERPRETER_BINARY.")
    return binary


def _parse_flag(value):
    return value.strip().lower() not in ('', '0', 'false', 'no', 'off')


def _parse_number(name, value, kind):
    try:
        number = kind(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{value}'.")
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got '{value}'.")
    return number


def load_config(environ=None, require_binary=True):
    """
    Builds the configuration from PHP_INTERPRETER_* environment variables.

    When require_binary is set and PHP_INTERPRETER_BINARY is missing, the
    PHP binary must be found on PATH.
    """
    if environ is None:
        environ = os.environ

    host = environ.get('PHP_INTERPRETER_HOST') or DEFAULT_HOST
    port = DEFAULT_PORT
    if environ.get('PHP_INTERPRETER_PORT'):
        port = _parse_number('PHP_INTERPRETER_PORT', environ['PHP_INTERPRETER_PORT'], int)

    debug = _parse_flag(environ.get('PHP_INTERPRETER_DEBUG', ''))

    binary = environ.get('PHP_INTERPRETER_BINARY')
    if not binary:
        binary = find_php_binary() if require_binary else DEFAULT_BINARY

    timeout = None
    if environ.get('PHP_INTERPRETER_TIMEOUT'):
        timeout = _parse_number('PHP_INTERPRETER_TIMEOUT', environ['PHP_INTERPRETER_TIMEOUT'], float)

    poll_interval = DEFAULT_POLL_INTERVAL
    if environ.get('PHP_INTERPRETER_POLL_INTERVAL'):
        poll_interval = _parse_number('PHP_INTERPRETER_POLL_INTERVAL', environ['PHP_INTERPRETER_POLL_INTERVAL'], float)

    lock_file = environ.get('PHP_INTERPRETER_LOCK_FILE') or LOCK_FILE

    return InterpreterConfig(host=host, port=port, debug=debug, binary=binary,
                             timeout=timeout, poll_interval=poll_interval, lock_file=lock_file)


# --- Daemon Logging ---

def setup_logging(debug=False, log_file=DAEMON_LOG_FILE, console=True):
    """Configures the package logger: daemon log file plus stdout."""
    package_logger = logging.getLogger('phpremote')
    package_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    if log_file:
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        package_logger.addHandler(stream_handler)

    return package_logger
