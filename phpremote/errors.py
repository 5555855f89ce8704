# phpremote/errors.py


class PhpRemoteError(Exception):
    """Base class for errors raised by the interpreter daemon."""


class ConfigError(PhpRemoteError):
    """Invalid configuration, e.g. a malformed environment variable."""


class LockFileError(PhpRemoteError):
    """The lock file could not be read or its owner could not be signalled."""


class ListenError(PhpRemoteError):
    """The listening socket could not be bound. Carries the daemon exit code."""

    def __init__(self, message, exit_code):
        super().__init__(message)
        self.exit_code = exit_code
