# phpremote/lockfile.py

import os
import sys
import signal
import logging

import psutil

from phpremote.errors import LockFileError

logger = logging.getLogger(__name__)


class InstanceLock:
    """
    Lock file naming the PID of the running daemon.

    A newer daemon takes over by deleting the file; the running one notices
    the file is gone and shuts down, freeing the port.
    """

    def __init__(self, path):
        self.path = path

    def exists(self):
        return os.path.exists(self.path)

    def read_pid(self):
        try:
            with open(self.path, 'r') as f:
                return int(f.read().strip())
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning(f"Lock file '{self.path}' does not contain a PID.")
            return None

    def acquire(self):
        os.makedirs(os.path.dirname(self.path) or '.', exist_ok=True)
        with open(self.path, 'w') as f:
            f.write(str(os.getpid()))
        logger.debug(f"Lock file '{self.path}' written for PID {os.getpid()}.")

    def owned(self):
        return self.read_pid() == os.getpid()

    def owner_running(self):
        pid = self.read_pid()
        return pid is not None and psutil.pid_exists(pid)

    def release(self, force=False):
        """Removes the lock file; unless forced, only when it names this process."""
        if not force and not self.owned():
            return False
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return False
        return True

    def signal_owner(self, signum=signal.SIGTERM, raise_errors=False):
        """Delivers a stop signal to the PID recorded in the lock file."""
        pid = self.read_pid()
        if pid is None:
            if raise_errors:
                raise LockFileError("Can not send signal on a non running process.")
            return False

        try:
            process = psutil.Process(pid)
            if sys.platform == "win32":
                # No POSIX signals, terminate the whole tree instead
                for child in process.children(recursive=True):
                    child.kill()
                process.kill()
            else:
                process.send_signal(signum)
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.warning(f"Unable to signal PID {pid}: {e}")
            if raise_errors:
                raise LockFileError(f"Error while sending signal `{signum}` to {pid}.") from e
            return False

        logger.info(f"Sent signal {signum} to PID {pid}.")
        return True
