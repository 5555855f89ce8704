# phpremote/process.py

import os
import sys
import time
import shlex
import signal
import logging
import subprocess

from phpremote.config import DEFAULT_BINARY

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536

if sys.platform == "win32":
    KILL_SIGNAL = signal.SIGTERM
else:
    KILL_SIGNAL = signal.SIGKILL


def _read_available(pipe):
    """Reads whatever a non-blocking pipe currently holds, without waiting."""
    if pipe is None or pipe.closed:
        return b''
    chunks = []
    while True:
        try:
            chunk = os.read(pipe.fileno(), READ_CHUNK_SIZE)
        except BlockingIOError:
            break
        if not chunk: # EOF
            break
        chunks.append(chunk)
    return b''.join(chunks)


class InputSink:
    """
    Buffered stdin for a sub process.

    Bytes written before a process is attached are kept until it starts.
    Writes never block: whatever the pipe does not accept yet stays pending
    and is flushed on the next poll tick. Closing delivers EOF once the
    pending bytes are written.
    """

    def __init__(self):
        self._pending = bytearray()
        self._pipe = None
        self.closed = False

    @property
    def pending(self):
        return len(self._pending)

    @property
    def attached(self):
        return self._pipe is not None

    def attach(self, pipe):
        self._pipe = pipe
        os.set_blocking(pipe.fileno(), False)
        self.flush()

    def write(self, data):
        if self.closed:
            logger.debug(f"Dropping {len(data)} byte(s) written to a closed input sink.")
            return
        self._pending += data
        self.flush()

    def flush(self):
        if self._pipe is None or self._pipe.closed:
            return
        while self._pending:
            try:
                written = os.write(self._pipe.fileno(), self._pending)
            except BlockingIOError:
                return
            except (BrokenPipeError, ConnectionResetError):
                logger.debug(f"Sub process stdin is gone, dropping {len(self._pending)} pending byte(s).")
                self._pending.clear()
                break
            del self._pending[:written]
        if self.closed:
            self._close_pipe()

    def close(self):
        self.closed = True
        self.flush()

    def _close_pipe(self):
        try:
            self._pipe.close()
        except OSError as e:
            logger.debug(f"Error closing sub process stdin: {e}")


class ProcessHandle:
    """A started sub process together with its stdin sink and pipes."""

    def __init__(self, popen, sink, command_line, timeout=None):
        self.popen = popen
        self.pid = popen.pid
        self.sink = sink
        self.command_line = command_line
        self.start_time = time.monotonic()
        self.deadline = self.start_time + timeout if timeout is not None else None

        for pipe in (popen.stdout, popen.stderr):
            os.set_blocking(pipe.fileno(), False)

    @property
    def running(self):
        return self.popen.poll() is None

    @property
    def returncode(self):
        return self.popen.returncode

    @property
    def signaled(self):
        return self.popen.returncode is not None and self.popen.returncode < 0

    @property
    def term_signal(self):
        return -self.popen.returncode if self.signaled else None

    @property
    def exit_code(self):
        if self.popen.returncode is None or self.signaled:
            return None
        return self.popen.returncode

    def read_stdout(self):
        return _read_available(self.popen.stdout)

    def read_stderr(self):
        return _read_available(self.popen.stderr)

    def timed_out(self, now=None):
        if self.deadline is None:
            return False
        if now is None:
            now = time.monotonic()
        return now > self.deadline

    def signal(self, signum):
        """Requests signal delivery; termination is observed by polling."""
        if not self.running:
            return False
        try:
            self.popen.send_signal(signum)
        except ProcessLookupError:
            return False
        logger.debug(f"Sent signal {signum} to process {self.pid}.")
        return True

    def kill(self):
        return self.signal(KILL_SIGNAL)

    def close(self):
        """Releases the pipes once the process has been reported."""
        self.sink.close()
        for pipe in (self.popen.stdout, self.popen.stderr):
            if pipe is not None and not pipe.closed:
                pipe.close()

    def __repr__(self):
        return f"ProcessHandle(pid={self.pid}, command_line={self.command_line!r})"


class StartResult:
    """Outcome of a process start: a handle, or the reason it failed."""

    def __init__(self, handle=None, error=None):
        self.handle = handle
        self.error = error

    @property
    def ok(self):
        return self.handle is not None

    @classmethod
    def started(cls, handle):
        return cls(handle=handle)

    @classmethod
    def failed(cls, error):
        return cls(error=error)


def substitute_binary(command_line, binary):
    """Swaps a leading 'php ' for the configured PHP binary."""
    if binary and binary != DEFAULT_BINARY and command_line.startswith(f'{DEFAULT_BINARY} '):
        return shlex.quote(binary) + command_line[len(DEFAULT_BINARY):]
    return command_line


def build_environment(env):
    """Daemon environment overlaid with the session variables."""
    process_env = os.environ.copy()
    for name, value in env.items():
        if value is None or value is False:
            process_env.pop(name, None)
        elif value is True:
            process_env[name] = '1'
        else:
            process_env[name] = str(value)
    return process_env


def start_process(command_line, sink, cwd=None, env=None, binary=DEFAULT_BINARY, timeout=None):
    """
    Starts a sub process through the shell with its stdin fed from sink.

    Never raises for start failures; they are returned as a failed StartResult.
    """
    command_line = substitute_binary(command_line, binary)

    logger.debug(f"Running Command \"{command_line}\"")

    try:
        popen = subprocess.Popen(
            command_line,
            shell=True,
            cwd=cwd,
            env=build_environment(env or {}),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            preexec_fn=os.setsid if sys.platform != "win32" else None # Own process group, away from the daemon's terminal
        )
    except (OSError, ValueError, subprocess.SubprocessError) as e:
        logger.error(f"Error starting process \"{command_line}\": {e}")
        return StartResult.failed(f"{type(e).__name__}: {e}")

    sink.attach(popen.stdin)
    handle = ProcessHandle(popen, sink, command_line, timeout=timeout)
    logger.info(f"Started process \"{command_line}\" with PID: {handle.pid}.")
    return StartResult.started(handle)
