# phpremote/client.py

import socket
import logging

from phpremote.codec import FrameDecoder, encode, encode_single
from phpremote.commands import Cmd

logger = logging.getLogger(__name__)

RECV_CHUNK_SIZE = 4096
TERMINAL_COMMANDS = (Cmd.PROCESS_EXITCODE, Cmd.PROCESS_SIGNAL)


class RemoteInterpreterClient:
    """Blocking client speaking the frame protocol to a running daemon."""

    def __init__(self, host, port, timeout=10.0):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.sock = None
        self._decoder = FrameDecoder()
        self._queue = []

    def connect(self):
        self.sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        return self

    def close(self):
        if self.sock is not None:
            self.sock.close()
            self.sock = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, *exc_info):
        self.close()

    def send(self, kind, payload=None):
        """Sends a single byte command, or a block command when payload is given."""
        raw = encode_single(kind) if payload is None else encode(kind, payload)
        self.sock.sendall(raw)

    def recv(self):
        """Returns the next command from the daemon, None once the connection closes."""
        while not self._queue:
            chunk = self.sock.recv(RECV_CHUNK_SIZE)
            if not chunk:
                return None
            self._queue.extend(self._decoder.feed(chunk))
        return self._queue.pop(0)

    def expect(self, kind):
        """Receives the next command and checks its kind."""
        command = self.recv()
        if command is None or command.kind != kind:
            raise ConnectionError(f"Expected {Cmd(kind).name} from daemon, got {command!r}")
        return command

    def poke(self):
        self.send(Cmd.ARE_YOU_THERE)
        return self.expect(Cmd.PROCESS_STDOUT).payload

    def set_cwd(self, path):
        self.send(Cmd.SET_CWD, path)
        return self.recv()

    def set_env(self, assignment):
        self.send(Cmd.SET_ENV, assignment)
        return self.recv()

    def execute(self, command_line, stdin=None):
        """
        Runs a command line and yields the commands concerning it, ending
        with PROCESS_EXITCODE or PROCESS_SIGNAL.
        """
        self.send(Cmd.PROCESS_EXECUTE, command_line)
        if stdin is not None:
            self.send(Cmd.PROCESS_WRITE, stdin)

        started = False
        while True:
            command = self.recv()
            if command is None:
                raise ConnectionError("Daemon closed the connection before the process finished.")
            yield command
            if command.kind == Cmd.PROCESS_EXECUTE:
                started = True
            elif command.kind in TERMINAL_COMMANDS:
                return
            elif command.kind == Cmd.PROCESS_STDERR and not started:
                # Rejected before start, no exit will follow
                return
