# phpremote/session.py

import logging

from phpremote.codec import FrameDecoder, encode
from phpremote.commands import command_name
from phpremote.debug import describe_bytes
from phpremote.dispatcher import CommandDispatcher
from phpremote.process import InputSink
from phpremote.supervisor import ProcessSupervisor

logger = logging.getLogger(__name__)


class Session:
    """
    State of one client connection.

    Everything here is owned by the connection's handler and its poll task;
    nothing is shared with other sessions.
    """

    def __init__(self, config, write, peer='unknown'):
        self.config = config
        self.peer = peer
        self.cwd = None
        self.env = {}
        self.foreground = None
        self.background = {} # pid -> ProcessHandle
        self.stdin_sink = None
        self.closed = False

        self._write = write
        self.decoder = FrameDecoder()
        self.supervisor = ProcessSupervisor(self, config)
        self.dispatcher = CommandDispatcher(self, self.supervisor)

    def input_sink(self):
        """The stdin sink of the foreground process, created on first use."""
        if self.stdin_sink is None:
            self.stdin_sink = InputSink()
        return self.stdin_sink

    def feed(self, data):
        """Consumes a chunk of bytes received from the client."""
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"[{self.peer} received] {describe_bytes(data)}")

        for command in self.decoder.feed(data):
            try:
                self.dispatcher.handle(command)
            except Exception:
                logger.exception(f"Error handling {command_name(command.kind)} from {self.peer}")

    def send(self, kind, payload=b''):
        """Writes a block command back to the client."""
        if self.closed:
            logger.debug(f"Dropping {command_name(kind)} for closed session {self.peer}.")
            return
        raw = encode(kind, payload)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"[{self.peer} sending] {describe_bytes(raw)}")
        self._write(raw)

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.supervisor.detach()

    def __repr__(self):
        return f"Session(peer={self.peer!r}, foreground={self.foreground!r}, background={list(self.background)!r})"
