# phpremote/codec.py
"""
Frame codec for the escape/block protocol.

A frame is either a single byte command (ESCAPE, code) or a block command
(ESCAPE, BLOCK_BEGIN, code, data..., ESCAPE, BLOCK_END) where every ESCAPE
byte inside the data is doubled. Bytes outside of a frame are noise.
"""

import logging
from enum import Enum
from typing import NamedTuple, Optional

from phpremote.commands import Cmd, is_command, is_escape
from phpremote.debug import describe_bytes

logger = logging.getLogger(__name__)

_ESCAPE = bytes([Cmd.ESCAPE])


class ParserState(Enum):
    AWAIT_ESCAPE = 0
    AWAIT_COMMAND = 1
    AWAIT_BLOCK_COMMAND = 2
    AWAIT_BLOCK_DATA = 3
    AWAIT_BLOCK_ESCAPE_OR_END = 4


class Action(Enum):
    """What the decoder does with the byte after a transition."""
    SKIP = 0          # noise outside of a frame
    NONE = 1          # consumed, nothing to record
    BEGIN_BLOCK = 2   # byte is the block's command code
    APPEND = 3        # byte is payload data
    EMIT_SINGLE = 4   # byte completes a single byte command
    EMIT_BLOCK = 5    # byte completes the pending block command
    RESYNC = 6        # malformed sequence, partial frame dropped


class Command(NamedTuple):
    """A decoded command. Single byte commands carry no payload."""
    kind: int
    payload: Optional[bytes] = None


def step(state, byte):
    """
    Pure transition function: (state, byte) -> (new state, action).
    """
    if state is ParserState.AWAIT_ESCAPE:
        if is_escape(byte):
            return ParserState.AWAIT_COMMAND, Action.NONE
        return ParserState.AWAIT_ESCAPE, Action.SKIP

    if state is ParserState.AWAIT_COMMAND:
        if not is_command(byte):
            return ParserState.AWAIT_ESCAPE, Action.RESYNC
        if byte == Cmd.BLOCK_BEGIN:
            return ParserState.AWAIT_BLOCK_COMMAND, Action.NONE
        return ParserState.AWAIT_ESCAPE, Action.EMIT_SINGLE

    if state is ParserState.AWAIT_BLOCK_COMMAND:
        if is_command(byte):
            return ParserState.AWAIT_BLOCK_DATA, Action.BEGIN_BLOCK
        return ParserState.AWAIT_ESCAPE, Action.RESYNC

    if state is ParserState.AWAIT_BLOCK_DATA:
        if is_escape(byte):
            return ParserState.AWAIT_BLOCK_ESCAPE_OR_END, Action.NONE
        return ParserState.AWAIT_BLOCK_DATA, Action.APPEND

    if state is ParserState.AWAIT_BLOCK_ESCAPE_OR_END:
        if is_escape(byte):
            return ParserState.AWAIT_BLOCK_DATA, Action.APPEND
        if byte == Cmd.BLOCK_END:
            return ParserState.AWAIT_ESCAPE, Action.EMIT_BLOCK
        return ParserState.AWAIT_ESCAPE, Action.RESYNC

    raise ValueError(f"Unknown parser state: {state}")


class FrameDecoder:
    """Turns a byte stream into commands, one byte at a time."""

    def __init__(self):
        self.state = ParserState.AWAIT_ESCAPE
        self.kind = None
        self.data = bytearray()
        self.skipped = bytearray()

    def decode(self, byte):
        """Feeds a single byte, returns a Command when one completes."""
        self.state, action = step(self.state, byte)

        if action is Action.SKIP:
            self.skipped.append(byte)
            return None

        if self.skipped:
            logger.debug(f"[skipped] {describe_bytes(bytes(self.skipped))}")
            self.skipped.clear()

        if action is Action.BEGIN_BLOCK:
            self.kind = byte
            self.data.clear()
        elif action is Action.APPEND:
            self.data.append(byte)
        elif action is Action.EMIT_SINGLE:
            return Command(byte)
        elif action is Action.EMIT_BLOCK:
            command = Command(self.kind, bytes(self.data))
            self._reset()
            return command
        elif action is Action.RESYNC:
            self._reset()
        return None

    def feed(self, data):
        """Feeds a chunk of bytes, returns the commands completed by it."""
        commands = []
        for byte in data:
            command = self.decode(byte)
            if command is not None:
                commands.append(command)
        return commands

    def _reset(self):
        self.kind = None
        self.data.clear()


def encode(kind, payload=b''):
    """Wraps a payload into a block command, doubling any ESCAPE byte."""
    if isinstance(payload, str):
        payload = payload.encode('utf-8')
    return b''.join([
        _ESCAPE,
        bytes([Cmd.BLOCK_BEGIN, kind]),
        bytes(payload).replace(_ESCAPE, _ESCAPE + _ESCAPE),
        _ESCAPE,
        bytes([Cmd.BLOCK_END]),
    ])


def encode_single(kind):
    return bytes([Cmd.ESCAPE, kind])
