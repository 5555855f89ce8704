import sys
import asyncio

import pytest

from phpremote.codec import FrameDecoder
from phpremote.commands import Cmd
from phpremote.config import InterpreterConfig
from phpremote.session import Session

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="relies on POSIX shell utilities and signals")


class FrameRecorder:
    """Transport stand-in decoding everything a session writes."""

    def __init__(self):
        self.decoder = FrameDecoder()
        self.commands = []

    def write(self, raw):
        self.commands.extend(self.decoder.feed(raw))

    def kinds(self):
        return [command.kind for command in self.commands]

    def payloads(self, kind):
        return [command.payload for command in self.commands if command.kind == kind]

    def joined(self, kind):
        return b''.join(self.payloads(kind))

    def finished(self):
        return any(kind in (Cmd.PROCESS_EXITCODE, Cmd.PROCESS_SIGNAL) for kind in self.kinds())


def make_session(**options):
    options.setdefault('poll_interval', 0.005)
    config = InterpreterConfig(**options)
    recorder = FrameRecorder()
    return Session(config, recorder.write, peer='test'), recorder


async def wait_for(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)
