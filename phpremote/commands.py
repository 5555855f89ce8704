# phpremote/commands.py

from enum import IntEnum


class Cmd(IntEnum):
    """Single byte command codes of the wire protocol."""

    # Block command. Working directory for sub processes, kept between executes.
    SET_CWD = 0xF0
    # Block command. Either a json object (replaces all) or a single name=value pair.
    SET_ENV = 0xF1
    # Returns the configured environment as a json object.
    GET_ENV = 0xF2
    # SIGKILL to the sub process.
    PROCESS_KILL = 0xF3
    # SIGINT to the sub process.
    PROCESS_INTERUPT = 0xF4
    # Block command holding the signal number as decimal text.
    PROCESS_SIGNAL = 0xF5
    # Moves the current sub process into the background, its output is discarded.
    ABORT_OUTPUT = 0xF6
    # Pokes the server, which answers with PROCESS_STDOUT.
    ARE_YOU_THERE = 0xF7
    # Block command holding the command line to run.
    PROCESS_EXECUTE = 0xF8
    # Block command, bytes for the stdin of the sub process.
    PROCESS_WRITE = 0xF9
    PROCESS_STDOUT = 0xFA
    PROCESS_STDERR = 0xFB
    PROCESS_EXITCODE = 0xFC
    # ESCAPE, BLOCK_BEGIN, <cmd>, <data with ESCAPE doubled>, ESCAPE, BLOCK_END
    BLOCK_BEGIN = 0xFD
    BLOCK_END = 0xFE
    ESCAPE = 0xFF


COMMAND_NAMES = {cmd.value: f"CMD_{cmd.name}" for cmd in Cmd}

LIVENESS_REPLY = b"Poke me again! I dare you!!!\n"


def is_command(byte):
    return byte in COMMAND_NAMES


def is_escape(byte):
    return byte == Cmd.ESCAPE


def command_name(code):
    return COMMAND_NAMES.get(code, str(code))
