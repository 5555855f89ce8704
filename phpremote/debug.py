# phpremote/debug.py

import re

from phpremote.commands import COMMAND_NAMES

_SPECIAL = {
    0x07: '\\a',
    0x1B: '\\e',
    0x0C: '\\f',
    0x09: '\\t',
    0x0A: '\\n',
    0x0D: '\\r',
}

_UNPRINTABLE = re.compile(rb'[\x00-\x1F\x7F-\xFF]')


def describe_bytes(data):
    """
    Renders raw protocol bytes for the debug log.

    Command bytes are shown by name, e.g. [CMD_ESCAPE], common control
    characters as their escape sequence and anything else unprintable as \\xNN.
    """
    if isinstance(data, str):
        data = data.encode('utf-8', 'surrogateescape')

    def replace(match):
        code = match.group(0)[0]
        if code in COMMAND_NAMES:
            return f"[{COMMAND_NAMES[code]}]".encode('ascii')
        if code in _SPECIAL:
            return _SPECIAL[code].encode('ascii')
        return f"\\x{code:02x}".encode('ascii')

    return _UNPRINTABLE.sub(replace, data).decode('ascii', 'backslashreplace')
