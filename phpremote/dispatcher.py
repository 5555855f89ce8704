# phpremote/dispatcher.py

import os
import re
import json
import logging

from phpremote.commands import Cmd, LIVENESS_REPLY, command_name

logger = logging.getLogger(__name__)

_DOUBLE_QUOTED = re.compile(r'"[^"\\]*(?:\\.[^"\\]*)*"', re.S)
_SINGLE_QUOTED = re.compile(r"'[^'\\]*(?:\\.[^'\\]*)*'", re.S)
_JSON_SCALARS = (str, int, float, bool, type(None))


class MalformedEnvError(ValueError):
    pass


def _unquote(value):
    if _DOUBLE_QUOTED.fullmatch(value):
        return value[1:-1].replace('\\"', '"')
    if _SINGLE_QUOTED.fullmatch(value):
        return value[1:-1].replace("\\'", "'")
    return value


def parse_env_payload(text, env):
    """
    Applies a SET_ENV payload to env and returns the resulting mapping.

    A payload starting with '{' is a json object replacing everything,
    anything else a single name=value pair merged into the existing
    variables. A value of null removes the name. The given env is never
    modified; MalformedEnvError is raised when the payload can't be parsed.
    """
    if text.startswith('{'):
        try:
            variables = json.loads(text)
        except ValueError as e:
            raise MalformedEnvError(f"invalid json: {e}")
        if not isinstance(variables, dict):
            raise MalformedEnvError("expected a json object")
        for name, value in variables.items():
            if not name or not isinstance(value, _JSON_SCALARS):
                raise MalformedEnvError(f"invalid variable '{name}'")
        return variables

    name, sep, value = text.partition('=')
    name = name.strip()
    value = value.strip()
    if not sep or not name:
        raise MalformedEnvError("expected name=value")

    merged = dict(env)
    if value.lower() == 'null':
        merged.pop(name, None)
    else:
        merged[name] = _unquote(value)
    return merged


def dump_env(env):
    # json_encode escapes '/'; slashes only occur inside strings here
    return json.dumps(env, ensure_ascii=False, separators=(',', ':')).replace('/', '\\/')


class CommandDispatcher:
    """Applies decoded client commands to a session."""

    def __init__(self, session, supervisor):
        self.session = session
        self.supervisor = supervisor

    def handle(self, command):
        kind = command.kind
        data = command.payload if command.payload is not None else b''

        logger.debug(f"Handling {command_name(kind)} ({len(data)} byte(s)).")

        if kind == Cmd.PROCESS_EXECUTE:
            self._execute(data)
        elif kind == Cmd.PROCESS_WRITE:
            self.session.input_sink().write(data)
        elif kind == Cmd.PROCESS_KILL:
            self.supervisor.kill_foreground()
        elif kind == Cmd.PROCESS_INTERUPT:
            self.supervisor.interrupt_foreground()
        elif kind == Cmd.PROCESS_SIGNAL:
            self._signal(data)
        elif kind == Cmd.ABORT_OUTPUT:
            pid = self.supervisor.background_foreground()
            if pid is not None:
                self.session.send(Cmd.ABORT_OUTPUT, str(pid))
        elif kind == Cmd.ARE_YOU_THERE:
            self.session.send(Cmd.PROCESS_STDOUT, LIVENESS_REPLY)
        elif kind == Cmd.SET_CWD:
            self._set_cwd(data)
        elif kind == Cmd.SET_ENV:
            self._set_env(data)
        elif kind == Cmd.GET_ENV:
            self.session.send(Cmd.PROCESS_STDOUT, dump_env(self.session.env))
        else:
            logger.warning(f"Invalid Command ({command_name(kind)}) from {self.session.peer}.")

    def _execute(self, data):
        if self.session.foreground is not None:
            self.session.send(Cmd.PROCESS_STDERR, 'A process is already running!')
            return

        command_line = data.decode('utf-8', 'surrogateescape').strip()
        result = self.supervisor.start(command_line)
        if not result.ok:
            self.session.send(Cmd.PROCESS_STDERR, result.error)
            return
        self.session.send(Cmd.PROCESS_EXECUTE, str(result.handle.pid))

    def _signal(self, data):
        if self.session.foreground is None:
            return
        try:
            signum = int(data.strip())
        except ValueError:
            self.session.send(Cmd.PROCESS_STDERR, f'Invalid signal "{data.decode("utf-8", "replace")}"!')
            return
        try:
            self.supervisor.signal_foreground(signum)
        except (OSError, ValueError, OverflowError) as e:
            self.session.send(Cmd.PROCESS_STDERR, f'Unable to send signal {signum}: {e}')

    def _set_cwd(self, data):
        path = os.fsdecode(data)
        if not path or not os.path.isdir(path):
            self.session.send(Cmd.PROCESS_STDERR, f'The directory "{path}" doesn\'t exist!'.encode('utf-8', 'surrogateescape'))
            return
        self.session.cwd = path
        logger.debug(f"Working directory of {self.session.peer} set to {path}.")
        self.session.send(Cmd.SET_CWD, data)

    def _set_env(self, data):
        try:
            text = data.decode('utf-8')
            self.session.env = parse_env_payload(text, self.session.env)
        except (UnicodeDecodeError, MalformedEnvError) as e:
            logger.debug(f"Rejected env payload from {self.session.peer}: {e}")
            self.session.send(Cmd.PROCESS_STDERR, f'Malformed env variable "{data.decode("utf-8", "replace")}"!')
            return
        self.session.send(Cmd.SET_ENV, dump_env(self.session.env))
