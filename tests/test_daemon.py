import os
import socket
import asyncio

import pytest

from conftest import posix_only
from phpremote import daemon as daemon_module
from phpremote.client import RemoteInterpreterClient
from phpremote.codec import FrameDecoder, encode, encode_single
from phpremote.commands import Cmd, LIVENESS_REPLY
from phpremote.config import InterpreterConfig
from phpremote.daemon import ERROR_FAILURE, RemoteInterpreterDaemon, stop_running_instance
from phpremote.lockfile import InstanceLock


def make_config(tmp_path, **options):
    options.setdefault('host', '127.0.0.1')
    options.setdefault('port', 0)
    options.setdefault('poll_interval', 0.005)
    return InterpreterConfig(lock_file=str(tmp_path / 'daemon.lock'), **options)


async def start_daemon(config):
    daemon = RemoteInterpreterDaemon(config)
    task = asyncio.get_running_loop().create_task(daemon.serve())
    for _ in range(500):
        if daemon.server is not None and daemon.lock.owned():
            break
        await asyncio.sleep(0.01)
    port = daemon.sockets[0].getsockname()[1]
    return daemon, task, port


async def read_until(reader, decoder, predicate, timeout=5.0):
    commands = []
    while not predicate(commands):
        chunk = await asyncio.wait_for(reader.read(4096), timeout)
        if not chunk:
            break
        commands.extend(decoder.feed(chunk))
    return commands


def test_daemon_answers_pokes_and_writes_lock(tmp_path):
    async def scenario():
        daemon, task, port = await start_daemon(make_config(tmp_path))
        assert InstanceLock(daemon.config.lock_file).read_pid() == os.getpid()

        reader, writer = await asyncio.open_connection('127.0.0.1', port)
        writer.write(b'noise' + encode_single(Cmd.ARE_YOU_THERE))
        commands = await read_until(reader, FrameDecoder(), lambda c: len(c) >= 1)
        writer.close()

        daemon.close()
        await task
        return commands

    commands = asyncio.run(scenario())
    assert commands == [(Cmd.PROCESS_STDOUT, LIVENESS_REPLY)]
    assert not os.path.exists(str(tmp_path / 'daemon.lock'))


@posix_only
def test_sessions_are_isolated(tmp_path):
    async def scenario():
        daemon, task, port = await start_daemon(make_config(tmp_path))

        first_reader, first = await asyncio.open_connection('127.0.0.1', port)
        second_reader, second = await asyncio.open_connection('127.0.0.1', port)

        first.write(encode(Cmd.SET_ENV, 'ONLY_FIRST=1'))
        await read_until(first_reader, FrameDecoder(), lambda c: len(c) >= 1)

        second.write(encode_single(Cmd.GET_ENV))
        second_commands = await read_until(second_reader, FrameDecoder(), lambda c: len(c) >= 1)

        first.write(encode(Cmd.PROCESS_EXECUTE, 'printenv ONLY_FIRST'))
        decoder = FrameDecoder()
        first_commands = await read_until(
            first_reader, decoder, lambda c: any(cmd.kind == Cmd.PROCESS_EXITCODE for cmd in c))

        first.close()
        second.close()
        daemon.close()
        await task
        return first_commands, second_commands

    first_commands, second_commands = asyncio.run(scenario())
    assert second_commands == [(Cmd.PROCESS_STDOUT, b'{}')]
    assert first_commands[0].kind == Cmd.PROCESS_EXECUTE
    assert b''.join(c.payload for c in first_commands if c.kind == Cmd.PROCESS_STDOUT) == b'1\n'
    assert first_commands[-1] == (Cmd.PROCESS_EXITCODE, b'0')


@posix_only
def test_blocking_client_executes(tmp_path):
    def client_run(port):
        with RemoteInterpreterClient('127.0.0.1', port, timeout=5) as client:
            assert client.poke() == LIVENESS_REPLY
            return list(client.execute('head -n 1', stdin=b'from client\n'))

    async def scenario():
        daemon, task, port = await start_daemon(make_config(tmp_path))
        commands = await asyncio.get_running_loop().run_in_executor(None, client_run, port)
        daemon.close()
        await task
        return commands

    commands = asyncio.run(scenario())
    assert commands[0].kind == Cmd.PROCESS_EXECUTE
    assert b''.join(c.payload for c in commands if c.kind == Cmd.PROCESS_STDOUT) == b'from client\n'
    assert commands[-1] == (Cmd.PROCESS_EXITCODE, b'0')


def test_takes_over_from_stale_lock_file(tmp_path):
    config = make_config(tmp_path)
    with open(config.lock_file, 'w') as f:
        f.write('999999')

    async def scenario():
        daemon, task, port = await start_daemon(config)
        owned = daemon.lock.owned()
        daemon.close()
        await task
        return owned

    assert asyncio.run(scenario())


def test_shuts_down_when_lock_file_removed(tmp_path, monkeypatch):
    monkeypatch.setattr(daemon_module, 'LOCK_CHECK_INTERVAL', 0.02)

    async def scenario():
        daemon, task, port = await start_daemon(make_config(tmp_path))
        os.remove(daemon.config.lock_file)
        await asyncio.wait_for(task, 5)

    asyncio.run(scenario())


def test_run_returns_failure_when_port_is_taken(tmp_path):
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(('127.0.0.1', 0))
    blocker.listen(1)
    try:
        port = blocker.getsockname()[1]
        daemon = RemoteInterpreterDaemon(make_config(tmp_path, port=port))
        assert daemon.run() == ERROR_FAILURE
    finally:
        blocker.close()


def test_stop_running_instance_without_lock_file(tmp_path):
    assert stop_running_instance(make_config(tmp_path)) is False


@pytest.mark.skipif(os.name == 'nt', reason="POSIX signals")
def test_stop_running_instance_signals_lock_owner(tmp_path, monkeypatch):
    config = make_config(tmp_path)
    with open(config.lock_file, 'w') as f:
        f.write('4242')

    sent = []
    monkeypatch.setattr(InstanceLock, 'signal_owner', lambda self, signum, raise_errors=False: sent.append((self.read_pid(), signum)) or True)

    assert stop_running_instance(config) is True
    assert sent and sent[0][0] == 4242
    assert not os.path.exists(config.lock_file)
