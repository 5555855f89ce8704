# phpremote/daemon_cli.py

import os
import sys
import time
import click
import psutil
from daemonize import Daemonize

from phpremote.client import RemoteInterpreterClient
from phpremote.commands import Cmd
from phpremote.config import APP_DIR, APP_NAME, DAEMON_LOG_FILE, DAEMON_PID_FILE, load_config, setup_logging
from phpremote.daemon import ERROR_FAILURE, ERROR_RUNNING, ERROR_SUCCESS, RemoteInterpreterDaemon, stop_running_instance
from phpremote.errors import ConfigError
from phpremote.lockfile import InstanceLock

STOP_WAIT_SECONDS = 10


def _load_config_or_exit(require_binary=True):
    try:
        return load_config(require_binary=require_binary)
    except ConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(ERROR_FAILURE)


@click.group()
def daemon_cli():
    """Runs PHP processes on behalf of remote clients."""
    pass


@daemon_cli.command()
@click.option('--detach', is_flag=True, help='Daemonize and keep running in the background.')
def start(detach):
    """Starts the interpreter daemon, taking over from a running instance."""
    config = _load_config_or_exit()

    try:
        os.makedirs(APP_DIR, exist_ok=True)
    except OSError as e:
        click.echo(click.style(f"CRITICAL ERROR: Could not create application directory '{APP_DIR}': {e}", fg="red", bold=True), err=True)
        sys.exit(ERROR_FAILURE)

    daemon = RemoteInterpreterDaemon(config)

    if not detach:
        setup_logging(config.debug)
        sys.exit(daemon.run())

    def action():
        setup_logging(config.debug, console=False)
        sys.exit(daemon.run())

    click.echo(click.style(f"Starting {APP_NAME} on {config.address} in the background.", fg="cyan"))
    click.echo(click.style(f"Daemon log: {DAEMON_LOG_FILE}", fg="blue"))
    Daemonize(app=APP_NAME, pid=DAEMON_PID_FILE, action=action, chdir=os.getcwd()).start()


@daemon_cli.command()
def stop():
    """Stops a running interpreter daemon."""
    config = _load_config_or_exit(require_binary=False)
    lock = InstanceLock(config.lock_file)
    pid = lock.read_pid()

    if pid is None:
        click.echo(click.style("Daemon is not running (no lock file).", fg="yellow"))
        sys.exit(ERROR_SUCCESS)

    setup_logging(config.debug, console=False)
    click.echo(click.style(f"Stopping daemon (PID: {pid})...", fg="cyan"))
    stop_running_instance(config)

    for _ in range(STOP_WAIT_SECONDS):
        if not psutil.pid_exists(pid):
            click.echo(click.style("Daemon stopped successfully.", fg="green"))
            sys.exit(ERROR_SUCCESS)
        time.sleep(1)

    click.echo(click.style(f"Error: Daemon (PID {pid}) did not stop after {STOP_WAIT_SECONDS} seconds.", fg="red"), err=True)
    sys.exit(ERROR_FAILURE)


@daemon_cli.command()
def status():
    """Checks whether the daemon is running and answering."""
    config = _load_config_or_exit(require_binary=False)
    lock = InstanceLock(config.lock_file)
    pid = lock.read_pid()

    if pid is None:
        click.echo(click.style("Daemon is NOT RUNNING (lock file not found).", fg="red"))
        sys.exit(ERROR_FAILURE)
    if not psutil.pid_exists(pid):
        click.echo(click.style(f"Daemon is NOT RUNNING (lock file names PID {pid}, but process does not exist).", fg="yellow"))
        sys.exit(ERROR_FAILURE)

    click.echo(click.style(f"Daemon is RUNNING with PID: {pid}", fg="green"))
    try:
        with RemoteInterpreterClient(config.host, config.port, timeout=5) as client:
            reply = client.poke()
        click.echo(click.style(f"{config.address} says: {reply.decode('utf-8', 'replace').strip()}", fg="blue"))
    except (OSError, ConnectionError) as e:
        click.echo(click.style(f"Daemon is not answering on {config.address}: {e}", fg="yellow"), err=True)
        sys.exit(ERROR_RUNNING)


@daemon_cli.command(name='exec')
@click.argument('command_line')
@click.option('--cwd', type=click.Path(exists=True, file_okay=False, dir_okay=True), help='Working directory for the process.')
@click.option('--env', multiple=True, help='Environment variables (NAME=VALUE). Can be specified multiple times.')
@click.option('--stdin', 'stdin_text', help='Text written to the process stdin.')
def exec_command(command_line, cwd, env, stdin_text):
    """Runs COMMAND_LINE on the daemon and streams its output."""
    config = _load_config_or_exit(require_binary=False)

    try:
        with RemoteInterpreterClient(config.host, config.port, timeout=None) as client:
            if cwd:
                _expect_echo(client.set_cwd(os.path.abspath(cwd)), Cmd.SET_CWD)
            for assignment in env:
                _expect_echo(client.set_env(assignment), Cmd.SET_ENV)

            stdin = stdin_text.encode('utf-8') if stdin_text is not None else None
            exit_code = ERROR_FAILURE
            for command in client.execute(command_line, stdin=stdin):
                if command.kind == Cmd.PROCESS_STDOUT:
                    click.echo(command.payload, nl=False)
                elif command.kind == Cmd.PROCESS_STDERR:
                    click.echo(command.payload, nl=False, err=True)
                elif command.kind == Cmd.PROCESS_EXITCODE:
                    exit_code = int(command.payload)
                elif command.kind == Cmd.PROCESS_SIGNAL:
                    exit_code = 128 + int(command.payload)
    except (OSError, ConnectionError) as e:
        click.echo(click.style(f"Error communicating with daemon on {config.address}: {e}", fg="red"), err=True)
        sys.exit(ERROR_FAILURE)

    sys.exit(exit_code)


def _expect_echo(command, kind):
    if command is None or command.kind != kind:
        message = command.payload.decode('utf-8', 'replace') if command is not None else 'connection closed'
        click.echo(click.style(f"Error: {message}", fg="red"), err=True)
        sys.exit(ERROR_FAILURE)


if __name__ == "__main__":
    daemon_cli()
