# phpremote/supervisor.py

import signal
import asyncio
import logging

from phpremote.commands import Cmd
from phpremote.process import start_process

logger = logging.getLogger(__name__)


class ProcessSupervisor:
    """
    Starts and polls the processes of one session.

    The foreground process has its output streamed to the client and its
    termination reported; background processes are only reaped. Polling runs
    as a task on the event loop which ends as soon as no process is left.
    """

    def __init__(self, session, config):
        self.session = session
        self.config = config
        self._task = None

    @property
    def polling(self):
        return self._task is not None and not self._task.done()

    def start(self, command_line):
        session = self.session
        sink = session.input_sink()
        result = start_process(
            command_line,
            sink,
            cwd=session.cwd,
            env=session.env,
            binary=self.config.binary,
            timeout=self.config.timeout,
        )
        if result.ok:
            session.foreground = result.handle
            self.schedule()
        return result

    def schedule(self):
        if not self.polling:
            self._task = asyncio.get_running_loop().create_task(self._poll())

    def cancel(self):
        if self.polling:
            self._task.cancel()
        self._task = None

    async def _poll(self):
        while self.tick():
            await asyncio.sleep(self.config.poll_interval)

    def tick(self):
        """One non-blocking pass over all processes. Returns True while work remains."""
        session = self.session
        process = session.foreground

        if process is not None:
            running = process.running # Before draining, so no output is lost after exit
            process.sink.flush()

            stdout = process.read_stdout()
            if stdout:
                session.send(Cmd.PROCESS_STDOUT, stdout)

            stderr = process.read_stderr()
            if stderr:
                session.send(Cmd.PROCESS_STDERR, stderr)

            if running and process.timed_out():
                logger.warning(f"Process {process.pid} exceeded the {self.config.timeout}s timeout. Killing it.")
                process.kill()

            if not running:
                self._report(process)

        for pid, handle in list(session.background.items()):
            running = handle.running
            handle.sink.flush()
            # Discarded, a full pipe would stall the process
            handle.read_stdout()
            handle.read_stderr()
            if not running:
                logger.info(f"Background process {pid} exited with {handle.returncode}.")
                handle.close()
                del session.background[pid]

        return session.foreground is not None or bool(session.background)

    def _report(self, process):
        session = self.session
        if process.signaled:
            logger.info(f"Process {process.pid} terminated by signal {process.term_signal}.")
            session.send(Cmd.PROCESS_SIGNAL, str(process.term_signal))
        else:
            logger.info(f"Process {process.pid} exited with code {process.exit_code}.")
            session.send(Cmd.PROCESS_EXITCODE, str(process.exit_code))

        process.close()
        if session.stdin_sink is process.sink:
            session.stdin_sink = None
        session.foreground = None

    def signal_foreground(self, signum):
        process = self.session.foreground
        if process is None:
            return False
        return process.signal(signum)

    def kill_foreground(self):
        process = self.session.foreground
        if process is None:
            return False
        return process.kill()

    def interrupt_foreground(self):
        return self.signal_foreground(signal.SIGINT)

    def background_foreground(self):
        """Detaches the foreground process from the client. Returns its pid."""
        session = self.session
        process = session.foreground
        if process is None:
            return None

        session.background[process.pid] = process
        process.sink.close()
        session.stdin_sink = None
        session.foreground = None
        logger.info(f"Process {process.pid} moved to the background.")
        return process.pid

    def detach(self):
        """
        Client went away: the foreground process is killed and reaped
        silently along with the background ones.
        """
        process = self.session.foreground
        if process is not None:
            logger.info(f"Killing process {process.pid} of a disconnected client.")
            process.kill()
            self.background_foreground()

        if self.session.stdin_sink is not None:
            self.session.stdin_sink.close()
            self.session.stdin_sink = None

        if self.session.background:
            self.schedule()
