# phpremote/daemon.py

import signal
import asyncio
import logging

from phpremote.errors import ListenError
from phpremote.lockfile import InstanceLock
from phpremote.session import Session

logger = logging.getLogger(__name__)

ERROR_SUCCESS = 0
ERROR_RUNNING = 1
ERROR_FAILURE = 2

BIND_RETRIES = 10
BIND_RETRY_DELAY = 1.0 # seconds
LOCK_CHECK_INTERVAL = 1.0 # seconds
READ_CHUNK_SIZE = 8192


def _format_peer(peername):
    if isinstance(peername, tuple) and len(peername) >= 2:
        return f"{peername[0]}:{peername[1]}"
    return str(peername)


class RemoteInterpreterDaemon:
    def __init__(self, config):
        self.config = config
        self.lock = InstanceLock(config.lock_file)
        self.server = None
        self.sessions = {}
        self._stopping = None
        self._watch_task = None

    @property
    def sockets(self):
        return self.server.sockets if self.server else []

    async def listen(self):
        """
        Binds the listening socket.

        When a lock file exists another instance is (or was) running. Removing
        the file makes that instance shut down, so binding is retried while it
        releases the port.
        """
        retries = 1
        if self.lock.exists():
            logger.info(f"Lock file '{self.lock.path}' found. Asking the previous instance to shut down.")
            self.lock.release(force=True)
            retries = BIND_RETRIES

        for attempt in range(1, retries + 1):
            try:
                self.server = await asyncio.start_server(self._handle_client, self.config.host, self.config.port)
                break
            except OSError as e:
                if attempt >= retries:
                    exit_code = ERROR_RUNNING if retries > 1 else ERROR_FAILURE
                    raise ListenError(f"Unable to listen on {self.config.address}: {e}", exit_code) from e
                logger.warning(f"Address {self.config.address} in use, retrying ({attempt}/{retries})...")
                await asyncio.sleep(BIND_RETRY_DELAY)

        self.lock.acquire()
        addresses = ", ".join(_format_peer(sock.getsockname()) for sock in self.server.sockets)
        logger.info(f"Listening on {addresses} {'(debug enabled) ' if self.config.debug else ''}...")

    async def serve(self):
        self._stopping = asyncio.Event()
        self._install_signal_handlers()
        await self.listen()
        self._watch_task = asyncio.get_running_loop().create_task(self._watch_lock())
        try:
            await self._stopping.wait()
        finally:
            await self._shutdown()

    def close(self):
        """Requests shutdown; safe to call from a signal handler."""
        if self._stopping is not None:
            self._stopping.set()

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(signum, self.close)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no add_signal_handler
                signal.signal(signum, lambda *_: loop.call_soon_threadsafe(self.close))

    async def _watch_lock(self):
        """Shuts down once another instance has taken over the lock file."""
        while True:
            await asyncio.sleep(LOCK_CHECK_INTERVAL)
            if not self.lock.owned():
                logger.info("Lock file removed or taken over by another instance.")
                self.close()
                return

    async def _shutdown(self):
        logger.info("Shutting down ...")
        if self._watch_task is not None:
            self._watch_task.cancel()
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()
        for session in list(self.sessions.values()):
            session.close()
            session.supervisor.cancel()
        self.lock.release()

    async def _handle_client(self, reader, writer):
        peer = _format_peer(writer.get_extra_info('peername'))
        logger.info(f"Accepted new client: {peer}")

        session = Session(self.config, writer.write, peer=peer)
        self.sessions[peer] = session
        try:
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                session.feed(chunk)
                await writer.drain()
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.info(f"Connection to {peer} lost: {e}")
        finally:
            session.close()
            self.sessions.pop(peer, None)
            writer.close()
            logger.info(f"Client disconnected: {peer}")

    def run(self):
        """Runs the daemon until stopped. Returns the process exit code."""
        try:
            asyncio.run(self.serve())
        except ListenError as e:
            logger.error(str(e))
            return e.exit_code
        return ERROR_SUCCESS


def stop_running_instance(config):
    """
    Stops a daemon started elsewhere: SIGTERM to the PID in the lock file,
    then removes the file.
    """
    lock = InstanceLock(config.lock_file)
    if not lock.exists():
        logger.info("No lock file found, nothing to stop.")
        return False

    signalled = lock.signal_owner(signal.SIGTERM)
    lock.release(force=True)
    return signalled