"""
Supervisor for the whisper.cpp HTTP server process.

Starts the server binary, waits for its health endpoint, relays its output
into logging, notices when it dies on its own and shuts it down with a
SIGINT that escalates to SIGKILL after a grace period.

All state (the state flag, the process handle, the generation counter and
the cancellation token) is guarded by a single lock. Readiness polling runs
outside the lock so that stop() can cancel a start() that is still waiting,
and stop() waits for the process to exit outside it as well.
"""

import dataclasses
import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

import psutil

from . import pidfile
from .config import DEFAULT_HOST, DEFAULT_PORT, DEFAULT_THREADS, ServerConfig
from .errors import (
    AlreadyRunningError,
    ConfigurationError,
    SpawnError,
    StartCancelledError,
    WhisperdError,
)
from .health import is_port_in_use, wait_until_ready
from .output import OutputRelay

logger = logging.getLogger(__name__)


class ServerState(Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class ProcessInfo:
    """A spawned server process."""

    process: subprocess.Popen
    generation: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    relays: list[OutputRelay] = field(default_factory=list)


def _send_signal(process: subprocess.Popen, sig: int) -> bool:
    """Signal the process group of process. Returns False if it is already gone."""
    try:
        os.killpg(os.getpgid(process.pid), sig)
        return True
    except ProcessLookupError:
        return False


class WhisperServer:
    """Manages one whisper.cpp server process."""

    def __init__(
        self,
        server_config: ServerConfig,
        on_output: Optional[Callable[[str, str, str], None]] = None,
    ):
        if not os.path.exists(server_config.model_path):
            raise ConfigurationError(f"model file not found: {server_config.model_path}")
        if not os.path.exists(server_config.server_path):
            raise ConfigurationError(f"server binary not found: {server_config.server_path}")

        self.config = dataclasses.replace(
            server_config,
            host=server_config.host or DEFAULT_HOST,
            port=server_config.port or DEFAULT_PORT,
            threads=server_config.threads or DEFAULT_THREADS,
        )
        self._on_output = on_output

        self._lock = threading.Lock()
        self._settled = threading.Condition(self._lock)
        self._state = ServerState.IDLE
        self._info: Optional[ProcessInfo] = None
        self._adopted = False
        self._generation = 0
        self._cancel = threading.Event()

    # Public API

    def start(self):
        """
        Start the server and block until its health endpoint answers.

        Raises:
            AlreadyRunningError: already starting or running
            SpawnError: the binary could not be launched or died while starting
            ReadinessTimeoutError: not ready within config.ready_timeout
            StartCancelledError: stop() was called while waiting
        """
        address = self.get_address()

        with self._lock:
            while self._state == ServerState.STOPPING:
                self._settled.wait()

            if self._state in (ServerState.STARTING, ServerState.RUNNING):
                raise AlreadyRunningError("server already running")

            if is_port_in_use(self.config.host, self.config.port):
                logger.warning(
                    f"Port {self.config.port} already in use, "
                    f"assuming whisper server at {address} is already running"
                )
                self._state = ServerState.RUNNING
                self._adopted = True
                self._info = None
                return

            if self.config.pid_file:
                pidfile.clear_stale(self.config.pid_file)

            info = self._spawn()
            self._generation += 1
            info.generation = self._generation
            self._info = info
            self._adopted = False
            self._state = ServerState.STARTING
            cancel = self._cancel

        logger.info(f"Starting whisper server at {address} (pid {info.process.pid})")

        try:
            wait_until_ready(
                address,
                path=self.config.health_path,
                timeout=self.config.ready_timeout,
                interval=self.config.poll_interval,
                probe_timeout=self.config.probe_timeout,
                cancel=cancel,
                alive=info.process.poll,
            )
        except WhisperdError as e:
            self._abort_start(info)
            if cancel.is_set():
                raise StartCancelledError("start aborted by stop()") from e
            logger.error(f"Whisper server failed to start: {e}")
            raise
        except BaseException as e:
            self._abort_start(info)
            logger.error(f"Whisper server start interrupted: {e!r}")
            raise

        with self._lock:
            if self._generation != info.generation or self._state != ServerState.STARTING:
                raise StartCancelledError("start aborted by stop()")

            self._state = ServerState.RUNNING
            if self.config.pid_file:
                pidfile.write_pid(self.config.pid_file, info.process.pid)

            threading.Thread(
                target=self._monitor_process,
                args=(info,),
                name="whisper-server-monitor",
                daemon=True,
            ).start()

        logger.info("Whisper server started successfully")

    def stop(self):
        """
        Stop the server. A no-op when it is not running.

        The lock is released while waiting for the process to exit, so
        is_running() and status() stay responsive. A concurrent stop() or
        start() waits until this one has committed STOPPED.
        """
        with self._lock:
            if self._state == ServerState.STOPPING:
                while self._state == ServerState.STOPPING:
                    self._settled.wait()
                return
            if self._state not in (ServerState.STARTING, ServerState.RUNNING):
                return

            logger.info("Stopping whisper server...")

            self._cancel.set()
            self._state = ServerState.STOPPING
            self._generation += 1
            info = self._info

        try:
            if info is not None:
                self._terminate(info.process)
        finally:
            with self._lock:
                if info is not None and self.config.pid_file:
                    pidfile.remove_pid(self.config.pid_file)
                self._info = None
                self._adopted = False
                self._state = ServerState.STOPPED
                self._cancel = threading.Event()
                self._settled.notify_all()

        logger.info("Whisper server stopped")

    def is_running(self) -> bool:
        with self._lock:
            return self._state == ServerState.RUNNING

    def get_address(self) -> str:
        host = self.config.host
        if ":" in host and not host.startswith("["):
            host = f"[{host}]"  # IPv6 literal
        return f"http://{host}:{self.config.port}"

    @property
    def state(self) -> ServerState:
        with self._lock:
            return self._state

    @property
    def adopted(self) -> bool:
        """True when start() found a server already listening and took it over."""
        with self._lock:
            return self._adopted

    @property
    def pid(self) -> Optional[int]:
        with self._lock:
            if self._info and self._info.process.poll() is None:
                return self._info.process.pid
            return None

    def status(self) -> dict:
        with self._lock:
            info = self._info
            return {
                "state": self._state.value,
                "running": self._state == ServerState.RUNNING,
                "adopted": self._adopted,
                "address": self.get_address(),
                "pid": info.process.pid if info else None,
                "started_at": info.started_at.isoformat() if info else None,
            }

    def get_metrics(self) -> Optional[dict]:
        """CPU/memory usage of the spawned server, or None if there is none."""
        with self._lock:
            info = self._info if self._state == ServerState.RUNNING else None
        if info is None:
            return None

        try:
            proc = psutil.Process(info.process.pid)
            cpu_percent = proc.cpu_percent(interval=0.1)
            memory_mb = proc.memory_info().rss / 1024 / 1024

            child_count = 0
            try:
                children = proc.children(recursive=True)
                child_count = len(children)
                for child in children:
                    cpu_percent += child.cpu_percent(interval=0.1)
                    memory_mb += child.memory_info().rss / 1024 / 1024
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None

        return {
            "pid": info.process.pid,
            "cpu_percent": round(cpu_percent, 1),
            "memory_mb": round(memory_mb, 1),
            "child_processes": child_count,
            "uptime_seconds": (datetime.now() - info.started_at).total_seconds(),
        }

    # Internals

    def _spawn(self) -> ProcessInfo:
        """Launch the server binary and attach output relays. Caller holds the lock."""
        env = os.environ.copy()
        env.update(self.config.env)

        log_files = {"stdout": None, "stderr": None}
        if self.config.log_dir:
            self.config.log_dir.mkdir(parents=True, exist_ok=True)
            for stream_name in log_files:
                log_files[stream_name] = open(self.config.log_dir / f"{stream_name}.log", "a")

        try:
            process = subprocess.Popen(
                self.config.command(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                start_new_session=True,  # Own process group, shielded from our SIGINT
            )
        except OSError as e:
            for log_file in log_files.values():
                if log_file:
                    log_file.close()
            logger.error(f"Failed to launch {self.config.server_path}: {e}")
            raise SpawnError(f"failed to start server: {e}") from e

        info = ProcessInfo(process=process)
        for stream_name, stream in (("stdout", process.stdout), ("stderr", process.stderr)):
            relay = OutputRelay(
                "whisper-server",
                stream,
                stream_name,
                log_file=log_files[stream_name],
                callback=self._on_output,
            )
            relay.start()
            info.relays.append(relay)

        return info

    def _terminate(self, process: subprocess.Popen) -> bool:
        """SIGINT, wait out the grace period, then SIGKILL. Returns True if killed."""
        if process.poll() is not None:
            return False

        _send_signal(process, signal.SIGINT)
        try:
            process.wait(timeout=self.config.stop_timeout)
            return False
        except subprocess.TimeoutExpired:
            pass

        logger.warning(
            f"Graceful shutdown timeout after {self.config.stop_timeout:g}s, forcing kill"
        )
        _send_signal(process, signal.SIGKILL)
        try:
            process.wait(timeout=self.config.kill_timeout)
        except subprocess.TimeoutExpired:
            logger.error(f"Whisper server (pid {process.pid}) still not reaped after SIGKILL")
        return True

    def _abort_start(self, info: ProcessInfo):
        """Kill a process that never became ready, unless stop() already did."""
        with self._lock:
            if self._generation != info.generation or self._state != ServerState.STARTING:
                return

            if info.process.poll() is None:
                _send_signal(info.process, signal.SIGKILL)
                try:
                    info.process.wait(timeout=self.config.kill_timeout)
                except subprocess.TimeoutExpired:
                    logger.error(f"Whisper server (pid {info.process.pid}) still not reaped after SIGKILL")

            self._info = None
            self._state = ServerState.STOPPED

    def _monitor_process(self, info: ProcessInfo):
        """Wait for the process to exit and reconcile state if nobody stopped it."""
        try:
            returncode = info.process.wait()

            with self._lock:
                unexpected = (
                    self._generation == info.generation
                    and self._state == ServerState.RUNNING
                )
                if unexpected:
                    self._state = ServerState.STOPPED
                    self._info = None
                    if self.config.pid_file:
                        pidfile.remove_pid(self.config.pid_file)

            if unexpected:
                logger.error(f"Whisper server process exited unexpectedly (exit code {returncode})")
            else:
                logger.debug(f"Whisper server process exited with code {returncode} after stop")

        except Exception as e:
            logger.error(f"Error in whisper server monitor: {e}")
