"""
Configuration for whisperd.

Loads settings from environment variables (and a .env file) with sensible
defaults. Supervisor state such as the PID file and logs lives in
~/.whisperd/ unless WHISPERD_DATA_DIR says otherwise.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080
DEFAULT_THREADS = 4


@dataclass
class Config:
    """whisperd process settings."""

    # Paths
    data_dir: Path = Path(os.environ.get("WHISPERD_DATA_DIR", str(Path.home() / ".whisperd")))
    logs_dir: Path = None
    pid_file: Path = None
    supervisor_log: Path = None

    # Logging
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(10 * 1024 * 1024)))  # 10MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "5"))

    # Control API
    host: str = os.environ.get("WHISPERD_HOST", "0.0.0.0")
    port: int = int(os.environ.get("WHISPERD_PORT", "9950"))

    # Managed whisper server
    whisper_host: str = os.environ.get("WHISPER_HOST", DEFAULT_HOST)
    whisper_port: int = int(os.environ.get("WHISPER_PORT", str(DEFAULT_PORT)))
    whisper_threads: int = int(os.environ.get("WHISPER_THREADS", str(DEFAULT_THREADS)))
    whisper_server_path: str = os.environ.get("WHISPER_SERVER_PATH", "")
    whisper_model_path: str = os.environ.get("WHISPER_MODEL_PATH", "")
    whisper_model: str = os.environ.get("WHISPER_MODEL", "base")

    # Lifecycle
    ready_timeout: float = float(os.environ.get("WHISPER_READY_TIMEOUT", "30"))
    stop_timeout: float = float(os.environ.get("WHISPER_STOP_TIMEOUT", "5"))
    autostart: bool = os.environ.get("WHISPER_AUTOSTART", "true").lower() == "true"

    def __post_init__(self):
        """Initialize derived paths and create directories."""
        self.data_dir = Path(self.data_dir)
        self.logs_dir = self.data_dir / "logs"
        self.pid_file = self.data_dir / "whisper-server.pid"
        self.supervisor_log = self.data_dir / "whisperd.log"

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.logs_dir.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class ServerConfig:
    """Immutable settings for one managed whisper server."""

    server_path: str
    model_path: str
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    threads: int = DEFAULT_THREADS

    health_path: str = "/health"
    ready_timeout: float = 30.0
    poll_interval: float = 0.5
    probe_timeout: float = 2.0
    stop_timeout: float = 5.0
    kill_timeout: float = 5.0

    pid_file: Optional[Path] = None
    log_dir: Optional[Path] = None
    env: dict[str, str] = field(default_factory=dict)

    def command(self) -> list[str]:
        """Command line for the whisper.cpp server binary."""
        return [
            self.server_path,
            "-m", self.model_path,
            "--host", self.host,
            "--port", str(self.port),
            "-t", str(self.threads),
        ]

    @classmethod
    def from_settings(cls, settings: Config) -> "ServerConfig":
        """
        Build a ServerConfig from process settings.

        Explicit paths always win; missing ones are looked up in the default
        install locations.
        """
        from .paths import default_model_path, default_server_path

        server_path = settings.whisper_server_path or default_server_path()
        model_path = settings.whisper_model_path or default_model_path(settings.whisper_model)

        return cls(
            server_path=server_path,
            model_path=model_path,
            host=settings.whisper_host,
            port=settings.whisper_port,
            threads=settings.whisper_threads,
            ready_timeout=settings.ready_timeout,
            stop_timeout=settings.stop_timeout,
            pid_file=settings.pid_file,
            log_dir=settings.logs_dir,
        )


config = Config()
