"""
Shared fixtures for whisperd tests.

This module provides:
- A fake whisper-server executable (see fake_whisper_server.py)
- Free TCP ports and a dummy model file
- ServerConfig factories with short timeouts
- A threaded HTTP listener for probing tests
"""

import os
import socket
import stat
import sys
import tempfile
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

# Must be set before whisperd.config is imported
os.environ.setdefault("WHISPERD_DATA_DIR", tempfile.mkdtemp(prefix="whisperd-test-"))
os.environ["WHISPER_AUTOSTART"] = "false"

from whisperd.config import ServerConfig  # noqa: E402
from whisperd.process import WhisperServer  # noqa: E402

FAKE_SERVER = Path(__file__).parent / "fake_whisper_server.py"


def wait_for(predicate, timeout: float = 5.0, interval: float = 0.05) -> bool:
    """Poll predicate until it is truthy or timeout elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def fake_binary(tmp_path) -> Path:
    """Executable wrapper that runs the fake server with this interpreter."""
    path = tmp_path / "bin" / "whisper-server"
    path.parent.mkdir()
    path.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_SERVER}" "$@"\n')
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def model_file(tmp_path) -> Path:
    path = tmp_path / "models" / "ggml-base.bin"
    path.parent.mkdir()
    path.write_bytes(b"ggml")
    return path


@pytest.fixture
def make_config(fake_binary, model_file, free_port, tmp_path):
    """Factory for fast ServerConfigs pointing at the fake server."""

    def factory(**overrides) -> ServerConfig:
        values = {
            "server_path": str(fake_binary),
            "model_path": str(model_file),
            "host": "127.0.0.1",
            "port": free_port,
            "threads": 2,
            "ready_timeout": 10.0,
            "poll_interval": 0.1,
            "probe_timeout": 0.5,
            "stop_timeout": 2.0,
            "kill_timeout": 2.0,
            "pid_file": tmp_path / "whisper-server.pid",
            "log_dir": tmp_path / "logs",
        }
        values.update(overrides)
        return ServerConfig(**values)

    return factory


@pytest.fixture
def output_lines():
    """Collects (stream, level, line) tuples from the output relays."""
    return []


@pytest.fixture
def make_server(make_config, output_lines):
    """Factory for WhisperServers that are stopped on teardown."""
    servers = []

    def factory(**overrides) -> WhisperServer:
        server = WhisperServer(
            make_config(**overrides),
            on_output=lambda stream, level, line: output_lines.append((stream, level, line)),
        )
        servers.append(server)
        return server

    yield factory

    for server in servers:
        server.stop()


class StatusListener:
    """Threaded HTTP listener answering /health with a scripted status sequence."""

    def __init__(self, statuses=None):
        self.statuses = list(statuses or [])
        self.requests = 0
        listener = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                listener.requests += 1
                status = listener.statuses.pop(0) if listener.statuses else 200
                self.send_response(status)
                self.end_headers()

            def log_message(self, format, *args):
                pass

        self.httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.port = self.httpd.server_address[1]
        self.address = f"http://127.0.0.1:{self.port}"
        self._thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)

    def start(self):
        self._thread.start()
        return self

    def close(self):
        self.httpd.shutdown()
        self.httpd.server_close()


@pytest.fixture
def status_listener():
    """Factory for StatusListeners that are closed on teardown."""
    listeners = []

    def factory(statuses=None) -> StatusListener:
        listener = StatusListener(statuses).start()
        listeners.append(listener)
        return listener

    yield factory

    for listener in listeners:
        listener.close()
