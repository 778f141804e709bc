"""
Readiness checks for the managed whisper server.

The server is ready once GET <address>/health answers 200. Until then every
non-200 response and every connection error just means "not yet".
"""

import logging
import socket
import threading
import time
from typing import Callable, Optional

import httpx

from .errors import ReadinessTimeoutError, SpawnError, StartCancelledError

logger = logging.getLogger(__name__)


def is_port_in_use(host: str, port: int, timeout: float = 1.0) -> bool:
    """Check whether something already accepts TCP connections on host:port.

    host may be a hostname, an IPv4 address or an IPv6 literal with or
    without brackets.
    """
    try:
        with socket.create_connection((host.strip("[]"), port), timeout=timeout):
            return True
    except OSError:
        return False


def check_health(address: str, path: str = "/health", timeout: float = 2.0) -> bool:
    """Issue a single health request. Returns True on a 200."""
    try:
        response = httpx.get(f"{address}{path}", timeout=timeout)
        return response.status_code == 200
    except httpx.HTTPError:
        return False


def wait_until_ready(
    address: str,
    path: str = "/health",
    timeout: float = 30.0,
    interval: float = 0.5,
    probe_timeout: float = 2.0,
    cancel: Optional[threading.Event] = None,
    alive: Optional[Callable[[], Optional[int]]] = None,
):
    """
    Poll the health endpoint until it answers 200.

    Args:
        address: Base URL, e.g. http://127.0.0.1:8080
        path: Health endpoint path
        timeout: Overall deadline in seconds
        interval: Delay between attempts
        probe_timeout: Per-request timeout
        cancel: Event that aborts polling when set
        alive: Returns the exit code of the watched process, or None while it runs

    Raises:
        ReadinessTimeoutError: deadline elapsed without a 200
        StartCancelledError: cancel was set
        SpawnError: the watched process exited while polling
    """
    url = f"{address}{path}"
    cancel = cancel or threading.Event()
    deadline = time.monotonic() + timeout
    attempts = 0

    with httpx.Client(timeout=probe_timeout) as client:
        while True:
            if cancel.is_set():
                raise StartCancelledError(f"readiness polling of {url} cancelled")

            if alive is not None:
                exit_code = alive()
                if exit_code is not None:
                    raise SpawnError(f"server exited with code {exit_code} before becoming ready")

            attempts += 1
            request_timeout = min(probe_timeout, max(deadline - time.monotonic(), 0.05))
            try:
                response = client.get(url, timeout=request_timeout)
                if response.status_code == 200:
                    logger.debug(f"{url} ready after {attempts} attempt(s)")
                    return
                logger.debug(f"{url} answered {response.status_code}, not ready yet")
            except httpx.HTTPError as e:
                logger.debug(f"{url} not reachable yet: {e.__class__.__name__}")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ReadinessTimeoutError(timeout)

            if cancel.wait(min(interval, remaining)):
                raise StartCancelledError(f"readiness polling of {url} cancelled")

            if time.monotonic() >= deadline:
                raise ReadinessTimeoutError(timeout)
