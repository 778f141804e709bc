"""
Output relay for the managed server's stdout/stderr.

Each stream is drained line by line on its own daemon thread for the whole
life of the process, so the child never blocks on a full pipe. Lines go to
the whisperd.output logger, an optional log file and an optional callback.
"""

import logging
import threading
from datetime import datetime
from typing import IO, Callable, Optional

logger = logging.getLogger("whisperd.output")

# whisper.cpp writes progress to stderr too, so plain lines stay at debug
LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.DEBUG,
}


def detect_level(line: str, default: str = "info") -> str:
    """Guess a severity from the text of an output line."""
    lower = line.lower()
    if "error" in lower or "exception" in lower or "failed" in lower:
        return "error"
    if "warning" in lower or "warn" in lower:
        return "warning"
    return default


class OutputRelay:
    """Forwards one output stream of a child process."""

    def __init__(
        self,
        name: str,
        stream: IO[bytes],
        stream_name: str,
        log_file: Optional[IO[str]] = None,
        callback: Optional[Callable[[str, str, str], None]] = None,
    ):
        self.name = name
        self.stream = stream
        self.stream_name = stream_name
        self.log_file = log_file
        self.callback = callback
        self.lines = 0
        self._thread: Optional[threading.Thread] = None

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(
            target=self.run,
            name=f"{self.name}-{self.stream_name}",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None):
        if self._thread:
            self._thread.join(timeout)

    def run(self):
        """Read until EOF. Never raises."""
        prefix = f"[{self.name}:{self.stream_name}]"
        try:
            for raw in iter(self.stream.readline, b""):
                try:
                    line = raw.decode("utf-8", errors="replace").rstrip()
                    if not line:
                        continue

                    self.lines += 1
                    level = detect_level(line)
                    logger.log(LEVELS[level], f"{prefix} {line}", extra={"stream": self.stream_name})

                    if self.log_file:
                        self.log_file.write(f"[{datetime.now().isoformat()}] {prefix} {line}\n")
                        self.log_file.flush()

                    if self.callback:
                        self.callback(self.stream_name, level, line)

                except Exception as e:
                    logger.error(f"Error processing output line from {prefix}: {e}")

        except Exception as e:
            logger.error(f"Error reading output from {prefix}: {e}")
        finally:
            if self.log_file:
                try:
                    self.log_file.close()
                except OSError:
                    pass
            logger.debug(f"{prefix} stream closed after {self.lines} line(s)")
