"""
Exceptions raised by the whisper server supervisor.

Construction and start/stop failures are raised to the caller. Failures in
background threads (output relays, crash monitor) are only logged.
"""


class WhisperdError(Exception):
    """Base class for supervisor errors."""


class ConfigurationError(WhisperdError):
    """Server binary or model file is missing or the config is invalid."""


class PathNotFoundError(ConfigurationError):
    """None of the candidate paths exist."""

    def __init__(self, what: str, candidates: list[str]):
        self.what = what
        self.candidates = candidates
        super().__init__(f"{what} not found in default locations: {', '.join(candidates)}")


class AlreadyRunningError(WhisperdError):
    """start() was called while the server is starting or running."""


class SpawnError(WhisperdError):
    """The server process could not be launched or died while starting."""


class ReadinessTimeoutError(WhisperdError):
    """The health endpoint never answered 200 within the deadline."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"server did not become ready within {timeout:g}s")


class StartCancelledError(WhisperdError):
    """A stop() aborted an in-flight start()."""
