"""Default install locations for the whisper.cpp server binary and models."""

import os
from pathlib import Path
from typing import Iterable

from .errors import PathNotFoundError


def resolve_first(candidates: Iterable[str], what: str = "path") -> str:
    """Return the first candidate that exists on disk."""
    candidates = [str(c) for c in candidates]
    for path in candidates:
        if os.path.exists(path):
            return path
    raise PathNotFoundError(what, candidates)


def server_path_candidates() -> list[str]:
    return [
        "lib/whisper/build/bin/whisper-server",
        "lib/whisper/build/bin/server",
        str(Path.home() / ".local" / "bin" / "whisper-server"),
        "/usr/local/bin/whisper-server",
    ]


def model_path_candidates(model_name: str = "base") -> list[str]:
    filename = f"ggml-{model_name}.bin"
    return [
        f"models/{filename}",
        f"lib/whisper/models/{filename}",
        str(Path.home() / ".whisper" / filename),
    ]


def default_server_path() -> str:
    """Locate the whisper-server binary."""
    return resolve_first(server_path_candidates(), "whisper server binary")


def default_model_path(model_name: str = "") -> str:
    """Locate a ggml model file by name (defaults to "base")."""
    model_name = model_name or "base"
    return resolve_first(model_path_candidates(model_name), f"whisper model '{model_name}'")
