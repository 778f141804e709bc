"""Tests for default path resolution."""

import dataclasses

import pytest

from whisperd.config import ServerConfig, config
from whisperd.errors import ConfigurationError, PathNotFoundError
from whisperd.paths import default_model_path, default_server_path, resolve_first


@pytest.fixture
def isolated(tmp_path, monkeypatch):
    """Empty working directory and home."""
    home = tmp_path / "home"
    home.mkdir()
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(work)
    return work, home


class TestResolveFirst:
    def test_first_existing_wins(self, tmp_path):
        second = tmp_path / "second"
        third = tmp_path / "third"
        second.touch()
        third.touch()

        assert resolve_first([tmp_path / "first", second, third]) == str(second)

    def test_nothing_found(self, tmp_path):
        with pytest.raises(PathNotFoundError) as exc_info:
            resolve_first([tmp_path / "a", tmp_path / "b"], "thing")

        assert exc_info.value.candidates == [str(tmp_path / "a"), str(tmp_path / "b")]
        assert "thing not found" in str(exc_info.value)
        assert isinstance(exc_info.value, ConfigurationError)


class TestDefaults:
    def test_project_local_model(self, isolated):
        work, _ = isolated
        (work / "models").mkdir()
        (work / "models" / "ggml-tiny.bin").touch()

        assert default_model_path("tiny") == "models/ggml-tiny.bin"

    def test_model_in_home(self, isolated):
        _, home = isolated
        (home / ".whisper").mkdir()
        (home / ".whisper" / "ggml-base.bin").touch()

        assert default_model_path() == str(home / ".whisper" / "ggml-base.bin")

    def test_missing_model(self, isolated):
        with pytest.raises(PathNotFoundError, match="whisper model 'large' not found"):
            default_model_path("large")

    def test_build_dir_preferred_over_home(self, isolated):
        work, home = isolated
        (work / "lib/whisper/build/bin").mkdir(parents=True)
        (work / "lib/whisper/build/bin/whisper-server").touch()
        (home / ".local/bin").mkdir(parents=True)
        (home / ".local/bin/whisper-server").touch()

        assert default_server_path() == "lib/whisper/build/bin/whisper-server"

    def test_server_in_home(self, isolated):
        _, home = isolated
        (home / ".local/bin").mkdir(parents=True)
        (home / ".local/bin/whisper-server").touch()

        assert default_server_path() == str(home / ".local/bin/whisper-server")


class TestFromSettings:
    def test_explicit_paths_win(self, isolated, fake_binary, model_file):
        work, _ = isolated
        (work / "models").mkdir()
        (work / "models" / "ggml-base.bin").touch()

        settings = dataclasses.replace(
            config,
            whisper_server_path=str(fake_binary),
            whisper_model_path=str(model_file),
            whisper_port=9123,
            whisper_threads=8,
        )
        server_config = ServerConfig.from_settings(settings)

        assert server_config.server_path == str(fake_binary)
        assert server_config.model_path == str(model_file)
        assert server_config.port == 9123
        assert server_config.threads == 8
        assert server_config.pid_file == settings.pid_file

    def test_falls_back_to_defaults(self, isolated, fake_binary):
        work, _ = isolated
        (work / "models").mkdir()
        (work / "models" / "ggml-small.bin").touch()

        settings = dataclasses.replace(
            config,
            whisper_server_path=str(fake_binary),
            whisper_model_path="",
            whisper_model="small",
        )
        assert ServerConfig.from_settings(settings).model_path == "models/ggml-small.bin"
