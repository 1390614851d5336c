"""Tests for command line and environment configuration."""

import dataclasses
import logging
from pathlib import Path

import pytest

from liveserve.utils.utils import (
    ServerConfig,
    configure_logging,
    parse_args,
    parse_boolean_env,
    print_startup_info,
    split_paths,
)


def test_defaults(tmp_path):
    config = parse_args([], environ={}, cwd=tmp_path)

    assert config.directory == tmp_path.resolve()
    assert config.port == 8080
    assert config.host == "0.0.0.0"
    assert config.live is False
    assert config.watch_paths == ()
    assert config.live_path == "_live"
    assert config.live_url == "/_live"
    assert config.command is None
    assert config.verbose is False
    assert config.log_level == "INFO"


def test_directory_and_port_options(tmp_path):
    config = parse_args(["-d", "public", "-p", "9000"], environ={}, cwd=tmp_path)

    assert config.directory == (tmp_path / "public").resolve()
    assert config.port == 9000


def test_port_environment_wins_over_option(tmp_path):
    config = parse_args(["-p", "9000"], environ={"PORT": "7000"}, cwd=tmp_path)

    assert config.port == 7000


@pytest.mark.parametrize("port", ["abc", "0", "70000"])
def test_invalid_port_is_usage_error(tmp_path, port):
    with pytest.raises(SystemExit) as exc_info:
        parse_args(["-p", port], environ={}, cwd=tmp_path)

    assert exc_info.value.code == 2


def test_watch_paths_are_quote_aware_and_enable_live(tmp_path):
    config = parse_args(["-w", "src 'my notes' \"assets/img\"", "-w", "extra"], environ={}, cwd=tmp_path)

    assert config.watch_paths == (
        (tmp_path / "src").resolve(),
        (tmp_path / "my notes").resolve(),
        (tmp_path / "assets" / "img").resolve(),
        (tmp_path / "extra").resolve(),
    )
    assert config.live is True


def test_live_without_watch(tmp_path):
    config = parse_args(["--live"], environ={}, cwd=tmp_path)

    assert config.live is True
    assert config.watch_paths == ()


def test_live_from_environment(tmp_path):
    assert parse_args([], environ={"LIVESERVE_LIVE": "yes"}, cwd=tmp_path).live is True


def test_live_path_is_normalized(tmp_path):
    config = parse_args(["-l", "/reload/"], environ={}, cwd=tmp_path)

    assert config.live_path == "reload"
    assert config.live_url == "/reload"


def test_empty_live_path_is_usage_error(tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        parse_args(["-l", "/"], environ={}, cwd=tmp_path)

    assert exc_info.value.code == 2


def test_command_is_validated(tmp_path):
    config = parse_args(["-c", 'make "all targets"'], environ={}, cwd=tmp_path)
    assert config.command == 'make "all targets"'

    with pytest.raises(SystemExit) as exc_info:
        parse_args(["-c", 'make "all'], environ={}, cwd=tmp_path)
    assert exc_info.value.code == 2


def test_blank_command_is_dropped(tmp_path):
    assert parse_args(["-c", "  "], environ={}, cwd=tmp_path).command is None


def test_help_exits_zero(tmp_path, capsys):
    with pytest.raises(SystemExit) as exc_info:
        parse_args(["--help"], environ={}, cwd=tmp_path)

    assert exc_info.value.code == 0
    assert "live reload" in capsys.readouterr().out


def test_verbose_and_log_level(tmp_path):
    assert parse_args(["-v"], environ={"LOG_LEVEL": "warning"}, cwd=tmp_path).log_level == "DEBUG"
    assert parse_args([], environ={"LOG_LEVEL": "warning"}, cwd=tmp_path).log_level == "WARNING"


def test_host_option_and_environment(tmp_path):
    assert parse_args([], environ={"HOST": "127.0.0.1"}, cwd=tmp_path).host == "127.0.0.1"
    assert parse_args(["--host", "::1"], environ={"HOST": "127.0.0.1"}, cwd=tmp_path).host == "::1"


def test_config_is_immutable(tmp_path):
    config = ServerConfig(directory=tmp_path)

    with pytest.raises(dataclasses.FrozenInstanceError):
        config.port = 1  # type: ignore[misc]


def test_parse_boolean_env():
    for value in ["true", "1", "yes", "on", "TrUe"]:
        assert parse_boolean_env("FLAG", environ={"FLAG": value}) is True
    for value in ["false", "0", "no", "off", ""]:
        assert parse_boolean_env("FLAG", environ={"FLAG": value}) is False

    assert parse_boolean_env("MISSING", default="true", environ={}) is True


def test_split_paths():
    assert split_paths("a 'b c' d") == ["a", "b c", "d"]


def test_configure_logging_unknown_level_falls_back(monkeypatch):
    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    configure_logging("NOPE")

    assert calls[0]["level"] == logging.INFO


def test_print_startup_info(tmp_path, capsys):
    config = ServerConfig(
        directory=tmp_path,
        live=True,
        watch_paths=(Path("/src"),),
        command="make",
    )

    print_startup_info(config)

    out = capsys.readouterr().out
    assert str(tmp_path) in out
    assert "/_live" in out
    assert "make" in out
