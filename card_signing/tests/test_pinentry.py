"""Tests for the non-interactive pinentry."""

import io
import os
import shlex
import stat
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from card_signing.lib.pinentry import (
    ERR_CANCELED,
    PACKAGE_ROOT,
    PASSPHRASE_ENV,
    PinentryServer,
    percent_escape,
    write_launcher,
)
from card_signing.scripts.pinentry_standalone import main


class TestPinentryServer:
    """Tests for the Assuan responder."""

    def test_greeting(self) -> None:
        assert PinentryServer("pw").greeting() == ["OK Pleased to meet you"]

    def test_getpin_returns_passphrase(self) -> None:
        """GETPIN answers with a data line and OK."""
        responses, close = PinentryServer("s3cret").handle("GETPIN\n")

        assert responses == ["D s3cret", "OK"]
        assert close is False

    def test_getpin_escapes_passphrase(self) -> None:
        """Percent signs and line breaks are percent-escaped."""
        responses, _ = PinentryServer("100%\nsure").handle("GETPIN")

        assert responses[0] == "D 100%25%0Asure"

    def test_getpin_without_passphrase_cancels(self) -> None:
        """With no passphrase the request is cancelled instead of hanging."""
        responses, _ = PinentryServer(None).handle("GETPIN")

        assert responses == [ERR_CANCELED]

    @pytest.mark.parametrize(
        "command",
        [
            "SETDESC Please enter the passphrase",
            "SETPROMPT Passphrase:",
            "OPTION ttyname=/dev/pts/1",
            "SETKEYINFO n/ABC",
            "CONFIRM",
            "MESSAGE",
        ],
    )
    def test_other_commands_acknowledged(self, command: str) -> None:
        responses, close = PinentryServer("pw").handle(command)

        assert responses == ["OK"]
        assert close is False

    def test_getinfo(self) -> None:
        responses, _ = PinentryServer("pw").handle("GETINFO pid")

        assert responses == [f"D {os.getpid()}", "OK"]

    def test_bye_closes(self) -> None:
        responses, close = PinentryServer("pw").handle("BYE")

        assert responses == ["OK closing connection"]
        assert close is True

    def test_serve_stops_at_bye(self) -> None:
        """Commands after BYE are not answered."""
        lines = ["OPTION grab\n", "# comment\n", "GETPIN\n", "BYE\n", "GETPIN\n"]

        responses = list(PinentryServer("pw").serve(lines))

        assert responses == [
            "OK Pleased to meet you",
            "OK",
            "D pw",
            "OK",
            "OK closing connection",
        ]


def test_percent_escape_plain() -> None:
    assert percent_escape("plain") == "plain"


def test_write_launcher(tmp_path: Path) -> None:
    """The launcher is an owner-only executable running the pinentry module."""
    launcher = write_launcher(tmp_path / "pinentry-standalone")

    content = launcher.read_text()
    assert content.startswith("#!/bin/sh\n")
    assert sys.executable in content
    assert "card_signing.scripts.pinentry_standalone" in content
    assert stat.S_IMODE(launcher.stat().st_mode) == 0o700


def test_launcher_puts_package_on_path(tmp_path: Path) -> None:
    """The launcher works from any directory, installed or not."""
    launcher = write_launcher(tmp_path / "pinentry-standalone")

    lines = launcher.read_text().splitlines()
    assert lines[1].startswith(f"PYTHONPATH={shlex.quote(str(PACKAGE_ROOT))}")
    assert (PACKAGE_ROOT / "card_signing" / "scripts" / "pinentry_standalone.py").is_file()
    assert lines[2] == "export PYTHONPATH"
    assert lines[3].startswith("exec ")


def test_main_serves_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    """The entry point reads the passphrase from the environment."""
    monkeypatch.setenv(PASSPHRASE_ENV, "s3cret")
    stdout = io.StringIO()

    with (
        patch("sys.stdin", io.StringIO("GETPIN\nBYE\n")),
        patch("sys.stdout", stdout),
    ):
        exit_code = main()

    assert exit_code == 0
    assert stdout.getvalue().splitlines() == [
        "OK Pleased to meet you",
        "D s3cret",
        "OK",
        "OK closing connection",
    ]
