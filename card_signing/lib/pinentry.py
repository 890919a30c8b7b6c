"""Non-interactive pinentry speaking the Assuan protocol.

gpg-agent runs a pinentry program and talks to it over stdin/stdout. This
implementation answers every passphrase request with the run's passphrase,
taken from the environment the agent was started with, so the automated
PKCS12 import needs no operator interaction.
"""

import os
import shlex
import stat
import sys
from collections.abc import Iterable, Iterator
from pathlib import Path

PASSPHRASE_ENV = "CARD_SIGNING_PASSPHRASE"
FLAVOR = "card-signing"
VERSION = "1.0"

# Directory containing the card_signing package
PACKAGE_ROOT = Path(__file__).resolve().parents[2]

# GPG_ERR_CANCELED in the pinentry error source
ERR_CANCELED = "ERR 83886179 Operation cancelled <Pinentry>"


def percent_escape(value: str) -> str:
    """Escape a value for an Assuan data line."""
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class PinentryServer:
    """Stateless responder for pinentry commands."""

    def __init__(self, passphrase: str | None) -> None:
        self.passphrase = passphrase

    def greeting(self) -> list[str]:
        return ["OK Pleased to meet you"]

    def handle(self, line: str) -> tuple[list[str], bool]:
        """Answer one command line.

        Returns:
            Tuple of (response lines, whether to close the connection)
        """
        command, _, argument = line.strip().partition(" ")
        command = command.upper()

        if command == "BYE":
            return ["OK closing connection"], True
        if command == "GETPIN":
            if not self.passphrase:
                return [ERR_CANCELED], False
            return [f"D {percent_escape(self.passphrase)}", "OK"], False
        if command == "GETINFO":
            info = {
                "pid": str(os.getpid()),
                "version": VERSION,
                "flavor": FLAVOR,
            }.get(argument.strip())
            if info is None:
                return ["OK"], False
            return [f"D {info}", "OK"], False
        # SETDESC, SETPROMPT, OPTION, CONFIRM, MESSAGE and friends
        return ["OK"], False

    def serve(self, lines: Iterable[str]) -> Iterator[str]:
        """Yield responses for a stream of command lines until BYE."""
        yield from self.greeting()
        for line in lines:
            if not line.strip() or line.startswith("#"):
                continue
            responses, close = self.handle(line)
            yield from responses
            if close:
                return


def write_launcher(path: Path) -> Path:
    """Write an executable launcher gpg-agent can use as its pinentry.

    The launcher runs this package's pinentry with the current interpreter.
    gpg-agent starts it from / with a daemon environment, so the directory
    holding the card_signing package is put on PYTHONPATH explicitly.
    """
    package_root = shlex.quote(str(PACKAGE_ROOT))
    path.write_text(
        "#!/bin/sh\n"
        f"PYTHONPATH={package_root}${{PYTHONPATH:+:$PYTHONPATH}}\n"
        "export PYTHONPATH\n"
        f"exec {shlex.quote(sys.executable)} -m card_signing.scripts.pinentry_standalone \"$@\"\n"
    )
    path.chmod(stat.S_IRWXU)
    return path
