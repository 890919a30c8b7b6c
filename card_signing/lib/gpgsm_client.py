"""Client for the GnuPG S/MIME tools acting as the hardware signing authority."""

import os
import re
import subprocess
import sys
from pathlib import Path

from .config import ToolPaths
from .errors import GpgsmCommandError
from .pinentry import PASSPHRASE_ENV

KEYGRIP_PATTERN = re.compile(r"^\s*keygrip:\s*([0-9A-Fa-f]{40})\s*$", re.MULTILINE)


class GpgsmClient:
    """Drives gpgsm and its agent inside an isolated home directory.

    Every command runs with GNUPGHOME pointed at the run's workspace, so
    the host's own GnuPG state is never read or modified.
    """

    def __init__(self, homedir: Path, tools: ToolPaths | None = None) -> None:
        """Initialize client.

        Args:
            homedir: Directory used as GNUPGHOME for every command
            tools: Locations of gpgsm, gpg-agent and gpgconf
        """
        self.homedir = homedir
        self.tools = tools or ToolPaths()

    def _environment(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        env = os.environ.copy()
        env.pop(PASSPHRASE_ENV, None)
        env["GNUPGHOME"] = str(self.homedir)
        # Curses pinentry needs the terminal to prompt for the card PIN
        tty = _terminal_name()
        if tty is not None:
            env.setdefault("GPG_TTY", tty)
        if extra:
            env.update(extra)
        return env

    def _run(
        self,
        args: list[str],
        extra_env: dict[str, str] | None = None,
    ) -> bytes:
        """Run a command and return its stdout.

        Raises:
            GpgsmCommandError: If the command cannot start or exits non-zero
        """
        command = " ".join(args[:2])
        try:
            result = subprocess.run(
                args,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                env=self._environment(extra_env),
                check=False,
            )
        except OSError as e:
            raise GpgsmCommandError(command, None, str(e)) from e

        if result.returncode != 0:
            raise GpgsmCommandError(
                command, result.returncode, result.stderr.decode("utf-8", errors="replace")
            )
        return result.stdout

    def start_agent(self, pinentry_program: Path, passphrase: str) -> None:
        """Start gpg-agent with the non-interactive pinentry.

        The passphrase is only placed in the agent's environment, from
        where the pinentry launcher inherits it.
        """
        args = [
            self.tools.gpg_agent,
            "-q",
            "--pinentry-program",
            str(pinentry_program),
            "--daemon",
        ]
        # The daemonized agent keeps inherited descriptors open; pipes
        # would never reach EOF.
        try:
            result = subprocess.run(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=self._environment({PASSPHRASE_ENV: passphrase}),
                check=False,
            )
        except OSError as e:
            raise GpgsmCommandError("gpg-agent --daemon", None, str(e)) from e
        if result.returncode != 0:
            raise GpgsmCommandError("gpg-agent --daemon", result.returncode)

    def kill_agent(self) -> None:
        """Terminate the agent serving this home directory."""
        self._run([self.tools.gpgconf, "--kill", "gpg-agent"])

    def import_pkcs12(self, pkcs12_path: Path) -> None:
        """Import a PKCS12 key and certificate into the key ring."""
        self._run([self.tools.gpgsm, "--import", str(pkcs12_path)])

    def get_keygrip(self) -> str:
        """Return the keygrip of the certificate held in the key ring.

        Raises:
            GpgsmCommandError: If no keygrip is listed
        """
        output = self._run([self.tools.gpgsm, "--dump-cert"]).decode("utf-8", errors="replace")
        match = KEYGRIP_PATTERN.search(output)
        if match is None:
            raise GpgsmCommandError("gpgsm --dump-cert", 0, "no keygrip in key ring listing")
        return match.group(1).upper()

    def learn_card(self) -> None:
        """Refresh the key ring from the inserted smartcard."""
        self._run([self.tools.gpgsm, "--learn-card"])

    def generate_certificate(self, batch_file: Path) -> bytes:
        """Sign a certificate from a batch-mode descriptor.

        Returns:
            DER-encoded certificate written by gpgsm on stdout
        """
        return self._run([self.tools.gpgsm, "--gen-key", "--batch", str(batch_file)])


def _terminal_name() -> str | None:
    """Return the terminal attached to stdin, if any."""
    stdin = sys.stdin
    if stdin is None or not stdin.isatty():
        return None
    try:
        return os.ttyname(stdin.fileno())
    except OSError:
        return None
