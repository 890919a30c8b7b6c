"""Ephemeral, exclusively-owned directory holding a run's secret material."""

import shutil
import signal
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from types import FrameType, TracebackType
from typing import Any

from .errors import ProvisioningInterrupted, WorkspaceError
from .logging_config import LOGGER

WORKSPACE_PREFIX = "card-signing-"

# Termination signals routed through the same teardown as errors.
# SIGINT already raises KeyboardInterrupt.
HANDLED_SIGNALS = tuple(
    getattr(signal, name) for name in ("SIGTERM", "SIGHUP") if hasattr(signal, name)
)


class Workspace:
    """Scoped workspace directory with guaranteed teardown.

    The directory is created on entry. On exit, whatever the outcome,
    registered teardown callbacks run in reverse registration order and
    the directory is removed recursively. The directory also serves as
    the signing authority's home directory for the run.
    """

    PRIVATE_KEY = "privkey.pem"
    SCRATCH_CERT = "cert.pem"
    PKCS12 = "third-party.p12"
    SIGNED_DER = "third-party.der"
    CSR = "gpgsm.csr"
    PINENTRY = "pinentry-standalone"

    def __init__(self, parent_dir: Path | None = None) -> None:
        self._parent_dir = parent_dir
        self._path: Path | None = None
        self._teardown: list[tuple[str, Callable[[], None]]] = []
        self._previous_handlers: dict[int, Any] = {}
        self._deferred_signal: int | None = None

    @property
    def path(self) -> Path:
        if self._path is None:
            raise WorkspaceError("workspace is not open")
        return self._path

    @property
    def private_key_path(self) -> Path:
        return self.path / self.PRIVATE_KEY

    @property
    def scratch_cert_path(self) -> Path:
        return self.path / self.SCRATCH_CERT

    @property
    def pkcs12_path(self) -> Path:
        return self.path / self.PKCS12

    @property
    def signed_der_path(self) -> Path:
        return self.path / self.SIGNED_DER

    @property
    def csr_path(self) -> Path:
        return self.path / self.CSR

    @property
    def pinentry_path(self) -> Path:
        return self.path / self.PINENTRY

    def on_teardown(self, description: str, callback: Callable[[], None]) -> None:
        """Register a callback to run before the directory is removed."""
        self._teardown.append((description, callback))

    def __enter__(self) -> "Workspace":
        try:
            # mkdtemp creates the directory with mode 0700
            self._path = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=self._parent_dir))
        except OSError as e:
            raise WorkspaceError(f"could not create workspace: {e}") from e
        self._install_signal_handlers()
        LOGGER.info("Workspace created: %s", self._path)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._defer_signals()
        try:
            self._run_teardown()
            self._remove_directory()
        finally:
            self._restore_signal_handlers()
        signum, self._deferred_signal = self._deferred_signal, None
        if signum is not None and exc is None:
            raise ProvisioningInterrupted(signum)

    def _run_teardown(self) -> None:
        while self._teardown:
            description, callback = self._teardown.pop()
            try:
                callback()
            except Exception as e:
                LOGGER.warning("Teardown step '%s' failed: %s", description, e)

    def _remove_directory(self) -> None:
        if self._path is None:
            return
        shutil.rmtree(self._path, ignore_errors=True)
        if self._path.exists():
            LOGGER.error("Workspace could not be fully removed: %s", self._path)
        else:
            LOGGER.info("Workspace removed: %s", self._path)
        self._path = None

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            return
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, _raise_interrupted)

    def _defer_signals(self) -> None:
        """Record termination signals instead of raising while tearing down."""
        for signum in self._previous_handlers:
            signal.signal(signum, self._record_signal)

    def _record_signal(self, signum: int, frame: FrameType | None) -> None:
        LOGGER.warning("Signal %d received during teardown, finishing cleanup first", signum)
        self._deferred_signal = signum

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            # None means the handler was not installed from Python
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
        self._previous_handlers.clear()


def _raise_interrupted(signum: int, frame: FrameType | None) -> None:
    raise ProvisioningInterrupted(signum)
