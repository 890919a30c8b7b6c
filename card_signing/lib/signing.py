"""Operator-confirmed signing through the hardware-backed authority."""

import sys
from typing import TextIO

from cryptography import x509

from .errors import AuthorityRejectedError, GpgsmCommandError
from .gpgsm_client import GpgsmClient
from .logging_config import LOGGER
from .models import CSRDescriptor, SignedCertificate, SigningState
from .workspace import Workspace

AFFIRMATIVE_ANSWERS = frozenset({"y", "yes"})
NEGATIVE_ANSWERS = frozenset({"n", "no"})

BANNER = "=" * 63
PROMPT = "Proceed to signing? [Y/N] "
REPROMPT = "Please answer (Y)es or (N)o: "


class SigningOrchestrator:
    """Confirmation gate in front of the signing authority.

    State moves AWAITING_CONFIRM -> SIGNING -> SIGNED, or
    AWAITING_CONFIRM -> ABORTED when the operator declines.
    """

    def __init__(
        self,
        authority: GpgsmClient,
        input_stream: TextIO | None = None,
        output_stream: TextIO | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            authority: Signing authority client bound to the workspace
            input_stream: Operator answers (default: stdin)
            output_stream: CSR presentation and prompts (default: stdout)
        """
        self.authority = authority
        self.input_stream = input_stream
        self.output_stream = output_stream
        self.state = SigningState.AWAITING_CONFIRM

    @property
    def _input(self) -> TextIO:
        return self.input_stream or sys.stdin

    @property
    def _output(self) -> TextIO:
        return self.output_stream or sys.stdout

    def present(self, csr: CSRDescriptor) -> None:
        """Show the rendered CSR to the operator."""
        out = self._output
        out.write("\n")
        out.write(BANNER + "\n")
        out.write("The following CSR has been created:\n")
        out.write(BANNER + "\n")
        out.write(csr.text if csr.text.endswith("\n") else csr.text + "\n")
        out.write(BANNER + "\n")
        out.flush()

    def ask_confirmation(self) -> bool:
        """Block until the operator answers yes or no.

        Unrecognised answers re-prompt. End of input counts as no.
        """
        self._output.write(PROMPT)
        self._output.flush()
        while True:
            line = self._input.readline()
            if not line:
                LOGGER.warning("No answer available on input, treating as declined")
                return False
            answer = line.strip().lower()
            if answer in AFFIRMATIVE_ANSWERS:
                return True
            if answer in NEGATIVE_ANSWERS:
                return False
            self._output.write(REPROMPT)
            self._output.flush()

    def confirm_and_sign(
        self, csr: CSRDescriptor, workspace: Workspace
    ) -> SignedCertificate | None:
        """Present the CSR, then sign it if the operator agrees.

        Args:
            csr: Rendered descriptor, already written to workspace.csr_path
            workspace: Open workspace for the run

        Returns:
            SignedCertificate, or None when the operator declined

        Raises:
            AuthorityRejectedError: If the authority refuses or returns garbage
        """
        self.state = SigningState.AWAITING_CONFIRM
        self.present(csr)
        if not self.ask_confirmation():
            self.state = SigningState.ABORTED
            LOGGER.info("Signing declined by operator")
            return None

        self.state = SigningState.SIGNING
        LOGGER.info("Signing confirmed, waiting for smartcard")
        try:
            # A fresh agent forces card PIN entry through the host pinentry
            self.authority.kill_agent()
            self.authority.learn_card()
            der = self.authority.generate_certificate(workspace.csr_path)
        except GpgsmCommandError as e:
            raise AuthorityRejectedError(f"signing authority rejected the request: {e}") from e

        try:
            certificate = x509.load_der_x509_certificate(der)
        except ValueError as e:
            raise AuthorityRejectedError(
                "signing authority did not return a DER certificate"
            ) from e
        workspace.signed_der_path.write_bytes(der)

        self.state = SigningState.SIGNED
        LOGGER.info("Certificate signed, serial %x", certificate.serial_number)
        return SignedCertificate(der=der)
