"""Certificate provisioning pipeline for smartcard-held CAs."""

import sys
from collections.abc import Callable
from pathlib import Path
from typing import TextIO

from .config import ProvisioningConfig, ToolPaths
from .csr_builder import DEFAULT_TEMPLATE_PATH, build_csr, load_template
from .errors import ArtifactWriteError, CryptoError, TemplateError
from .finalizer import finalize
from .gpgsm_client import GpgsmClient
from .key_generator import generate_key
from .logging_config import LOGGER
from .models import FinalArtifacts, SigningState
from .signing import SigningOrchestrator
from .workspace import Workspace

AuthorityFactory = Callable[[Path], GpgsmClient]


class CardSigningProvisioner:
    """Runs one provisioning pipeline against a resolved configuration.

    Stages run strictly in order inside a single workspace: key and
    identifier generation, CSR assembly, confirmation-gated signing and
    artifact finalization. The workspace teardown stops the helper agent
    and removes all temporary material whatever the outcome.
    """

    def __init__(
        self,
        config: ProvisioningConfig,
        authority_factory: AuthorityFactory | None = None,
        template_path: Path = DEFAULT_TEMPLATE_PATH,
        input_stream: TextIO | None = None,
        output_stream: TextIO | None = None,
        workspace_parent: Path | None = None,
    ) -> None:
        """Initialize provisioner.

        Args:
            config: Resolved provisioning configuration
            authority_factory: Builds the signing authority client for a
                workspace directory (default: GpgsmClient with env tool paths)
            template_path: CSR skeleton to render
            input_stream: Operator answers (default: stdin)
            output_stream: Operator-facing output (default: stdout)
            workspace_parent: Directory receiving the ephemeral workspace
        """
        self.config = config
        self.authority_factory = authority_factory or _default_authority
        self.template_path = template_path
        self.input_stream = input_stream
        self.output_stream = output_stream
        self.workspace_parent = workspace_parent
        self.signing_state: SigningState | None = None

    def provision(self, output_basename: str | Path) -> FinalArtifacts | None:
        """Issue a card-signed certificate and write the final bundles.

        Args:
            output_basename: Target path for <basename>.pem and <basename>.p12

        Returns:
            FinalArtifacts, or None when the operator declined signing

        Raises:
            ProvisioningError: Any stage failure, after workspace teardown
        """
        template = load_template(self.template_path)

        with Workspace(self.workspace_parent) as workspace:
            authority = self.authority_factory(workspace.path)

            LOGGER.info("Generating entity key", extra={"stage": CryptoError.stage})
            key_material = generate_key(self.config, workspace, authority)

            csr = build_csr(self.config, key_material, template)
            workspace.csr_path.write_text(csr.text, encoding="utf-8")
            LOGGER.info("CSR descriptor assembled", extra={"stage": TemplateError.stage})

            orchestrator = SigningOrchestrator(
                authority,
                input_stream=self.input_stream,
                output_stream=self.output_stream,
            )
            try:
                signed = orchestrator.confirm_and_sign(csr, workspace)
            finally:
                self.signing_state = orchestrator.state
            if signed is None:
                return None

            try:
                return finalize(signed, key_material, self.config, output_basename)
            except ArtifactWriteError as e:
                self._report_unwritten_certificate(e, workspace)
                raise

    def _report_unwritten_certificate(self, error: ArtifactWriteError, workspace: Workspace) -> None:
        """Give the operator a chance to recover the signed certificate.

        Blocks until the operator presses Enter, so the workspace copies
        are still on disk while they are being rescued.
        """
        LOGGER.error("Final artifacts could not be written, waiting for operator recovery")
        out = self.output_stream or sys.stdout
        out.write("\nThe card signed the certificate but the final files could not be written.\n")
        out.write("Recover these files before the workspace is removed:\n")
        out.write(f"  {workspace.signed_der_path} : signed certificate (DER)\n")
        out.write(f"  {workspace.private_key_path} : encrypted private key (PEM)\n\n")
        out.write(error.certificate_pem.decode("ascii"))
        out.write("\nPress Enter to remove the workspace... ")
        out.flush()
        (self.input_stream or sys.stdin).readline()


def _default_authority(homedir: Path) -> GpgsmClient:
    return GpgsmClient(homedir, ToolPaths.from_environ())
