"""Entity key generation and import into the signing authority."""

from cryptography.exceptions import UnsupportedAlgorithm

from .cert_utils import (
    compute_subject_key_identifier,
    export_import_pkcs12,
    generate_private_key,
    serialize_certificate,
    serialize_private_key,
)
from .certificate_builder import PLACEHOLDER_COMMON_NAME, CertificateBuilder
from .config import ProvisioningConfig
from .errors import CryptoError, CryptoStep, GpgsmCommandError
from .gpgsm_client import GpgsmClient
from .logging_config import LOGGER
from .models import KeyMaterial
from .pinentry import write_launcher
from .workspace import Workspace


def generate_key(
    config: ProvisioningConfig,
    workspace: Workspace,
    authority: GpgsmClient,
) -> KeyMaterial:
    """Generate the entity key and register it with the signing authority.

    Steps:
        1. RSA key pair and a scratch self-signed certificate
        2. Subject Key Identifier from the public key
        3. PKCS12 container (the only import format the authority accepts)
        4. Helper agent with the non-interactive pinentry, stopped at teardown
        5. PKCS12 import and keygrip lookup

    Args:
        config: Resolved provisioning configuration
        workspace: Open workspace receiving the key material
        authority: Signing authority client bound to the workspace

    Returns:
        KeyMaterial with the private key, SKI and keygrip

    Raises:
        CryptoError: Naming the failing step
    """
    try:
        private_key = generate_private_key(config.key_size)
        scratch_cert = CertificateBuilder.build_scratch_certificate(private_key)
        private_key_pem = serialize_private_key(private_key, config.passphrase)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CryptoError(CryptoStep.KEY_GENERATION, str(e)) from e

    workspace.private_key_path.write_bytes(private_key_pem)
    workspace.scratch_cert_path.write_bytes(serialize_certificate(scratch_cert))

    ski = compute_subject_key_identifier(private_key.public_key())
    LOGGER.info("Generated %d-bit RSA key, SKI %s", config.key_size, ski)

    try:
        container = export_import_pkcs12(
            private_key, scratch_cert, config.passphrase, PLACEHOLDER_COMMON_NAME
        )
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CryptoError(CryptoStep.PKCS12_EXPORT, str(e)) from e
    workspace.pkcs12_path.write_bytes(container)

    pinentry = write_launcher(workspace.pinentry_path)
    workspace.on_teardown("terminate helper agent", authority.kill_agent)
    try:
        authority.start_agent(pinentry, config.passphrase)
    except GpgsmCommandError as e:
        raise CryptoError(CryptoStep.AGENT_START, str(e)) from e

    try:
        authority.import_pkcs12(workspace.pkcs12_path)
    except GpgsmCommandError as e:
        raise CryptoError(CryptoStep.KEY_IMPORT, str(e)) from e

    try:
        keygrip = authority.get_keygrip()
    except GpgsmCommandError as e:
        raise CryptoError(CryptoStep.KEYGRIP_LOOKUP, str(e)) from e
    LOGGER.info("Key imported into signing authority, keygrip %s", keygrip)

    return KeyMaterial(
        private_key=private_key,
        private_key_pem=private_key_pem,
        subject_key_identifier=ski,
        keygrip=keygrip,
    )
