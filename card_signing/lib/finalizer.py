"""Final PEM and PKCS12 artifacts for the signed entity certificate."""

import os
import shutil
import tempfile
from pathlib import Path

from .cert_utils import (
    certifies_key,
    create_pkcs12_bundle,
    get_certificate_serial_hex,
)
from .config import ProvisioningConfig
from .errors import ArtifactWriteError, CertificateMismatchError
from .logging_config import LOGGER
from .models import FinalArtifacts, KeyMaterial, SignedCertificate


def output_paths(output_basename: str | Path) -> tuple[Path, Path]:
    """Return (pem_path, p12_path) for an output basename."""
    base = str(output_basename)
    return Path(base + ".pem"), Path(base + ".p12")


def _stage(target: Path, data: bytes) -> Path:
    """Write data to a private temporary sibling of target."""
    fd, staged = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
    except BaseException:
        Path(staged).unlink(missing_ok=True)
        raise
    return Path(staged)


class _Installation:
    """Installs staged files over their targets, keeping earlier files aside.

    Files already present at a target are moved into a hidden backup
    directory next to it. rollback() removes only what this installation
    put in place and moves the earlier files back.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.backup_dir: Path | None = None
        self.backups: dict[Path, Path] = {}
        self.installed: list[Path] = []

    def install(self, staged: Path, target: Path) -> None:
        if target.is_dir():
            raise IsADirectoryError(f"{target} is a directory")
        if target.exists() or target.is_symlink():
            if self.backup_dir is None:
                self.backup_dir = Path(
                    tempfile.mkdtemp(dir=self.directory, prefix=".card-signing-previous-")
                )
            backup = self.backup_dir / target.name
            os.replace(target, backup)
            self.backups[target] = backup
        os.replace(staged, target)
        self.installed.append(target)

    def rollback(self) -> None:
        for target in self.installed:
            target.unlink(missing_ok=True)
        restored = True
        for target, backup in self.backups.items():
            try:
                os.replace(backup, target)
            except OSError as e:
                restored = False
                LOGGER.error("Could not restore %s, earlier file kept at %s: %s", target, backup, e)
        if restored:
            self._discard_backup_dir()

    def commit(self) -> None:
        for backup in self.backups.values():
            backup.unlink(missing_ok=True)
        self._discard_backup_dir()

    def _discard_backup_dir(self) -> None:
        if self.backup_dir is not None:
            shutil.rmtree(self.backup_dir, ignore_errors=True)
            self.backup_dir = None


def finalize(
    signed: SignedCertificate,
    key_material: KeyMaterial,
    config: ProvisioningConfig,
    output_basename: str | Path,
) -> FinalArtifacts:
    """Write the PEM bundle and PKCS12 bundle outside the workspace.

    The PEM bundle holds the certificate followed by the encrypted private
    key in one file. The PKCS12 bundle carries the same pair, protected by
    the run passphrase and tagged with the configured alias. Both files
    appear together or not at all.

    Args:
        signed: Certificate returned by the signing authority
        key_material: Entity key material
        config: Resolved provisioning configuration
        output_basename: Target path without extension

    Returns:
        FinalArtifacts describing the written files

    Raises:
        CertificateMismatchError: If the certificate is for another key
        ArtifactWriteError: If the targets cannot be written
    """
    certificate = signed.certificate
    if not certifies_key(certificate, key_material.private_key):
        raise CertificateMismatchError("signed certificate does not match the entity key")

    certificate_pem = signed.pem
    pem_bundle = certificate_pem + key_material.private_key_pem
    p12_bundle = create_pkcs12_bundle(
        key_material.private_key, certificate, config.passphrase, config.alias
    )

    pem_path, p12_path = output_paths(output_basename)
    staged: dict[Path, Path] = {}
    installation = _Installation(pem_path.parent)
    try:
        for target, data in ((pem_path, pem_bundle), (p12_path, p12_bundle)):
            staged[target] = _stage(target, data)
        for target, staged_path in staged.items():
            installation.install(staged_path, target)
    except OSError as e:
        installation.rollback()
        for path in staged.values():
            path.unlink(missing_ok=True)
        raise ArtifactWriteError(
            f"could not write final artifacts at {output_basename}: {e}", certificate_pem
        ) from e

    installation.commit()
    LOGGER.info("Final artifacts written: %s, %s", pem_path, p12_path)
    return FinalArtifacts(
        pem_path=pem_path,
        p12_path=p12_path,
        alias=config.alias,
        serial_number=get_certificate_serial_hex(certificate),
        subject=certificate.subject.rfc4514_string(),
    )
