"""Data carried between pipeline stages."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from .cert_utils import der_to_pem, deserialize_der_certificate


@dataclass(frozen=True)
class KeyMaterial:
    """Entity key pair plus the identifiers derived from it.

    private_key_pem is the passphrase-encrypted PKCS#8 form stored in the
    workspace and appended to the final PEM bundle.
    """

    private_key: RSAPrivateKey = field(repr=False)
    private_key_pem: bytes = field(repr=False)
    subject_key_identifier: str
    keygrip: str


@dataclass(frozen=True)
class CSRDescriptor:
    """Rendered batch-mode request handed to the signing authority."""

    text: str

    def __str__(self) -> str:
        return self.text


class SigningState(Enum):
    """States of the confirmation-gated signing step."""

    AWAITING_CONFIRM = "awaiting confirmation"
    SIGNING = "signing"
    SIGNED = "signed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class SignedCertificate:
    """DER certificate returned by the signing authority."""

    der: bytes

    @property
    def certificate(self) -> x509.Certificate:
        return deserialize_der_certificate(self.der)

    @property
    def pem(self) -> bytes:
        return der_to_pem(self.der)


@dataclass
class FinalArtifacts:
    """Result from a successful provisioning run.

    Contains the durable output paths plus identifying details of the
    issued certificate.
    """

    pem_path: Path
    p12_path: Path
    alias: str
    serial_number: str
    subject: str
