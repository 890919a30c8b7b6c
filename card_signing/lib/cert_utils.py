"""Key generation, serialization and identifier helpers."""

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import pkcs12

# GnuPG only reads PKCS12 files built with the legacy PBES1 profile
LEGACY_PKCS12_KDF_ROUNDS = 2048


def generate_private_key(key_size: int = 4096) -> RSAPrivateKey:
    """Generate RSA private key with specified size."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=key_size,
    )


def serialize_private_key(key: RSAPrivateKey, passphrase: str) -> bytes:
    """Serialize private key to passphrase-encrypted PKCS8 PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode("utf-8")),
    )


def deserialize_private_key(pem_data: bytes, passphrase: str) -> RSAPrivateKey:
    """Deserialize encrypted private key from PEM bytes."""
    key = serialization.load_pem_private_key(pem_data, password=passphrase.encode("utf-8"))
    if not isinstance(key, RSAPrivateKey):
        raise ValueError("expected RSA private key")
    return key


def serialize_certificate(cert: x509.Certificate) -> bytes:
    """Serialize certificate to PEM format."""
    return cert.public_bytes(serialization.Encoding.PEM)


def deserialize_der_certificate(der_data: bytes) -> x509.Certificate:
    """Deserialize certificate from DER bytes."""
    return x509.load_der_x509_certificate(der_data)


def der_to_pem(der_data: bytes) -> bytes:
    """Convert a DER certificate to PEM."""
    return serialize_certificate(deserialize_der_certificate(der_data))


def get_certificate_serial_hex(cert: x509.Certificate) -> str:
    """Return certificate serial number as hex with colons (e.g., 3A:F2:B1:...)."""
    serial_hex = f"{cert.serial_number:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return ":".join(serial_hex[i : i + 2] for i in range(0, len(serial_hex), 2))


def compute_subject_key_identifier(public_key: rsa.RSAPublicKey) -> str:
    """Compute the Subject Key Identifier as lowercase hex.

    SHA-1 digest of the subjectPublicKey BIT STRING contents (RFC 5280
    section 4.2.1.2, method 1).
    """
    return x509.SubjectKeyIdentifier.from_public_key(public_key).digest.hex()


def export_import_pkcs12(
    key: RSAPrivateKey, cert: x509.Certificate, passphrase: str, name: str
) -> bytes:
    """Package key and certificate as a GnuPG-importable PKCS12 container."""
    encryption = (
        serialization.PrivateFormat.PKCS12.encryption_builder()
        .kdf_rounds(LEGACY_PKCS12_KDF_ROUNDS)
        .key_cert_algorithm(pkcs12.PBES.PBESv1SHA1And3KeyTripleDESCBC)
        .hmac_hash(hashes.SHA1())
        .build(passphrase.encode("utf-8"))
    )
    return pkcs12.serialize_key_and_certificates(
        name=name.encode("utf-8"),
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=encryption,
    )


def create_pkcs12_bundle(
    key: RSAPrivateKey, cert: x509.Certificate, passphrase: str, alias: str
) -> bytes:
    """Create the distributable PKCS12 bundle protected by passphrase."""
    return pkcs12.serialize_key_and_certificates(
        name=alias.encode("utf-8"),
        key=key,
        cert=cert,
        cas=None,
        encryption_algorithm=serialization.BestAvailableEncryption(passphrase.encode("utf-8")),
    )


def certifies_key(cert: x509.Certificate, key: RSAPrivateKey) -> bool:
    """Return True if the certificate's public key belongs to key."""
    return cert.public_key() == key.public_key()
