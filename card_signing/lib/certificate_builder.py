"""Scratch certificate construction for key export."""

from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.x509 import oid

PLACEHOLDER_COMMON_NAME = "placeholder"


class CertificateBuilder:
    """Builds the throwaway certificates the pipeline needs locally."""

    @staticmethod
    def build_scratch_certificate(
        private_key: RSAPrivateKey,
        validity_days: int = 1,
    ) -> x509.Certificate:
        """Build a self-signed placeholder certificate around private_key.

        The certificate only exists so the key can be exported as PKCS12
        and imported by the signing authority; it is never distributed.

        Args:
            private_key: Entity RSA private key
            validity_days: Validity period in days

        Returns:
            Self-signed X.509 certificate with subject CN=placeholder
        """
        subject = x509.Name([x509.NameAttribute(oid.NameOID.COMMON_NAME, PLACEHOLDER_COMMON_NAME)])
        not_before = datetime.now(timezone.utc)
        not_after = not_before + timedelta(days=validity_days)

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(not_before)
            .not_valid_after(not_after)
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
                critical=False,
            )
        )

        return builder.sign(private_key, hashes.SHA256())
