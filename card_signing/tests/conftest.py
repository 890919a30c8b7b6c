"""Test fixtures for card_signing tests."""

import logging
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, pkcs12

from card_signing.lib.cert_utils import generate_private_key, serialize_private_key
from card_signing.lib.config import ProvisioningConfig, resolve_config
from card_signing.lib.errors import GpgsmCommandError
from card_signing.lib.models import KeyMaterial

TEST_PASSPHRASE = "correct horse battery staple"
TEST_KEYGRIP = "0123456789ABCDEF0123456789ABCDEF01234567"

VALID_CONFIG_VALUES = {
    "NAMEDN": "CN=entity1,O=Test Org,C=GB",
    "KEYTYPE": "RSA",
    "SIZE": "2048",
    "HASH": "sha256",
    "DATE": "2031-12-31",
    "ALIAS": "entity1",
    "KEYUSAGE": "sign,encrypt",
    "EKEYUSAGE": "301406082B0601050507030106082B06010505070302",
    "CADN": "CN=Test Card CA,O=Test Org,C=GB",
    "AKI": "00112233445566778899AABBCCDDEEFF00112233",
    "SIGNINGKEY": "FFEEDDCCBBAA99887766554433221100FFEEDDCC",
    "PASSPHRASE": TEST_PASSPHRASE,
}


def render_config(values: dict[str, str]) -> str:
    """Render values as a shell-style configuration file."""
    return "".join(f"{name}='{value}'\n" for name, value in values.items())


def issue_certificate(
    public_key,
    subject: x509.Name,
    ca_key: RSAPrivateKey,
    ca_cert: x509.Certificate,
) -> x509.Certificate:
    """Issue an end-entity certificate the way the card CA would."""
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(ca_cert.subject)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[..., Path]:
    """Return a factory writing a config file with overrides applied.

    Pass a value of None to drop a field entirely.
    """

    def _write(name: str = "entity.conf", **overrides: str | None) -> Path:
        values = {**VALID_CONFIG_VALUES, **overrides}
        path = tmp_path / name
        path.write_text(
            render_config({key: value for key, value in values.items() if value is not None})
        )
        return path

    return _write


@pytest.fixture
def config_path(write_config: Callable[..., Path]) -> Path:
    """Return path of a valid configuration file."""
    return write_config()


@pytest.fixture
def provisioning_config(config_path: Path) -> ProvisioningConfig:
    """Return resolved test configuration."""
    return resolve_config(config_path)


@pytest.fixture(scope="session")
def ca_key() -> RSAPrivateKey:
    """Generate RSA private key standing in for the card CA key."""
    return generate_private_key(key_size=2048)


@pytest.fixture(scope="session")
def ca_cert(ca_key: RSAPrivateKey) -> x509.Certificate:
    """Generate self-signed certificate for the card CA."""
    subject = x509.Name.from_rfc4514_string(VALID_CONFIG_VALUES["CADN"])
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .sign(ca_key, hashes.SHA256())
    )


@pytest.fixture(scope="session")
def entity_key() -> RSAPrivateKey:
    """Generate RSA private key for the entity."""
    return generate_private_key(key_size=2048)


@pytest.fixture
def key_material(entity_key: RSAPrivateKey) -> KeyMaterial:
    """Return key material with fixed identifiers."""
    return KeyMaterial(
        private_key=entity_key,
        private_key_pem=serialize_private_key(entity_key, TEST_PASSPHRASE),
        subject_key_identifier="a1b2c3d4e5f60718293a4b5c6d7e8f9001122334",
        keygrip=TEST_KEYGRIP,
    )


@pytest.fixture
def entity_cert(
    entity_key: RSAPrivateKey,
    ca_key: RSAPrivateKey,
    ca_cert: x509.Certificate,
) -> x509.Certificate:
    """Return entity certificate signed by the test card CA."""
    return issue_certificate(
        entity_key.public_key(),
        x509.Name.from_rfc4514_string(VALID_CONFIG_VALUES["NAMEDN"]),
        ca_key,
        ca_cert,
    )


class FakeAuthority:
    """In-process stand-in for gpgsm and gpg-agent.

    Imports the PKCS12 container with the passphrase handed to the agent
    and signs batch requests with a test CA key. Methods listed in fail_on
    raise GpgsmCommandError.
    """

    def __init__(
        self,
        homedir: Path,
        ca_key: RSAPrivateKey,
        ca_cert: x509.Certificate,
        fail_on: frozenset[str] = frozenset(),
        wrong_key: bool = False,
    ) -> None:
        self.homedir = homedir
        self.ca_key = ca_key
        self.ca_cert = ca_cert
        self.fail_on = fail_on
        self.wrong_key = wrong_key
        self.calls: list[str] = []
        self.agent_running = False
        self.agent_passphrase: str | None = None
        self.imported_key: RSAPrivateKey | None = None
        self.batch_requests: list[str] = []

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise GpgsmCommandError(name, 2, f"gpgsm: simulated {name} failure\n")

    def start_agent(self, pinentry_program: Path, passphrase: str) -> None:
        self._record("start_agent")
        assert pinentry_program.is_file()
        self.agent_running = True
        self.agent_passphrase = passphrase

    def kill_agent(self) -> None:
        self._record("kill_agent")
        self.agent_running = False

    def import_pkcs12(self, pkcs12_path: Path) -> None:
        self._record("import_pkcs12")
        assert self.agent_passphrase is not None
        key, _, _ = pkcs12.load_key_and_certificates(
            pkcs12_path.read_bytes(), self.agent_passphrase.encode("utf-8")
        )
        assert isinstance(key, RSAPrivateKey)
        self.imported_key = key

    def get_keygrip(self) -> str:
        self._record("get_keygrip")
        return TEST_KEYGRIP

    def learn_card(self) -> None:
        self._record("learn_card")

    def generate_certificate(self, batch_file: Path) -> bytes:
        self._record("generate_certificate")
        request = batch_file.read_text()
        self.batch_requests.append(request)
        fields = dict(
            line.split(": ", 1) for line in request.splitlines() if ": " in line
        )
        assert fields["Key-Grip"] == TEST_KEYGRIP
        assert self.imported_key is not None

        public_key = self.imported_key.public_key()
        if self.wrong_key:
            public_key = generate_private_key(key_size=2048).public_key()
        cert = issue_certificate(
            public_key,
            x509.Name.from_rfc4514_string(fields["Name-DN"]),
            self.ca_key,
            self.ca_cert,
        )
        return cert.public_bytes(Encoding.DER)


@pytest.fixture
def fake_authorities() -> list[FakeAuthority]:
    """Collect every fake authority built during a test."""
    return []


@pytest.fixture
def authority_factory(
    ca_key: RSAPrivateKey,
    ca_cert: x509.Certificate,
    fake_authorities: list[FakeAuthority],
) -> Callable[..., Callable[[Path], FakeAuthority]]:
    """Return a builder for authority factories with optional failures."""

    def _builder(
        fail_on: frozenset[str] = frozenset(), wrong_key: bool = False
    ) -> Callable[[Path], FakeAuthority]:
        def _factory(homedir: Path) -> FakeAuthority:
            authority = FakeAuthority(homedir, ca_key, ca_cert, fail_on, wrong_key)
            fake_authorities.append(authority)
            return authority

        return _factory

    return _builder


@pytest.fixture
def workspace_parent(tmp_path: Path) -> Path:
    """Return directory that receives ephemeral workspaces."""
    parent = tmp_path / "workspaces"
    parent.mkdir()
    return parent


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    """Return directory for final artifacts."""
    directory = tmp_path / "out"
    directory.mkdir()
    return directory


@pytest.fixture
def captured_logs(caplog: pytest.LogCaptureFixture) -> Generator[pytest.LogCaptureFixture]:
    """Route card_signing logs to caplog for the duration of a test."""
    logger = logging.getLogger("card_signing")
    logger.propagate = True
    try:
        with caplog.at_level(logging.INFO, logger="card_signing"):
            yield caplog
    finally:
        logger.propagate = False
