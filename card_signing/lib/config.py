"""Provisioning configuration loading and validation."""

import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509
from dotenv import dotenv_values

from .errors import (
    ConfigUnreadableError,
    InvalidConfigValueError,
    MissingConfigValueError,
    UnsupportedKeyTypeError,
)
from .logging_config import LOGGER
from .substitution import escape_value

REQUIRED_FIELDS = (
    "NAMEDN",
    "KEYTYPE",
    "SIZE",
    "HASH",
    "DATE",
    "ALIAS",
    "KEYUSAGE",
    "EKEYUSAGE",
    "CADN",
    "AKI",
    "SIGNINGKEY",
)

SUPPORTED_KEY_TYPES = frozenset({"RSA"})
SUPPORTED_HASHES = frozenset({"sha1", "sha224", "sha256", "sha384", "sha512"})
MIN_KEY_SIZE = 2048

GENERATED_PASSPHRASE_BYTES = 24


@dataclass(frozen=True)
class ProvisioningConfig:
    """Resolved, immutable parameter set for one provisioning run."""

    name_dn: str
    key_type: str
    key_size: int
    hash_algorithm: str
    not_after: str
    alias: str
    key_usage: str
    extended_key_usage: str
    ca_dn: str
    authority_key_id: str
    signing_key: str
    passphrase: str = field(repr=False)
    passphrase_generated: bool = False

    def template_values(self) -> dict[str, str]:
        """Return escaped values for CSR skeleton placeholders.

        The passphrase is never included; the descriptor is shown to the
        operator.
        """
        values = {
            "NAMEDN": self.name_dn,
            "KEYTYPE": self.key_type,
            "SIZE": str(self.key_size),
            "HASH": self.hash_algorithm,
            "DATE": self.not_after,
            "ALIAS": self.alias,
            "KEYUSAGE": self.key_usage,
            "EKEYUSAGE": self.extended_key_usage,
            "CADN": self.ca_dn,
            "AKI": self.authority_key_id,
            "SIGNINGKEY": self.signing_key,
        }
        return {name: escape_value(value) for name, value in values.items()}


@dataclass(frozen=True)
class ToolPaths:
    """Locations of the GnuPG programs driven by the pipeline."""

    gpgsm: str = "gpgsm"
    gpg_agent: str = "gpg-agent"
    gpgconf: str = "gpgconf"

    @classmethod
    def from_environ(cls) -> "ToolPaths":
        """Build tool paths, honouring CARD_SIGNING_* overrides."""
        return cls(
            gpgsm=os.environ.get("CARD_SIGNING_GPGSM", cls.gpgsm),
            gpg_agent=os.environ.get("CARD_SIGNING_GPG_AGENT", cls.gpg_agent),
            gpgconf=os.environ.get("CARD_SIGNING_GPGCONF", cls.gpgconf),
        )


def _read_declarations(config_path: Path) -> dict[str, str]:
    if not config_path.is_file() or not os.access(config_path, os.R_OK):
        raise ConfigUnreadableError(f"{config_path} is not a readable configuration file")
    try:
        declarations = dotenv_values(config_path)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigUnreadableError(f"{config_path} could not be read: {e}") from e
    return {key: value for key, value in declarations.items() if value is not None}


def _check_single_line(name: str, value: str) -> None:
    if any(char in value for char in "\r\n\0"):
        raise InvalidConfigValueError(name, "line breaks and NUL characters are not allowed")


def _parse_key_size(value: str) -> int:
    try:
        size = int(value)
    except ValueError as e:
        raise InvalidConfigValueError("SIZE", f"{value!r} is not an integer") from e
    if size < MIN_KEY_SIZE:
        raise InvalidConfigValueError("SIZE", f"must be at least {MIN_KEY_SIZE} bits")
    return size


def _check_distinguished_name(name: str, value: str) -> None:
    try:
        x509.Name.from_rfc4514_string(value)
    except ValueError as e:
        raise InvalidConfigValueError(name, f"not an RFC 4514 distinguished name ({e})") from e


def resolve_config(config_path: Path) -> ProvisioningConfig:
    """Load, validate and expand a declarative configuration file.

    Args:
        config_path: Path to a KEY=value configuration file

    Returns:
        ProvisioningConfig with every field resolved to a non-empty value

    Raises:
        ConfigUnreadableError: If the file cannot be read
        MissingConfigValueError: If required fields are missing or empty
        UnsupportedKeyTypeError: If KEYTYPE is not supported
        InvalidConfigValueError: If a value is outside its domain
    """
    declarations = _read_declarations(config_path)
    values = {name: declarations.get(name, "").strip() for name in REQUIRED_FIELDS}

    missing = [name for name, value in values.items() if not value]
    if missing:
        raise MissingConfigValueError(missing)

    if values["KEYTYPE"] not in SUPPORTED_KEY_TYPES:
        raise UnsupportedKeyTypeError(values["KEYTYPE"], SUPPORTED_KEY_TYPES)

    for name, value in values.items():
        _check_single_line(name, value)

    key_size = _parse_key_size(values["SIZE"])

    hash_algorithm = values["HASH"].lower()
    if hash_algorithm not in SUPPORTED_HASHES:
        raise InvalidConfigValueError(
            "HASH", f"{values['HASH']!r} is not one of {', '.join(sorted(SUPPORTED_HASHES))}"
        )

    _check_distinguished_name("NAMEDN", values["NAMEDN"])
    _check_distinguished_name("CADN", values["CADN"])

    passphrase = declarations.get("PASSPHRASE", "")
    passphrase_generated = not passphrase
    if passphrase_generated:
        passphrase = secrets.token_urlsafe(GENERATED_PASSPHRASE_BYTES)
        LOGGER.info("No PASSPHRASE configured, generated a random one")
    _check_single_line("PASSPHRASE", passphrase)

    LOGGER.info("Configuration resolved from %s", config_path)
    return ProvisioningConfig(
        name_dn=values["NAMEDN"],
        key_type=values["KEYTYPE"],
        key_size=key_size,
        hash_algorithm=hash_algorithm,
        not_after=values["DATE"],
        alias=values["ALIAS"],
        key_usage=values["KEYUSAGE"],
        extended_key_usage=values["EKEYUSAGE"],
        ca_dn=values["CADN"],
        authority_key_id=values["AKI"],
        signing_key=values["SIGNINGKEY"],
        passphrase=passphrase,
        passphrase_generated=passphrase_generated,
    )
