"""Exception taxonomy for the card-signing pipeline."""

from enum import Enum


class ProvisioningError(Exception):
    """Base class for every failure surfaced by the pipeline."""

    stage = "provisioning"


class ConfigError(ProvisioningError):
    """Configuration cannot be used; the operator must fix it and retry."""

    stage = "configuration"


class ConfigUnreadableError(ConfigError):
    """Configuration file is missing or not readable."""


class MissingConfigValueError(ConfigError):
    """One or more required fields are missing or empty."""

    def __init__(self, fields: list[str]) -> None:
        self.fields = fields
        super().__init__(f"missing or empty configuration values: {', '.join(fields)}")


class UnsupportedKeyTypeError(ConfigError):
    """KEYTYPE is outside the supported allow-list."""

    def __init__(self, key_type: str, supported: frozenset[str]) -> None:
        self.key_type = key_type
        super().__init__(
            f"unsupported key type {key_type!r}; supported: {', '.join(sorted(supported))}"
        )


class InvalidConfigValueError(ConfigError):
    """A field is present but its value is outside its domain."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        super().__init__(f"invalid value for {field}: {reason}")


class WorkspaceError(ProvisioningError):
    """Ephemeral workspace could not be created."""

    stage = "workspace"


class CryptoStep(Enum):
    """Sub-steps of key generation, used to name the failing step."""

    KEY_GENERATION = "key generation"
    PKCS12_EXPORT = "PKCS12 export"
    AGENT_START = "agent start"
    KEY_IMPORT = "key import"
    KEYGRIP_LOOKUP = "keygrip lookup"


class CryptoError(ProvisioningError):
    """Key generation, export or import failed."""

    stage = "key generation"

    def __init__(self, step: CryptoStep, detail: str) -> None:
        self.step = step
        super().__init__(f"{step.value} failed: {detail}")


class TemplateError(ProvisioningError):
    """CSR skeleton references a placeholder without a value."""

    stage = "CSR assembly"


class SigningError(ProvisioningError):
    """Signing authority did not produce a usable certificate."""

    stage = "signing"


class AuthorityRejectedError(SigningError):
    """Signing authority refused the request (PIN, card absent, bad request)."""


class CertificateMismatchError(SigningError):
    """Returned certificate does not certify the entity's key."""


class ArtifactWriteError(ProvisioningError):
    """Final artifacts could not be written after a successful signature.

    Carries the signed certificate so it can be recovered before the
    workspace is removed.
    """

    stage = "finalization"

    def __init__(self, message: str, certificate_pem: bytes) -> None:
        self.certificate_pem = certificate_pem
        super().__init__(message)


class ProvisioningInterrupted(ProvisioningError):
    """Run terminated by a signal."""

    stage = "interrupted"

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__(f"terminated by signal {signum}")


class GpgsmCommandError(Exception):
    """External GnuPG command exited unsuccessfully or could not be started."""

    def __init__(self, command: str, returncode: int | None, stderr: str = "") -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no diagnostics"
        if returncode is None:
            message = f"{command}: could not be executed ({detail})"
        else:
            message = f"{command}: exited with status {returncode} ({detail})"
        super().__init__(message)
