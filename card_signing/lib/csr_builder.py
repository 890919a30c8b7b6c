"""CSR descriptor assembly from the gpgsm batch skeleton."""

from pathlib import Path

from .config import ProvisioningConfig
from .errors import TemplateError
from .models import CSRDescriptor, KeyMaterial
from .substitution import escape_value, render

DEFAULT_TEMPLATE_PATH = Path(__file__).parent / "templates" / "gpgsm.csr.skel"


def load_template(template_path: Path = DEFAULT_TEMPLATE_PATH) -> str:
    """Read a CSR skeleton."""
    try:
        return template_path.read_text(encoding="utf-8")
    except OSError as e:
        raise TemplateError(f"cannot read CSR template {template_path}: {e}") from e


def build_csr(
    config: ProvisioningConfig,
    key_material: KeyMaterial,
    template: str,
) -> CSRDescriptor:
    """Render the batch-mode request for the signing authority.

    Pure text substitution: configuration values plus the computed keygrip
    and Subject Key Identifier. Identical inputs give identical output.

    Raises:
        TemplateError: If the template uses an unknown placeholder
    """
    values = config.template_values()
    values["KGRIP"] = escape_value(key_material.keygrip)
    values["SKI"] = escape_value(key_material.subject_key_identifier)
    return CSRDescriptor(text=render(template, values))
