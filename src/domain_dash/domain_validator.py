"""
Domain name validation and normalization.

Provides the normalization rules the engine relies on (trimmed, lowercase
names; dot-prefixed extensions), fully-qualified name construction, and
a validator for user input that rejects forbidden characters and encodes
international names with IDNA.
"""

import re
from dataclasses import dataclass
from typing import Optional

import idna

from .enums import DomainValidationErrorCode
from .exceptions import ValidationError


# Forbidden characters in domain names (control chars, spaces, special symbols)
# Based on RFC 1035 and RFC 5891 (IDNA2008)
FORBIDDEN_CHARS_PATTERN = re.compile(
    r'[\x00-\x1f\x7f'           # Control characters
    r'\s'                        # Whitespace
    r'!@#$%^&*()+=\[\]{}|\\:;"\'<>,?/`~_]'  # Special symbols not allowed
)

# An LDH label after IDNA encoding: 1-63 chars, no leading/trailing hyphen
LABEL_PATTERN = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")


def normalize_name(name: str) -> str:
    """Trim and lowercase a domain base name."""
    return (name or "").strip().lower()


def normalize_extension(extension: str) -> str:
    """
    Ensure an extension carries exactly one leading dot.

    Case is left as given; callers decide whether extensions are lowercased.
    """
    ext = (extension or "").strip()
    return "." + ext.lstrip(".") if ext else ""


def build_fqdn(name: str, extension: str) -> str:
    """
    Build the fully-qualified name for a base name and extension.

    The name is trimmed and lowercased and the extension dot-prefixed. If the
    name already ends with the extension nothing is appended, so
    ``build_fqdn("example.com", ".com")`` stays ``"example.com"``.

    Args:
        name: Base name as entered by the user
        extension: Extension with or without the leading dot

    Returns:
        The fully-qualified name
    """
    base = normalize_name(name)
    ext = normalize_extension(extension)
    if not ext or base.endswith(ext.lower()):
        return base
    return base + ext


def to_ascii(fqdn: str) -> str:
    """
    Encode a name for the wire (IDNA/punycode) if it contains non-ASCII.

    Raises:
        ValidationError: If IDNA encoding fails
    """
    if all(ord(c) < 128 for c in fqdn):
        return fqdn.lower()
    try:
        return idna.encode(fqdn.lower(), uts46=True).decode("ascii")
    except idna.IDNAError as e:
        raise ValidationError(
            code=DomainValidationErrorCode.IDNA_ERROR.value,
            message=f"IDNA encoding failed: {e}",
            details={"domain": fqdn, "idna_error": str(e)},
        )


@dataclass
class DomainValidationError:
    """Structured error information for domain validation failures."""

    code: DomainValidationErrorCode
    message: str
    details: dict


@dataclass
class DomainValidationResult:
    """Result of validating a user-supplied base name."""

    valid: bool
    canonical_name: Optional[str]
    error: Optional[DomainValidationError]


class DomainValidator:
    """
    Validates base names entered by the user before they are stored.

    Names are kept in their normalized unicode form; the ASCII form is
    only computed to verify that every label is encodable and well formed.
    """

    def validate(self, raw_name: str) -> DomainValidationResult:
        """
        Validate and normalize a base name.

        Args:
            raw_name: The raw input, e.g. ``"  MyStartup "`` or ``"bücher"``

        Returns:
            DomainValidationResult with the canonical name or an error
        """
        if not raw_name or not raw_name.strip():
            return self._failure(
                DomainValidationErrorCode.EMPTY_INPUT,
                "Domain input is empty",
                {"raw_input": raw_name},
            )

        name = normalize_name(raw_name)

        forbidden = FORBIDDEN_CHARS_PATTERN.findall(name)
        if forbidden:
            return self._failure(
                DomainValidationErrorCode.FORBIDDEN_CHARS,
                "Domain contains forbidden characters",
                {"raw_input": raw_name, "forbidden_chars": forbidden},
            )

        try:
            ascii_name = to_ascii(name)
        except ValidationError as e:
            return self._failure(
                DomainValidationErrorCode.IDNA_ERROR, e.message, e.details
            )

        for label in ascii_name.split("."):
            if not LABEL_PATTERN.match(label):
                return self._failure(
                    DomainValidationErrorCode.INVALID_LABEL,
                    f"Invalid domain label: {label!r}",
                    {"raw_input": raw_name, "label": label},
                )

        return DomainValidationResult(valid=True, canonical_name=name, error=None)

    def _failure(
        self, code: DomainValidationErrorCode, message: str, details: dict
    ) -> DomainValidationResult:
        return DomainValidationResult(
            valid=False,
            canonical_name=None,
            error=DomainValidationError(code=code, message=message, details=details),
        )
