"""
Input validation for envelope creation and field placement.

Pure functions: they normalise client input into the values that will be
stored, or raise a ValidationError subclass.  No I/O.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from signflow_kernel.domain.dtos import FieldSpec, SignerSpec
from signflow_kernel.domain.statuses import FieldKind, SignatureMethod
from signflow_kernel.exceptions import (
    InvalidExpiryError,
    InvalidSignatureFieldError,
    InvalidSignerError,
)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

DEFAULT_SIGNER_NAME = "Unknown"


@dataclass(frozen=True)
class NormalizedField:
    page_number: int
    x: float
    y: float
    width: float
    height: float
    kind: FieldKind


@dataclass(frozen=True)
class NormalizedSigner:
    email: str
    name: str
    signature_method: SignatureMethod
    fields: tuple[NormalizedField, ...]


def parse_field_kind(kind: FieldKind | str | None, field_index: int | None = None) -> FieldKind:
    """Case-insensitive field kind; None or blank means SIGNATURE."""
    if isinstance(kind, FieldKind):
        return kind
    value = (kind or "").strip().upper() or FieldKind.SIGNATURE.value
    try:
        return FieldKind(value)
    except ValueError:
        allowed = ", ".join(k.value for k in FieldKind)
        raise InvalidSignatureFieldError(
            f"invalid kind {value!r}; allowed: {allowed}", field_index
        ) from None


def parse_signature_method(method: SignatureMethod | str | None) -> SignatureMethod:
    if isinstance(method, SignatureMethod):
        return method
    value = (method or "").strip().upper() or SignatureMethod.CLICK.value
    try:
        return SignatureMethod(value)
    except ValueError:
        raise InvalidSignerError(f"unknown signature method {value!r}") from None


def normalize_field(spec: FieldSpec, field_index: int | None = None) -> NormalizedField:
    """
    Validate one field placement.

    Raises:
        InvalidSignatureFieldError: page < 1, negative x/y, non-positive
            width/height, or unknown kind.
    """
    if isinstance(spec.page_number, bool) or int(spec.page_number) != spec.page_number:
        raise InvalidSignatureFieldError("page number must be an integer", field_index)
    if spec.page_number < 1:
        raise InvalidSignatureFieldError("page number must be >= 1", field_index)
    if spec.x < 0 or spec.y < 0:
        raise InvalidSignatureFieldError("x and y must be non-negative", field_index)
    if spec.width <= 0 or spec.height <= 0:
        raise InvalidSignatureFieldError("width and height must be positive", field_index)
    return NormalizedField(
        page_number=int(spec.page_number),
        x=float(spec.x),
        y=float(spec.y),
        width=float(spec.width),
        height=float(spec.height),
        kind=parse_field_kind(spec.kind, field_index),
    )


def normalize_email(email: str | None) -> str:
    value = (email or "").strip().lower()
    if not value:
        raise InvalidSignerError("email is required")
    if not _EMAIL_RE.match(value):
        raise InvalidSignerError("email is malformed", value)
    return value


def normalize_signers(specs: Sequence[SignerSpec]) -> list[NormalizedSigner]:
    """
    Validate the signer list of a new envelope.

    Raises:
        InvalidSignerError: Empty list, missing/malformed email, or the same
            email twice (compared case-insensitively).
    """
    if not specs:
        raise InvalidSignerError("at least one signer is required")

    seen: set[str] = set()
    result: list[NormalizedSigner] = []
    for spec in specs:
        email = normalize_email(spec.email)
        if email in seen:
            raise InvalidSignerError("duplicate signer", email)
        seen.add(email)
        result.append(
            NormalizedSigner(
                email=email,
                name=(spec.name or "").strip() or DEFAULT_SIGNER_NAME,
                signature_method=parse_signature_method(spec.signature_method),
                fields=tuple(normalize_field(f, i) for i, f in enumerate(spec.fields)),
            )
        )
    return result


def validate_expiry(expires_at: datetime | None, now: datetime) -> None:
    """
    Raises:
        InvalidExpiryError: ``expires_at`` is naive or not after ``now``.
    """
    if expires_at is None:
        return
    if expires_at.tzinfo is None or expires_at <= now:
        raise InvalidExpiryError(str(expires_at), now.isoformat())
