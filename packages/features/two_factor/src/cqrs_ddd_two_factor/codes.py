"""Code generation and matching primitives.

Numeric one-time codes and RFC 6238 TOTP codes. TOTP computation is
delegated to pyotp; the time-step counter is computed here so that the
caller's clock, not the process clock, decides which step is current.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
from typing import TYPE_CHECKING, Any

from .exceptions import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable

    from .ports import IRandomSource

_NON_DIGITS = re.compile(r"\D")

DIGESTS: dict[str, Callable[..., Any]] = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


def load_pyotp() -> Any:
    """Lazy import pyotp."""
    try:
        import pyotp

        return pyotp
    except ImportError as e:
        raise ImportError(
            "pyotp is required for TOTP support. Install with: pip install pyotp"
        ) from e


def normalize_numeric_code(code: str) -> str:
    """Strip everything that is not a digit ("123 456" -> "123456")."""
    return _NON_DIGITS.sub("", code or "")


def generate_numeric_code(length: int = 6, *, random_source: IRandomSource) -> str:
    """Generate a zero-padded random numeric code."""
    if length < 1:
        raise ConfigurationError("Code length must be positive")
    return str(random_source.randbelow(10**length)).zfill(length)


def generate_totp_secret(*, random_source: IRandomSource, num_bytes: int = 20) -> str:
    """Generate a base32 TOTP secret (160 bits by default, no padding)."""
    raw = random_source.token_bytes(num_bytes)
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def validate_secret(secret: str) -> str:
    """Return the canonical base32 secret.

    Raises:
        ConfigurationError: If the secret is empty or not valid base32.
    """
    if not secret:
        raise ConfigurationError("TOTP secret is missing")
    canonical = secret.replace(" ", "").upper().rstrip("=")
    padded = canonical + "=" * (-len(canonical) % 8)
    try:
        base64.b32decode(padded, casefold=False)
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError("TOTP secret is not valid base32") from e
    return canonical


def _digest_for(algorithm: str) -> Callable[..., Any]:
    try:
        return DIGESTS[algorithm.lower()]
    except KeyError as e:
        raise ConfigurationError(f"Unsupported TOTP algorithm: {algorithm}") from e


def _build_totp(secret: str, *, period: int, digits: int, algorithm: str) -> Any:
    if digits not in (6, 8):
        raise ConfigurationError("TOTP digits must be 6 or 8")
    if period <= 0:
        raise ConfigurationError("TOTP period must be positive")
    pyotp = load_pyotp()
    return pyotp.TOTP(
        validate_secret(secret),
        digits=digits,
        digest=_digest_for(algorithm),
        interval=period,
    )


def totp_counter(timestamp: float, period: int) -> int:
    return int(timestamp // period)


def compute_totp(
    secret: str,
    timestamp: float,
    *,
    period: int = 30,
    digits: int = 6,
    algorithm: str = "sha1",
) -> str:
    """Compute the TOTP code for ``timestamp`` (Unix seconds)."""
    totp = _build_totp(secret, period=period, digits=digits, algorithm=algorithm)
    return str(totp.generate_otp(totp_counter(timestamp, period)))


def verify_totp(
    secret: str,
    code: str,
    *,
    timestamp: float,
    period: int = 30,
    digits: int = 6,
    algorithm: str = "sha1",
    window: int = 0,
) -> bool:
    """Check ``code`` against every step in ``[-window, window]``.

    Any matching step accepts. Comparison is constant time per step.
    """
    submitted = normalize_numeric_code(code)
    if len(submitted) != digits:
        return False

    totp = _build_totp(secret, period=period, digits=digits, algorithm=algorithm)
    counter = totp_counter(timestamp, period)
    matched = False
    for offset in range(-window, window + 1):
        if counter + offset < 0:
            continue
        expected = str(totp.generate_otp(counter + offset))
        # no early exit: every step in the window is compared
        if hmac.compare_digest(expected, submitted):
            matched = True
    return matched


def codes_equal(expected: str, submitted: str) -> bool:
    """Constant-time equality of two numeric codes after normalization."""
    left = normalize_numeric_code(expected)
    right = normalize_numeric_code(submitted)
    if not left or not right:
        return False
    return hmac.compare_digest(left, right)


def hash_code(code: str) -> str:
    """SHA-256 hex digest of a submitted code, for the attempt log."""
    return hashlib.sha256(code.encode()).hexdigest()


__all__: list[str] = [
    "DIGESTS",
    "load_pyotp",
    "normalize_numeric_code",
    "generate_numeric_code",
    "generate_totp_secret",
    "validate_secret",
    "totp_counter",
    "compute_totp",
    "verify_totp",
    "codes_equal",
    "hash_code",
]
