"""TOTP (Time-based One-Time Password) service.

Works with any RFC 6238 authenticator app:
- Google Authenticator
- Microsoft Authenticator
- Authy
- 1Password
- FreeOTP

Uses pyotp for code computation and provisioning URIs. Secrets are
generated from the injected random source and verified against the
injected clock.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from .clock import SystemClock
from .codes import (
    DIGESTS,
    compute_totp,
    generate_totp_secret,
    load_pyotp,
    validate_secret,
    verify_totp,
)
from .config import TotpConfig
from .entropy import SecureRandomSource

if TYPE_CHECKING:
    from .models import UserProfile
    from .ports import IClock, IRandomSource


@dataclass(frozen=True)
class TotpSetup:
    """TOTP setup data returned when setting up TOTP.

    Attributes:
        secret: Base32-encoded TOTP secret.
        qr_uri: otpauth:// URI for QR code generation.
        manual_key: Human-readable key for manual entry.
    """

    secret: str
    qr_uri: str
    manual_key: str


class TotpService:
    """TOTP secrets, provisioning URIs and code checks.

    Stateless: the caller owns secret storage.

    Example:
        ```python
        totp = TotpService(config=TotpConfig(issuer="Acme"))

        setup = totp.setup(UserProfile(user_id="u1", email="jane@acme.test"))
        print(f"Scan this QR: {setup.qr_uri}")

        if totp.verify(setup.secret, "123456"):
            print("Valid!")
        ```
    """

    def __init__(
        self,
        *,
        config: TotpConfig | None = None,
        clock: IClock | None = None,
        random_source: IRandomSource | None = None,
    ) -> None:
        self.config = config or TotpConfig()
        self.clock = clock or SystemClock()
        self.random_source = random_source or SecureRandomSource()

    def generate_secret(self) -> str:
        return generate_totp_secret(random_source=self.random_source)

    def setup(self, profile: UserProfile, secret: str | None = None) -> TotpSetup:
        """Create (or reuse) a secret and describe it for an authenticator app.

        Args:
            profile: User whose account label appears in the app.
            secret: Existing secret to re-display; a new one is generated
                when omitted.
        """
        secret = validate_secret(secret) if secret else self.generate_secret()
        return TotpSetup(
            secret=secret,
            qr_uri=self.provisioning_uri(secret, profile.account_label),
            manual_key=self.format_secret(secret),
        )

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        """otpauth:// URI carrying issuer, algorithm, digits and period."""
        pyotp = load_pyotp()
        totp = pyotp.TOTP(
            validate_secret(secret),
            digits=self.config.digits,
            digest=DIGESTS[self.config.algorithm],
            interval=self.config.period,
            issuer=self.config.issuer,
        )
        return str(
            totp.provisioning_uri(name=account_name, issuer_name=self.config.issuer)
        )

    @staticmethod
    def format_secret(secret: str) -> str:
        """Secret as space-separated groups of 4 for manual entry."""
        secret = secret.rstrip("=")
        return " ".join(secret[i : i + 4] for i in range(0, len(secret), 4))

    def current_code(self, secret: str) -> str:
        """Code for the current time step."""
        return compute_totp(
            secret,
            self.clock.now().timestamp(),
            period=self.config.period,
            digits=self.config.digits,
            algorithm=self.config.algorithm,
        )

    def verify(self, secret: str, code: str) -> bool:
        """Check a code within ±window time steps of now.

        Raises:
            ConfigurationError: If the secret is malformed.
        """
        return verify_totp(
            secret,
            code,
            timestamp=self.clock.now().timestamp(),
            period=self.config.period,
            digits=self.config.digits,
            algorithm=self.config.algorithm,
            window=self.config.window,
        )


__all__: list[str] = ["TotpSetup", "TotpService"]
