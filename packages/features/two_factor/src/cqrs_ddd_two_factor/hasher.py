"""One-way hashing for recovery codes.

bcrypt by default; argon2id when the ``argon2`` extra is installed. The
stored hash carries its own algorithm marker, so codes hashed under one
setting still verify after the setting changes.
"""

from __future__ import annotations

from typing import Any, Literal, cast


class CodeHasher:
    """Salted one-way hasher for recovery codes.

    Example:
        ```python
        hasher = CodeHasher(rounds=10)
        stored = hasher.hash("ABCD2345EF")
        assert hasher.verify(stored, "ABCD2345EF")
        ```
    """

    def __init__(
        self,
        *,
        algorithm: Literal["bcrypt", "argon2id"] = "bcrypt",
        rounds: int = 10,
    ) -> None:
        """Initialize the hasher.

        Args:
            algorithm: Hashing algorithm (default bcrypt).
            rounds: bcrypt cost factor. Low values are only for tests.
        """
        self.algorithm = algorithm
        self.rounds = rounds
        self._bcrypt: Any = None
        self._argon2: Any = None

    def _get_bcrypt(self) -> Any:
        """Lazy import bcrypt."""
        if self._bcrypt is None:
            try:
                import bcrypt

                self._bcrypt = bcrypt
            except ImportError as e:
                raise ImportError(
                    "bcrypt is required for recovery code hashing. "
                    "Install with: pip install bcrypt"
                ) from e
        return self._bcrypt

    def _get_argon2(self) -> Any:
        """Lazy import argon2."""
        if self._argon2 is None:
            try:
                from argon2 import PasswordHasher as Argon2Hasher

                self._argon2 = Argon2Hasher()
            except ImportError as e:
                raise ImportError(
                    "argon2-cffi is required for argon2id hashing. "
                    "Install with: pip install cqrs-ddd-two-factor[argon2]"
                ) from e
        return self._argon2

    def hash(self, code: str) -> str:
        """Hash a normalized code."""
        if self.algorithm == "argon2id":
            return self._get_argon2().hash(code)  # type: ignore[no-any-return]
        bcrypt_module = self._get_bcrypt()
        salt = bcrypt_module.gensalt(rounds=self.rounds)
        hashed: str = bcrypt_module.hashpw(code.encode(), salt).decode()
        return hashed

    def verify(self, hashed: str, code: str) -> bool:
        """Check a normalized code against a stored hash.

        Malformed hashes never match.
        """
        if hashed.startswith("$argon2"):
            return self._verify_argon2id(hashed, code)
        bcrypt_module = self._get_bcrypt()
        try:
            return cast("bool", bcrypt_module.checkpw(code.encode(), hashed.encode()))
        except ValueError:
            return False

    def _verify_argon2id(self, hashed: str, code: str) -> bool:
        hasher = self._get_argon2()
        from argon2.exceptions import Argon2Error, InvalidHashError

        try:
            return cast("bool", hasher.verify(hashed, code))
        except (Argon2Error, InvalidHashError):
            return False


__all__: list[str] = ["CodeHasher"]
