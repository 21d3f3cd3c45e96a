"""Random source backed by the ``secrets`` module."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

from .ports import IRandomSource

if TYPE_CHECKING:
    from collections.abc import Sequence


class SecureRandomSource(IRandomSource):
    """Operating-system CSPRNG. The default for every service."""

    def token_bytes(self, nbytes: int) -> bytes:
        return secrets.token_bytes(nbytes)

    def randbelow(self, upper: int) -> int:
        return secrets.randbelow(upper)

    def choice(self, seq: Sequence[str]) -> str:
        return secrets.choice(seq)


__all__: list[str] = ["SecureRandomSource"]
