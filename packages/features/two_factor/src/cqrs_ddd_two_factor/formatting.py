"""Masking and normalization helpers for logs and display.

Destinations and addresses are masked before they reach a log line or an
event payload.
"""

from __future__ import annotations

import ipaddress
import re

_PHONE_CHARS = re.compile(r"[^+0-9]")


def normalize_phone_number(phone_number: str) -> str:
    """Normalize a phone number towards E.164.

    Strips formatting characters. Numbers without a leading ``+`` are
    assumed to be North American when they have 10 digits, or 11 digits
    starting with ``1``; anything else is returned cleaned but unchanged.
    """
    cleaned = _PHONE_CHARS.sub("", phone_number or "")
    if not cleaned.startswith("+"):
        if len(cleaned) == 10:
            cleaned = "+1" + cleaned
        elif len(cleaned) == 11 and cleaned.startswith("1"):
            cleaned = "+" + cleaned
    return cleaned


def mask_phone_number(phone_number: str) -> str:
    """'+15551234567' -> '+15*****567'."""
    if len(phone_number) <= 6:
        return "*" * len(phone_number)
    return phone_number[:3] + "*" * (len(phone_number) - 6) + phone_number[-3:]


def mask_email(email: str) -> str:
    """'jane.doe@example.com' -> 'j*******@example.com'."""
    local, sep, domain = email.partition("@")
    if not sep:
        return "*" * len(email)
    if len(local) <= 1:
        return f"*@{domain}"
    return f"{local[0]}{'*' * (len(local) - 1)}@{domain}"


def mask_ip_address(ip_address: str | None) -> str:
    """Hide the host part of an address.

    IPv4 keeps the first three octets, IPv6 keeps the first four groups.
    """
    if not ip_address:
        return "xxx.xxx.xxx.xxx"
    try:
        parsed = ipaddress.ip_address(ip_address)
    except ValueError:
        return "xxx.xxx.xxx.xxx"
    if parsed.version == 4:
        octets = ip_address.split(".")
        return ".".join(octets[:3]) + ".xxx"
    groups = parsed.exploded.split(":")
    return ":".join(groups[:4]) + ":xxxx:xxxx:xxxx:xxxx"


def mask_destination(destination: str) -> str:
    """Mask an email address or phone number, whichever it looks like."""
    if "@" in destination:
        return mask_email(destination)
    return mask_phone_number(destination)


__all__: list[str] = [
    "normalize_phone_number",
    "mask_phone_number",
    "mask_email",
    "mask_ip_address",
    "mask_destination",
]
