"""
utils/whatsapp_utils.py

Purpose: WhatsApp address helpers

- Normalizes phone numbers into canonical chat addresses
- Builds invite links from invite codes
"""

import re
from typing import List, Optional

from app.core.exceptions import InvalidArgumentError

USER_ADDRESS_SUFFIX = "@c.us"
DEFAULT_INVITE_LINK_BASE = "https://chat.whatsapp.com/"


def normalize_participant(ref: str) -> str:
    """
    Converts a phone number or address into canonical address form.

    Anything that already contains '@' is treated as a full address and
    returned unchanged; otherwise every non-digit is stripped and the user
    suffix is appended.

    Args:
        ref: Phone-like string ("+91 98765-43210") or address ("9198765432@c.us")

    Returns:
        Canonical address, e.g. "919876543210@c.us"

    Raises:
        InvalidArgumentError: If the reference is empty or has no digits

    Example:
        >>> normalize_participant("+91 98765 43210")
        '919876543210@c.us'
    """
    if not isinstance(ref, str) or not ref.strip():
        raise InvalidArgumentError("Participant must be a non-empty string")

    ref = ref.strip()
    if "@" in ref:
        return ref

    digits = re.sub(r"\D", "", ref)
    if not digits:
        raise InvalidArgumentError(f"Invalid phone number: {ref}")

    return f"{digits}{USER_ADDRESS_SUFFIX}"


def normalize_participants(refs: List[str]) -> List[str]:
    """Normalizes every reference, preserving order."""
    return [normalize_participant(ref) for ref in refs]


def build_invite_link(invite_code: Optional[str], base: str = DEFAULT_INVITE_LINK_BASE) -> Optional[str]:
    """
    Turns an invite code into a join link.

    Returns:
        "https://chat.whatsapp.com/{code}", or None when there is no code
    """
    if not invite_code:
        return None
    if not base.endswith("/"):
        base += "/"
    return f"{base}{invite_code}"
