from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

_PO_BOX = re.compile(r"^P\.?O\.?\s*Box", re.IGNORECASE)
_CARE_OF = re.compile(r"^C/O\s+", re.IGNORECASE)
_ATTN = re.compile(r"^Attn:", re.IGNORECASE)

_CARE_OF_FRAGMENT = re.compile(r"^c/o\s+[^,]+,?\s*", re.IGNORECASE)
_ATTN_FRAGMENT = re.compile(r"^Attn:\s+[^,]+,?\s*", re.IGNORECASE)


@dataclass(frozen=True)
class CleanAddress:
    street: Optional[str]
    street2: Optional[str]
    city: Optional[str]
    state: Optional[str]
    postal_code: Optional[str]
    country: Optional[str]


def _field(address: Any, name: str) -> Optional[str]:
    if isinstance(address, Mapping):
        return address.get(name)
    return getattr(address, name, None)


def _strip_recipient(line: Optional[str]) -> Optional[str]:
    """Drop a leading 'c/o <name>,' or 'Attn: <name>,' fragment."""
    if not line:
        return line
    line = _CARE_OF_FRAGMENT.sub("", line).strip()
    line = _ATTN_FRAGMENT.sub("", line).strip()
    return line


def clean_address(address: Any) -> Optional[CleanAddress]:
    """
    Normalize a mailing address into something a geocoder can place.
    Accepts a mapping or any object with street/street2/city/state/postal_code/country.
    Returns None when the address has no physical location (PO box only).
    """
    street = _field(address, "street")
    street2 = _field(address, "street2") or None

    if street and (_PO_BOX.match(street) or _CARE_OF.match(street) or _ATTN.match(street)):
        if street2:
            street, street2 = street2, None
        elif _PO_BOX.match(street):
            return None
        else:
            # "C/O Jane Doe, 123 Main St": the street after the recipient is usable
            street = _strip_recipient(street)
            if not street:
                return None

    street = _strip_recipient(street)
    street2 = _strip_recipient(street2) or None

    return CleanAddress(
        street=street,
        street2=street2,
        city=_field(address, "city"),
        state=_field(address, "state"),
        postal_code=_field(address, "postal_code"),
        country=_field(address, "country"),
    )


def build_address_string(address: Any) -> str:
    """'street, city, state, postal' with missing parts left out."""
    parts = [_field(address, k) for k in ("street", "city", "state", "postal_code")]
    return ", ".join(p for p in parts if p)
