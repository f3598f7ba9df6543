"""Indonesian phone number variants for lookup."""

import re


def digits_only(phone_number: str) -> str:
    """Strip everything but digits."""
    return re.sub(r"\D", "", phone_number or "")


def phone_alternatives(phone_number: str) -> list[str]:
    """
    Candidate spellings of a phone number, literal first.

    Indonesian mobile numbers are stored as either 0812..., 62812... or
    +62812...; any one of them should resolve to the same patient.

    Args:
        phone_number: Number as received

    Returns:
        De-duplicated candidates, the literal input first
    """
    if not phone_number:
        return []

    candidates = [phone_number]
    cleaned = digits_only(phone_number)
    if cleaned:
        candidates.append(cleaned)

    if cleaned.startswith("62") and len(cleaned) >= 11:
        local = "0" + cleaned[2:]
        candidates.extend([local, cleaned, "+" + cleaned])
    elif cleaned.startswith("0") and len(cleaned) >= 10:
        international = "62" + cleaned[1:]
        candidates.extend([cleaned, international, "+" + international])

    seen = set()
    ordered = []
    for candidate in candidates:
        if candidate not in seen:
            seen.add(candidate)
            ordered.append(candidate)
    return ordered


def canonical_phone(phone_number: str) -> str:
    """One spelling per number: the international 62... form when recognizable."""
    cleaned = digits_only(phone_number)
    if cleaned.startswith("0") and len(cleaned) >= 10:
        return "62" + cleaned[1:]
    return cleaned
