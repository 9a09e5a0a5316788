from __future__ import annotations


# Shop price-tag cipher: each cost digit maps to a letter of FRANCHISE, 0 stays 0
DIGIT_TO_CIPHER = {
    "1": "F", "2": "R", "3": "A", "4": "N", "5": "C",
    "6": "H", "7": "I", "8": "S", "9": "E", "0": "0",
}


def encode_cost_code(cost) -> str | None:
    """
    Encode a cost for price tags: 1250 -> "FRC0".

    Non-digits are ignored; None or a value without digits gives None.
    """
    if cost is None:
        return None
    digits = "".join(ch for ch in str(cost) if ch.isdigit())
    if not digits:
        return None
    return "".join(DIGIT_TO_CIPHER[d] for d in digits)
