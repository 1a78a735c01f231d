import re
from typing import Tuple

_NON_RUT = re.compile(r"[^0-9kK]")


def clean_rut(rut: str) -> str:
    """Digits plus check digit, no dots or dash, upper-case K."""
    return _NON_RUT.sub("", rut or "").upper()


def check_digit(number: str) -> str:
    total, factor = 0, 2
    for ch in reversed(number):
        total += int(ch) * factor
        factor = 2 if factor == 7 else factor + 1
    rest = 11 - (total % 11)
    if rest == 11:
        return "0"
    if rest == 10:
        return "K"
    return str(rest)


def is_valid_rut(rut: str) -> bool:
    raw = clean_rut(rut)
    if len(raw) < 2 or not raw[:-1].isdigit():
        return False
    return check_digit(raw[:-1]) == raw[-1]


def split_rut(rut: str) -> Tuple[str, str]:
    raw = clean_rut(rut)
    return raw[:-1], raw[-1:]


def lre_rut(rut: str) -> str:
    """LRE format: no dots, dash before the check digit, lower-case k."""
    number, dv = split_rut(rut)
    if not number:
        return ""
    return f"{number}-{dv.lower()}"
