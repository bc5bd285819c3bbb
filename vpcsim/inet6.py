"""Text conversion of IPv6 addresses in both directions."""

from __future__ import annotations

import string
from typing import Optional

IN6ADDRSZ = 16
INT16SZ = 2
INADDRSZ = 4

_HEXDIGITS = frozenset(string.hexdigits)
_DECIMAL = frozenset(string.digits)


def _format_ipv4(packed: bytes) -> str:
    return ".".join(str(b) for b in packed)


def ntop6(packed: bytes) -> str:
    """Format a 16-byte IPv6 address in its shortest text form.

    The longest run of two or more zero words is written as ``::``, and
    IPv4-compatible or IPv4-mapped addresses end in dotted-quad form.
    """
    data = bytes(packed)
    if len(data) != IN6ADDRSZ:
        raise ValueError(f"IPv6 address must be {IN6ADDRSZ} bytes, got {len(data)}")

    words = [int.from_bytes(data[i : i + INT16SZ], "big") for i in range(0, IN6ADDRSZ, INT16SZ)]

    best_base, best_len = -1, 0
    cur_base, cur_len = -1, 0
    for i, word in enumerate(words):
        if word == 0:
            if cur_base == -1:
                cur_base, cur_len = i, 1
            else:
                cur_len += 1
        elif cur_base != -1:
            if best_base == -1 or cur_len > best_len:
                best_base, best_len = cur_base, cur_len
            cur_base = -1
    if cur_base != -1 and (best_base == -1 or cur_len > best_len):
        best_base, best_len = cur_base, cur_len
    if best_base != -1 and best_len < 2:
        best_base = -1

    out = []
    for i, word in enumerate(words):
        if best_base != -1 and best_base <= i < best_base + best_len:
            if i == best_base:
                out.append(":")
            continue
        if i != 0:
            out.append(":")
        if (
            i == 6
            and best_base == 0
            and (
                best_len == 6
                or (best_len == 7 and words[7] != 0x0001)
                or (best_len == 5 and words[5] == 0xFFFF)
            )
        ):
            out.append(_format_ipv4(data[12:16]))
            break
        out.append(f"{word:x}")
    if best_base != -1 and best_base + best_len == len(words):
        out.append(":")
    return "".join(out)


def _parse_ipv4(text: str) -> Optional[bytes]:
    """Parse a strict dotted quad, or return None."""
    parts = text.split(".")
    if len(parts) != 4:
        return None
    octets = []
    for part in parts:
        if not part or not set(part) <= _DECIMAL:
            return None
        if len(part) > 1 and part[0] == "0":
            return None
        value = int(part)
        if value > 255:
            return None
        octets.append(value)
    return bytes(octets)


def pton6(text: str) -> bytes:
    """Parse IPv6 address text into its 16-byte form.

    Raises ValueError if the text is not a valid IPv6 address.
    """

    def invalid() -> ValueError:
        return ValueError(f"invalid IPv6 address: {text!r}")

    src = text
    pos = 0
    if src.startswith(":"):
        if src[1:2] != ":":
            raise invalid()
        pos = 1

    tmp = bytearray(IN6ADDRSZ)
    tp = 0
    colonp: Optional[int] = None
    curtok = pos
    seen_xdigits = 0
    val = 0

    while pos < len(src):
        ch = src[pos]
        pos += 1
        if ch in _HEXDIGITS:
            val = (val << 4) | int(ch, 16)
            seen_xdigits += 1
            if seen_xdigits > 4:
                raise invalid()
            continue
        if ch == ":":
            curtok = pos
            if not seen_xdigits:
                if colonp is not None:
                    raise invalid()
                colonp = tp
                continue
            if pos >= len(src):
                raise invalid()
            if tp + INT16SZ > IN6ADDRSZ:
                raise invalid()
            tmp[tp : tp + INT16SZ] = val.to_bytes(INT16SZ, "big")
            tp += INT16SZ
            seen_xdigits = 0
            val = 0
            continue
        if ch == "." and tp + INADDRSZ <= IN6ADDRSZ:
            v4 = _parse_ipv4(src[curtok:])
            if v4 is not None:
                tmp[tp : tp + INADDRSZ] = v4
                tp += INADDRSZ
                seen_xdigits = 0
                break
        raise invalid()

    if seen_xdigits:
        if tp + INT16SZ > IN6ADDRSZ:
            raise invalid()
        tmp[tp : tp + INT16SZ] = val.to_bytes(INT16SZ, "big")
        tp += INT16SZ

    if colonp is not None:
        if tp == IN6ADDRSZ:
            raise invalid()
        tmp = tmp[:colonp] + bytearray(IN6ADDRSZ - tp) + tmp[colonp:tp]
        tp = IN6ADDRSZ

    if tp != IN6ADDRSZ:
        raise invalid()
    return bytes(tmp)