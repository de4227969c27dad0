"""IP fingerprinting for abuse correlation.

The hash is a 32-bit rolling hash, not a cryptographic one: it only has to
cluster requests from the same address. Occasional collisions are fine.
"""

from __future__ import annotations

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_DIGITS = 6  # 2**31 in base 36 is "zik0zk"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(_BASE36[rem])
    return "".join(reversed(out))


def hash_ip(ip: str) -> str:
    """Deterministic, fixed-length token for an IP address, e.g. ``ip_0a1b2c``."""
    h = 0
    for ch in ip:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return "ip_" + _to_base36(abs(h)).zfill(_DIGITS)


def client_ip(forwarded_for: str | None, cf_connecting_ip: str | None, peer: str | None) -> str:
    """Pick the caller address: first X-Forwarded-For hop, then CF-Connecting-IP, then the socket peer."""
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    if cf_connecting_ip:
        return cf_connecting_ip.strip()
    return peer or "unknown"
