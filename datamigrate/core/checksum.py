"""
Checksum engine - deterministic integrity tags for bundles and workspace files.

The default `rolling` strategy is a 32-bit rolling hash that detects accidental
corruption but not tampering. Deployments that need tamper evidence select
`sha256` through CHECKSUM_STRATEGY.
"""

import hashlib
import json
from typing import Any, Callable, Dict

from .config import get_checksum_strategy

ChecksumFn = Callable[[str], str]

_STRATEGIES: Dict[str, ChecksumFn] = {}


def rolling_hash(text: str) -> str:
    """32-bit rolling hash (h * 31 + unit) over UTF-16 code units, as unsigned hex."""
    # Lone surrogates are valid UTF-16 units and hash like any other
    data = text.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = ((h << 5) - h + unit) & 0xFFFFFFFF

    # Reinterpret as signed 32-bit before taking the magnitude
    if h >= 0x80000000:
        h -= 0x100000000
    return format(abs(h), "x")


def sha256_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8", "surrogatepass")).hexdigest()


def register_strategy(name: str, fn: ChecksumFn) -> None:
    """Register a checksum strategy under `name`."""
    _STRATEGIES[name] = fn


def get_strategy(name: str = None) -> ChecksumFn:
    name = name or get_checksum_strategy()
    try:
        return _STRATEGIES[name]
    except KeyError:
        raise ValueError(f"Unknown checksum strategy: {name}") from None


register_strategy("rolling", rolling_hash)
register_strategy("sha256", sha256_hash)


def _normalize_numbers(value: Any) -> Any:
    # Whole floats serialize as integers, matching JSON.stringify
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    if isinstance(value, dict):
        return {key: _normalize_numbers(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_numbers(item) for item in value]
    return value


def serialize_payload(payload: Any) -> str:
    """
    Canonical text form of a payload.

    Strings are hashed as-is. Everything else is compact JSON with key order
    preserved, so two bundles hash equal only if their serialized bytes match.
    Whole-number floats are written as integers (`1.0` becomes `1`), the way
    JavaScript clients serialize them.
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, bytes):
        return payload.decode("utf-8")
    return json.dumps(_normalize_numbers(payload), separators=(",", ":"), ensure_ascii=False)


def checksum(payload: Any, strategy: str = None) -> str:
    """Compute the bare checksum tag of a payload."""
    return get_strategy(strategy)(serialize_payload(payload))


def verify_checksum(payload: Any, expected: str, strategy: str = None) -> bool:
    """Check a payload against a caller-supplied tag."""
    if not expected:
        return False
    return checksum(payload, strategy) == expected


def artifact_checksum(content: str, strategy: str = None) -> str:
    """Self-describing tag for stored files: `<strategy>-<hex>`."""
    name = strategy or get_checksum_strategy()
    return f"{name}-{checksum(content, name)}"


def verify_artifact(content: str, tag: str) -> bool:
    """Re-verify stored content against its `<strategy>-<hex>` tag."""
    name, sep, _ = tag.partition("-")
    if not sep or name not in _STRATEGIES:
        return False
    return artifact_checksum(content, name) == tag
