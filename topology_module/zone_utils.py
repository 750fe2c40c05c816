# topology_module/zone_utils.py
from __future__ import annotations

import ipaddress
from typing import Any, List, Optional, Tuple

import idna
import tldextract

from .records import DNSRecord

MIN_HOPS = 1
MAX_HOPS = 15

# --------------------------------------------------------------------
# PSL extractor. Bundled snapshot only, no network fetch and no disk cache.
# --------------------------------------------------------------------
_EXTRACTOR = tldextract.TLDExtract(
    cache_dir=None,
    suffix_list_urls=(),
)

# --------------------------------------------------------------------
# Name normalization
# --------------------------------------------------------------------
def normalize_name(value: Optional[Any]) -> str:
    """
    Lowercase + strip surrounding whitespace and the trailing dot.
    Non-ASCII labels are converted to punycode; ASCII labels are kept as-is
    so service labels such as `_dmarc` or `_sip._tcp` survive.
    Returns "" if input is falsy.
    """
    if value is None:
        return ""
    name = str(value).strip().rstrip(".").strip()
    if not name:
        return ""
    if name.isascii():
        return name.lower()
    labels: List[str] = []
    for lbl in name.split("."):
        if lbl.isascii():
            labels.append(lbl)
            continue
        try:
            labels.append(idna.encode(lbl, uts46=True, std3_rules=False).decode("ascii"))
        except idna.IDNAError:
            labels.append(lbl)
    return ".".join(labels).lower()


def owner_name(raw: Optional[str], zone: str) -> str:
    """Normalized owner of a record; '@' and the empty root map to the zone apex."""
    name = normalize_name(raw)
    if not name or name == "@":
        return zone
    return name


def qualify(name: str, zone: str) -> str:
    """Return `name` as a fully-qualified in-zone name (relative owners get the zone appended)."""
    if not name or not zone:
        return name
    if name == zone or name.endswith("." + zone):
        return name
    return f"{name}.{zone}"


def clamp_hops(value: Any, default: int = MAX_HOPS) -> int:
    """Round and clamp a hop limit into [1, 15]."""
    try:
        hops = int(round(float(value)))
    except (TypeError, ValueError):
        hops = default
    return max(MIN_HOPS, min(MAX_HOPS, hops))


def is_ip_address(value: Optional[str]) -> bool:
    v = str(value or "").strip()
    if not v:
        return False
    try:
        ipaddress.ip_address(v)
        return True
    except ValueError:
        return False

# --------------------------------------------------------------------
# Record content parsing
# --------------------------------------------------------------------
def split_fields(content: Optional[str]) -> List[str]:
    return str(content or "").strip().split()


def parse_mx(content: Optional[str]) -> Tuple[Optional[int], str]:
    """
    Split an MX value "10 mail.example.com." into (priority, target).
    A non-numeric first field yields priority None; the target is still
    everything after the first field.
    """
    parts = split_fields(content)
    if not parts:
        return None, ""
    try:
        priority: Optional[int] = int(parts[0])
    except ValueError:
        try:
            as_float = float(parts[0])
            priority = int(as_float) if as_float.is_integer() else None
        except ValueError:
            priority = None
    return priority, normalize_name(" ".join(parts[1:]))


def extract_target(record: DNSRecord) -> Optional[str]:
    """
    Return the name or address a record points at, or None.
      CNAME/NS -> content
      MX       -> everything after the priority
      SRV      -> everything after priority, weight and port
      A/AAAA   -> the address itself
    """
    rtype = record.type
    if rtype in ("CNAME", "NS"):
        return normalize_name(record.content) or None
    if rtype == "MX":
        _, target = parse_mx(record.content)
        return target or None
    if rtype == "SRV":
        parts = split_fields(record.content)
        return normalize_name(" ".join(parts[3:])) or None
    if rtype in ("A", "AAAA"):
        ip = str(record.content or "").strip()
        return ip or None
    return None


def reg_domain(name: Optional[str]) -> str:
    """Registered domain (eTLD+1) for a hostname, or "" if unavailable."""
    if not name:
        return ""
    ext = _EXTRACTOR(name.lower().strip("."))
    if not ext.domain or not ext.suffix:
        return ""
    return f"{ext.domain}.{ext.suffix}"


def esc(value: Any) -> str:
    """Escape double quotes for a quoted diagram label."""
    return str(value if value is not None else "").replace('"', '\\"')
