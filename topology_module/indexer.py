"""
topology_module/indexer.py

Record indexing for one rendering pass:
- records grouped by normalized owner name (apex substitution applied)
- CNAME pointer map (name -> single target)
- in-zone address maps (name -> IPv4 list, name -> IPv6 list)

Relative owners ("www" in zone "example.com") are additionally registered
under their fully-qualified form in the pointer and address maps, so a
target written as "www.example.com" finds the addresses of a record named
"www". Grouping keeps the owner exactly as normalized.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .logger import get_child_logger
from .records import DNSRecord
from .zone_utils import normalize_name, owner_name, qualify

log = get_child_logger("indexer")


def group_by_name(records: Iterable[DNSRecord], zone: str) -> Dict[str, List[DNSRecord]]:
    """Records grouped by normalized owner, in first-seen order."""
    grouped: Dict[str, List[DNSRecord]] = {}
    for record in records:
        name = owner_name(record.name, zone)
        grouped.setdefault(name, []).append(record)
    return grouped


def _keys_for(name: str, zone: str) -> List[str]:
    fq = qualify(name, zone)
    return [name] if fq == name else [name, fq]


def build_cname_map(records: Iterable[DNSRecord], zone: str = "") -> Dict[str, str]:
    """
    name -> single CNAME target.

    CNAME is single-valued per owner; when a zone carries several CNAMEs at
    the same owner the last one seen wins. That mirrors how the records were
    always displayed; it is logged rather than rejected.
    """
    cname_map: Dict[str, str] = {}
    owners_seen: Dict[str, str] = {}
    for record in records:
        if record.type != "CNAME":
            continue
        source = owner_name(record.name, zone) if zone else normalize_name(record.name)
        target = normalize_name(record.content)
        if not source or not target:
            continue
        previous = owners_seen.get(source)
        if previous is not None and previous != target:
            log.warning("Duplicate CNAME at {}: {} replaced by {}", source, previous, target)
        owners_seen[source] = target
        for key in _keys_for(source, zone):
            cname_map[key] = target
    return cname_map


@dataclass
class AddressMaps:
    ipv4_by_name: Dict[str, List[str]] = field(default_factory=dict)
    ipv6_by_name: Dict[str, List[str]] = field(default_factory=dict)


def build_address_maps(records: Iterable[DNSRecord], zone: str = "") -> AddressMaps:
    """A/AAAA records only; addresses deduplicated per name, insertion order kept."""
    v4: Dict[str, Dict[str, None]] = {}
    v6: Dict[str, Dict[str, None]] = {}
    for record in records:
        if record.type not in ("A", "AAAA"):
            continue
        name = normalize_name(record.name)
        ip = str(record.content or "").strip()
        if not ip:
            continue
        if not name or name == "@":
            if not zone:
                continue
            name = zone
        bucket = v4 if record.type == "A" else v6
        for key in _keys_for(name, zone):
            bucket.setdefault(key, {})[ip] = None
    return AddressMaps(
        ipv4_by_name={k: list(v) for k, v in v4.items()},
        ipv6_by_name={k: list(v) for k, v in v6.items()},
    )


@dataclass
class ZoneIndex:
    """Everything the resolvers need about one record set."""
    zone: str
    records_by_name: Dict[str, List[DNSRecord]]
    cname_map: Dict[str, str]
    addresses: AddressMaps

    @classmethod
    def build(cls, records: List[DNSRecord], zone_name: str) -> "ZoneIndex":
        zone = normalize_name(zone_name)
        return cls(
            zone=zone,
            records_by_name=group_by_name(records, zone),
            cname_map=build_cname_map(records, zone),
            addresses=build_address_maps(records, zone),
        )
