# topology_module/clustering.py
from __future__ import annotations

from typing import Dict, Iterable, List

from .records import DNSRecord, SharedIp
from .zone_utils import owner_name


class AddressClusterer:
    """Multimap of literal address -> names that carry it directly."""

    def __init__(self) -> None:
        self._names_by_ip: Dict[str, Dict[str, None]] = {}

    def add(self, ip: str, name: str) -> None:
        ip = str(ip or "").strip()
        if not ip or not name:
            return
        self._names_by_ip.setdefault(ip, {})[name] = None

    def clusters(self) -> List[SharedIp]:
        """Addresses shared by two or more distinct names; names sorted, addresses in first-seen order."""
        return [
            SharedIp(ip=ip, names=sorted(names))
            for ip, names in self._names_by_ip.items()
            if len(names) > 1
        ]


def shared_addresses(records: Iterable[DNSRecord], zone: str) -> List[SharedIp]:
    clusterer = AddressClusterer()
    for record in records:
        if record.type in ("A", "AAAA"):
            clusterer.add(record.content, owner_name(record.name, zone))
    return clusterer.clusters()
