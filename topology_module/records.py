# topology_module/records.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

# Areas in reporting order
AREAS = ("email", "web", "infra", "misc")


@dataclass
class DNSRecord:
    """
    One record of the zone, as supplied by the record-management collaborator.

    Attributes:
        id: Provider record id ("" when unknown).
        name: Owner name, FQDN, relative label or '@' for the apex.
        type: Record type, upper case (A, AAAA, CNAME, MX, ...).
        content: Record value (address, hostname, "10 mail.example.com", text).
        ttl: Seconds, or 'auto' / None when the provider does not say.
        priority: Optional provider-side priority (MX/SRV).
        proxied: Provider proxy flag for A/AAAA/CNAME.
    """
    id: str
    name: str
    type: str
    content: str
    ttl: Union[int, str, None] = None
    priority: Optional[int] = None
    proxied: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DNSRecord":
        """Build a record from a loosely-typed mapping (API payloads, JSON files)."""
        priority = data.get("priority")
        try:
            priority = int(priority) if priority is not None and priority != "" else None
        except (TypeError, ValueError):
            priority = None
        proxied = data.get("proxied")
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            type=str(data.get("type") or "").strip().upper(),
            content=str(data.get("content") if data.get("content") is not None else ""),
            ttl=data.get("ttl"),
            priority=priority,
            proxied=bool(proxied) if proxied is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "content": self.content,
            "ttl": self.ttl,
        }
        if self.priority is not None:
            out["priority"] = self.priority
        if self.proxied is not None:
            out["proxied"] = self.proxied
        return out


@dataclass
class ResolutionResult:
    """Outcome of following alias pointers from a starting name."""
    chain: List[str] = field(default_factory=list)
    terminal: str = ""
    ipv4: List[str] = field(default_factory=list)
    ipv6: List[str] = field(default_factory=list)

    @property
    def has_addresses(self) -> bool:
        return bool(self.ipv4 or self.ipv6)


@dataclass
class ExternalResolution(ResolutionResult):
    """Resolution obtained through out-of-band DNS queries."""
    source: str = "external"
    error: Optional[str] = None
    requested_name: str = ""
    reverse_hostnames_by_ip: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "requestedName": self.requested_name,
            "chain": list(self.chain),
            "terminal": self.terminal,
            "ipv4": list(self.ipv4),
            "ipv6": list(self.ipv6),
            "source": self.source,
        }
        if self.reverse_hostnames_by_ip:
            out["reverseHostnamesByIp"] = {ip: list(h) for ip, h in self.reverse_hostnames_by_ip.items()}
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class CnameChain:
    start: str
    chain: List[str]


@dataclass
class SharedIp:
    ip: str
    names: List[str]


@dataclass
class DetectedService:
    name: str
    via: str


@dataclass
class MxTrail:
    """Mail delivery path of one MX record."""
    from_name: str
    priority: Optional[int]
    target: str
    chain: List[str] = field(default_factory=list)
    terminal: str = ""
    ipv4: List[str] = field(default_factory=list)
    ipv6: List[str] = field(default_factory=list)
    source: str = "none"            # "in-zone" | "external" | "none"
    terminal_regdom: str = ""
    under_zone: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_name,
            "priority": self.priority,
            "target": self.target,
            "chain": list(self.chain),
            "terminal": self.terminal,
            "ipv4": list(self.ipv4),
            "ipv6": list(self.ipv6),
            "source": self.source,
            "terminalRegdom": self.terminal_regdom,
            "underZone": self.under_zone,
        }


@dataclass
class AreaCounts:
    email: int = 0
    web: int = 0
    infra: int = 0
    misc: int = 0

    def add(self, area: str) -> None:
        setattr(self, area, getattr(self, area) + 1)

    def to_dict(self) -> Dict[str, int]:
        return {area: getattr(self, area) for area in AREAS}


@dataclass
class NodeSummary:
    name: str
    records: List[DNSRecord]
    resolved_to: List[str]
    areas: List[str]
    terminal: str
    ipv4: List[str]
    ipv6: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "records": [r.to_dict() for r in self.records],
            "resolvedTo": list(self.resolved_to),
            "areas": list(self.areas),
            "terminal": self.terminal,
            "ipv4": list(self.ipv4),
            "ipv6": list(self.ipv6),
        }


@dataclass
class TopologySummary:
    """Derived, serializable view of one graph build."""
    cname_chains: List[CnameChain] = field(default_factory=list)
    shared_ips: List[SharedIp] = field(default_factory=list)
    detected_services: List[DetectedService] = field(default_factory=list)
    mx_trails: List[MxTrail] = field(default_factory=list)
    area_counts: AreaCounts = field(default_factory=AreaCounts)
    node_summaries: List[NodeSummary] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cnameChains": [{"start": c.start, "chain": list(c.chain)} for c in self.cname_chains],
            "sharedIps": [{"ip": s.ip, "names": list(s.names)} for s in self.shared_ips],
            "detectedServices": [{"name": d.name, "via": d.via} for d in self.detected_services],
            "mxTrails": [t.to_dict() for t in self.mx_trails],
            "areaCounts": self.area_counts.to_dict(),
            "nodeSummaries": [n.to_dict() for n in self.node_summaries],
        }


@dataclass
class NodeMeta:
    """Context-menu data for one diagram node."""
    text: str
    record_id: Optional[str] = None
    address: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"text": self.text}
        if self.record_id:
            out["recordId"] = self.record_id
        if self.address:
            out["address"] = self.address
        return out


@dataclass
class TopologyResult:
    diagram_source: str
    summary: TopologySummary
    node_meta: Dict[str, NodeMeta] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "diagramSource": self.diagram_source,
            "summary": self.summary.to_dict(),
            "nodeMeta": {node_id: meta.to_dict() for node_id, meta in self.node_meta.items()},
        }
