"""
topology_module/graph_builder.py

One pass from a zone's record list to:
  - a mermaid flowchart description (node / edge / classDef statements)
  - a TopologySummary (chains, shared addresses, services, MX trails, areas,
    per-name summaries)
  - per-node metadata for host context menus

Node ids are interned by (kind, value): the zone root is "zone_root", every
other node gets "n_<i>" on first use. Edges are emitted once per
(from id, relation, to id). Iteration follows input order throughout, so the
same input always yields the same text.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Set, Tuple

from .areas import classify, ordered
from .clustering import AddressClusterer
from .fingerprint import match_service
from .indexer import ZoneIndex
from .logger import get_child_logger
from .mx_trails import resolve_mx_trails
from .records import (
    AreaCounts,
    CnameChain,
    DetectedService,
    DNSRecord,
    ExternalResolution,
    NodeMeta,
    NodeSummary,
    TopologyResult,
    TopologySummary,
)
from .resolution import index_external, pick_best_resolution, resolve_local
from .zone_utils import clamp_hops, esc, extract_target, owner_name, parse_mx

log = get_child_logger("graph_builder")

ZONE_NODE = "zone_root"

# (fill, stroke, stroke width, light text, dark text)
_CLASS_STYLES = [
    ("zone", "#5b8cff22", "#5b8cff", "1.5px", "#1f2a44", "#dce6ff"),
    ("record", "#20c99722", "#20c997", "1.2px", "#143727", "#ddfff2"),
    ("target", "#f59f0022", "#f59f00", "1.2px", "#4a3600", "#fff5db"),
    ("ip", "#fa525222", "#fa5252", "1.2px", "#5d1b1b", "#ffe3e3"),
    ("service", "#845ef722", "#845ef7", "1.2px", "#2f1f5d", "#efe8ff"),
]

_BR_RE = re.compile(r"<br\s*/?>", re.I)


def build_node_label(title: str, subtitle: str = "") -> str:
    sub_html = (
        f"<div style='font-size:11px;opacity:0.82;margin-top:2px'>{esc(subtitle)}</div>"
        if subtitle else ""
    )
    return f"<div><div>{esc(title)}</div>{sub_html}</div>"


def class_defs(dark_mode: bool) -> List[str]:
    out = []
    for name, fill, stroke, width, light, dark in _CLASS_STYLES:
        color = dark if dark_mode else light
        out.append(f"  classDef {name} fill:{fill},stroke:{stroke},stroke-width:{width},color:{color};")
    return out


class DiagramWriter:
    """Node interning, edge dedupe and the statement buffer for one build."""

    def __init__(self) -> None:
        self.lines: List[str] = ["flowchart LR"]
        self.node_meta: Dict[str, NodeMeta] = {}
        self._ids: Dict[Tuple[str, str], str] = {}
        self._declared: Set[str] = set()
        self._edges: Set[Tuple[str, str, str]] = set()
        self._next = 0

    def id_for(self, kind: str, value: str) -> str:
        key = (kind, value)
        node_id = self._ids.get(key)
        if node_id is None:
            node_id = ZONE_NODE if kind == "zone" else f"n_{self._next}"
            if kind != "zone":
                self._next += 1
            self._ids[key] = node_id
        return node_id

    def known(self, kind: str, value: str) -> Optional[str]:
        return self._ids.get((kind, value))

    def node(
        self,
        kind: str,
        value: str,
        css_class: str,
        title: str,
        subtitle: str = "",
        meta_text: Optional[str] = None,
        record_id: Optional[str] = None,
        address: Optional[str] = None,
    ) -> str:
        node_id = self.id_for(kind, value)
        if node_id not in self._declared:
            self._declared.add(node_id)
            self.lines.append(f'  {node_id}["{esc(build_node_label(title, subtitle))}"]:::{css_class}')
            self.node_meta[node_id] = NodeMeta(
                text=meta_text if meta_text is not None else title,
                record_id=record_id or None,
                address=address or None,
            )
        return node_id

    def edge(self, from_id: str, relation: str, to_id: str, arrow: str) -> bool:
        key = (from_id, relation, to_id)
        if key in self._edges:
            return False
        self._edges.add(key)
        self.lines.append(f"  {from_id} {arrow} {to_id}")
        return True

    def target_node(self, host: str) -> str:
        return self.node("target", host, "target", host, address=host)

    def ip_node(self, ip: str) -> str:
        return self.node("ip", ip, "ip", ip, "IP", meta_text=f"{ip} | IP", address=ip)


@dataclass
class GraphUnit:
    key: str
    type: str
    name: str
    records: List[DNSRecord] = field(default_factory=list)
    aggregate: bool = False


def build_units(records: List[DNSRecord], zone: str) -> List[GraphUnit]:
    """One unit per record; A/AAAA at the same name are folded into one unit, after the rest."""
    units: List[GraphUnit] = []
    aggregated: Dict[Tuple[str, str], GraphUnit] = {}
    for idx, record in enumerate(records):
        name = owner_name(record.name, zone)
        if not name or not record.type:
            log.debug("Skipping record without name/type: {!r}", record)
            continue
        if record.type in ("A", "AAAA"):
            key = (record.type, name)
            unit = aggregated.get(key)
            if unit is None:
                unit = GraphUnit(key=f"agg:{record.type}:{name}", type=record.type, name=name, aggregate=True)
                aggregated[key] = unit
            unit.records.append(record)
        else:
            units.append(GraphUnit(
                key=f"record:{record.id or '#' + str(idx)}",
                type=record.type,
                name=name,
                records=[record],
            ))
    units.extend(aggregated.values())
    return units


def _unit_info(unit: GraphUnit, best: ExternalResolution) -> str:
    ttls = list(dict.fromkeys(str(r.ttl if r.ttl is not None else "auto") for r in unit.records))
    proxies = list(dict.fromkeys("proxied" if r.proxied else "dns-only" for r in unit.records))
    parts = [f"type:{unit.type}" + (f" x{len(unit.records)}" if unit.aggregate else "")]
    if unit.type == "MX":
        priority, _ = parse_mx(unit.records[0].content)
        if priority is not None:
            parts.append(f"prio:{priority}")
    parts.append(f"ttl:{ttls[0] if len(ttls) == 1 else 'mixed'}")
    parts.append(proxies[0] if len(proxies) == 1 else "proxy:mixed")
    if len(best.chain) > 1:
        parts.append(f"resolves:{best.terminal}")
    if best.has_addresses:
        parts.append(f"A:{len(best.ipv4)} AAAA:{len(best.ipv6)}")
    return " | ".join(parts)


def cname_chains(index: ZoneIndex, owners: List[str], max_hops: int) -> List[CnameChain]:
    """Alias chains of three or more names, one per CNAME owner."""
    out: List[CnameChain] = []
    for start in owners:
        res = resolve_local(start, index.cname_map, {}, {}, max_hops)
        if len(res.chain) >= 3:
            out.append(CnameChain(start=start, chain=res.chain))
    return out


class _Build:
    """State of one build_topology call."""

    def __init__(
        self,
        records: List[DNSRecord],
        zone_name: str,
        max_hops: int,
        external_by_name: Mapping[str, ExternalResolution],
        service_patterns,
    ):
        self.records = records
        self.index = ZoneIndex.build(records, zone_name)
        self.zone = self.index.zone
        self.zone_label = self.zone or str(zone_name or "")
        self.max_hops = max_hops
        self.external = external_by_name
        self.patterns = service_patterns
        self.writer = DiagramWriter()
        self.clusterer = AddressClusterer()
        self.service_by_target: Dict[str, str] = {}
        self.area_counts = AreaCounts()

    def best(self, name: str) -> ExternalResolution:
        local = resolve_local(
            name,
            self.index.cname_map,
            self.index.addresses.ipv4_by_name,
            self.index.addresses.ipv6_by_name,
            self.max_hops,
        )
        return pick_best_resolution(name, local, self.external)

    def note_service(self, host: str) -> None:
        if host in self.service_by_target:
            return
        service = match_service(host, self.patterns)
        if service:
            self.service_by_target[host] = service

    def trace(self, target: str) -> None:
        """CNAME chain of a hostname target, then terminal addresses and their PTR names."""
        w = self.writer
        best = self.best(target)
        for a, b in zip(best.chain, best.chain[1:]):
            w.edge(w.target_node(a), "CNAME", w.target_node(b), '-. "CNAME" .->')
            self.note_service(b)
        term_id = w.target_node(best.terminal or target)
        for rtype, ips in (("A", best.ipv4), ("AAAA", best.ipv6)):
            for ip in ips:
                w.edge(term_id, rtype, w.ip_node(ip), f'-. "{rtype}" .->')
        for ip, hosts in best.reverse_hostnames_by_ip.items():
            if not hosts:
                continue
            ip_id = w.ip_node(ip)
            for host in hosts:
                w.edge(ip_id, "PTR", w.target_node(host), '-. "PTR" .->')

    def unit(self, unit: GraphUnit, email_path_names: Set[str]) -> None:
        w = self.writer
        node_records = self.index.records_by_name.get(unit.name, unit.records)
        for area in classify(unit.name, node_records, email_path_names):
            self.area_counts.add(area)

        best = self.best(unit.name)
        info = _unit_info(unit, best)
        editable = unit.records[0].id if len(unit.records) == 1 and unit.records[0].id else None
        rec_id = w.node(
            "record", unit.key, "record", unit.name, info or "record",
            meta_text=f"{unit.name} | {_BR_RE.sub(' ', info)}" if info else unit.name,
            record_id=editable,
            address=unit.name,
        )
        w.edge(ZONE_NODE, "zone", rec_id, "-->")

        is_ip = unit.type in ("A", "AAAA")
        if unit.type == "MX":
            for record in unit.records:
                priority, target = parse_mx(record.content)
                if not target:
                    continue
                prio = "?" if priority is None else str(priority)
                target_id = w.target_node(target)
                prio_id = w.node(
                    "mxprio", f"{record.id or unit.key}:{prio}:{target}", "target",
                    f"MX Priority {prio}",
                )
                w.edge(rec_id, "MX", prio_id, '-- "MX" -->')
                w.edge(prio_id, f"P{prio}", target_id, f'-- "prio {prio}" -->')
                self.note_service(target)
                self.trace(target)
            return

        targets: List[str] = []
        for record in unit.records:
            target = extract_target(record)
            if target and target not in targets:
                targets.append(target)
        for target in targets:
            target_id = w.ip_node(target) if is_ip else w.target_node(target)
            w.edge(rec_id, unit.type, target_id, f'-- "{esc(unit.type)}" -->')
            if is_ip:
                self.clusterer.add(target, unit.name)
            else:
                self.note_service(target)
                self.trace(target)

    def services(self) -> List[DetectedService]:
        w = self.writer
        detected: List[DetectedService] = []
        for target, service in self.service_by_target.items():
            target_id = w.known("target", target)
            if target_id is None:
                continue
            svc_id = w.node("service", service, "service", service)
            w.edge(target_id, "service", svc_id, "-.->")
            detected.append(DetectedService(name=service, via=target))
        return detected

    def node_summaries(self, email_path_names: Set[str]) -> List[NodeSummary]:
        out: List[NodeSummary] = []
        for name, recs in self.index.records_by_name.items():
            best = self.best(name)
            out.append(NodeSummary(
                name=name,
                records=list(recs),
                resolved_to=best.chain[1:],
                areas=ordered(classify(name, recs, email_path_names)),
                terminal=best.terminal,
                ipv4=list(best.ipv4),
                ipv6=list(best.ipv6),
            ))
        out.sort(key=lambda s: s.name)
        return out

    def run(self, dark_mode: bool) -> TopologyResult:
        w = self.writer
        zone_title = f"Zone: {self.zone_label}"
        w.node("zone", self.zone_label, "zone", zone_title)

        mx_trails, email_path_names = resolve_mx_trails(self.records, self.index, self.max_hops, self.external)

        for unit in build_units(self.records, self.zone):
            try:
                self.unit(unit, email_path_names)
            except Exception as e:
                log.warning("Skipping unit {} ({}): {}", unit.key, unit.name, e)

        detected = self.services()
        w.lines.extend(class_defs(dark_mode))

        owners = [n for n, recs in self.index.records_by_name.items() if any(r.type == "CNAME" for r in recs)]
        summary = TopologySummary(
            cname_chains=cname_chains(self.index, owners, self.max_hops),
            shared_ips=self.clusterer.clusters(),
            detected_services=detected,
            mx_trails=mx_trails,
            area_counts=self.area_counts,
            node_summaries=self.node_summaries(email_path_names),
        )
        return TopologyResult(
            diagram_source="\n".join(w.lines),
            summary=summary,
            node_meta=w.node_meta,
        )


def build_topology(
    records: List[DNSRecord],
    zone_name: str,
    max_hops: int = 15,
    dark_mode: bool = False,
    external_by_name: Optional[Mapping[str, ExternalResolution]] = None,
    service_patterns=None,
) -> TopologyResult:
    """
    Build the diagram description, summary and node metadata for one zone.

    `external_by_name` holds enrichment results keyed by requested name;
    terminals and chain hops are indexed as well before use.
    """
    external = index_external(dict(external_by_name or {}))
    build = _Build(list(records or []), zone_name, clamp_hops(max_hops), external, service_patterns)
    return build.run(dark_mode)
