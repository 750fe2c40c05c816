# topology_module/mx_trails.py
from __future__ import annotations

from typing import Iterable, List, Mapping, Set, Tuple

from .indexer import ZoneIndex
from .logger import get_child_logger
from .records import DNSRecord, ExternalResolution, MxTrail
from .resolution import pick_best_resolution, resolution_source, resolve_local
from .zone_utils import owner_name, parse_mx, reg_domain

log = get_child_logger("mx_trails")


def resolve_mx_trails(
    records: Iterable[DNSRecord],
    index: ZoneIndex,
    max_hops: int,
    external_by_name: Mapping[str, ExternalResolution],
) -> Tuple[List[MxTrail], Set[str]]:
    """
    One trail per MX record (repeated targets are kept).

    Returns the trails plus every name touched along them, which the area
    classifier treats as email infrastructure.
    """
    zone_regdom = reg_domain(index.zone)
    trails: List[MxTrail] = []
    email_path_names: Set[str] = set()

    for record in records:
        if record.type != "MX":
            continue
        priority, target = parse_mx(record.content)
        if not target:
            log.debug("Skipping MX without target at {!r}", record.name)
            continue
        local = resolve_local(
            target,
            index.cname_map,
            index.addresses.ipv4_by_name,
            index.addresses.ipv6_by_name,
            max_hops,
        )
        best = pick_best_resolution(target, local, external_by_name)
        terminal_regdom = reg_domain(best.terminal)
        trails.append(MxTrail(
            from_name=owner_name(record.name, index.zone),
            priority=priority,
            target=target,
            chain=list(best.chain),
            terminal=best.terminal,
            ipv4=list(best.ipv4),
            ipv6=list(best.ipv6),
            source=resolution_source(local, best),
            terminal_regdom=terminal_regdom,
            under_zone=bool(zone_regdom) and terminal_regdom == zone_regdom,
        ))
        email_path_names.update(best.chain)
        if best.terminal:
            email_path_names.add(best.terminal)

    # relative owners ("mail") match their qualified form on the path
    suffix = "." + index.zone if index.zone else ""
    if suffix:
        email_path_names.update([n[: -len(suffix)] for n in email_path_names if n.endswith(suffix)])

    return trails, email_path_names
