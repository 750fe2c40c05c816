# topology_module/resolution.py
from __future__ import annotations

from typing import Dict, List, Mapping, Optional

from .records import ExternalResolution, ResolutionResult
from .zone_utils import normalize_name


def resolve_local(
    name: str,
    cname_map: Mapping[str, str],
    ipv4_by_name: Mapping[str, List[str]],
    ipv6_by_name: Mapping[str, List[str]],
    max_hops: int,
) -> ResolutionResult:
    """
    Follow in-zone CNAME pointers from `name`.

    Stops at the hop limit, at a missing pointer, or at a target already in
    the chain. Addresses are those of the terminal name only.
    """
    start = normalize_name(name)
    if not start:
        return ResolutionResult()
    chain: List[str] = [start]
    seen = {start}
    cur = start
    hops = 0
    while hops < max_hops:
        nxt = cname_map.get(cur)
        if not nxt or nxt in seen:
            break
        chain.append(nxt)
        seen.add(nxt)
        cur = nxt
        hops += 1
    return ResolutionResult(
        chain=chain,
        terminal=cur,
        ipv4=list(ipv4_by_name.get(cur, [])),
        ipv6=list(ipv6_by_name.get(cur, [])),
    )


def lookup_external(
    name: str,
    local: ResolutionResult,
    external_by_name: Mapping[str, ExternalResolution],
) -> Optional[ExternalResolution]:
    requested = normalize_name(name)
    terminal = normalize_name(local.terminal or requested)
    return external_by_name.get(requested) or external_by_name.get(terminal)


def pick_best_resolution(
    name: str,
    local: ResolutionResult,
    external_by_name: Mapping[str, ExternalResolution],
) -> ExternalResolution:
    """
    Choose between the in-zone resolution and an enrichment result.

    External wins when the local terminal has no addresses and the external
    answer has addresses or a deeper chain. When both have addresses the
    local answer is kept, decorated with the external reverse hostnames.
    """
    fallback = ExternalResolution(
        chain=list(local.chain),
        terminal=local.terminal,
        ipv4=list(local.ipv4),
        ipv6=list(local.ipv6),
        requested_name=normalize_name(name),
    )
    external = lookup_external(name, local, external_by_name)
    if external is None:
        return fallback

    deeper = len(external.chain) > len(local.chain)
    if not local.has_addresses and (external.has_addresses or deeper):
        return external
    if local.has_addresses and external.has_addresses:
        fallback.reverse_hostnames_by_ip = dict(external.reverse_hostnames_by_ip)
    return fallback


def resolution_source(local: ResolutionResult, best: ResolutionResult) -> str:
    """'in-zone' when the zone itself answers, 'external' when enrichment added something, else 'none'."""
    if local.has_addresses:
        return "in-zone"
    if best.has_addresses or len(best.chain) > len(local.chain):
        return "external"
    return "none"


def index_external(results: Dict[str, ExternalResolution]) -> Dict[str, ExternalResolution]:
    """
    Expand {requested: resolution} so the terminal and every chain hop also
    point at the resolution that passed through them. Requested names keep
    their own entry.
    """
    by_name: Dict[str, ExternalResolution] = dict(results)
    for resolution in results.values():
        term = normalize_name(resolution.terminal)
        if term and term not in by_name:
            by_name[term] = resolution
        for hop in resolution.chain:
            key = normalize_name(hop)
            if key and key not in by_name:
                by_name[key] = resolution
    return by_name
