"""
topology_module/session.py

TopologySession: the per-zone-view context object.

It owns, for the current record list:
  - the enrichment cache (normalized name -> ExternalResolution), additive
    only, replaced wholesale when the record list identity changes
  - an epoch counter; an enrichment batch captures the epoch when it starts
    and its results are dropped on arrival if the epoch moved on
  - the memoized last build, keyed on the inputs that determine it
  - the render state (last good diagram plus the latest render error)
  - a ViewportController fed with rendered bounds
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

from viewport_module.geometry import Size
from viewport_module.viewport import ViewportController

from .config import TopologySettings
from .external_resolver import UNRESOLVED_ERROR, ExternalResolver
from .fingerprint import load_service_patterns
from .graph_builder import build_topology
from .indexer import ZoneIndex
from .logger import get_child_logger
from .records import DNSRecord, ExternalResolution, TopologyResult
from .renderer import RenderedDiagram, RenderError
from .resolution import resolve_local
from .zone_utils import clamp_hops, extract_target, is_ip_address, normalize_name

log = get_child_logger("session")

MAX_ACTIVE_NAMES = 12


@dataclass
class EnrichmentProgress:
    running: bool = False
    total: int = 0
    done: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"running": self.running, "total": self.total, "done": self.done}


@dataclass
class RenderState:
    diagram: Optional[RenderedDiagram] = None
    source: str = ""
    error: Optional[str] = None


@dataclass
class _Memo:
    key: Tuple
    result: TopologyResult


def enrichment_candidates(records: List[DNSRecord], zone_name: str, max_hops: int) -> List[str]:
    """
    Terminal names, reached from hostname targets, that have no in-zone
    address. In record order, deduplicated.
    """
    index = ZoneIndex.build(records, zone_name)
    out: Dict[str, None] = {}
    for record in records:
        target = extract_target(record)
        if not target or is_ip_address(target):
            continue
        local = resolve_local(
            target,
            index.cname_map,
            index.addresses.ipv4_by_name,
            index.addresses.ipv6_by_name,
            max_hops,
        )
        if local.has_addresses:
            continue
        terminal = normalize_name(local.terminal or target)
        if terminal:
            out[terminal] = None
    return list(out)


class TopologySession:
    def __init__(
        self,
        settings: Optional[TopologySettings] = None,
        resolver: Optional[ExternalResolver] = None,
        service_patterns=None,
    ):
        self.settings = settings or TopologySettings()
        self.resolver = resolver or ExternalResolver(self.settings)
        self.service_patterns = (
            service_patterns if service_patterns is not None
            else load_service_patterns(self.settings.service_patterns_path)
        )
        self.records: List[DNSRecord] = []
        self.zone_name = ""
        self.epoch = 0
        self.cache: Dict[str, ExternalResolution] = {}
        self.progress = EnrichmentProgress()
        self.active_names: List[str] = []
        self.render_state = RenderState()
        self.viewport = ViewportController()
        self._cache_version = 0
        self._inflight: Set[str] = set()
        self._memo: Optional[_Memo] = None

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def set_records(self, records: List[DNSRecord], zone_name: str) -> bool:
        """
        Point the session at a record list. A different list object (or zone)
        starts a new epoch: the cache and memo are replaced and any enrichment
        still in flight becomes stale. Returns True if that happened.
        """
        zone = normalize_name(zone_name)
        if records is self.records and zone == self.zone_name:
            return False
        self.records = records
        self.zone_name = zone
        self.epoch += 1
        self.cache = {}
        self._cache_version = 0
        self._inflight = set()
        self._memo = None
        self.progress = EnrichmentProgress()
        self.active_names = []
        log.debug("Session epoch {} for zone {} ({} records)", self.epoch, zone, len(records))
        return True

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------
    def build(self, max_hops: Optional[int] = None, dark_mode: bool = False) -> TopologyResult:
        """Build for the current inputs; repeated calls with unchanged inputs return the same result."""
        hops = clamp_hops(max_hops if max_hops is not None else self.settings.max_hops)
        key = (id(self.records), self.epoch, self.zone_name, hops, bool(dark_mode), self._cache_version)
        if self._memo is not None and self._memo.key == key:
            return self._memo.result
        result = build_topology(
            self.records,
            self.zone_name,
            hops,
            dark_mode,
            self.cache,
            self.service_patterns,
        )
        self._memo = _Memo(key=key, result=result)
        return result

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------
    def pending_names(self, max_hops: Optional[int] = None) -> List[str]:
        hops = clamp_hops(max_hops if max_hops is not None else self.settings.max_hops)
        return [
            name for name in enrichment_candidates(self.records, self.zone_name, hops)
            if name not in self.cache and name not in self._inflight
        ]

    async def enrich(self, max_hops: Optional[int] = None) -> int:
        """
        One enrichment round: resolve every uncached, not-yet-requested
        terminal without addresses. Returns the number of names merged
        into the cache (0 when the round went stale).
        """
        hops = clamp_hops(max_hops if max_hops is not None else self.settings.max_hops)
        names = self.pending_names(hops)
        if not names:
            return 0

        epoch = self.epoch
        self._inflight.update(names)
        self.progress = EnrichmentProgress(running=True, total=len(names), done=0)
        self.active_names = names[:MAX_ACTIVE_NAMES]
        progress = self.progress

        async def _one(name: str) -> Tuple[str, ExternalResolution]:
            result = await self.resolver.resolve_external(name, hops)
            if epoch == self.epoch:
                progress.done += 1
            return name, result

        try:
            results = await asyncio.gather(*[_one(n) for n in names])
        finally:
            if epoch == self.epoch:
                # uncached names become pending again
                self._inflight.difference_update(names)
                self.progress = EnrichmentProgress(running=False, total=progress.total, done=progress.done)
                self.active_names = []

        if epoch != self.epoch:
            log.info("Dropping {} stale resolutions (epoch {} superseded by {})", len(results), epoch, self.epoch)
            return 0

        for name, result in results:
            if not result.chain and not result.has_addresses:
                result = ExternalResolution(
                    chain=[name],
                    terminal=name,
                    source="external",
                    error=result.error or UNRESOLVED_ERROR,
                    requested_name=name,
                )
            self.cache[name] = result
        self._cache_version += 1
        log.info("Enriched {} names for zone {}", len(results), self.zone_name)
        return len(results)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    async def render(self, renderer, max_hops: Optional[int] = None, dark_mode: bool = False,
                     want_png: bool = False) -> RenderState:
        """
        Render the current build. On failure the previous diagram stays in
        place and only `error` changes.
        """
        result = self.build(max_hops, dark_mode)
        try:
            diagram = await renderer.render(result.diagram_source, dark_mode=dark_mode, want_png=want_png)
        except RenderError as e:
            log.warning("Render failed: {}", e)
            self.render_state = RenderState(
                diagram=self.render_state.diagram,
                source=self.render_state.source,
                error=str(e) or "render failed",
            )
            return self.render_state
        self.render_state = RenderState(diagram=diagram, source=result.diagram_source, error=None)
        self.viewport.update_geometry(content=Size(diagram.width, diagram.height))
        return self.render_state
