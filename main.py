import asyncio
import sys
import os
import json
import argparse
import time
from typing import Any, Dict, List, Optional

# Ensure the current directory is in sys.path so we can import modules
sys.path.insert(0, os.getcwd())

from dotenv import load_dotenv

from topology_module.config import TopologySettings
from topology_module.logger import configure_logging, get_child_logger
from topology_module.records import DNSRecord
from topology_module.renderer import MermaidCliRenderer
from topology_module.session import TopologySession
from export_module.exporter import ExportError, export_payload, write_asset, write_summary_parquet

load_dotenv()

# Configure logging
configure_logging()
log = get_child_logger("main")


def load_records(path: str) -> List[DNSRecord]:
    """Records from a JSON file: a list of records, or {"result": [...]} / {"records": [...]}."""
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if isinstance(data, dict):
        data = data.get("records") or data.get("result") or []
    records: List[DNSRecord] = []
    for i, item in enumerate(data):
        if not isinstance(item, dict):
            log.warning("Skipping non-object record at index {}", i)
            continue
        records.append(DNSRecord.from_dict(item))
    return records


async def process_zone(
    records: List[DNSRecord],
    zone: str,
    session: TopologySession,
    max_hops: Optional[int] = None,
    dark_mode: bool = False,
    enrich: bool = False,
) -> Dict[str, Any]:
    """
    Topology pipeline for one zone:
    1. Index + build (local resolution only)
    2. Optional enrichment round for terminals without in-zone addresses
    3. Rebuild with the enrichment cache
    """
    t0 = time.time()
    session.set_records(records, zone)
    session.build(max_hops, dark_mode)
    t_build = time.time()

    enriched = 0
    if enrich:
        enriched = await session.enrich(max_hops)
    t_enrich = time.time()

    result = session.build(max_hops, dark_mode)
    t_done = time.time()

    out = result.to_dict()
    out["_meta"] = {
        "zone": session.zone_name,
        "records": len(records),
        "enriched": enriched,
        "progress": session.progress.to_dict(),
        "timings": {
            "build_ms": round((t_build - t0) * 1000, 2),
            "enrich_ms": round((t_enrich - t_build) * 1000, 2),
            "rebuild_ms": round((t_done - t_enrich) * 1000, 2),
            "total_ms": round((t_done - t0) * 1000, 2),
        },
    }
    return out


async def export_all(session: TopologySession, export_dir: str, max_hops: Optional[int], dark_mode: bool) -> List[str]:
    """Write source, SVG, PNG, print HTML and the summary table; rendering needs the mermaid CLI."""
    result = session.build(max_hops, dark_mode)
    written: List[str] = []
    name, data = export_payload("mmd", session.zone_name, result.diagram_source)
    written.append(str(write_asset(export_dir, name, data)))
    parquet = os.path.join(export_dir, f"{session.zone_name or 'zone'}-summary.parquet")
    written.append(str(write_summary_parquet(result.summary, parquet)))

    renderer = MermaidCliRenderer(session.settings.mmdc_path)
    state = await session.render(renderer, max_hops, dark_mode, want_png=True)
    if state.error:
        log.warning("Skipping rendered exports: {}", state.error)
        return written
    for fmt in ("svg", "png", "html"):
        try:
            name, data = export_payload(fmt, session.zone_name, result.diagram_source,
                                        state.diagram, session.viewport.annotations)
        except ExportError as e:
            log.warning("Export {} skipped: {}", fmt, e)
            continue
        written.append(str(write_asset(export_dir, name, data)))
    return written


async def main():
    parser = argparse.ArgumentParser(description="DNS zone topology builder")
    parser.add_argument("records", nargs="?", help="JSON file with the zone's records")
    parser.add_argument("--zone", help="Zone name (apex)", required=False)
    parser.add_argument("--max-hops", type=int, default=None, help="CNAME hop limit (1-15)")
    parser.add_argument("--dark", action="store_true", help="Dark theme colours")
    parser.add_argument("--enrich", action="store_true", help="Resolve unresolved terminals externally")
    parser.add_argument("--pretty", action="store_true", help="Pretty print JSON output")
    parser.add_argument("--export-dir", help="Write exports to this directory")
    args = parser.parse_args()

    if not args.records or not args.zone:
        print("Error: records file and --zone are required.")
        sys.exit(1)

    records = load_records(args.records)
    settings = TopologySettings.from_env()
    session = TopologySession(settings)
    try:
        result = await process_zone(records, args.zone, session, args.max_hops, args.dark, args.enrich)
        if args.export_dir:
            result["_meta"]["exports"] = await export_all(session, args.export_dir, args.max_hops, args.dark)
    finally:
        await session.resolver.close()

    if args.pretty:
        print(json.dumps(result, indent=2, default=str))
    else:
        print(json.dumps(result, default=str))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        log.critical(f"Unhandled exception: {e}")
        sys.exit(1)
