"""
export_module/exporter.py

Exports of one zone view:
- diagram source verbatim (.mmd)
- rendered SVG / PNG
- a print-ready HTML page embedding the SVG plus the current annotations
- a per-name summary table (pyarrow), optionally written as Parquet

write_asset() puts a payload on disk under `<zone>-topology[-stamp].<ext>`,
decoding base64 payloads first when asked.
"""
from __future__ import annotations

import base64
import binascii
import html
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

import pyarrow as pa
import pyarrow.parquet as pq

from topology_module.logger import get_child_logger
from topology_module.records import TopologySummary
from topology_module.renderer import RenderedDiagram
from topology_module.zone_utils import normalize_name

log = get_child_logger("exporter")

# accepted format name -> file extension
FORMAT_EXTENSIONS = {
    "mmd": "mmd",
    "code": "mmd",
    "txt": "mmd",
    "svg": "svg",
    "png": "png",
    "html": "html",
    "pdf": "html",
}


class ExportError(Exception):
    """Unsupported export format, or nothing rendered yet to export."""


def extension_for(fmt: str) -> str:
    ext = FORMAT_EXTENSIONS.get((fmt or "").strip().lower())
    if ext is None:
        raise ExportError(f"Unsupported topology export format: {fmt!r}")
    return ext


def export_filename(zone: str, fmt: str, stamp: Optional[datetime] = None) -> str:
    base = f"{normalize_name(zone) or 'zone'}-topology"
    if stamp is not None:
        base = f"{base}-{stamp.strftime('%Y%m%d-%H%M%S')}"
    return f"{base}.{extension_for(fmt)}"


def _require_diagram(diagram: Optional[RenderedDiagram]) -> RenderedDiagram:
    if diagram is None or not (diagram.svg or "").strip():
        raise ExportError("Nothing rendered yet")
    return diagram


def print_html(zone: str, diagram: Optional[RenderedDiagram], annotations: Iterable = ()) -> str:
    """HTML wrapper that opens the print dialog; annotations listed with rounded diagram coordinates."""
    diagram = _require_diagram(diagram)
    title = html.escape(f"{zone} topology")
    notes = "".join(
        f"<li><strong>{html.escape(str(a.text))}</strong> ({round(a.x)}, {round(a.y)})</li>"
        for a in annotations
    )
    notes_html = f"<h3>Annotations</h3><ul>{notes}</ul>" if notes else ""
    return (
        "<html>\n"
        "  <head>\n"
        f"    <title>{title}</title>\n"
        "    <style>\n"
        "      body { font-family: system-ui, sans-serif; margin: 20px; color: #111; }\n"
        "      .graph { border: 1px solid #ddd; border-radius: 10px; padding: 12px; }\n"
        "    </style>\n"
        "  </head>\n"
        "  <body>\n"
        f"    <h1>{title}</h1>\n"
        f"    <div class=\"graph\">{diagram.svg}</div>\n"
        f"    {notes_html}\n"
        "    <script>window.onload = () => window.print();</script>\n"
        "  </body>\n"
        "</html>\n"
    )


def export_payload(
    fmt: str,
    zone: str,
    source: str,
    diagram: Optional[RenderedDiagram] = None,
    annotations: Iterable = (),
) -> Tuple[str, bytes]:
    """(filename, bytes) for one export format."""
    ext = extension_for(fmt)
    name = export_filename(zone, fmt)
    if ext == "mmd":
        return name, (source or "").encode("utf-8")
    if ext == "svg":
        return name, _require_diagram(diagram).svg.encode("utf-8")
    if ext == "png":
        if diagram is None or not diagram.png:
            raise ExportError("No raster rendering available")
        return name, diagram.png
    return name, print_html(zone, diagram, annotations).encode("utf-8")


def write_asset(
    directory: Union[str, Path],
    filename: str,
    payload: Union[str, bytes],
    is_base64: bool = False,
    timestamp: bool = False,
) -> Path:
    """Write an export to `directory`; returns the final path."""
    if is_base64:
        try:
            data = base64.b64decode(str(payload).strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise ExportError(f"Invalid base64 payload: {e}") from e
    elif isinstance(payload, str):
        data = payload.encode("utf-8")
    else:
        data = bytes(payload)

    name = Path(filename or "zone-topology.mmd").name
    if timestamp:
        stem, suffix = Path(name).stem, Path(name).suffix
        name = f"{stem}-{datetime.now().strftime('%Y%m%d-%H%M%S')}{suffix}"

    out_dir = Path(directory)
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / name
    path.write_bytes(data)
    log.info("Wrote {} ({} bytes)", path, len(data))
    return path


# --------------------------------------------------------------------
# Summary tables
# --------------------------------------------------------------------
SUMMARY_SCHEMA = pa.schema([
    ("name", pa.string()),
    ("areas", pa.list_(pa.string())),
    ("terminal", pa.string()),
    ("ipv4", pa.list_(pa.string())),
    ("ipv6", pa.list_(pa.string())),
    ("resolved_to", pa.list_(pa.string())),
    ("record_count", pa.int32()),
])


def summary_to_arrow(summary: TopologySummary) -> pa.Table:
    rows = [
        {
            "name": n.name,
            "areas": list(n.areas),
            "terminal": n.terminal,
            "ipv4": list(n.ipv4),
            "ipv6": list(n.ipv6),
            "resolved_to": list(n.resolved_to),
            "record_count": len(n.records),
        }
        for n in summary.node_summaries
    ]
    return pa.Table.from_pylist(rows, schema=SUMMARY_SCHEMA)


def write_summary_parquet(summary: TopologySummary, path: Union[str, Path]) -> Path:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    pq.write_table(summary_to_arrow(summary), str(out))
    log.info("Wrote summary table {} ({} names)", out, len(summary.node_summaries))
    return out
