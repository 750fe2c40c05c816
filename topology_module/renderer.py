"""
topology_module/renderer.py

Adapter over the mermaid CLI (`mmdc`). The engine hands it a flowchart
description; it returns SVG (and PNG on request) plus the bounding box read
from the SVG viewBox.

Renderers are duck-typed: anything with
    async render(source, dark_mode=False, want_png=False) -> RenderedDiagram
that raises RenderError on failure can stand in (tests use a fake).
"""
from __future__ import annotations

import asyncio
import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from typing import Optional, Tuple

from .logger import get_child_logger

log = get_child_logger("renderer")

DEFAULT_WIDTH = 1000.0
DEFAULT_HEIGHT = 600.0

_VIEWBOX_RE = re.compile(r"""viewBox\s*=\s*["']\s*([-\d.eE]+)[\s,]+([-\d.eE]+)[\s,]+([-\d.eE]+)[\s,]+([-\d.eE]+)\s*["']""")


class RenderError(Exception):
    """The diagram engine rejected the source or could not be run."""


@dataclass
class RenderedDiagram:
    svg: str
    width: float = DEFAULT_WIDTH
    height: float = DEFAULT_HEIGHT
    png: Optional[bytes] = None


def parse_svg_bounds(svg: str) -> Tuple[float, float]:
    """(width, height) from the first viewBox; 1000x600 when absent or degenerate."""
    m = _VIEWBOX_RE.search(svg or "")
    if not m:
        return DEFAULT_WIDTH, DEFAULT_HEIGHT
    try:
        w, h = float(m.group(3)), float(m.group(4))
    except ValueError:
        return DEFAULT_WIDTH, DEFAULT_HEIGHT
    if w <= 0 or h <= 0:
        return DEFAULT_WIDTH, DEFAULT_HEIGHT
    return w, h


class MermaidCliRenderer:
    def __init__(self, mmdc_path: str = "mmdc", timeout_s: float = 60.0, background: str = "transparent"):
        self.mmdc_path = mmdc_path
        self.timeout_s = timeout_s
        self.background = background

    def _binary(self) -> str:
        found = shutil.which(self.mmdc_path)
        if not found:
            raise RenderError(f"mermaid CLI not found: {self.mmdc_path}")
        return found

    async def _run(self, binary: str, src: str, out: str, dark_mode: bool) -> None:
        cmd = [
            binary, "-i", src, "-o", out,
            "-t", "dark" if dark_mode else "default",
            "-b", self.background,
        ]
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise RenderError(f"mermaid CLI timed out after {self.timeout_s}s") from e
        if proc.returncode != 0:
            detail = (stderr or b"").decode("utf-8", "replace").strip()
            raise RenderError(detail or f"mermaid CLI exited with {proc.returncode}")

    async def render(self, source: str, dark_mode: bool = False, want_png: bool = False) -> RenderedDiagram:
        binary = self._binary()
        with tempfile.TemporaryDirectory(prefix="topology-") as tmp:
            src = os.path.join(tmp, "diagram.mmd")
            svg_path = os.path.join(tmp, "diagram.svg")
            with open(src, "w", encoding="utf-8") as fh:
                fh.write(source)
            await self._run(binary, src, svg_path, dark_mode)
            try:
                with open(svg_path, "r", encoding="utf-8") as fh:
                    svg = fh.read()
            except OSError as e:
                raise RenderError(f"mermaid CLI produced no SVG: {e}") from e

            png = None
            if want_png:
                png_path = os.path.join(tmp, "diagram.png")
                await self._run(binary, src, png_path, dark_mode)
                try:
                    with open(png_path, "rb") as fh:
                        png = fh.read()
                except OSError as e:
                    raise RenderError(f"mermaid CLI produced no PNG: {e}") from e

        width, height = parse_svg_bounds(svg)
        log.debug("Rendered diagram {}x{} ({} bytes svg)", width, height, len(svg))
        return RenderedDiagram(svg=svg, width=width, height=height, png=png)
