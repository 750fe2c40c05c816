"""
viewport_module/viewport.py

Zoom / pan / fit / annotate state for one rendered diagram.

Screen and diagram space are related by

    screen = diagram * zoom + pan

All zoom changes keep the diagram point under their anchor (viewport
centre for button zoom, pointer for wheel zoom) fixed on screen. The host
reports sizes through `update_geometry`; nothing here queries a UI toolkit.
"""
from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import List, Optional

from topology_module.logger import get_child_logger

from .geometry import Point, Size

log = get_child_logger("viewport")

ZOOM_MIN = 0.1
ZOOM_MAX = 8.0
WHEEL_STEP = 0.08
BUTTON_STEP = 0.1

TOOL_POINTER = "pointer"
TOOL_HAND = "hand"
TOOL_ANNOTATE = "annotate"
TOOLS = (TOOL_POINTER, TOOL_HAND, TOOL_ANNOTATE)

PRIMARY_BUTTON = 0
MIDDLE_BUTTON = 1


def clamp_zoom(value: float) -> float:
    return max(ZOOM_MIN, min(ZOOM_MAX, value))


@dataclass
class Annotation:
    """A note pinned in diagram space."""
    id: str
    x: float
    y: float
    text: str

    def to_dict(self):
        return {"id": self.id, "x": self.x, "y": self.y, "text": self.text}


@dataclass
class ViewportState:
    zoom: float = 1.0
    pan: Point = field(default_factory=Point)


@dataclass
class _Drag:
    start: Point
    base_pan: Point


class ViewportController:
    """
    Interactive view over one rendered diagram.

    The auto-fit latch (`user_adjusted`) is cleared by every fit and set by
    every manual zoom/pan; while it is set, geometry changes do not refit.
    """

    def __init__(self, padding: float = 0.0):
        self.state = ViewportState()
        self.viewport = Size()
        self.content = Size()
        self.padding = padding
        self.tool = TOOL_POINTER
        self.full_window = False
        self.user_adjusted = False
        self.annotations: List[Annotation] = []
        self.annotation_draft = ""
        self._drag: Optional[_Drag] = None
        self._restore_tool: Optional[str] = None
        self._ann_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------
    @property
    def zoom(self) -> float:
        return self.state.zoom

    @property
    def pan(self) -> Point:
        return self.state.pan

    def update_geometry(self, viewport: Optional[Size] = None, content: Optional[Size] = None) -> bool:
        """
        Record new viewport and/or content sizes. Refits when a size changed
        and the user has not adjusted the view; returns True if it refit.
        """
        changed = False
        if viewport is not None and viewport != self.viewport:
            self.viewport = viewport
            changed = True
        if content is not None and content != self.content:
            self.content = content
            changed = True
        if changed and not self.user_adjusted:
            return self.fit_to_view()
        return False

    def fit_scale(self) -> float:
        """Scale at which the whole diagram fits the viewport (1.0 when sizes are unknown)."""
        if self.viewport.empty or self.content.empty:
            return 1.0
        avail_w = max(1.0, self.viewport.w - self.padding * 2)
        avail_h = max(1.0, self.viewport.h - self.padding * 2)
        return clamp_zoom(min(avail_w / self.content.w, avail_h / self.content.h))

    def _centered_pan(self, scale: float) -> Point:
        return Point(
            (self.viewport.w - self.content.w * scale) / 2,
            (self.viewport.h - self.content.h * scale) / 2,
        )

    def fit_to_view(self) -> bool:
        if self.viewport.empty or self.content.empty:
            return False
        scale = self.fit_scale()
        self.state = ViewportState(zoom=scale, pan=self._centered_pan(scale))
        self.user_adjusted = False
        log.debug("Fit {}x{} into {}x{} at {:.3f}", self.content.w, self.content.h,
                  self.viewport.w, self.viewport.h, scale)
        return True

    def normalize_zoom_to(self, fit_scale: Optional[float] = None) -> None:
        """Jump to `fit_scale` (the current fit scale by default) and centre the diagram."""
        scale = clamp_zoom(fit_scale if fit_scale is not None else self.fit_scale())
        self.user_adjusted = True
        pan = self.pan
        if not self.viewport.empty and not self.content.empty:
            pan = self._centered_pan(scale)
        self.state = ViewportState(zoom=scale, pan=pan)

    def zoom_percent(self) -> int:
        """Zoom relative to the fit scale, in percent."""
        fit = self.fit_scale()
        if not fit:
            return round(self.zoom * 100)
        return max(1, round(self.zoom / fit * 100))

    # ------------------------------------------------------------------
    # Zoom / pan
    # ------------------------------------------------------------------
    def _zoom_around(self, anchor: Point, new_zoom: float) -> bool:
        old_zoom = self.zoom
        if new_zoom == old_zoom:
            return False
        world_x = (anchor.x - self.pan.x) / old_zoom
        world_y = (anchor.y - self.pan.y) / old_zoom
        self.state = ViewportState(
            zoom=new_zoom,
            pan=Point(anchor.x - world_x * new_zoom, anchor.y - world_y * new_zoom),
        )
        return True

    def zoom_by(self, delta: float) -> bool:
        """Button zoom anchored at the viewport centre; zoom is kept to two decimals."""
        self.user_adjusted = True
        return self._zoom_around(self.viewport.center, clamp_zoom(round(self.zoom + delta, 2)))

    def zoom_at_pointer(self, delta: float, pointer: Point) -> bool:
        """Wheel zoom anchored at `pointer` (viewport-relative pixels)."""
        self.user_adjusted = True
        return self._zoom_around(pointer, clamp_zoom(round(self.zoom + delta, 2)))

    def wheel(self, delta_y: float, pointer: Point) -> bool:
        return self.zoom_at_pointer(WHEEL_STEP if delta_y < 0 else -WHEEL_STEP, pointer)

    def pan_by(self, delta: Point) -> None:
        self.user_adjusted = True
        self.state = ViewportState(zoom=self.zoom, pan=self.pan + delta)

    # ------------------------------------------------------------------
    # Pointer interaction
    # ------------------------------------------------------------------
    def set_tool(self, tool: str) -> None:
        if tool not in TOOLS:
            raise ValueError(f"unknown tool {tool!r}")
        self.tool = tool

    def begin_drag(self, pointer: Point, button: int = PRIMARY_BUTTON) -> bool:
        """
        Start a pan drag. The middle button pans whatever the active tool is
        and restores that tool on release; the primary button pans only with
        the hand tool.
        """
        if button == MIDDLE_BUTTON:
            self._restore_tool = self.tool
            self.tool = TOOL_HAND
        elif button != PRIMARY_BUTTON or self.tool != TOOL_HAND:
            return False
        self.user_adjusted = True
        self._drag = _Drag(start=pointer, base_pan=self.pan)
        return True

    def drag_to(self, pointer: Point) -> None:
        if self._drag is None:
            return
        delta = pointer - self._drag.start
        self.state = ViewportState(zoom=self.zoom, pan=self._drag.base_pan + delta)

    def end_drag(self) -> None:
        self._drag = None
        if self._restore_tool is not None:
            self.tool = self._restore_tool
            self._restore_tool = None

    @property
    def dragging(self) -> bool:
        return self._drag is not None

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------
    def screen_to_diagram(self, screen: Point) -> Point:
        return Point((screen.x - self.pan.x) / self.zoom, (screen.y - self.pan.y) / self.zoom)

    def diagram_to_screen(self, point: Point) -> Point:
        return Point(point.x * self.zoom + self.pan.x, point.y * self.zoom + self.pan.y)

    def place_annotation(self, screen: Point, text: Optional[str] = None) -> Optional[Annotation]:
        """Pin a note at a clicked screen point; only while the annotate tool is active."""
        if self.tool != TOOL_ANNOTATE:
            return None
        at = self.screen_to_diagram(screen)
        note = (text if text is not None else self.annotation_draft).strip() or "Note"
        ann = Annotation(id=f"ann_{next(self._ann_ids)}", x=at.x, y=at.y, text=note)
        self.annotations.append(ann)
        return ann

    def remove_annotation(self, ann_id: str) -> bool:
        before = len(self.annotations)
        self.annotations = [a for a in self.annotations if a.id != ann_id]
        return len(self.annotations) != before

    def clear_annotations(self) -> None:
        self.annotations = []

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------
    def toggle_full_window(self, viewport: Optional[Size] = None) -> bool:
        """Flip full-window mode; the latch is reset and the view refit."""
        self.full_window = not self.full_window
        if viewport is not None:
            self.viewport = viewport
        self.user_adjusted = False
        self.fit_to_view()
        return self.full_window

    def reset_view(self) -> bool:
        return self.fit_to_view()
