"""Overlay drawing helpers.

- OverlayPublisher: per-cycle overlay of boxes, landmark points and expression
  labels on a reusable surface, rescaled to the display size
- draw_message: full-window status text (loading, errors, "no face")
"""
from __future__ import annotations
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from facevibe.models import RawDetection
from facevibe.reducer import dominant_expression

BOX_COLOR = (255, 140, 0)
POINT_COLOR = (0, 255, 0)
LABEL_COLOR = (255, 255, 255)
ERROR_COLOR = (0, 0, 255)


class OverlayPublisher:
    """Draws each cycle's detections onto one reusable BGR surface + mask."""

    def __init__(self, display_size: Tuple[int, int] = (640, 480),
                 draw_boxes: bool = True, draw_landmarks: bool = True,
                 draw_labels: bool = True):
        self.draw_boxes = draw_boxes
        self.draw_landmarks = draw_landmarks
        self.draw_labels = draw_labels
        self._surface = np.zeros((1, 1, 3), dtype=np.uint8)
        self._mask = np.zeros((1, 1), dtype=np.uint8)
        self._ensure_surface(display_size)

    @property
    def surface(self) -> np.ndarray:
        return self._surface

    @property
    def display_size(self) -> Tuple[int, int]:
        h, w = self._surface.shape[:2]
        return w, h

    def _ensure_surface(self, display_size: Tuple[int, int]):
        w, h = int(display_size[0]), int(display_size[1])
        if self._surface.shape[:2] != (h, w):
            self._surface = np.zeros((h, w, 3), dtype=np.uint8)
            self._mask = np.zeros((h, w), dtype=np.uint8)

    def clear(self):
        self._surface[:] = 0
        self._mask[:] = 0

    def publish(self, detections: Sequence[RawDetection], display_size: Tuple[int, int]):
        self._ensure_surface(display_size)
        self.clear()
        w, h = self.display_size
        for det in detections:
            d = det.resized((w, h))
            if self.draw_boxes:
                self._draw_box(d)
            if self.draw_landmarks:
                for x, y in d.landmarks:
                    xi, yi = int(round(x)), int(round(y))
                    if 0 <= xi < w and 0 <= yi < h:
                        cv2.circle(self._surface, (xi, yi), 1, POINT_COLOR, -1)
                        cv2.circle(self._mask, (xi, yi), 1, 255, -1)
            if self.draw_labels:
                self._draw_label(d)

    def _draw_box(self, d: RawDetection):
        w, h = self.display_size
        b = d.box
        # clamp to surface bounds
        x0 = max(0, min(int(b.x), w - 1)); y0 = max(0, min(int(b.y), h - 1))
        x1 = max(0, min(int(b.x + b.width), w - 1)); y1 = max(0, min(int(b.y + b.height), h - 1))
        cv2.rectangle(self._surface, (x0, y0), (x1, y1), BOX_COLOR, 2)
        cv2.rectangle(self._mask, (x0, y0), (x1, y1), 255, 2)
        score = f"{b.score:.2f}"
        cv2.putText(self._surface, score, (x0, min(h - 1, y1 + 16)), cv2.FONT_HERSHEY_SIMPLEX, 0.5, BOX_COLOR, 1, cv2.LINE_AA)
        cv2.putText(self._mask, score, (x0, min(h - 1, y1 + 16)), cv2.FONT_HERSHEY_SIMPLEX, 0.5, 255, 1, cv2.LINE_AA)

    def _draw_label(self, d: RawDetection):
        label = dominant_expression(d.expressions)
        if not label:
            return
        text = f"{label} ({d.expressions[label]:.2f})"
        org = (max(0, int(d.box.x)), max(12, int(d.box.y) - 10))
        cv2.putText(self._surface, text, org, cv2.FONT_HERSHEY_SIMPLEX, 0.6, LABEL_COLOR, 2, cv2.LINE_AA)
        cv2.putText(self._mask, text, org, cv2.FONT_HERSHEY_SIMPLEX, 0.6, 255, 2, cv2.LINE_AA)

    def compose(self, frame: np.ndarray) -> np.ndarray:
        """Resize ``frame`` to the display size and paint the surface over it."""
        w, h = self.display_size
        out = frame if frame.shape[:2] == (h, w) else cv2.resize(frame, (w, h), interpolation=cv2.INTER_AREA)
        out = out.copy()
        drawn = self._mask > 0
        out[drawn] = self._surface[drawn]
        return out


def draw_message(size: Tuple[int, int], title: str, detail: Optional[str] = None,
                 color: Tuple[int, int, int] = ERROR_COLOR) -> np.ndarray:
    """Black canvas with a title line and an optional detail line."""
    w, h = size
    out = np.zeros((h, w, 3), dtype=np.uint8)
    cv2.putText(out, title, (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.8, color, 2, cv2.LINE_AA)
    if detail:
        cv2.putText(out, detail, (10, 60), cv2.FONT_HERSHEY_SIMPLEX, 0.5, LABEL_COLOR, 1, cv2.LINE_AA)
    return out


def draw_status_line(frame: np.ndarray, text: str, color: Tuple[int, int, int] = LABEL_COLOR) -> np.ndarray:
    """Write a status line in the bottom-left corner (in place) and return the frame."""
    h = frame.shape[0]
    cv2.putText(frame, text, (10, h - 12), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2, cv2.LINE_AA)
    return frame
