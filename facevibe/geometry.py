"""
Landmarks -> 3D point cloud, and an OpenCV orbit viewer to look at it.

The cloud is flat (z = 0): x and y are re-centred on a fixed reference
half extent and y is flipped so "up" in the image is +y in the viewer.
"""
from __future__ import annotations

import logging
import math
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from facevibe.models import Point2D, RawDetection

logger = logging.getLogger(__name__)

DEFAULT_HALF_EXTENT = 250.0


def project(landmarks: Sequence[Point2D], half_extent: float = DEFAULT_HALF_EXTENT) -> np.ndarray:
    """Return an (N, 3) float32 array: (x - h, -y + h, 0) for every landmark."""
    pts = np.asarray(landmarks, dtype=np.float32).reshape(-1, 2)
    cloud = np.zeros((pts.shape[0], 3), dtype=np.float32)
    cloud[:, 0] = pts[:, 0] - half_extent
    cloud[:, 1] = -pts[:, 1] + half_extent
    return cloud


class PointCloudViewer:
    """
    Minimal orbit-camera point renderer on a cv2 window.

    Drag with the left mouse button to orbit, use the wheel to zoom. Rotation
    follows the drag with damping, like an orbit control.
    """

    def __init__(self, window: str = "Face Vibe 3D", size: int = 400,
                 fov_deg: float = 75.0, distance: float = 250.0,
                 damping: float = 0.25, show: bool = True):
        self.window = window
        self.size = int(size)
        self.fov_deg = float(fov_deg)
        self.distance = float(distance)
        self.damping = float(damping)
        self.show = show

        self.points: Optional[np.ndarray] = None
        self.canvas = np.zeros((self.size, self.size, 3), dtype=np.uint8)
        self._yaw = self._pitch = 0.0
        self._target_yaw = self._target_pitch = 0.0
        self._drag_from: Optional[Tuple[int, int]] = None
        self._window_open = False

    # ---- scene ----
    def replace(self, points: np.ndarray):
        """Drop the current cloud entirely, then install ``points``."""
        self.clear()
        self.points = np.array(points, dtype=np.float32, copy=True)
        logger.debug(f"[viewer] cloud replaced points={len(self.points)}")

    def clear(self):
        self.points = None
        self.canvas[:] = 0

    # ---- camera ----
    def orbit(self, dx: float, dy: float):
        self._target_yaw += dx * 0.01
        self._target_pitch = max(-math.pi / 2, min(math.pi / 2, self._target_pitch + dy * 0.01))

    def zoom(self, steps: float):
        self.distance = max(10.0, self.distance * (0.9 ** steps))

    def update(self):
        self._yaw += (self._target_yaw - self._yaw) * self.damping
        self._pitch += (self._target_pitch - self._pitch) * self.damping

    def _on_mouse(self, event, x, y, flags, param):
        if event == cv2.EVENT_LBUTTONDOWN:
            self._drag_from = (x, y)
        elif event == cv2.EVENT_MOUSEMOVE and self._drag_from is not None:
            self.orbit(x - self._drag_from[0], y - self._drag_from[1])
            self._drag_from = (x, y)
        elif event == cv2.EVENT_LBUTTONUP:
            self._drag_from = None
        elif event == cv2.EVENT_MOUSEWHEEL:
            self.zoom(1 if flags > 0 else -1)

    def screen_points(self) -> np.ndarray:
        """Project the cloud through the orbit camera into viewer pixels."""
        if self.points is None or len(self.points) == 0:
            return np.zeros((0, 2), dtype=np.int32)
        cy, sy = math.cos(self._yaw), math.sin(self._yaw)
        cp, sp = math.cos(self._pitch), math.sin(self._pitch)
        rot_y = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]], dtype=np.float32)
        rot_x = np.array([[1, 0, 0], [0, cp, -sp], [0, sp, cp]], dtype=np.float32)
        cam = self.points @ (rot_x @ rot_y).T
        depth = self.distance - cam[:, 2]
        visible = depth > 1e-3
        focal = (self.size / 2.0) / math.tan(math.radians(self.fov_deg) / 2.0)
        u = self.size / 2.0 + focal * cam[visible, 0] / depth[visible]
        v = self.size / 2.0 - focal * cam[visible, 1] / depth[visible]
        return np.stack([u, v], axis=1).astype(np.int32)

    def render(self) -> np.ndarray:
        self.update()
        self.canvas[:] = 0
        for u, v in self.screen_points():
            if 0 <= u < self.size and 0 <= v < self.size:
                cv2.circle(self.canvas, (int(u), int(v)), 1, (0, 255, 0), -1)
        if self.show and self.points is not None:
            if not self._window_open:
                cv2.namedWindow(self.window)
                cv2.setMouseCallback(self.window, self._on_mouse)
                self._window_open = True
            cv2.imshow(self.window, self.canvas)
        return self.canvas

    def close(self):
        self.clear()
        if self._window_open:
            cv2.destroyWindow(self.window)
            self._window_open = False


class GeometryProjector:
    """Rebuilds the viewer's cloud from a subject's landmarks on demand."""

    def __init__(self, viewer: PointCloudViewer, half_extent: float = DEFAULT_HALF_EXTENT):
        self.viewer = viewer
        self.half_extent = half_extent
        self.rebuilds = 0

    def rebuild(self, subject: RawDetection) -> np.ndarray:
        cloud = project(subject.landmarks, self.half_extent)
        self.viewer.replace(cloud)
        self.rebuilds += 1
        return cloud
