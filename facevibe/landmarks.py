"""
MediaPipe FaceLandmarker wrapper: dense face-mesh points for one face box.

The landmarker runs on a padded crop around the detector box so each
candidate face gets its own mesh; points are mapped back to full-frame pixel
coordinates. All meshes have the same cardinality (478 points).
"""
from __future__ import annotations

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from facevibe.models import BoundingBox, Point2D

logger = logging.getLogger(__name__)

CROP_MARGIN = 0.25  # fraction of box size added on every side


def padded_crop(frame_w: int, frame_h: int, box: BoundingBox,
                margin: float = CROP_MARGIN) -> Tuple[int, int, int, int]:
    """Return (x0, y0, x1, y1) of the box grown by ``margin`` and clamped to the frame."""
    mx = box.width * margin
    my = box.height * margin
    x0 = max(0, int(box.x - mx))
    y0 = max(0, int(box.y - my))
    x1 = min(frame_w, int(box.x + box.width + mx))
    y1 = min(frame_h, int(box.y + box.height + my))
    return x0, y0, x1, y1


class MeshLandmarks:
    def __init__(self, landmarker):
        self._landmarker = landmarker

    def locate(self, frame_bgr: np.ndarray, box: BoundingBox) -> Optional[Tuple[Point2D, ...]]:
        import mediapipe as mp

        H, W = frame_bgr.shape[:2]
        x0, y0, x1, y1 = padded_crop(W, H, box)
        if x1 <= x0 or y1 <= y0:
            return None
        crop = np.ascontiguousarray(frame_bgr[y0:y1, x0:x1])
        rgb = cv2.cvtColor(crop, cv2.COLOR_BGR2RGB)
        res = self._landmarker.detect(mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb))
        if not res.face_landmarks:
            logger.debug("[landmarks] no mesh for candidate box")
            return None

        cw, ch = x1 - x0, y1 - y0
        return tuple((x0 + p.x * cw, y0 + p.y * ch) for p in res.face_landmarks[0])

    def close(self):
        self._landmarker.close()
