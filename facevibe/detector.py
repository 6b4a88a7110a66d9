"""
Face analysis with DeepFace + MediaPipe.

FaceAnalyzer.detect runs one detection call for a frame:
  1) DeepFace.extract_faces finds candidate boxes (detector order is kept)
  2) MediaPipe mesh landmarks per box; boxes without a mesh are rejected
  3) DeepFace.analyze on the face crop for emotion and, when requested,
     age/gender

Labels and scores are normalised to the closed expression set
(happy, sad, angry, disgusted, fearful, neutral, surprised) on a 0..1 scale.
DeepFace is imported lazily so tests can monkeypatch sys.modules['deepface'].
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional

import numpy as np

from facevibe.capabilities import DetectionCapabilitySet
from facevibe.errors import DetectionCycleFailure
from facevibe.models import EXPRESSION_LABELS, BoundingBox, DetectionRequest, RawDetection

logger = logging.getLogger(__name__)

DEEPFACE_EXPRESSIONS = {
    "angry": "angry",
    "disgust": "disgusted",
    "fear": "fearful",
    "happy": "happy",
    "sad": "sad",
    "surprise": "surprised",
    "neutral": "neutral",
}
DEEPFACE_GENDERS = {"Man": "male", "Woman": "female"}


def normalize_expressions(scores: Optional[Dict[str, float]]) -> Dict[str, float]:
    """Map DeepFace emotion percentages onto the closed label set, in enumeration order."""
    if not scores:
        return {}
    mapped: Dict[str, float] = {}
    for k, v in scores.items():
        label = DEEPFACE_EXPRESSIONS.get(str(k).lower(), str(k).lower())
        mapped[label] = float(v)
    scale = 100.0 if max(mapped.values()) > 1.0 else 1.0
    ordered = {lbl: mapped.pop(lbl) / scale for lbl in EXPRESSION_LABELS if lbl in mapped}
    # unknown labels go after the closed set, in the order DeepFace gave them
    ordered.update({lbl: v / scale for lbl, v in mapped.items()})
    return ordered


def _gender(blob: Dict):
    dom = blob.get("dominant_gender")
    if dom is None and isinstance(blob.get("gender"), str):
        dom = blob["gender"]
    label = DEEPFACE_GENDERS.get(dom or "")
    if label is None:
        return None, None
    probs = blob.get("gender")
    prob = None
    if isinstance(probs, dict) and dom in probs:
        prob = float(probs[dom])
        prob = prob / 100.0 if prob > 1.0 else prob
    return label, prob


class FaceAnalyzer:
    """The detection capability, backed by a loaded DetectionCapabilitySet."""

    def __init__(self, capabilities: DetectionCapabilitySet):
        self._caps = capabilities

    def supports(self, request: DetectionRequest) -> bool:
        return self._caps.has_all(request.required_capabilities)

    def detect(self, image: np.ndarray, request: DetectionRequest) -> List[RawDetection]:
        if not self.supports(request):
            missing = [n for n in request.required_capabilities if n not in self._caps]
            raise DetectionCycleFailure(f"Capabilities not loaded: {', '.join(missing)}")
        if image is None or image.size == 0:
            raise DetectionCycleFailure("Empty frame")
        try:
            return self._detect(image, request)
        except DetectionCycleFailure:
            raise
        except Exception as e:
            raise DetectionCycleFailure(str(e)) from e

    # ---- stages ----
    def _detect(self, image: np.ndarray, request: DetectionRequest) -> List[RawDetection]:
        H, W = image.shape[:2]
        boxes = self._find_faces(image, request)
        logger.debug(f"[detector] candidates={len(boxes)}")

        detections: List[RawDetection] = []
        for box in boxes:
            landmarks = ()
            if request.with_landmarks:
                landmarks = self._caps["landmarks"].locate(image, box)
                if not landmarks:
                    continue

            blob: Dict = {}
            if request.with_expressions or request.with_age_gender:
                x, y = int(box.x), int(box.y)
                chip = image[y:y + int(box.height), x:x + int(box.width)]
                blob = self._analyze(chip if chip.size else image, request)

            age = None
            gender, gender_prob = None, None
            if request.with_age_gender:
                if blob.get("age") is not None:
                    age = float(blob["age"])
                gender, gender_prob = _gender(blob)

            detections.append(RawDetection(
                box=box,
                landmarks=landmarks,
                expressions=normalize_expressions(blob.get("emotion")) if request.with_expressions else {},
                age=age,
                gender=gender,
                gender_probability=gender_prob,
                image_size=(W, H),
            ))
        return detections

    def _find_faces(self, image: np.ndarray, request: DetectionRequest) -> List[BoundingBox]:
        from deepface import DeepFace

        H, W = image.shape[:2]
        dets = DeepFace.extract_faces(
            img_path=image,
            detector_backend=self._caps["detector"],
            enforce_detection=False,
            align=False,
        )
        boxes: List[BoundingBox] = []
        for d in dets or []:
            fa = (d or {}).get("facial_area") or {}
            x, y = int(fa.get("x", 0)), int(fa.get("y", 0))
            w, h = int(fa.get("w", 0)), int(fa.get("h", 0))
            try:
                conf = float(d.get("confidence") or 0.0)
            except (TypeError, ValueError):
                conf = 0.0
            if w <= 0 or h <= 0 or conf < request.min_confidence:
                continue
            # clamp to image bounds
            x = max(0, min(x, W - 1)); y = max(0, min(y, H - 1))
            w = max(1, min(w, W - x)); h = max(1, min(h, H - y))
            boxes.append(BoundingBox(x=x, y=y, width=w, height=h, score=conf))
        return boxes

    def _analyze(self, chip: np.ndarray, request: DetectionRequest) -> Dict:
        from deepface import DeepFace

        actions = []
        if request.with_expressions:
            actions.append("emotion")
        if request.with_age_gender:
            actions.extend(["age", "gender"])
        res = DeepFace.analyze(
            chip,
            actions=actions,
            enforce_detection=False,
            detector_backend="skip",
        )
        res = res if isinstance(res, list) else [res]
        return (res[0] or {}) if res else {}
