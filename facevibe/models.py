"""
Pydantic data models shared by the pipeline stages.
"""
from __future__ import annotations
from typing import Dict, Literal, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field

# Closed expression set, in the order used to break arg-max ties
EXPRESSION_LABELS: Tuple[str, ...] = (
    "happy", "sad", "angry", "disgusted", "fearful", "neutral", "surprised",
)

Point2D = Tuple[float, float]


class BoundingBox(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    width: float
    height: float
    score: float = 1.0

    def scaled(self, sx: float, sy: float) -> "BoundingBox":
        return BoundingBox(
            x=self.x * sx, y=self.y * sy,
            width=self.width * sx, height=self.height * sy,
            score=self.score,
        )


class RawDetection(BaseModel):
    """One face candidate as returned by a single detection call."""
    model_config = ConfigDict(frozen=True)

    box: BoundingBox
    landmarks: Tuple[Point2D, ...] = ()
    expressions: Dict[str, float] = Field(default_factory=dict)
    age: Optional[float] = None
    gender: Optional[Literal["male", "female"]] = None
    gender_probability: Optional[float] = None
    image_size: Tuple[int, int]

    def resized(self, display_size: Tuple[int, int]) -> "RawDetection":
        """Rescale box and landmarks from the source image to ``display_size``."""
        src_w, src_h = self.image_size
        dst_w, dst_h = display_size
        sx = dst_w / float(src_w) if src_w else 1.0
        sy = dst_h / float(src_h) if src_h else 1.0
        return self.model_copy(update={
            "box": self.box.scaled(sx, sy),
            "landmarks": tuple((x * sx, y * sy) for x, y in self.landmarks),
            "image_size": (int(dst_w), int(dst_h)),
        })


class VideoFrame(BaseModel):
    """Latest decoded camera image, copied out of the reader thread."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    image: np.ndarray
    width: int
    height: int
    seq: int
    ts: float

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height


class MoodState(BaseModel):
    model_config = ConfigDict(frozen=True)

    expression: str
    indicator: str


class FaceAttributes(BaseModel):
    model_config = ConfigDict(frozen=True)

    age: Optional[int] = None
    gender: Optional[str] = None
    expression: str


class DetectionRequest(BaseModel):
    """
    A single detection call with the extensions it should run.

    Landmarks, expressions and age/gender are chained onto the same call and
    come back as one list of RawDetection.
    """
    model_config = ConfigDict(frozen=True)

    min_confidence: float = 0.5
    with_landmarks: bool = True
    with_expressions: bool = True
    with_age_gender: bool = False

    @property
    def required_capabilities(self) -> Tuple[str, ...]:
        names = ["detector"]
        if self.with_landmarks:
            names.append("landmarks")
        if self.with_expressions:
            names.append("expressions")
        if self.with_age_gender:
            names.append("ageGender")
        return tuple(names)


class LoadResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    ready: bool
    reason: Optional[str] = None
    failed: Tuple[str, ...] = ()


class CaptureResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    granted: bool
    reason: Optional[str] = None


ScanStatus = Literal["detected", "no_face", "failed", "busy", "unavailable"]


class ScanResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ScanStatus
    subject: Optional[RawDetection] = None
    mood: Optional[MoodState] = None
    attributes: Optional[FaceAttributes] = None


PipelineState = Literal[
    "idle", "loading", "load_failed", "capture_denied", "running", "closed",
]


class PipelineStatus(BaseModel):
    state: PipelineState
    message: Optional[str] = None
    mood: Optional[MoodState] = None
    attributes: Optional[FaceAttributes] = None
