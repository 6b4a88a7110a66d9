"""
Reduce a detection cycle to one subject and a sticky mood.
"""
from __future__ import annotations
from typing import Dict, Optional, Sequence, Tuple

from facevibe.models import FaceAttributes, MoodState, RawDetection

MOOD_INDICATORS: Dict[str, str] = {
    "happy": "😊",
    "sad": "😢",
    "angry": "😠",
    "disgusted": "🤢",
    "fearful": "😨",
    "neutral": "😐",
    "surprised": "😲",
}
UNKNOWN_INDICATOR = "🤔"

# Hershey fonts have no emoji; OpenCV windows draw these instead
MOOD_GLYPHS: Dict[str, str] = {
    "happy": ":)",
    "sad": ":(",
    "angry": ">:(",
    "disgusted": ":S",
    "fearful": "D:",
    "neutral": ":|",
    "surprised": ":O",
}
UNKNOWN_GLYPH = "?"


def mood_indicator(expression: Optional[str]) -> str:
    return MOOD_INDICATORS.get(expression or "", UNKNOWN_INDICATOR)


def mood_glyph(expression: Optional[str]) -> str:
    return MOOD_GLYPHS.get(expression or "", UNKNOWN_GLYPH)


def dominant_expression(expressions: Dict[str, float]) -> Optional[str]:
    """Arg-max label; on an exact tie the first label in the distribution wins."""
    if not expressions:
        return None
    return max(expressions, key=expressions.get)


def face_attributes(subject: RawDetection) -> FaceAttributes:
    return FaceAttributes(
        age=round(subject.age) if subject.age is not None else None,
        gender=subject.gender,
        expression=dominant_expression(subject.expressions) or "",
    )


class ResultReducer:
    """
    Keeps the last MoodState.

    A cycle without faces returns no subject and leaves the mood as it was.
    A subject whose distribution is empty also leaves the mood untouched.
    """

    def __init__(self, initial: Optional[MoodState] = None):
        self.mood: Optional[MoodState] = initial

    def reduce(self, detections: Sequence[RawDetection]) -> Tuple[Optional[RawDetection], Optional[MoodState]]:
        if not detections:
            return None, self.mood

        subject = detections[0]
        label = dominant_expression(subject.expressions)
        if label is not None:
            self.mood = MoodState(expression=label, indicator=mood_indicator(label))
        return subject, self.mood
