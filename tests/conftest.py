import time
import numpy as np
import pytest

from facevibe.config import Settings
from facevibe.models import BoundingBox, RawDetection


class DummyCap:
    """Stands in for cv2.VideoCapture: always opened, serves a fixed frame."""
    def __init__(self, idx=0, opened=True, shape=(48, 64, 3)):
        self.idx = idx
        self.opened = opened
        self.frame = np.zeros(shape, dtype=np.uint8)
        self.released = False
    def isOpened(self): return self.opened and not self.released
    def read(self):
        time.sleep(0.002)
        if self.released:
            return False, None
        return True, self.frame.copy()
    def release(self): self.released = True


@pytest.fixture
def settings():
    return Settings(DETECT_INTERVAL=0.02, CAMERA_INDEX=0, DISPLAY_WIDTH=64, DISPLAY_HEIGHT=48)


@pytest.fixture
def dummy_cap():
    return DummyCap()


@pytest.fixture
def make_detection():
    def _make(expressions=None, x=10, y=10, w=20, h=20, score=0.9,
              landmarks=((250.0, 250.0), (260.0, 240.0), (240.0, 260.0)),
              age=None, gender=None, image_size=(64, 48)):
        return RawDetection(
            box=BoundingBox(x=x, y=y, width=w, height=h, score=score),
            landmarks=landmarks,
            expressions=expressions if expressions is not None else {"happy": 0.9, "sad": 0.1},
            age=age,
            gender=gender,
            image_size=image_size,
        )
    return _make
