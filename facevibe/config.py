"""
Configuration for the face mood pipeline.
"""
from pydantic import BaseModel
import os


def _env_flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    MODELS_DIR: str = os.getenv("MODELS_DIR", "models")

    DETECT_INTERVAL: float = float(os.getenv("DETECT_INTERVAL", "0.1"))
    DETECTOR_BACKEND: str = os.getenv("DETECTOR_BACKEND", "opencv")
    MIN_DETECTION_CONFIDENCE: float = float(os.getenv("MIN_DETECTION_CONFIDENCE", "0.5"))
    ENABLE_AGE_GENDER: bool = _env_flag("ENABLE_AGE_GENDER", "true")

    DISPLAY_WIDTH: int = int(os.getenv("DISPLAY_WIDTH", "640"))
    DISPLAY_HEIGHT: int = int(os.getenv("DISPLAY_HEIGHT", "480"))
    REFERENCE_HALF_EXTENT: float = float(os.getenv("REFERENCE_HALF_EXTENT", "250"))
    VIEWER_SIZE: int = int(os.getenv("VIEWER_SIZE", "400"))

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def __init__(self, **data):
        super().__init__(**data)
        # floor at 20ms
        object.__setattr__(self, "DETECT_INTERVAL", max(0.02, float(self.DETECT_INTERVAL)))
        level = (self.LOG_LEVEL or "INFO").strip().split()[0].upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            level = "INFO"
        object.__setattr__(self, "LOG_LEVEL", level)

    @property
    def display_size(self) -> tuple[int, int]:
        return self.DISPLAY_WIDTH, self.DISPLAY_HEIGHT
