"""
Error taxonomy for the pipeline.

LoadFailure and CaptureDenied reach the presentation layer (the pipeline
reports them as states). A DetectionCycleFailure is absorbed by the
scheduler, and a frame without a face is a normal empty result.
"""
from __future__ import annotations
from typing import Iterable


class FaceVibeError(Exception):
    """Base error for known pipeline failures."""


class LoadFailure(FaceVibeError):
    """One or more detection capabilities failed to load."""

    def __init__(self, message: str, capabilities: Iterable[str] = ()):
        super().__init__(message)
        self.capabilities = tuple(capabilities)


class CaptureDenied(FaceVibeError):
    """Camera permission refused or no capture device available."""


class DetectionCycleFailure(FaceVibeError):
    """A single detection call errored; the cycle is skipped."""
