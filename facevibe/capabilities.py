"""
Model lifecycle: load every detection capability once, all-or-nothing.

Capabilities and their weight sources:
- detector    -> DeepFace face detector backend (OpenCV by default)
- landmarks   -> MediaPipe FaceLandmarker bundle under MODELS_DIR
- expressions -> DeepFace "Emotion" attribute model
- ageGender   -> DeepFace "Age" and "Gender" attribute models

DeepFace and MediaPipe are imported lazily inside the loaders so tests can
inject fakes and importing this module stays cheap.
"""
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

from facevibe.config import Settings
from facevibe.errors import LoadFailure
from facevibe.landmarks import MeshLandmarks
from facevibe.models import LoadResult

logger = logging.getLogger(__name__)

LANDMARKER_BUNDLE = "face_landmarker.task"

Manifest = Dict[str, Tuple[str, ...]]
Loader = Callable[[Tuple[str, ...]], Any]


def configure_model_home(settings: Settings) -> None:
    """Point DeepFace's weight cache at MODELS_DIR unless the user already set one."""
    os.environ.setdefault("DEEPFACE_HOME", str(Path(settings.MODELS_DIR).resolve()))


def default_manifest(settings: Settings, names: Optional[Iterable[str]] = None) -> Manifest:
    manifest: Manifest = {
        "detector": (settings.DETECTOR_BACKEND,),
        "landmarks": (str(Path(settings.MODELS_DIR) / LANDMARKER_BUNDLE),),
        "expressions": ("Emotion",),
        "ageGender": ("Age", "Gender"),
    }
    if names is None:
        return manifest
    wanted = set(names)
    return {k: v for k, v in manifest.items() if k in wanted}


# -----------------------------------------------------------------------------
# Loaders (blocking; run in a worker thread)
# -----------------------------------------------------------------------------
def _load_detector(sources: Tuple[str, ...]) -> str:
    from deepface import DeepFace
    backend = sources[0]
    DeepFace.build_model(task="face_detector", model_name=backend)
    return backend


def _load_attribute_models(sources: Tuple[str, ...]) -> Tuple[str, ...]:
    from deepface import DeepFace
    for name in sources:
        DeepFace.build_model(task="facial_attribute", model_name=name)
    return tuple(sources)


def _load_landmarker(sources: Tuple[str, ...]):
    path = Path(sources[0])
    if not path.is_file():
        raise LoadFailure(f"Landmark model not found: {path}", ["landmarks"])
    from mediapipe.tasks.python import BaseOptions, vision

    options = vision.FaceLandmarkerOptions(
        base_options=BaseOptions(model_asset_path=str(path)),
        num_faces=1,
        output_face_blendshapes=False,
        output_facial_transformation_matrixes=False,
    )
    return MeshLandmarks(vision.FaceLandmarker.create_from_options(options))


DEFAULT_LOADERS: Dict[str, Loader] = {
    "detector": _load_detector,
    "landmarks": _load_landmarker,
    "expressions": _load_attribute_models,
    "ageGender": _load_attribute_models,
}


class DetectionCapabilitySet:
    """Immutable bundle of loaded capability handles, keyed by capability name."""

    def __init__(self, handles: Mapping[str, Any]):
        self._handles = MappingProxyType(dict(handles))

    def __getitem__(self, name: str) -> Any:
        return self._handles[name]

    def __contains__(self, name: object) -> bool:
        return name in self._handles

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(self._handles)

    def has_all(self, names: Iterable[str]) -> bool:
        return all(n in self._handles for n in names)

    def close(self) -> None:
        for name, handle in self._handles.items():
            closer = getattr(handle, "close", None)
            if callable(closer):
                try:
                    closer()
                except Exception:
                    logger.warning(f"[models] failed to release capability {name}")


class ModelLifecycleManager:
    """
    Loads the manifest concurrently and flips the readiness gate once all of
    it is in. A failed load leaves the manager not ready; calling load()
    again is the only retry.
    """

    def __init__(self, manifest: Manifest, loaders: Optional[Mapping[str, Loader]] = None):
        self._manifest = dict(manifest)
        self._loaders = dict(DEFAULT_LOADERS if loaders is None else loaders)
        self._capabilities: Optional[DetectionCapabilitySet] = None
        self._lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self._capabilities is not None

    @property
    def capabilities(self) -> Optional[DetectionCapabilitySet]:
        return self._capabilities

    async def load(self) -> LoadResult:
        async with self._lock:
            if self._capabilities is not None:
                return LoadResult(ready=True)

            names = list(self._manifest)
            logger.info(f"[models] loading capabilities: {', '.join(names)}")
            loop = asyncio.get_running_loop()
            results = await asyncio.gather(
                *(loop.run_in_executor(None, self._load_one, name) for name in names),
                return_exceptions=True,
            )

            loaded: Dict[str, Any] = {}
            failed = []
            reasons = []
            for name, res in zip(names, results):
                if isinstance(res, BaseException):
                    failed.append(name)
                    reasons.append(str(res))
                    logger.error(f"[models] capability {name} failed: {res}")
                else:
                    loaded[name] = res

            if failed:
                # Partial readiness is not a state: drop whatever did load
                DetectionCapabilitySet(loaded).close()
                return LoadResult(ready=False, reason="; ".join(reasons), failed=tuple(failed))

            self._capabilities = DetectionCapabilitySet(loaded)
            logger.info("[models] all capabilities ready")
            return LoadResult(ready=True)

    def _load_one(self, name: str) -> Any:
        loader = self._loaders.get(name)
        if loader is None:
            raise LoadFailure(f"No loader registered for capability {name!r}", [name])
        try:
            return loader(self._manifest[name])
        except LoadFailure:
            raise
        except Exception as e:
            raise LoadFailure(f"{name}: {e}", [name]) from e

    def release(self) -> None:
        if self._capabilities is not None:
            self._capabilities.close()
            self._capabilities = None
