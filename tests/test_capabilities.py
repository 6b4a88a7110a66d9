import asyncio
import sys
import threading
import types

import pytest

import facevibe.capabilities as caps
from facevibe.capabilities import ModelLifecycleManager, default_manifest
from facevibe.config import Settings
from facevibe.errors import LoadFailure


class Handle:
    def __init__(self, name):
        self.name = name
        self.closed = False
    def close(self):
        self.closed = True


def _manifest():
    return {"detector": ("opencv",), "landmarks": ("models/face_landmarker.task",), "expressions": ("Emotion",)}


def test_load_all_ready():
    handles = {}
    def loader(sources):
        h = Handle(sources[0])
        handles[sources[0]] = h
        return h
    m = ModelLifecycleManager(_manifest(), loaders={k: loader for k in _manifest()})
    assert not m.ready
    res = asyncio.run(m.load())
    assert res.ready and res.failed == ()
    assert m.ready
    assert set(m.capabilities.names) == {"detector", "landmarks", "expressions"}
    assert m.capabilities["detector"].name == "opencv"

def test_loads_run_concurrently():
    # every loader waits for the others; a sequential load would break the barrier
    barrier = threading.Barrier(3, timeout=2)
    def loader(sources):
        barrier.wait()
        return sources[0]
    m = ModelLifecycleManager(_manifest(), loaders={k: loader for k in _manifest()})
    assert asyncio.run(m.load()).ready

def test_single_failure_fails_whole_set():
    loaded = []
    def ok(sources):
        h = Handle(sources[0])
        loaded.append(h)
        return h
    def boom(sources):
        raise OSError("weights missing")
    m = ModelLifecycleManager(_manifest(), loaders={"detector": ok, "landmarks": boom, "expressions": ok})
    res = asyncio.run(m.load())
    assert not res.ready
    assert res.failed == ("landmarks",)
    assert "weights missing" in res.reason
    assert not m.ready and m.capabilities is None
    assert loaded and all(h.closed for h in loaded)

def test_missing_loader_is_a_failure():
    m = ModelLifecycleManager({"detector": ("opencv",), "teleport": ("x",)},
                              loaders={"detector": lambda s: s[0]})
    res = asyncio.run(m.load())
    assert not res.ready and res.failed == ("teleport",)

def test_no_automatic_retry_but_caller_can_reload():
    calls = {"n": 0}
    def flaky(sources):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("first attempt fails")
        return sources[0]
    m = ModelLifecycleManager({"detector": ("opencv",)}, loaders={"detector": flaky})
    assert not asyncio.run(m.load()).ready
    assert calls["n"] == 1
    assert asyncio.run(m.load()).ready
    # loaded once, never again
    assert asyncio.run(m.load()).ready
    assert calls["n"] == 2

def test_release_closes_handles():
    h = Handle("opencv")
    m = ModelLifecycleManager({"detector": ("opencv",)}, loaders={"detector": lambda s: h})
    asyncio.run(m.load())
    m.release()
    assert h.closed and not m.ready

def test_default_manifest_filters_names(tmp_path):
    s = Settings(MODELS_DIR=str(tmp_path))
    full = default_manifest(s)
    assert set(full) == {"detector", "landmarks", "expressions", "ageGender"}
    assert full["landmarks"][0].endswith("face_landmarker.task")
    assert full["ageGender"] == ("Age", "Gender")
    assert set(default_manifest(s, ["detector", "expressions"])) == {"detector", "expressions"}

def test_deepface_loaders_build_models(monkeypatch):
    built = []
    class DF:
        @staticmethod
        def build_model(task=None, model_name=None):
            built.append((task, model_name))
            return object()
    monkeypatch.setitem(sys.modules, "deepface", types.SimpleNamespace(DeepFace=DF))
    assert caps._load_detector(("opencv",)) == "opencv"
    assert caps._load_attribute_models(("Age", "Gender")) == ("Age", "Gender")
    assert built == [("face_detector", "opencv"), ("facial_attribute", "Age"), ("facial_attribute", "Gender")]

def test_landmarker_loader_requires_bundle(tmp_path):
    with pytest.raises(LoadFailure) as ei:
        caps._load_landmarker((str(tmp_path / "face_landmarker.task"),))
    assert ei.value.capabilities == ("landmarks",)

def test_configure_model_home_keeps_user_value(monkeypatch, tmp_path):
    monkeypatch.setenv("DEEPFACE_HOME", "/already/set")
    caps.configure_model_home(Settings(MODELS_DIR=str(tmp_path)))
    import os
    assert os.environ["DEEPFACE_HOME"] == "/already/set"
    monkeypatch.delenv("DEEPFACE_HOME")
    caps.configure_model_home(Settings(MODELS_DIR=str(tmp_path)))
    assert os.environ["DEEPFACE_HOME"] == str(tmp_path.resolve())
