from __future__ import annotations

import dataclasses
import importlib
import threading
import time
from pathlib import Path
from typing import List, Optional, Tuple

import pytest

from docx2html.core.config import Config, reset_config
from docx2html.core.engine import EngineHandle
from docx2html.core.errors import ConversionError, InitError
from docx2html.core.models import EngineInstance
from docx2html.core.stager import ArtifactStager
from docx2html.services.lifecycle import RuntimeManager


HTML = "<!DOCTYPE html><html><head><title>doc</title></head><body><p>converted</p></body></html>"


class RecordingEngine(EngineHandle):
    """Engine stand-in that records every call.

    Input bytes select the behaviour: ``NO-OUTPUT`` writes nothing, ``BROKEN``
    fails like a non-zero engine exit, ``CRASH`` raises an unexpected error.
    The first ``hold_calls`` conversions block until ``hold`` is set.
    """

    def __init__(
        self,
        init_delay: float = 0.0,
        convert_delay: float = 0.0,
        fail_init: bool = False,
        hold_calls: int = 0,
    ):
        self.init_delay = init_delay
        self.convert_delay = convert_delay
        self.fail_init = fail_init
        self.hold_calls = hold_calls
        self.hold = threading.Event()
        self.init_calls = 0
        self.convert_calls = 0
        self.intervals: List[Tuple[float, float]] = []
        self.max_active = 0
        self._active = 0
        self._lock = threading.Lock()

    def initialize(self, cfg: Config) -> EngineInstance:
        with self._lock:
            self.init_calls += 1
        time.sleep(self.init_delay)
        if self.fail_init:
            raise InitError("simulated runtime load failure")
        return EngineInstance(
            binary=Path("fake-soffice"),
            profile_dir=cfg.profile_dir,
            version="FakeOffice 1.0",
            initialized_at=time.time(),
        )

    def convert(self, instance: EngineInstance, input_path: Path, target_format: str, output_dir: Path) -> Path:
        with self._lock:
            index = self.convert_calls
            self.convert_calls += 1
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        enter = time.monotonic()
        try:
            if index < self.hold_calls:
                self.hold.wait()
            if self.convert_delay:
                time.sleep(self.convert_delay)
            data = input_path.read_bytes()
            out = output_dir / f"{input_path.stem}.html"
            if data == b"BROKEN":
                raise ConversionError("engine exited with 1: source file could not be loaded")
            if data == b"CRASH":
                raise RuntimeError("segfault in filter")
            if data != b"NO-OUTPUT":
                out.write_text(HTML, encoding="utf-8")
            return out
        finally:
            with self._lock:
                self._active -= 1
                self.intervals.append((enter, time.monotonic()))


def make_config(root: Path, **overrides) -> Config:
    base = Config.from_env()
    cfg = dataclasses.replace(
        base,
        data_root=root,
        work_root=root / "artifacts",
        profile_dir=root / "profile",
        log_dir=root / "logs",
        engine_home=root / "engine",
        soffice_bin=None,
        engine_image_url="",
        engine_memory_mb=0,
        convert_timeout_sec=10.0,
        queue_depth=8,
        queue_timeout_sec=0.0,
        max_upload_bytes=0,
        eager_init=False,
        sweep_interval_sec=0,
    )
    return dataclasses.replace(cfg, **overrides)


@pytest.fixture
def cfg_factory(tmp_path):
    def factory(**overrides) -> Config:
        return make_config(tmp_path, **overrides)

    return factory


@pytest.fixture
def manager_factory(cfg_factory):
    created: list[Tuple[RuntimeManager, RecordingEngine]] = []

    def factory(engine: Optional[RecordingEngine] = None, **overrides) -> Tuple[RuntimeManager, RecordingEngine]:
        cfg = cfg_factory(**overrides)
        engine = engine or RecordingEngine()
        stager = ArtifactStager(cfg.work_root, log_path=cfg.log_dir / "stager.log")
        mgr = RuntimeManager(cfg, engine, stager)
        created.append((mgr, engine))
        return mgr, engine

    yield factory
    for mgr, engine in created:
        engine.hold.set()
        mgr.shutdown(wait=True)


@pytest.fixture
def routes_factory(tmp_path, monkeypatch):
    """Reload the routes module against an isolated environment and a fake engine."""
    loaded = []

    def factory(engine: Optional[RecordingEngine] = None, **env):
        monkeypatch.setenv("DATA_ROOT", str(tmp_path / "data"))
        monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
        monkeypatch.delenv("WORK_ROOT", raising=False)
        monkeypatch.delenv("PROFILE_DIR", raising=False)
        for k, v in env.items():
            monkeypatch.setenv(k, str(v))
        reset_config()

        import docx2html.api.routes as routes

        r = importlib.reload(routes)
        engine = engine or RecordingEngine()
        r.ctx.replace_engine(engine)
        loaded.append((r, engine))
        return r, engine

    yield factory
    for r, engine in loaded:
        engine.hold.set()
        r.ctx.manager.shutdown(wait=True)
    reset_config()
