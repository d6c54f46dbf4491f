from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from docx2html.core.config import Config
from docx2html.core.engine import EngineHandle, SofficeEngine
from docx2html.core.stager import ArtifactStager
from docx2html.services.lifecycle import RuntimeManager


@dataclass
class AppContext:
    config: Config
    stager: ArtifactStager
    engine: EngineHandle
    manager: RuntimeManager

    @classmethod
    def build(cls, cfg: Config, engine: Optional[EngineHandle] = None) -> "AppContext":
        stager = ArtifactStager(cfg.work_root, log_path=cfg.log_dir / "stager.log")
        handle = engine or SofficeEngine(cfg)
        return cls(
            config=cfg,
            stager=stager,
            engine=handle,
            manager=RuntimeManager(cfg, handle, stager),
        )

    def replace_engine(self, engine: EngineHandle) -> None:
        """Swap in another engine handle with a fresh, uninitialized manager."""
        self.manager.shutdown()
        self.engine = engine
        self.manager = RuntimeManager(self.config, engine, self.stager)
