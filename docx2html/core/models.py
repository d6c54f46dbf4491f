from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


class EngineState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    BUSY = "busy"
    INIT_FAILED = "init_failed"


class ConversionRequest(BaseModel):
    data: bytes
    target_format: str = "html"
    deadline_sec: Optional[float] = None


class ConversionResult(BaseModel):
    request_id: str
    target_format: str
    content: str
    elapsed_sec: float


class ManagerStatus(BaseModel):
    state: EngineState
    pending: int = 0
    abandoned: int = 0
    init_attempts: int = 0
    init_error: str = ""
    engine_binary: str = ""
    engine_version: str = ""


@dataclass(frozen=True)
class EngineInstance:
    binary: Path
    profile_dir: Path
    version: str
    initialized_at: float

    @property
    def profile_uri(self) -> str:
        return self.profile_dir.resolve().as_uri()


@dataclass(frozen=True)
class WorkingArtifact:
    request_id: str
    root: Path
    input_path: Path
    output_dir: Path
