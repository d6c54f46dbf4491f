from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def _parse_int(val: str | None, default: int) -> int:
    if val is None or str(val).strip() == "":
        return default
    try:
        return int(str(val).strip())
    except ValueError:
        return default


def _parse_float(val: str | None, default: float) -> float:
    if val is None or str(val).strip() == "":
        return default
    try:
        return float(str(val).strip())
    except ValueError:
        return default


def _parse_bool(val: str | None, default: bool = False) -> bool:
    if val is None or str(val).strip() == "":
        return default
    return str(val).strip().lower() in ("1", "true", "yes", "on")


def _optional_path(val: str | None) -> Optional[Path]:
    if val is None or str(val).strip() == "":
        return None
    return Path(str(val).strip()).expanduser()


@dataclass(frozen=True)
class Config:
    """Centralized configuration derived from environment variables.

    The engine is a single long-lived runtime per process, so everything that
    shapes its lifetime (binary location, memory cap, timeouts, admission queue)
    is read once here and passed to the stager, engine and lifecycle manager.
    """

    data_root: Path
    work_root: Path
    profile_dir: Path
    log_dir: Path
    engine_home: Path
    soffice_bin: Optional[Path]
    engine_image_url: str

    engine_memory_mb: int
    convert_timeout_sec: float
    engine_hard_timeout_sec: int
    init_timeout_sec: int
    queue_depth: int
    queue_timeout_sec: float
    max_upload_bytes: int
    eager_init: bool
    orphan_ttl_sec: int
    sweep_interval_sec: int

    @staticmethod
    def from_env() -> "Config":
        data_root = Path(os.environ.get("DATA_ROOT", "/data")).resolve()
        work_root = Path(os.environ.get("WORK_ROOT", str(data_root / "artifacts"))).resolve()
        profile_dir = Path(os.environ.get("PROFILE_DIR", str(data_root / "profile"))).resolve()
        log_dir = Path(os.environ.get("LOG_DIR", "/var/log/docx2html")).resolve()
        engine_home = Path(os.environ.get("ENGINE_HOME", "/opt/docx2html")).resolve()
        soffice_bin = _optional_path(os.environ.get("SOFFICE_BIN"))
        engine_image_url = os.environ.get("ENGINE_IMAGE_URL", "").strip()

        # A zero or negative deadline would reject every request
        convert_timeout_sec = _parse_float(os.environ.get("CONVERT_TIMEOUT_SEC"), 10.0)
        if convert_timeout_sec <= 0:
            convert_timeout_sec = 10.0

        return Config(
            data_root=data_root,
            work_root=work_root,
            profile_dir=profile_dir,
            log_dir=log_dir,
            engine_home=engine_home,
            soffice_bin=soffice_bin,
            engine_image_url=engine_image_url,
            engine_memory_mb=max(0, _parse_int(os.environ.get("ENGINE_MEMORY_MB"), 0)),
            convert_timeout_sec=convert_timeout_sec,
            engine_hard_timeout_sec=max(1, _parse_int(os.environ.get("ENGINE_HARD_TIMEOUT_SEC"), 120)),
            init_timeout_sec=max(1, _parse_int(os.environ.get("INIT_TIMEOUT_SEC"), 120)),
            queue_depth=max(0, _parse_int(os.environ.get("QUEUE_DEPTH"), 8)),
            queue_timeout_sec=max(0.0, _parse_float(os.environ.get("QUEUE_TIMEOUT_SEC"), 0.0)),
            max_upload_bytes=max(0, _parse_int(os.environ.get("MAX_UPLOAD_BYTES"), 0)),
            eager_init=_parse_bool(os.environ.get("EAGER_INIT"), False),
            orphan_ttl_sec=max(0, _parse_int(os.environ.get("ORPHAN_TTL_SEC"), 3600)),
            sweep_interval_sec=max(0, _parse_int(os.environ.get("SWEEP_INTERVAL_SEC"), 600)),
        )

    @property
    def engine_log(self) -> Path:
        return self.log_dir / "engine.log"

    def as_dict(self) -> dict:
        return {
            "data_root": str(self.data_root),
            "work_root": str(self.work_root),
            "profile_dir": str(self.profile_dir),
            "log_dir": str(self.log_dir),
            "engine_home": str(self.engine_home),
            "soffice_bin": str(self.soffice_bin) if self.soffice_bin else "",
            "engine_image_url": self.engine_image_url,
            "engine_memory_mb": self.engine_memory_mb,
            "convert_timeout_sec": self.convert_timeout_sec,
            "engine_hard_timeout_sec": self.engine_hard_timeout_sec,
            "init_timeout_sec": self.init_timeout_sec,
            "queue_depth": self.queue_depth,
            "queue_timeout_sec": self.queue_timeout_sec,
            "max_upload_bytes": self.max_upload_bytes,
            "eager_init": self.eager_init,
            "orphan_ttl_sec": self.orphan_ttl_sec,
            "sweep_interval_sec": self.sweep_interval_sec,
        }


def get_config() -> Config:
    """Return a process-wide singleton Config instance."""
    global _CONFIG_SINGLETON
    try:
        cfg = _CONFIG_SINGLETON  # type: ignore[name-defined]
    except NameError:
        _CONFIG_SINGLETON = Config.from_env()  # type: ignore[assignment]
        cfg = _CONFIG_SINGLETON
    return cfg  # type: ignore[return-value]


def reset_config() -> None:
    """Drop the cached Config so the next get_config() re-reads the environment."""
    global _CONFIG_SINGLETON
    try:
        del _CONFIG_SINGLETON  # type: ignore[name-defined]
    except NameError:
        pass
