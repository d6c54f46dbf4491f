from __future__ import annotations

import tempfile
from pathlib import Path

from docx2html.core.config import Config, get_config, reset_config


ENV_KEYS = [
    "DATA_ROOT",
    "WORK_ROOT",
    "PROFILE_DIR",
    "LOG_DIR",
    "ENGINE_HOME",
    "SOFFICE_BIN",
    "ENGINE_IMAGE_URL",
    "ENGINE_MEMORY_MB",
    "CONVERT_TIMEOUT_SEC",
    "ENGINE_HARD_TIMEOUT_SEC",
    "INIT_TIMEOUT_SEC",
    "QUEUE_DEPTH",
    "QUEUE_TIMEOUT_SEC",
    "MAX_UPLOAD_BYTES",
    "EAGER_INIT",
    "ORPHAN_TTL_SEC",
    "SWEEP_INTERVAL_SEC",
]


def test_config_from_env_defaults(monkeypatch):
    for k in ENV_KEYS:
        monkeypatch.delenv(k, raising=False)

    cfg = Config.from_env()
    assert isinstance(cfg.data_root, Path)
    assert cfg.work_root == cfg.data_root / "artifacts"
    assert cfg.profile_dir == cfg.data_root / "profile"
    assert cfg.soffice_bin is None
    assert cfg.engine_image_url == ""
    assert cfg.convert_timeout_sec == 10.0
    assert cfg.engine_hard_timeout_sec == 120
    assert cfg.queue_depth == 8
    assert cfg.queue_timeout_sec == 0.0
    assert cfg.max_upload_bytes == 0
    assert cfg.eager_init is False
    assert cfg.engine_log == cfg.log_dir / "engine.log"


def test_config_overrides(monkeypatch):
    with tempfile.TemporaryDirectory() as td:
        base = Path(td) / "x"
        monkeypatch.setenv("DATA_ROOT", str(base / "data"))
        monkeypatch.setenv("WORK_ROOT", str(base / "work"))
        monkeypatch.setenv("PROFILE_DIR", str(base / "profile"))
        monkeypatch.setenv("LOG_DIR", str(base / "logs"))
        monkeypatch.setenv("SOFFICE_BIN", "/usr/lib/libreoffice/program/soffice")
        monkeypatch.setenv("ENGINE_MEMORY_MB", "2048")
        monkeypatch.setenv("CONVERT_TIMEOUT_SEC", "2.5")
        monkeypatch.setenv("QUEUE_DEPTH", "3")
        monkeypatch.setenv("QUEUE_TIMEOUT_SEC", "30")
        monkeypatch.setenv("MAX_UPLOAD_BYTES", "1234")
        monkeypatch.setenv("EAGER_INIT", "yes")

        cfg = Config.from_env()
        assert cfg.data_root == (base / "data").resolve()
        assert cfg.work_root == (base / "work").resolve()
        assert cfg.profile_dir == (base / "profile").resolve()
        assert cfg.log_dir == (base / "logs").resolve()
        assert cfg.soffice_bin == Path("/usr/lib/libreoffice/program/soffice")
        assert cfg.engine_memory_mb == 2048
        assert cfg.convert_timeout_sec == 2.5
        assert cfg.queue_depth == 3
        assert cfg.queue_timeout_sec == 30.0
        assert cfg.max_upload_bytes == 1234
        assert cfg.eager_init is True
        assert cfg.as_dict()["queue_depth"] == 3


def test_config_malformed_values_fall_back(monkeypatch):
    monkeypatch.setenv("QUEUE_DEPTH", "many")
    monkeypatch.setenv("CONVERT_TIMEOUT_SEC", "0")
    monkeypatch.setenv("ENGINE_HARD_TIMEOUT_SEC", "")
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "-5")
    monkeypatch.setenv("QUEUE_TIMEOUT_SEC", "soon")
    cfg = Config.from_env()
    assert cfg.queue_depth == 8
    assert cfg.convert_timeout_sec == 10.0
    assert cfg.engine_hard_timeout_sec == 120
    assert cfg.max_upload_bytes == 0
    assert cfg.queue_timeout_sec == 0.0


def test_get_config_is_cached_until_reset(monkeypatch):
    monkeypatch.setenv("QUEUE_DEPTH", "2")
    reset_config()
    first = get_config()
    monkeypatch.setenv("QUEUE_DEPTH", "5")
    assert get_config() is first
    reset_config()
    assert get_config().queue_depth == 5
    reset_config()
