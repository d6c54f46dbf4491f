from __future__ import annotations

import threading
import time
from typing import Optional

from .config import Config
from .logging import log_exception
from .stager import ArtifactStager


def sweep_once(cfg: Config, manager, stager: ArtifactStager, timeout: Optional[float] = None) -> int:
    """Remove orphaned artifacts while holding the engine's admission gate."""
    fut = manager.run_exclusive(stager.sweep_orphans, cfg.orphan_ttl_sec)
    return fut.result(timeout=timeout)


def start_cleanup_loop(cfg: Config, manager, stager: ArtifactStager) -> Optional[threading.Thread]:
    if cfg.sweep_interval_sec <= 0:
        return None

    log_path = cfg.log_dir / "cleanup.log"

    def loop():
        while True:
            try:
                sweep_once(cfg, manager, stager)
            except RuntimeError:
                # gate pool has been shut down
                return
            except Exception as e:
                log_exception(log_path, "cleanup_failed", e)
            time.sleep(cfg.sweep_interval_sec)

    t = threading.Thread(target=loop, name="cleanup-loop", daemon=True)
    t.start()
    return t
