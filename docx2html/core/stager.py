from __future__ import annotations

import threading
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import NotFoundError, StagingError
from .logging import log_event, log_exception
from .models import WorkingArtifact
from .storage import remove_tree, write_bytes


INPUT_NAME = "input.docx"
OUTPUT_DIR = "out"


class ArtifactStager:
    """Per-request input/output locations under a shared work root.

    Layout: ``<work_root>/<request_id>/input.docx`` and
    ``<work_root>/<request_id>/out/``. A request id owns its directory from
    ``stage`` until ``release``; ``stage`` refuses to reuse a directory that
    still exists.
    """

    def __init__(self, work_root: Path, log_path: Optional[Path] = None):
        self.work_root = work_root
        self.log_path = log_path or (work_root.parent / "stager.log")
        self._active: set[str] = set()
        self._guard = threading.Lock()

    @staticmethod
    def new_request_id() -> str:
        return uuid.uuid4().hex

    def request_dir(self, request_id: str) -> Path:
        if not request_id or "/" in request_id or "\\" in request_id or request_id in (".", ".."):
            raise StagingError(f"invalid request id: {request_id!r}")
        return self.work_root / request_id

    def output_dir(self, request_id: str) -> Path:
        return self.request_dir(request_id) / OUTPUT_DIR

    def stage(self, request_id: str, data: bytes) -> Path:
        d = self.request_dir(request_id)
        with self._guard:
            if request_id in self._active:
                raise StagingError(f"request id already staged: {request_id}")
            self._active.add(request_id)
        try:
            self.work_root.mkdir(parents=True, exist_ok=True)
            d.mkdir(exist_ok=False)
            (d / OUTPUT_DIR).mkdir()
            input_path = d / INPUT_NAME
            write_bytes(input_path, data)
            return input_path
        except FileExistsError:
            # Directory belongs to someone else (another process or a leftover); leave it alone
            with self._guard:
                self._active.discard(request_id)
            raise StagingError(f"artifact path already in use: {d}")
        except OSError as e:
            self.release(request_id)
            raise StagingError(f"failed to stage input: {e}") from e

    def artifact_for(self, request_id: str) -> WorkingArtifact:
        d = self.request_dir(request_id)
        return WorkingArtifact(
            request_id=request_id,
            root=d,
            input_path=d / INPUT_NAME,
            output_dir=d / OUTPUT_DIR,
        )

    def collect(self, output_path: Path) -> str:
        if not output_path.is_file():
            raise NotFoundError(f"engine produced no output: {output_path.name}")
        try:
            return output_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise StagingError(f"failed to read output: {e}") from e

    def release(self, request_id: str) -> None:
        """Remove every file of the request. Safe to call repeatedly."""
        try:
            d = self.request_dir(request_id)
        except StagingError:
            return
        try:
            remove_tree(d)
        except FileNotFoundError:
            pass
        except Exception as e:
            log_exception(self.log_path, f"request={request_id} stage=release_failed", e)
        finally:
            with self._guard:
                self._active.discard(request_id)

    @contextmanager
    def artifact(self, request_id: str) -> Iterator[WorkingArtifact]:
        try:
            yield self.artifact_for(request_id)
        finally:
            self.release(request_id)

    def active_ids(self) -> set[str]:
        with self._guard:
            return set(self._active)

    def sweep_orphans(self, max_age_sec: int) -> int:
        """Remove request directories not owned by this process and older than max_age_sec."""
        if not self.work_root.exists():
            return 0
        cutoff = time.time() - max_age_sec
        active = self.active_ids()
        removed = 0
        for d in self.work_root.iterdir():
            if not d.is_dir() or d.name in active:
                continue
            try:
                if d.stat().st_mtime >= cutoff:
                    continue
                remove_tree(d)
                removed += 1
            except FileNotFoundError:
                continue
            except Exception as e:
                log_exception(self.log_path, f"sweep_failed dir={d.name}", e)
        if removed:
            log_event(self.log_path, f"sweep removed={removed}")
        return removed
