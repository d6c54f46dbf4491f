from __future__ import annotations

import asyncio
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Optional

from docx2html.core.config import Config
from docx2html.core.engine import EngineHandle, convert_filter
from docx2html.core.errors import (
    ConversionError,
    ConversionTimeout,
    InitError,
    NotFoundError,
    ServiceBusy,
    ServiceError,
    StagingError,
)
from docx2html.core.logging import log_event, log_exception
from docx2html.core.models import (
    ConversionRequest,
    ConversionResult,
    EngineInstance,
    EngineState,
    ManagerStatus,
)
from docx2html.core.stager import ArtifactStager
from docx2html.core.storage import sha256_bytes


class RuntimeManager:
    """Owns the process-wide engine instance and the admission gate in front of it.

    The gate is a single-worker thread pool: initialization, staging, the
    engine call, collection, release and housekeeping all run on that one
    thread, so no two of them ever overlap. Up to ``queue_depth`` jobs may wait
    behind the running one; further requests get ``ServiceBusy``.

    A timed-out request is answered immediately but its job keeps the gate
    until the engine call returns (there is no way to cancel it). The engine's
    own hard kill limit bounds how long that can take.

    The request deadline starts when the job acquires the gate. Without
    ``queue_timeout_sec`` a queued request may wait up to
    ``engine_hard_timeout_sec`` for every job ahead of it; with it, a request
    still queued after that long is withdrawn and gets ``ServiceBusy``.
    """

    def __init__(
        self,
        cfg: Config,
        engine: EngineHandle,
        stager: ArtifactStager,
        log_path: Optional[Path] = None,
    ):
        self.cfg = cfg
        self.engine = engine
        self.stager = stager
        self.log_path = log_path or cfg.engine_log
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="engine-gate")
        self._lock = threading.Lock()
        self._state = EngineState.UNINITIALIZED
        self._instance: Optional[EngineInstance] = None
        self._init_future: Optional[Future] = None
        self._init_error: Optional[InitError] = None
        self._init_attempts = 0
        # admitted jobs that have not finished: running, queued or abandoned
        self._pending = 0
        self._abandoned: set[str] = set()

    @property
    def state(self) -> EngineState:
        with self._lock:
            return self._state

    # --- initialization ---
    def start_initialization(self) -> Future:
        """Start initialization once; every caller gets the same future."""
        with self._lock:
            if self._init_future is None:
                self._state = EngineState.INITIALIZING
                self._init_attempts += 1
                self._init_future = self._pool.submit(self._initialize)
            return self._init_future

    def retry_initialization(self) -> Optional[Future]:
        """Operator action: forget a failed initialization and try again.

        Returns None when the engine is not in the failed state.
        """
        with self._lock:
            if self._state != EngineState.INIT_FAILED:
                return None
            self._init_error = None
            self._init_future = None
        log_event(self.log_path, "engine stage=reinit requested")
        return self.start_initialization()

    def _initialize(self) -> EngineInstance:
        log_event(self.log_path, "engine stage=initializing")
        t0 = time.monotonic()
        try:
            instance = self.engine.initialize(self.cfg)
        except Exception as e:
            err = e if isinstance(e, InitError) else InitError(f"engine initialization failed: {e}")
            log_exception(self.log_path, "engine stage=init_failed", e)
            with self._lock:
                self._init_error = err
                self._state = EngineState.INIT_FAILED
            raise err
        with self._lock:
            self._instance = instance
            self._state = EngineState.READY
        log_event(
            self.log_path,
            f"engine stage=ready version={instance.version!r} elapsed={time.monotonic() - t0:.2f}s",
        )
        return instance

    async def ensure_ready(self) -> EngineInstance:
        with self._lock:
            if self._instance is not None:
                return self._instance
            if self._init_error is not None:
                raise InitError(self._init_error.message)
        fut = self.start_initialization()
        # shield: a cancelled caller must not cancel the shared initialization
        return await asyncio.shield(asyncio.wrap_future(fut))

    # --- conversion ---
    async def handle(self, request: ConversionRequest) -> ConversionResult:
        instance = await self.ensure_ready()
        if not request.data:
            raise ConversionError("empty document: request body contained no bytes")
        convert_filter(request.target_format)

        deadline = request.deadline_sec or self.cfg.convert_timeout_sec
        request_id = self.stager.new_request_id()
        job, started = self._admit(instance, request_id, request)

        await self._wait_for_gate(request_id, job, started)

        t0 = time.monotonic()
        try:
            content = await asyncio.wait_for(asyncio.wrap_future(job), timeout=deadline)
        except asyncio.TimeoutError:
            self._abandon(request_id, job, deadline)
            raise ConversionTimeout(f"conversion exceeded the {deadline:g}s deadline")
        return ConversionResult(
            request_id=request_id,
            target_format=request.target_format,
            content=content,
            elapsed_sec=time.monotonic() - t0,
        )

    def _admit(self, instance: EngineInstance, request_id: str, request: ConversionRequest) -> tuple[Future, Future]:
        with self._lock:
            if self._pending >= 1 + self.cfg.queue_depth:
                raise ServiceBusy(f"engine queue is full ({self._pending} pending), retry later")
            self._pending += 1
        started: Future = Future()
        try:
            job = self._pool.submit(self._run_job, instance, request_id, request, started)
        except RuntimeError:
            with self._lock:
                self._pending -= 1
            raise ServiceBusy("engine is shutting down")
        job.add_done_callback(lambda f: self._on_job_done(request_id, f, started))
        return job, started

    async def _wait_for_gate(self, request_id: str, job: Future, started: Future) -> None:
        queue_timeout = self.cfg.queue_timeout_sec or None
        try:
            await asyncio.wait_for(asyncio.wrap_future(started), timeout=queue_timeout)
        except asyncio.CancelledError:
            if job.cancelled():
                # dropped from the queue by shutdown
                raise ServiceBusy("engine is shutting down")
            # still queued: withdraw it, nothing was staged
            job.cancel()
            raise
        except asyncio.TimeoutError:
            if not started.cancel():
                # acquired the gate just as the wait expired
                return
            job.cancel()
            log_event(self.log_path, f"request={request_id} stage=withdrawn queue_wait={queue_timeout:g}s")
            raise ServiceBusy(f"engine queue wait exceeded {queue_timeout:g}s, retry later")

    def _run_job(
        self,
        instance: EngineInstance,
        request_id: str,
        request: ConversionRequest,
        started: Future,
    ) -> Optional[str]:
        if not started.set_running_or_notify_cancel():
            return None
        started.set_result(None)
        with self._lock:
            self._state = EngineState.BUSY
        t0 = time.monotonic()
        log_event(
            self.log_path,
            f"request={request_id} stage=convert bytes={len(request.data)} "
            f"sha256={sha256_bytes(request.data)[:16]} to={request.target_format}",
        )
        try:
            input_path = self.stager.stage(request_id, request.data)
            with self.stager.artifact(request_id) as art:
                output_path = self.engine.convert(instance, input_path, request.target_format, art.output_dir)
                try:
                    content = self.stager.collect(output_path)
                except NotFoundError as e:
                    raise ConversionError(e.message) from e
                if not content.strip():
                    raise ConversionError("engine produced an empty output file")
        except ServiceError as e:
            log_event(self.log_path, f"request={request_id} stage=failed kind={e.kind} error={e.message}")
            raise
        except OSError as e:
            log_exception(self.log_path, f"request={request_id} stage=failed kind=io", e)
            raise StagingError("artifact i/o failed") from e
        except Exception as e:
            log_exception(self.log_path, f"request={request_id} stage=failed kind=conversion", e)
            raise ConversionError("conversion failed: internal engine error") from e
        finally:
            with self._lock:
                if self._state == EngineState.BUSY:
                    self._state = EngineState.READY
        log_event(
            self.log_path,
            f"request={request_id} stage=done chars={len(content)} elapsed={time.monotonic() - t0:.2f}s",
        )
        return content

    def _abandon(self, request_id: str, job: Future, deadline: float) -> None:
        with self._lock:
            if not job.done():
                self._abandoned.add(request_id)
        log_event(
            self.log_path,
            f"request={request_id} stage=timeout deadline={deadline:g}s engine call left running",
        )

    def _on_job_done(self, request_id: str, job: Future, started: Future) -> None:
        if job.cancelled():
            started.cancel()
        with self._lock:
            self._pending -= 1
            was_abandoned = request_id in self._abandoned
            self._abandoned.discard(request_id)
        if was_abandoned:
            outcome = "failed" if job.cancelled() or job.exception() is not None else "ok"
            log_event(self.log_path, f"request={request_id} stage=reclaimed outcome={outcome}")

    # --- housekeeping ---
    def run_exclusive(self, fn: Callable, *args) -> Future:
        """Run fn on the gate thread, after everything already queued."""
        return self._pool.submit(fn, *args)

    def status(self) -> ManagerStatus:
        with self._lock:
            return ManagerStatus(
                state=self._state,
                pending=self._pending,
                abandoned=len(self._abandoned),
                init_attempts=self._init_attempts,
                init_error=self._init_error.message if self._init_error else "",
                engine_binary=str(self._instance.binary) if self._instance else "",
                engine_version=self._instance.version if self._instance else "",
            )

    def shutdown(self, wait: bool = False) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=True)
