from __future__ import annotations

import os
import shutil
import time
from pathlib import Path
from typing import Optional

from .config import Config
from .errors import ConversionError, InitError
from .logging import log_line
from .models import EngineInstance
from .proc import download_to, run_subprocess
from .storage import safe_name


# target format -> LibreOffice --convert-to filter
FORMAT_FILTERS = {
    "html": "html:XHTML Writer File:UTF8",
    "xhtml": "xhtml:XHTML Writer File:UTF8",
}

_CANDIDATE_BINARIES = ("soffice", "libreoffice")


def convert_filter(target_format: str) -> str:
    # Only text targets: collect() reads the output back as UTF-8
    key = target_format.strip().lower()
    if key not in FORMAT_FILTERS:
        raise ConversionError(
            f"unsupported target format: {target_format!r} (supported: {', '.join(FORMAT_FILTERS)})"
        )
    return FORMAT_FILTERS[key]


def output_extension(target_format: str) -> str:
    return convert_filter(target_format).split(":", 1)[0]


class EngineHandle:
    """Narrow capability around the external conversion runtime.

    ``initialize`` is expensive and called at most once per process by the
    lifecycle manager. ``convert`` is synchronous and not safe to call
    concurrently against the same instance.
    """

    def initialize(self, cfg: Config) -> EngineInstance:
        raise NotImplementedError

    def convert(self, instance: EngineInstance, input_path: Path, target_format: str, output_dir: Path) -> Path:
        raise NotImplementedError


class SofficeEngine(EngineHandle):
    """LibreOffice in headless batch mode with a private user profile."""

    def __init__(self, cfg: Config):
        self.cfg = cfg

    def _env(self) -> dict:
        env = {
            "PATH": os.environ.get("PATH", ""),
            "HOME": str(self.cfg.profile_dir),
            "LANG": os.environ.get("LANG", "C.UTF-8"),
        }
        # AppImage builds cannot mount FUSE inside most containers
        env["APPIMAGE_EXTRACT_AND_RUN"] = "1"
        return env

    def _log(self, msg: str) -> None:
        log_line(self.cfg.engine_log, msg)

    def locate_binary(self) -> Path:
        if self.cfg.soffice_bin:
            p = self.cfg.soffice_bin
            if p.is_file() and os.access(p, os.X_OK):
                return p.resolve()
            found = shutil.which(str(p))
            if found:
                return Path(found).resolve()
            raise InitError(f"configured engine binary not executable: {p}")
        for name in _CANDIDATE_BINARIES:
            found = shutil.which(name)
            if found:
                return Path(found).resolve()
        if self.cfg.engine_image_url:
            return self._fetch_image(self.cfg.engine_image_url)
        raise InitError("no engine binary found (set SOFFICE_BIN or ENGINE_IMAGE_URL)")

    def _fetch_image(self, url: str) -> Path:
        name = safe_name(Path(url.split("?", 1)[0]).name) or "soffice.AppImage"
        dest = self.cfg.engine_home / name
        if not dest.exists():
            self._log(f"engine_image download url={url} dest={dest}")
            try:
                download_to(dest, url)
            except Exception as e:
                raise InitError(f"failed to download engine image: {e}") from e
        dest.chmod(0o755)
        return dest

    def initialize(self, cfg: Config) -> EngineInstance:
        self.cfg = cfg
        binary = self.locate_binary()
        try:
            cfg.profile_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InitError(f"cannot create engine profile dir: {e}") from e

        started = time.time()

        rc, out, err = self._run_init([str(binary), "--version"])
        if rc != 0:
            raise InitError(f"engine --version exited with {rc}: {(err or out).strip()[:500]}")
        version = (out or "").strip().splitlines()[0] if (out or "").strip() else "unknown"

        # First start populates the user profile; this is the expensive part
        rc, out, err = self._run_init(
            [
                str(binary),
                f"-env:UserInstallation={cfg.profile_dir.resolve().as_uri()}",
                "--headless",
                "--norestore",
                "--terminate_after_init",
            ]
        )
        self._log(f"engine_warmup rc={rc} binary={binary}\n{out or ''}{err or ''}".rstrip())
        if rc == 124:
            raise InitError(f"engine warm-up exceeded {cfg.init_timeout_sec}s")
        if rc != 0:
            raise InitError(f"engine warm-up exited with {rc}: {(err or out).strip()[:500]}")

        return EngineInstance(
            binary=binary,
            profile_dir=cfg.profile_dir,
            version=version,
            initialized_at=started,
        )

    def _run_init(self, cmd: list[str]) -> tuple[int, str, str]:
        try:
            return run_subprocess(
                cmd,
                env=self._env(),
                timeout=self.cfg.init_timeout_sec,
                memory_mb=self.cfg.engine_memory_mb,
            )
        except OSError as e:
            raise InitError(f"engine failed to start: {e}") from e

    def convert(self, instance: EngineInstance, input_path: Path, target_format: str, output_dir: Path) -> Path:
        cmd = [
            str(instance.binary),
            f"-env:UserInstallation={instance.profile_uri}",
            "--headless",
            "--norestore",
            "--convert-to",
            convert_filter(target_format),
            "--outdir",
            str(output_dir),
            str(input_path),
        ]
        try:
            rc, out, err = run_subprocess(
                cmd,
                cwd=output_dir,
                env=self._env(),
                timeout=self.cfg.engine_hard_timeout_sec,
                memory_mb=self.cfg.engine_memory_mb,
            )
        except OSError as e:
            raise ConversionError(f"engine failed to start: {e}") from e
        self._log(f"convert rc={rc} input={input_path}\n{out or ''}{err or ''}".rstrip())
        if rc == 124:
            raise ConversionError(f"engine killed after {self.cfg.engine_hard_timeout_sec}s")
        if rc != 0:
            raise ConversionError(f"engine exited with {rc}: {(err or out).strip()[:500]}")
        output_path = expected_output(input_path, target_format, output_dir)
        check_output(output_path, target_format)
        return output_path


def expected_output(input_path: Path, target_format: str, output_dir: Path) -> Path:
    return output_dir / f"{input_path.stem}.{output_extension(target_format)}"


def check_output(output_path: Path, target_format: str, sniff: Optional[int] = 64 * 1024) -> None:
    """Reject a missing, empty or obviously malformed output file."""
    if not output_path.is_file():
        raise ConversionError("engine produced no output file (unsupported or corrupt document?)")
    if output_path.stat().st_size == 0:
        raise ConversionError("engine produced an empty output file")
    if output_extension(target_format) in ("html", "xhtml"):
        with open(output_path, "rb") as f:
            head = f.read(sniff or -1)
        if b"<html" not in head.lower():
            raise ConversionError("engine output is not an HTML document")
