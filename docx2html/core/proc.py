from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import requests


def _memory_limiter(memory_mb: int):
    if not memory_mb or os.name != "posix":
        return None

    def apply():
        import resource

        limit = memory_mb * 1024 * 1024
        resource.setrlimit(resource.RLIMIT_AS, (limit, limit))

    return apply


def run_subprocess(
    cmd: list[str],
    cwd: Optional[Path] = None,
    env: Optional[dict] = None,
    timeout: int = 600,
    memory_mb: int = 0,
) -> tuple[int, str, str]:
    """Run a command to completion; return code 124 means it was killed on timeout."""
    import subprocess

    proc = subprocess.Popen(
        cmd,
        cwd=str(cwd) if cwd else None,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
        preexec_fn=_memory_limiter(memory_mb),
    )
    try:
        out, err = proc.communicate(timeout=timeout)
        return proc.returncode, out, err
    except subprocess.TimeoutExpired:
        proc.kill()
        out, err = proc.communicate()
        return 124, out, err


def download_to(path: Path, url: str, timeout: int = 300) -> None:
    r = requests.get(url, timeout=timeout, stream=True)
    r.raise_for_status()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".part")
    with open(tmp, "wb") as f:
        for chunk in r.iter_content(chunk_size=1024 * 1024):
            if chunk:
                f.write(chunk)
    tmp.replace(path)
