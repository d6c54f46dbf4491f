from __future__ import annotations

import time
import traceback
from pathlib import Path


def _stamp() -> str:
    return time.strftime("%Y-%m-%d %H:%M:%S")


def log_line(log_path: Path, msg: str) -> None:
    """Append a timestamped line to a log file (best-effort)."""
    try:
        line = f"[{_stamp()}] {msg}\n"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "ab") as lf:
            lf.write(line.encode("utf-8", errors="ignore"))
    except Exception:
        pass


def console(msg: str) -> None:
    """Print a timestamped message to stdout (best-effort)."""
    try:
        print(f"[{_stamp()}] {msg}", flush=True)
    except Exception:
        pass


def log_event(log_path: Path, msg: str) -> None:
    """Write the same line to the log file and stdout."""
    log_line(log_path, msg)
    console(msg)


def log_exception(log_path: Path, prefix: str, exc: BaseException) -> None:
    """Log a one-line summary everywhere; the traceback goes to the file only."""
    try:
        log_line(log_path, f"{prefix}: {type(exc).__name__}: {exc}")
        console(f"{prefix}: {exc}")
        tb = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "ab") as lf:
            lf.write(tb.encode("utf-8", errors="ignore"))
    except Exception:
        pass
