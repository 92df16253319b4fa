# audit.py — per-product audit trail (CSV + JSONL) with a stdout echo

from __future__ import annotations
import csv
import json
import pathlib
import typing as t
from datetime import datetime

from shopify_catalog import gid_num

CSV_HEADER = ["ts", "phase", "note", "product_id", "title", "before", "after", "message"]

LOG_DIR: t.Optional[pathlib.Path] = None
LOG_TO_STDOUT = True


def init_audit(log_dir: t.Optional[pathlib.Path], to_stdout: bool = True) -> None:
    global LOG_DIR, LOG_TO_STDOUT
    LOG_DIR = pathlib.Path(log_dir) if log_dir else None
    LOG_TO_STDOUT = to_stdout
    if LOG_DIR is not None:
        LOG_DIR.mkdir(parents=True, exist_ok=True)


def audit_csv_path() -> t.Optional[pathlib.Path]:
    if LOG_DIR is None:
        return None
    return LOG_DIR / f"cycle_{datetime.now().strftime('%Y%m%d')}.csv"


def audit_jsonl_path() -> t.Optional[pathlib.Path]:
    if LOG_DIR is None:
        return None
    return LOG_DIR / "cycle_log.jsonl"


def log_row(
    emoji_phase: str,
    note: str,
    product_id: str = "",
    title: str = "",
    before: str = "",
    after: str = "",
    message: str = "",
    extra: dict = None,
) -> None:
    ts = datetime.now().isoformat(timespec="seconds")
    pid = gid_num(product_id)
    csv_path = audit_csv_path()
    if csv_path is not None:
        new_file = not csv_path.exists() or csv_path.stat().st_size == 0
        with csv_path.open("a", newline="", encoding="utf-8") as f:
            w = csv.writer(f)
            if new_file:
                w.writerow(CSV_HEADER)
            w.writerow([ts, emoji_phase, note, pid, title, before, after, message])
        row = {
            "ts": ts, "phase": emoji_phase, "note": note, "product_id": pid,
            "title": title, "before": str(before), "after": str(after), "message": message,
        }
        if extra:
            row.update(extra)
        with audit_jsonl_path().open("a", encoding="utf-8") as f:
            f.write(json.dumps(row, ensure_ascii=False) + "\n")
    if LOG_TO_STDOUT:
        human = f"{emoji_phase} {note}"
        if pid:
            human += f" pid={pid}"
        if before or after:
            human += f" {before or '∅'}→{after or '∅'}"
        if title:
            human += f" “{title}”"
        if message:
            human += f" — {message}"
        print(human, flush=True)


def recent_lines(limit: int = 200) -> tuple[t.Optional[pathlib.Path], list[str]]:
    """Tail of the newest audit CSV, for the status page."""
    if LOG_DIR is None or not LOG_DIR.exists():
        return None, []
    files = sorted(LOG_DIR.glob("cycle_*.csv"))
    if not files:
        return None, []
    latest = files[-1]
    with latest.open("r", encoding="utf-8") as f:
        lines = f.readlines()
    return latest, lines[-limit:]
