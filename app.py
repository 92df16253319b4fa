#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Shopify Product Cycle — Web App (Flask)

Endpoints:
- GET  /             : Status page (config, last run summary, recent audit log)
- GET  /health       : Liveness
- POST /run-update   : Run the product cycle now; requires header X-API-Key
- GET  /check-phase  : ?dataReferencia=YYYY-MM-DD -> phase for that date today;
                       requires header X-API-Key

What a run does (see product_cycle.py):
- Fetch every product with its custom.data_referencia / custom.sale_phase metafields
- Compute the phase from the reference date and today (Europe/Berlin)
- Where it differs from custom.sale_phase: retag, list/unlist, zero inventory
  when archived, then write custom.sale_phase
- Point the shop metafields custom.active_product / next_product / following_product
  at the public/preorder products, earliest reference date first

Config is environment-based; see cycle_config.py. Required:
  SHOPIFY_STORE_URL, SHOPIFY_ACCESS_TOKEN, API_KEY
Useful for testing:
  TEST_MODE=true TEST_DATE=2025-06-10  -> pretend today is 2025-06-10
  DRY_RUN=1                            -> log what would change, write nothing

Deploy notes:
- On Render: Web Service with a Disk mounted at DATA_DIR so audit logs persist.
- Either ENABLE_SCHEDULER=1 (RUN_EVERY_MIN) or an external cron hitting /run-update.
"""

from __future__ import annotations
import hmac
import json
import pathlib
import threading
import time
from datetime import datetime, timezone

import requests
from flask import Flask, request, jsonify, Response

from audit import init_audit, log_row, recent_lines
from cycle_config import load_config
from product_cycle import process_product_cycles, check_product_phase
from shopify_catalog import ShopifyCatalog

# ----------------------------
# Load config & setup paths
# ----------------------------
CONFIG = load_config()
CLOCK = CONFIG.build_clock()
CATALOG = ShopifyCatalog.from_config(CONFIG)

STATE_DIR = CONFIG.state_dir
STATE_DIR.mkdir(parents=True, exist_ok=True)
init_audit(CONFIG.log_dir, CONFIG.log_to_stdout)

# ----------------------------
# Flask app
# ----------------------------
app = Flask(__name__)

run_lock = threading.Lock()
is_running = False

# ----------------------------
# Utilities
# ----------------------------
def now_utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def slack_alert(text: str) -> None:
    if not CONFIG.slack_webhook_url:
        return
    try:
        requests.post(CONFIG.slack_webhook_url, json={"text": text}, timeout=15)
    except requests.RequestException as e:
        print(f"[SLACK] alert failed: {e}", flush=True)

def safe_write_json(path: pathlib.Path, data: dict) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=2))
    tmp.replace(path)

def summary_path() -> pathlib.Path:
    return STATE_DIR / "last_run_summary.json"

def run_cycle() -> dict:
    """
    Runs one cycle unless one is already running.
    Returns the summary; raises on a failed run after recording it.
    A concurrent call gets {"busy": True}.
    """
    global is_running
    with run_lock:
        if is_running:
            return {"busy": True}
        is_running = True
    start = time.time()
    started_utc = now_utc_iso()
    try:
        summary = process_product_cycles(CATALOG, CONFIG, CLOCK)
        summary["start_utc"] = started_utc
        safe_write_json(summary_path(), summary)
        return summary
    except Exception as e:
        log_row("❌", "CYCLE_FAILED", message=str(e))
        safe_write_json(summary_path(), {
            "success": False,
            "aborted": True,
            "start_utc": started_utc,
            "message": f"Run-level exception: {e}",
            "duration_sec": round(time.time() - start, 2),
        })
        slack_alert(f":x: Product cycle run crashed: {e}")
        raise
    finally:
        with run_lock:
            is_running = False

def scheduler_loop():
    if CONFIG.run_every_min <= 0:
        return
    while True:
        try:
            run_cycle()
        except Exception as e:
            log_row("⚠️", "SCHED_WARN", message=str(e))
        time.sleep(max(1, CONFIG.run_every_min) * 60)

# ----------------------------
# Web endpoints
# ----------------------------
def _check_api_key(req):
    """None when authorized, else an error response."""
    key = req.headers.get("X-API-Key") or ""
    if not key:
        return jsonify({"error": "API key missing"}), 401
    if not hmac.compare_digest(key, CONFIG.api_key):
        return jsonify({"error": "API key invalid"}), 403
    return None

@app.route("/health", methods=["GET"])
def health():
    return "ok", 200

@app.route("/", methods=["GET"])
def status_page():
    path = summary_path()
    if path.exists():
        last = json.loads(path.read_text())
    else:
        last = {"message": "No runs yet."}

    latest_csv, lines = recent_lines(200)

    html = f"""
    <html>
    <head>
      <meta charset="utf-8" />
      <title>Shopify Product Cycle</title>
      <style>
        body {{ font-family: system-ui, -apple-system, Segoe UI, Roboto, Arial, sans-serif; padding: 20px; color: #eee; background:#111; }}
        .card {{ background:#1b1b1b; border:1px solid #333; border-radius:12px; padding:16px; margin-bottom:20px; }}
        pre {{ white-space: pre-wrap; word-wrap: break-word; background:#0c0c0c; padding:12px; border-radius:8px; border:1px solid #222; }}
        code {{ color:#ddd; }}
      </style>
    </head>
    <body>
      <h1>Shopify Product Cycle</h1>

      <div class="card">
        <h2>Today</h2>
        <pre>{CLOCK.describe()}</pre>
      </div>

      <div class="card">
        <h2>Config</h2>
        <pre>{json.dumps(CONFIG.public_view(), indent=2, default=str)}</pre>
      </div>

      <div class="card">
        <h2>Last Run Summary</h2>
        <pre>{json.dumps(last, indent=2)}</pre>
      </div>

      <div class="card">
        <h2>Manual Trigger</h2>
        <p>Send a POST to <code>/run-update</code> with header <code>X-API-Key</code></p>
      </div>

      <div class="card">
        <h2>Recent Audit Log</h2>
        <p>Latest file: <code>{latest_csv}</code></p>
        <pre>{''.join(lines) if lines else 'No audit log yet.'}</pre>
      </div>
    </body>
    </html>
    """
    return Response(html, mimetype="text/html")

@app.route("/run-update", methods=["POST"])
def run_update():
    denied = _check_api_key(request)
    if denied:
        return denied
    try:
        summary = run_cycle()
    except Exception:
        return jsonify({"ok": False, "error": "Failed to process product cycles"}), 500
    if summary.get("busy"):
        return jsonify({"ok": False, "message": "Run already in progress."}), 409
    return jsonify({"ok": True, "message": "Product cycles processed", "data": summary})

@app.route("/check-phase", methods=["GET"])
def check_phase():
    denied = _check_api_key(request)
    if denied:
        return denied
    reference = (request.args.get("dataReferencia") or request.args.get("data_referencia") or "").strip()
    if not reference:
        return jsonify({"error": "dataReferencia is required"}), 400
    try:
        result = check_product_phase(reference, CONFIG, CLOCK)
    except ValueError as e:
        return jsonify({"error": f"invalid dataReferencia: {e}"}), 400
    return jsonify(result)

# ----------------------------
# Entry
# ----------------------------
if CONFIG.enable_scheduler:
    threading.Thread(target=scheduler_loop, daemon=True).start()

if __name__ == "__main__":
    print(f"[BOOT] Product cycle app on port {CONFIG.port} | API {CONFIG.api_version}", flush=True)
    print(f"[CFG] shop={CONFIG.shop_domain} | today={CLOCK.describe()} | phase={CONFIG.phase.as_dict()} "
          f"| dry_run={CONFIG.dry_run} | DATA_DIR={CONFIG.data_dir}", flush=True)
    app.run(host="0.0.0.0", port=CONFIG.port)
