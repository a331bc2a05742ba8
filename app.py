import asyncio
import json
import logging
import threading

from flask import Flask, Response, jsonify, request
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from utils.file_manager import ensure_defaults, read_config
from models.ledger import AppSettings
from models.state import AppState
from models.metrics import compute_dashboard, compute_trends
from models.forecast import ForecastService, build_provider
from models.backup import BackupFormatError, backup_filename, export_backup, serialize
from rollover import close_day, close_previous_day

LOG = logging.getLogger(__name__)

ensure_defaults()
app = Flask(__name__)

_cfg = read_config()
state = AppState(settings=AppSettings.from_dict(_cfg["settings"]))
forecast_service = ForecastService(min_display_seconds=float(_cfg["forecast"]["min_display_seconds"]))
_STATE_LOCK = threading.Lock()


def _close_day_job():
    with _STATE_LOCK:
        close_previous_day(state)


scheduler = BackgroundScheduler(daemon=True)
def _schedule_job():
    cfg = read_config()["rollover"]
    for job in scheduler.get_jobs():
        scheduler.remove_job(job.id)
    if cfg.get("enabled", True):
        trigger = CronTrigger(hour=int(cfg.get("hour", 0)), minute=int(cfg.get("minute", 0)))
        scheduler.add_job(_close_day_job, trigger=trigger, id="close_day", replace_existing=True)
        if not scheduler.running:
            scheduler.start()

_schedule_job()


def _error(message: str, code: int = 400):
    return jsonify({"ok": False, "error": message}), code


@app.get("/status")
def status():
    jobs = scheduler.get_jobs()
    next_run = jobs[0].next_run_time.isoformat() if jobs and jobs[0].next_run_time else None
    with _STATE_LOCK:
        settings = state.settings.to_dict()
    return jsonify({
        "settings": settings,
        "scheduler_running": scheduler.running,
        "next_rollover": next_run,
        "forecast_status": forecast_service.status.value,
    })

# -------- Metrics --------
@app.get("/dashboard")
def dashboard():
    with _STATE_LOCK:
        metrics = compute_dashboard(state.products, state.transactions, state.expenses, state.history, state.base_visits)
    return jsonify({"ok": True, "dashboard": metrics.to_dict()})

@app.get("/trends")
def trends():
    with _STATE_LOCK:
        data = compute_trends(state.products, state.transactions, state.history, state.base_visits)
    return jsonify({"ok": True, "trends": data})

# -------- Products --------
@app.get("/products")
def products_get():
    with _STATE_LOCK:
        products = [p.to_dict() for p in state.products]
    return jsonify({"ok": True, "products": products})

@app.post("/products")
def products_post():
    data = request.get_json(force=True, silent=True) or {}
    try:
        with _STATE_LOCK:
            product = state.add_product(
                data.get("name", ""),
                data.get("price"),
                data.get("stock"),
                data.get("category") or "General",
            )
        return jsonify({"ok": True, "product": product.to_dict()})
    except ValueError as e:
        return _error(str(e))

@app.delete("/products/<product_id>")
def products_delete(product_id):
    try:
        with _STATE_LOCK:
            product = state.delete_product(product_id)
        return jsonify({"ok": True, "deleted": product.to_dict()})
    except KeyError as e:
        return _error(e.args[0], 404)

# -------- Sales / expenses / visits --------
@app.post("/sales")
def sales_post():
    data = request.get_json(force=True, silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list):
        return _error("Provide 'items' as a list of {productId, qty}.")
    try:
        cart = [(str(i.get("productId")), i.get("qty")) for i in items]
        with _STATE_LOCK:
            tx = state.add_sale(cart)
        return jsonify({"ok": True, "transaction": tx.to_dict()})
    except AttributeError:
        return _error("Each item must be an object with productId and qty.")
    except ValueError as e:
        return _error(str(e))
    except KeyError as e:
        return _error(e.args[0], 404)

@app.post("/expenses")
def expenses_post():
    data = request.get_json(force=True, silent=True) or {}
    try:
        with _STATE_LOCK:
            expense = state.add_expense(data.get("title", ""), data.get("amount"), data.get("category", "Misc"))
        return jsonify({"ok": True, "expense": expense.to_dict()})
    except ValueError as e:
        return _error(str(e))

@app.post("/visits")
def visits_post():
    data = request.get_json(force=True, silent=True) or {}
    try:
        with _STATE_LOCK:
            visits = state.add_walk_in(data.get("count", 1))
        return jsonify({"ok": True, "baseVisits": visits})
    except ValueError as e:
        return _error(str(e))

# -------- Settings --------
@app.get("/settings")
def settings_get():
    with _STATE_LOCK:
        settings = state.settings.to_dict()
    return jsonify({"ok": True, "settings": settings})

@app.post("/settings")
def settings_post():
    data = request.get_json(force=True, silent=True) or {}
    try:
        with _STATE_LOCK:
            settings = state.update_settings(data)
        return jsonify({"ok": True, "settings": settings.to_dict()})
    except ValueError as e:
        return _error(str(e))

# -------- Forecast --------
@app.get("/forecast")
def forecast_get():
    return jsonify({"ok": True, "forecast": forecast_service.to_dict()})

@app.post("/forecast/refresh")
def forecast_refresh():
    cfg = read_config()["forecast"]
    with _STATE_LOCK:
        forecast_service.provider = build_provider(cfg, offline=state.settings.offline_mode)
        history, products = list(state.history), list(state.products)
    asyncio.run(forecast_service.refresh(history, products))
    return jsonify({"ok": True, "forecast": forecast_service.to_dict()})

# -------- Backup / restore / reset --------
@app.get("/backup")
def backup_get():
    with _STATE_LOCK:
        doc = serialize(state)
    return Response(
        json.dumps(doc, indent=2, ensure_ascii=False),
        mimetype="application/json",
        headers={"Content-Disposition": f"attachment; filename={backup_filename()}"},
    )

@app.post("/backup/export")
def backup_export():
    with _STATE_LOCK:
        path = export_backup(state)
    return jsonify({"ok": True, "path": path})

@app.post("/restore")
def restore_post():
    data = request.get_json(force=True, silent=True)
    try:
        with _STATE_LOCK:
            restored = state.restore(data)
        return jsonify({"ok": True, "restored": restored})
    except BackupFormatError as e:
        LOG.warning("Restore failed: %s", e)
        return _error(str(e))

@app.post("/reset")
def reset_post():
    data = request.get_json(force=True, silent=True) or {}
    try:
        with _STATE_LOCK:
            state.reset(data.get("scope", "daily"))
        return jsonify({"ok": True})
    except ValueError as e:
        return _error(str(e))

@app.post("/rollover")
def rollover_post():
    with _STATE_LOCK:
        stat = close_day(state)
    return jsonify({"ok": True, "closed": stat.to_dict()})

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    app.run(host="0.0.0.0", port=5000, debug=True)
