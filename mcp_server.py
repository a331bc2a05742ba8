"""
Local MCP server for the DailyDash analytics engine.

This exposes the dashboard metrics, trend buckets, forecast and the main
ledger commands as FastMCP tools. It shares the in-memory session state of
the Flask app, so both surfaces see the same ledger.
"""
import json
import logging
from typing import Any, Dict

from fastmcp import FastMCP

from utils.file_manager import read_config
from models.metrics import compute_dashboard, compute_trends
from models.forecast import build_provider
from models.backup import export_backup
from app import state, forecast_service, _STATE_LOCK

LOG = logging.getLogger(__name__)

server_instructions = """
This MCP server provides access to a small shop's daily dashboard: today's
sales, expenses and profit estimate, hourly and category trends, a 7-day
forecast, and commands to record sales and expenses.
"""


def _content(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": json.dumps(payload, ensure_ascii=False)}]}


def _parse_arg(arg: str) -> Dict[str, Any]:
    data = json.loads(arg) if arg else {}
    if not isinstance(data, dict):
        raise ValueError("Argument must be a JSON object")
    return data


def create_server() -> FastMCP:
    mcp = FastMCP(name="DailyDash Local MCP", instructions=server_instructions)

    @mcp.tool()
    async def dashboard() -> Dict[str, Any]:
        """
        Return today's headline metrics.

        Returns:
            MCP content array with JSON: todaysSales, totalExpenses, profit,
            transactionCount, customerCount, salesGrowth, avgBilling,
            topProducts, lowStockProducts and the 7-day sparkline.

        Edge cases:
            - Profit is an estimate assuming 60% cost of goods.
        """
        with _STATE_LOCK:
            metrics = compute_dashboard(state.products, state.transactions, state.expenses, state.history, state.base_visits)
        return _content(metrics.to_dict())

    @mcp.tool()
    async def trends() -> Dict[str, Any]:
        """
        Return history with today appended, hourly buckets and category shares.

        Edge cases:
            - Sales before 8AM are not in any hourly bucket.
        """
        with _STATE_LOCK:
            data = compute_trends(state.products, state.transactions, state.history, state.base_visits)
        return _content(data)

    @mcp.tool()
    async def forecast(refresh: bool = True) -> Dict[str, Any]:
        """
        Return the 7-day forecast, refreshing it first unless `refresh` is false.

        Falls back to a heuristic forecast when no provider key is configured
        or the provider fails.
        """
        if refresh:
            cfg = read_config()["forecast"]
            with _STATE_LOCK:
                forecast_service.provider = build_provider(cfg, offline=state.settings.offline_mode)
                history, products = list(state.history), list(state.products)
            await forecast_service.refresh(history, products)
        return _content(forecast_service.to_dict())

    @mcp.tool()
    async def record_sale(arg: str) -> Dict[str, Any]:
        """
        Record one bill.

        The `arg` parameter accepts {"items": [{"productId": "...", "qty": 2}, ...]}.

        Returns MCP content array with {"transaction": {...}} or {"error": ...}.
        """
        try:
            data = _parse_arg(arg)
            cart = [(str(i.get("productId")), i.get("qty")) for i in data.get("items", [])]
            with _STATE_LOCK:
                tx = state.add_sale(cart)
            return _content({"transaction": tx.to_dict()})
        except (ValueError, KeyError, AttributeError) as e:
            return _content({"error": str(e)})

    @mcp.tool()
    async def record_expense(arg: str) -> Dict[str, Any]:
        """
        Record an expense: {"title": "Tea", "amount": 40, "category": "Misc"}.

        Category must be one of Rent, Utility, Salary, Misc.
        """
        try:
            data = _parse_arg(arg)
            with _STATE_LOCK:
                expense = state.add_expense(data.get("title", ""), data.get("amount"), data.get("category", "Misc"))
            return _content({"expense": expense.to_dict()})
        except ValueError as e:
            return _content({"error": str(e)})

    @mcp.tool()
    async def reset_data(scope: str = "daily") -> Dict[str, Any]:
        """
        Clear ledger data.

        `daily` clears today's transactions, expenses and walk-in visits;
        `monthly` also clears the day history. Products and settings are kept.
        """
        try:
            with _STATE_LOCK:
                state.reset(scope)
            return _content({"ok": True, "scope": scope})
        except ValueError as e:
            return _content({"error": str(e)})

    @mcp.tool()
    async def export_backup_tool() -> Dict[str, Any]:
        """Write a backup file to the data directory and return its path."""
        with _STATE_LOCK:
            path = export_backup(state)
        return _content({"path": path})

    return mcp


def main():
    logging.basicConfig(level=logging.INFO)
    server = create_server()
    LOG.info("Starting local MCP server on 0.0.0.0:8000 (HTTP)")
    server.run(transport="http", host="0.0.0.0", port=8000, path="/mcp")


if __name__ == "__main__":
    main()
