import json
import logging
import os
from datetime import date, datetime
from typing import Dict, Optional

from models.ledger import AppSettings, DailyStat, Expense, Product, Transaction, now
from utils.file_manager import backups_dir, write_json_file

LOG = logging.getLogger(__name__)

BACKUP_VERSION = 1
REQUIRED_KEYS = ("products", "settings")


class BackupFormatError(ValueError):
    pass


def serialize(state, timestamp: Optional[datetime] = None) -> Dict:
    return {
        "version": BACKUP_VERSION,
        "timestamp": (timestamp or now()).isoformat(),
        "products": [p.to_dict() for p in state.products],
        "history": [h.to_dict() for h in state.history],
        "transactions": [t.to_dict() for t in state.transactions],
        "expenses": [e.to_dict() for e in state.expenses],
        "baseVisits": state.base_visits,
        "settings": state.settings.to_dict(),
    }


def _decode_list(document: Dict, key: str, decoder):
    rows = document[key]
    if not isinstance(rows, list):
        raise BackupFormatError(f"'{key}' must be a list")
    return [decoder(r) for r in rows]


def deserialize(document) -> Dict:
    """Decode a backup document into a patch of AppState attribute names.

    Only keys present in the document appear in the patch. Timestamps on
    transactions and expenses come back as datetime objects.
    """
    if not isinstance(document, dict):
        raise BackupFormatError("Invalid backup file format")
    missing = [k for k in REQUIRED_KEYS if document.get(k) is None]
    if missing:
        raise BackupFormatError(f"Invalid backup file format: missing {', '.join(missing)}")

    patch = {}
    try:
        patch["products"] = _decode_list(document, "products", Product.from_dict)
        if document.get("history") is not None:
            patch["history"] = _decode_list(document, "history", DailyStat.from_dict)
        if document.get("transactions") is not None:
            patch["transactions"] = _decode_list(document, "transactions", Transaction.from_dict)
        if document.get("expenses") is not None:
            patch["expenses"] = _decode_list(document, "expenses", Expense.from_dict)
        base_visits = document.get("baseVisits")
        if base_visits is not None:
            if isinstance(base_visits, bool) or not isinstance(base_visits, int) or base_visits < 0:
                raise BackupFormatError("'baseVisits' must be a non-negative integer")
            patch["base_visits"] = base_visits
        if not isinstance(document["settings"], dict):
            raise BackupFormatError("'settings' must be an object")
        patch["settings"] = AppSettings.from_dict(document["settings"])
    except BackupFormatError:
        raise
    except (ValueError, TypeError, AttributeError) as e:
        raise BackupFormatError(f"Invalid backup file format: {e}") from e
    return patch


def backup_filename(day: Optional[date] = None) -> str:
    day = day or date.today()
    return f"dailydash_backup_{day.isoformat()}.json"


def export_backup(state, day: Optional[date] = None) -> str:
    """Write the backup document under data/backups; returns the file path."""
    path = os.path.join(backups_dir(), backup_filename(day))
    write_json_file(path, serialize(state))
    LOG.info("Backup written to %s", path)
    return path


def load_backup(path: str) -> Dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        raise BackupFormatError(f"Backup file is not valid JSON: {e}") from e
