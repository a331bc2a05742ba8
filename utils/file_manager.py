import json
import os
import tempfile
import threading

_DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data")
_FILE_LOCK = threading.Lock()

DEFAULTS = {
    "config.json": {
        "settings": {
            "currency": "INR",
            "language": "English",
            "darkMode": True,
            "lowDataMode": False,
            "offlineMode": False,
        },
        "forecast": {
            "model": "gemini-2.5-flash",
            "api_key_env": "GEMINI_API_KEY",
            "min_display_seconds": 0.8,
        },
        "rollover": {
            "enabled": True,
            "hour": 0,
            "minute": 0,
        },
    }
}


def data_path(filename: str) -> str:
    os.makedirs(_DATA_DIR, exist_ok=True)
    return os.path.join(_DATA_DIR, filename)


def backups_dir() -> str:
    path = os.path.join(_DATA_DIR, "backups")
    os.makedirs(path, exist_ok=True)
    return path


def _atomic_write(path: str, data_obj):
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=".tmp_", dir=os.path.dirname(path))
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            json.dump(data_obj, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)


def ensure_defaults():
    os.makedirs(_DATA_DIR, exist_ok=True)
    for fname, default in DEFAULTS.items():
        path = data_path(fname)
        if not os.path.exists(path):
            with _FILE_LOCK:
                _atomic_write(path, default)


def read_json(filename: str):
    path = data_path(filename)
    with _FILE_LOCK:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)


def write_json(filename: str, obj):
    write_json_file(data_path(filename), obj)


def write_json_file(path: str, obj):
    with _FILE_LOCK:
        _atomic_write(path, obj)


def read_config() -> dict:
    """config.json merged over DEFAULTS, one level deep."""
    cfg = read_json("config.json")
    merged = {}
    for section, default in DEFAULTS["config.json"].items():
        merged[section] = {**default, **cfg.get(section, {})}
    return merged
