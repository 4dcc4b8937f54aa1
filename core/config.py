"""
core/config.py: YAML configuration

Loads config.yaml (or the file named by PLANSTORE_CONFIG) once per process.
Dotted keys address nested sections, and every leaf can be overridden from the
environment: ``stripe.secret_key`` -> ``STRIPE_SECRET_KEY``.

    from core.config import cfg
    secret = cfg.get("stripe.webhook_secret", "")
"""

import os
import threading
from typing import Any, Dict

import yaml

VERSION = "1.0.0"
CONFIG_ENV = "PLANSTORE_CONFIG"
DEFAULT_CONFIG_FILE = "config.yaml"

_MISSING = object()


def _env_name(key: str) -> str:
    return str(key or "").replace(".", "_").replace("-", "_").upper()


def _coerce_env(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        try:
            return int(raw)
        except ValueError:
            return default
    if isinstance(default, float):
        try:
            return float(raw)
        except ValueError:
            return default
    if isinstance(default, (list, tuple)):
        return [x.strip() for x in raw.split(",") if x.strip()]
    return raw


class Config:
    def __init__(self, path: str = ""):
        self.path = path or os.getenv(CONFIG_ENV, DEFAULT_CONFIG_FILE)
        self.config: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self.reload()

    def reload(self) -> Dict[str, Any]:
        with self._lock:
            data = {}
            if self.path and os.path.exists(self.path):
                with open(self.path, "r", encoding="utf-8") as fh:
                    data = yaml.safe_load(fh) or {}
            self.config = data if isinstance(data, dict) else {}
        return self.config

    def _lookup(self, key: str) -> Any:
        cursor: Any = self.config
        for part in [x for x in str(key or "").split(".") if x]:
            if not isinstance(cursor, dict) or part not in cursor:
                return _MISSING
            cursor = cursor[part]
        return cursor

    def get(self, key: str, default: Any = None) -> Any:
        env_value = os.getenv(_env_name(key))
        if env_value is not None:
            return _coerce_env(env_value, default)
        value = self._lookup(key)
        if value is _MISSING or value is None:
            return default
        return value


cfg = Config()

API_BASE = cfg.get("api_base", "/api/v1")
