from __future__ import annotations

import json
import os
from typing import Any, Mapping, Optional, Protocol


class ConfigProvider(Protocol):
    def get(self, key: str, default: Any = None, *, context: Optional[Mapping[str, Any]] = None) -> Any: ...
    def get_str(self, key: str, default: Optional[str] = None, *, context: Optional[Mapping[str, Any]] = None) -> Optional[str]: ...
    def get_bool(self, key: str, default: bool = False, *, context: Optional[Mapping[str, Any]] = None) -> bool: ...
    def get_int(self, key: str, default: int = 0, *, context: Optional[Mapping[str, Any]] = None) -> int: ...


class EnvConfigProvider:
    """Reads process environment; `get` coerces scalar-looking values, `get_str` never does."""

    def get(self, key: str, default: Any = None, *, context: Optional[Mapping[str, Any]] = None) -> Any:
        v = os.getenv(key)
        if v is None:
            return default
        lv = v.lower()
        if lv in ("true", "false"):
            return lv == "true"
        try:
            return int(v)
        except ValueError:
            pass
        try:
            return float(v)
        except ValueError:
            pass
        try:
            return json.loads(v)
        except ValueError:
            return v

    def get_str(self, key: str, default: Optional[str] = None, *, context=None) -> Optional[str]:
        v = os.getenv(key)
        return default if v is None else v

    def get_bool(self, key: str, default: bool = False, *, context=None) -> bool:
        v = os.getenv(key)
        return default if v is None else v.strip().lower() in ("1", "true", "yes", "on")

    def get_int(self, key: str, default: int = 0, *, context=None) -> int:
        try:
            return int(os.getenv(key, ""))
        except ValueError:
            return default


class InMemoryConfigProvider:
    def __init__(self, data: Optional[dict[str, Any]] = None) -> None:
        self.data = data or {}

    def get(self, key: str, default: Any = None, *, context=None) -> Any:
        return self.data.get(key, default)

    def get_str(self, key: str, default: Optional[str] = None, *, context=None) -> Optional[str]:
        v = self.data.get(key, None)
        return default if v is None else str(v)

    def get_bool(self, key: str, default: bool = False, *, context=None) -> bool:
        v = self.data.get(key, None)
        return default if v is None else bool(v)

    def get_int(self, key: str, default: int = 0, *, context=None) -> int:
        v = self.data.get(key, None)
        try:
            return int(v)
        except (TypeError, ValueError):
            return default


class HybridConfigProvider:
    """Primary->fallback chain; explicit overrides first, environment second."""

    def __init__(self, primary: Optional[ConfigProvider] = None, fallback: Optional[ConfigProvider] = None) -> None:
        self.primary = primary or InMemoryConfigProvider()
        self.fallback = fallback or EnvConfigProvider()

    def get(self, key: str, default: Any = None, *, context=None) -> Any:
        sentinel = object()
        v = self.primary.get(key, sentinel, context=context)
        if v is sentinel:
            v = self.fallback.get(key, default, context=context)
        return v

    def get_str(self, key: str, default: Optional[str] = None, *, context=None) -> Optional[str]:
        pv = self.primary.get_str(key, None, context=context)
        return self.fallback.get_str(key, default, context=context) if pv is None else pv

    def get_bool(self, key: str, default: bool = False, *, context=None) -> bool:
        pv = self.primary.get(key, None, context=context)
        return self.fallback.get_bool(key, default, context=context) if pv is None else bool(pv)

    def get_int(self, key: str, default: int = 0, *, context=None) -> int:
        pv = self.primary.get(key, None, context=context)
        try:
            return int(pv) if pv is not None else self.fallback.get_int(key, default, context=context)
        except (TypeError, ValueError):
            return default
