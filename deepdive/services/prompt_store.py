"""Prompt catalog backed by prompts.json.

Keys are dotted paths ("reflector.system"). A locale can override any key
under the catalog's "locales" section; lookups fall back to the default entry.
Values are `string.Template` strings rendered with `$name` placeholders.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"
LOCALES_KEY = "locales"

_catalog: dict[str, Any] | None = None
_catalog_mtime_ns: int | None = None


def _catalog_data() -> dict[str, Any]:
    global _catalog, _catalog_mtime_ns
    mtime_ns = PROMPTS_PATH.stat().st_mtime_ns
    if _catalog is None or _catalog_mtime_ns != mtime_ns:
        payload = json.loads(PROMPTS_PATH.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Prompt catalog must be a JSON object.")
        _catalog, _catalog_mtime_ns = payload, mtime_ns
    return _catalog


def _walk(node: Any, key: str) -> Any:
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _language(locale: str | None) -> str:
    return (locale or "").split("-")[0].split("_")[0].lower()


def resolve_prompt(key: str, locale: str | None = None) -> str:
    """Return the raw template for `key`, preferring the locale override."""
    catalog = _catalog_data()
    entry = None
    lang = _language(locale)
    if lang:
        entry = _walk(catalog.get(LOCALES_KEY, {}).get(lang, {}), key)
    if entry is None:
        entry = _walk(catalog, key)
    if entry is None:
        raise KeyError(f"Prompt key not found: {key}")
    if not isinstance(entry, str):
        raise TypeError(f"Prompt key must map to a string: {key}")
    return entry


def render_prompt(key: str, *, locale: str | None = None, **values: Any) -> str:
    template = Template(resolve_prompt(key, locale))
    try:
        return template.substitute(**values)
    except KeyError as exc:
        raise KeyError(f"Missing template value '{exc.args[0]}' for prompt '{key}'") from exc


def available_locales() -> list[str]:
    return sorted(_catalog_data().get(LOCALES_KEY, {}))


def clear_prompt_cache() -> None:
    global _catalog, _catalog_mtime_ns
    _catalog = None
    _catalog_mtime_ns = None
