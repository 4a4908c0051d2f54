"""
Small shared helpers: clocks, tolerant config access, json-ish config loading,
and stream-writer shutdown.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from typing import Any, Dict


# =============================================================================
# Small utilities
# =============================================================================

def monotime() -> float:
    return time.monotonic()


def utc_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def clamp_int(v: Any, default: int, lo: int, hi: int) -> int:
    try:
        iv = int(v)
    except Exception:
        return default
    if iv < lo:
        return lo
    if iv > hi:
        return hi
    return iv


def ensure_float(d: Dict[str, Any], key: str, default: float) -> float:
    v = d.get(key, default)
    try:
        return float(v)
    except Exception:
        return default


def get_path(d: Dict[str, Any], path: str, default: Any = None) -> Any:
    cur: Any = d
    for part in path.split("."):
        if not isinstance(cur, dict):
            return default
        if part not in cur:
            return default
        cur = cur[part]
    return cur


def parse_level(s: Any, default: int) -> int:
    if not s:
        return default
    name = str(s).strip().upper()
    if name == "TRACE":
        return logging.DEBUG
    level = getattr(logging, name, default)
    return level if isinstance(level, int) else default


# =============================================================================
# "json-ish" loader (unquoted keys, comments, trailing commas)
# =============================================================================

_KEY_RE = re.compile(r'(?m)(^|\s|[{,])([A-Za-z_][A-Za-z0-9_-]*)(\s*):')
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_LINE_COMMENT_RE = re.compile(r"(?m)^\s*(//|#).*$")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)


def _jsonish_to_json(text: str) -> str:
    text = _BLOCK_COMMENT_RE.sub("", text)
    text = _LINE_COMMENT_RE.sub("", text)

    def _repl(m: re.Match) -> str:
        prefix, key, suffix = m.group(1), m.group(2), m.group(3)
        return f'{prefix}"{key}"{suffix}:'

    text = _KEY_RE.sub(_repl, text)
    text = _TRAILING_COMMA_RE.sub(r"\1", text)
    return text


def parse_jsonish(raw: str, source: str = "<string>") -> Dict[str, Any]:
    try:
        obj = json.loads(raw)
    except Exception:
        norm = _jsonish_to_json(raw)
        try:
            obj = json.loads(norm)
        except Exception as e:
            raise SystemExit(f"Config parse error for {source}:\n{e}\n\nNormalized text:\n{norm}") from e
    if not isinstance(obj, dict):
        raise SystemExit(f"Config parse error for {source}: top level must be an object")
    return obj


def load_config(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = f.read()
    except OSError as e:
        raise SystemExit(f"Cannot read config {path}: {e}") from e
    return parse_jsonish(raw, source=path)


# =============================================================================
# Stream helpers
# =============================================================================

async def close_writer(writer: asyncio.StreamWriter, timeout: float = 0.25) -> None:
    try:
        writer.close()
    except Exception:
        return
    try:
        await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
    except (asyncio.TimeoutError, Exception):
        pass


def is_closing(writer: asyncio.StreamWriter) -> bool:
    tr = writer.transport
    return tr.is_closing() if tr else True
