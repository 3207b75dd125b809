from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from .records import normalize_str
from .state import utc_iso


logger = logging.getLogger("moltpulse.autonomy")


def _clip_text(value: Any, limit: int) -> str:
    text = normalize_str(value).strip()
    if limit <= 0:
        return ""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip()


def _sanitize_meta(meta: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not isinstance(meta, dict):
        return None
    out: Dict[str, Any] = {}
    for raw_key, raw_value in meta.items():
        key = normalize_str(raw_key).strip()
        if not key or raw_value is None:
            continue
        if isinstance(raw_value, (bool, int, float)):
            out[key] = raw_value
        elif isinstance(raw_value, dict):
            nested = _sanitize_meta(raw_value)
            if nested:
                out[key] = nested
        elif isinstance(raw_value, (list, tuple)):
            items = [
                item if isinstance(item, (bool, int, float)) else _clip_text(item, 200)
                for item in list(raw_value)[:10]
            ]
            if items:
                out[key] = items
        else:
            clipped = _clip_text(raw_value, 400)
            if clipped:
                out[key] = clipped
    return out or None


def append_action_journal(
    path: Optional[Path],
    *,
    action_type: str,
    target_post_id: str = "",
    submolt: str = "",
    title: str = "",
    content: str = "",
    parent_comment_id: Optional[str] = None,
    target_agent: Optional[str] = None,
    dry_run: bool = False,
    meta: Optional[Dict[str, Any]] = None,
) -> None:
    """Append one executed side effect as a JSON line. Never raises."""
    if path is None:
        return
    row: Dict[str, Any] = {
        "ts": utc_iso(),
        "action_type": normalize_str(action_type).strip().lower(),
        "target_post_id": normalize_str(target_post_id).strip(),
        "submolt": normalize_str(submolt).strip().lower(),
        "title": _clip_text(title, 300),
        "content": _clip_text(content, 5000),
    }
    if parent_comment_id:
        row["parent_comment_id"] = normalize_str(parent_comment_id).strip()
    if target_agent:
        row["target_agent"] = normalize_str(target_agent).strip()
    if dry_run:
        row["dry_run"] = True
    safe_meta = _sanitize_meta(meta)
    if safe_meta:
        row["meta"] = safe_meta
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(row, ensure_ascii=True) + "\n")
    except OSError as e:
        # The audit trail must never block the action itself.
        logger.debug("Action journal write failed path=%s error=%s", path, e)
