"""Strip adversarial instructions from untrusted feed text before the LLM sees it."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import List, Sequence, Tuple

from .records import FeedItem, normalize_str


REDACTION_MARKER = "[FILTERED]"
TRUNCATION_MARKER = "\n[TRUNCATED]"
MAX_CONTENT_CHARS = 5000
_MAX_PASSES = 8

_I = re.IGNORECASE

BLOCKING_PATTERNS = tuple(
    re.compile(pattern, flags)
    for pattern, flags in (
        # Instruction overrides
        (r"ignore\s+(all\s+)?(previous|prior|above|earlier)\s+(instructions?|prompts?|rules?|context)", _I),
        (r"forget\s+(all\s+)?(previous|prior|your)\s+(instructions?|prompts?|rules?|context)", _I),
        (r"disregard\s+(all\s+)?(previous|prior|your)\s+(instructions?|prompts?|rules?)", _I),
        (r"override\s+(your\s+)?(system|instructions?|rules?|prompts?)", _I),
        # Role tags and delimiters
        (r"\bsystem\s*:\s*", _I),
        (r"\bassistant\s*:\s*", _I),
        (r"\bhuman\s*:\s*", _I),
        (r"\buser\s*:\s*", _I),
        (r"</?\s*system\s*>", _I),
        (r"</?\s*prompt\s*>", _I),
        (r"</?\s*instructions?\s*>", _I),
        # Role reassignment
        (r"you\s+are\s+now\s+(a|an|the)\b", _I),
        (r"act\s+as\s+(a|an|the|if)\b", _I),
        (r"pretend\s+(you're|you\s+are|to\s+be)", _I),
        (r"from\s+now\s+on\s+(you|your)\b", _I),
        (r"new\s+(role|persona|identity|instructions?)\s*:", _I),
        # Code execution
        (r"```\s*(bash|shell|sh|zsh|cmd|powershell|exec)\b", _I),
        (r"\beval\s*\(", _I),
        (r"\bexec\s*\(", _I),
        (r"\brun\s+this\s+(code|command|script)", _I),
        (r"\bcurl\s+-", _I),
        # Credential exfiltration
        (r"send\s+(me\s+)?(your|the)\s+(api[_\s]?key|token|credentials?|secret|password)", _I),
        (r"share\s+(your|the)\s+(api[_\s]?key|token|credentials?)", _I),
        (r"what\s+is\s+your\s+(api[_\s]?key|token|secret)", _I),
        (r"post\s+(your|the)\s+(api[_\s]?key|key|token)\s+to", _I),
        (r"what\s+(are|is)\s+your\s+(environment|env)(\s+variables?)?", _I),
        (r"reveal\s+(your|all)\s+(config|settings|secrets?)", _I),
        # Hidden payloads
        (r"&#x[0-9a-f]+;", _I),
        (r"[\x00-\x08\x0b\x0c\x0e-\x1f]", 0),
    )
)

ADVISORY_PATTERNS = tuple(
    re.compile(pattern, flags)
    for pattern, flags in (
        (r"\bDAN\b", 0),
        (r"\bjailbreak\b", _I),
        (r"\bunfiltered\b", _I),
        (r"do\s+anything\s+now", _I),
        (r"\bbase64\b", _I),
        (r"\bhex\s+decode\b", _I),
    )
)

logger = logging.getLogger("moltpulse.autonomy")


@dataclass(frozen=True)
class SanitizeResult:
    clean: str
    flagged: bool = False
    removed_count: int = 0
    warnings: Tuple[str, ...] = field(default_factory=tuple)


def _redact(text: str, patterns: Sequence[re.Pattern]) -> Tuple[str, int, List[str]]:
    removed = 0
    warnings: List[str] = []
    # Loop until stable: a redaction may expose a new match across the gap.
    for _ in range(_MAX_PASSES):
        changed = False
        for pattern in patterns:
            text, count = pattern.subn(REDACTION_MARKER, text)
            if count:
                removed += count
                changed = True
                warnings.append(f"removed:{pattern.pattern[:60]}")
        if not changed:
            break
    return text, removed, warnings


def sanitize(content: str) -> SanitizeResult:
    text = normalize_str(content)
    if not text:
        return SanitizeResult(clean="")

    truncated = text.endswith(TRUNCATION_MARKER)
    clean = text[: -len(TRUNCATION_MARKER)] if truncated else text
    removed_count = 0
    warnings: List[str] = []
    # Cutting can expose a new match at the end, so redact and cap until stable.
    for _ in range(_MAX_PASSES):
        clean, removed, found = _redact(clean, BLOCKING_PATTERNS)
        removed_count += removed
        warnings.extend(found)
        if len(clean) <= MAX_CONTENT_CHARS:
            break
        clean = clean[:MAX_CONTENT_CHARS]
        truncated = True
    clean = clean[:MAX_CONTENT_CHARS]

    for pattern in ADVISORY_PATTERNS:
        if pattern.search(clean):
            warnings.append(f"suspicious:{pattern.pattern}")

    if truncated:
        clean += TRUNCATION_MARKER
        if len(text) > MAX_CONTENT_CHARS:
            warnings.append(f"truncated:>{MAX_CONTENT_CHARS}")

    flagged = removed_count > 0 or any(not w.startswith("truncated:") for w in warnings)
    if flagged:
        logger.warning(
            "Sanitizer flagged content removed=%s warnings=%s original_len=%s clean_len=%s",
            removed_count,
            warnings,
            len(text),
            len(clean),
        )
    return SanitizeResult(clean=clean, flagged=flagged, removed_count=removed_count, warnings=tuple(warnings))


def sanitize_feed(items: Sequence[FeedItem]) -> Tuple[List[FeedItem], int]:
    """Sanitize titles, bodies and comment bodies. Returns new records and the flagged item count."""
    out: List[FeedItem] = []
    flagged_items = 0
    for item in items:
        title = sanitize(item.title)
        body = sanitize(item.body)
        comments = []
        comment_flagged = False
        for comment in item.comments:
            result = sanitize(comment.body)
            comment_flagged = comment_flagged or result.flagged
            comments.append(replace(comment, body=result.clean))
        if title.flagged or body.flagged or comment_flagged:
            flagged_items += 1
        out.append(replace(item, title=title.clean, body=body.clean, comments=comments))
    if flagged_items:
        logger.warning("Feed sanitization flagged=%s total=%s", flagged_items, len(items))
    return out, flagged_items
