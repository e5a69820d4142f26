from __future__ import annotations

import json
import re
from datetime import date, datetime

_STOPWORDS = frozenset({
    # English
    "the", "and", "for", "are", "was", "were", "with", "that", "this", "from",
    "what", "when", "where", "which", "who", "why", "how", "about", "into",
    "does", "did", "have", "has", "had", "can", "could", "should", "would",
    "will", "your", "you", "our", "their", "there", "these", "those", "them",
    "any", "all", "some", "more", "most", "than", "then", "also", "just",
    "tell", "please", "research", "look", "find", "know", "want", "need",
    # Turkish
    "nedir", "nasıl", "neden", "gibi", "için", "daha", "çok", "olan", "olur",
    "yapar", "bir", "bu", "şu", "ile", "ama", "veya", "hakkında", "araştır",
})

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%Y/%m/%d %H:%M", "%Y %b %d", "%Y %b", "%Y-%m", "%B %d, %Y", "%B %Y", "%Y")


def tokenize(text: str) -> list[str]:
    return re.findall(r"[^\W_]+", text.lower())


def extract_keywords(text: str, *, min_len: int = 3) -> list[str]:
    """Lowercased content words in first-seen order, stopwords removed."""
    seen: set[str] = set()
    keywords: list[str] = []
    for token in tokenize(text):
        if len(token) < min_len or token in _STOPWORDS or token.isdigit():
            continue
        if token in seen:
            continue
        seen.add(token)
        keywords.append(token)
    return keywords


def clip(text: str, limit: int) -> str:
    cleaned = " ".join((text or "").split())
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[: max(limit - 3, 0)].rstrip() + "..."


def extract_json_object(raw_text: str) -> dict:
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


def parse_date(raw: str | None) -> date | None:
    """Parse the loose date strings returned by source APIs."""
    if not raw or not isinstance(raw, str):
        return None
    value = raw.strip()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    match = re.match(r"(\d{4})", value)
    if not match:
        return None
    try:
        return date(int(match.group(1)), 1, 1)
    except ValueError:
        return None
