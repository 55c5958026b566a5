"""Utilities for turning tutor output into short, speakable text.

Voice mode must never feed Piper:
- model reasoning traces
- JSON blobs / code
- markdown markup or long paragraphs

The conversation log always keeps the full reply; only what is spoken is
filtered here.
"""

from __future__ import annotations

import json
import re
from typing import Any

_TAG_REASONING_RE = re.compile(r"<(reasoning|think)>.*?</\1>", re.IGNORECASE | re.DOTALL)
_CODE_FENCE_RE = re.compile(r"```", re.DOTALL)
_MARKUP_TAG_RE = re.compile(r"</?\w+?>")
_MARKDOWN_RE = re.compile(r"(\*\*|__|\*|`|^#+\s*|^\s*[-•]\s+)", re.MULTILINE)
_WS_RE = re.compile(r"\s+")


def _looks_like_json(text: str) -> bool:
    t = (text or "").strip()
    if not t:
        return False

    if t.startswith("{") or t.startswith("["):
        try:
            json.loads(t)
        except ValueError:
            # Starts like JSON but invalid; still not speakable.
            pass
        return True

    # JSON-y inline blobs
    return '"' in t and ":" in t and ("{" in t or "[" in t)


def split_sentences(text: str) -> list[str]:
    t = (text or "").strip()
    if not t:
        return []
    parts = re.split(r"(?<=[.!?。])\s+", t)
    return [p.strip() for p in parts if p and p.strip()]


def to_speakable_reply(
    text: str,
    *,
    max_chars: int = 300,
    max_sentences: int = 3,
) -> tuple[str | None, dict[str, Any]]:
    """Return (speakable_text_or_None, debug_info).

    Reasoning tags are stripped, JSON or code is never spoken, markup is
    removed and the result is capped by sentences and characters.
    """
    debug: dict[str, Any] = {
        "input_chars": len(text or ""),
        "stripped_reasoning": False,
        "skipped": False,
        "skip_reason": None,
        "truncated": False,
        "output_chars": 0,
        "sentences": 0,
    }

    raw = (text or "").strip()
    if not raw:
        debug.update({"skipped": True, "skip_reason": "empty"})
        return None, debug

    if _TAG_REASONING_RE.search(raw):
        debug["stripped_reasoning"] = True
        raw = _TAG_REASONING_RE.sub("", raw).strip()

    if _CODE_FENCE_RE.search(raw):
        debug.update({"skipped": True, "skip_reason": "contained_code_fence"})
        return None, debug

    if _looks_like_json(raw):
        debug.update({"skipped": True, "skip_reason": "contained_json"})
        return None, debug

    raw = _MARKUP_TAG_RE.sub("", raw)
    raw = _MARKDOWN_RE.sub("", raw)
    speak = _WS_RE.sub(" ", raw).strip()

    sentences = split_sentences(speak)
    if len(sentences) > max_sentences:
        speak = " ".join(sentences[:max_sentences]).strip()
        debug["truncated"] = True

    if len(speak) > max_chars:
        speak = speak[: max(0, max_chars - 1)].rstrip() + "…"
        debug["truncated"] = True

    if not speak:
        debug.update({"skipped": True, "skip_reason": "empty_after_filter"})
        return None, debug

    debug["output_chars"] = len(speak)
    debug["sentences"] = len(split_sentences(speak))
    return speak, debug
