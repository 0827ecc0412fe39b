"""
MODULE OVERVIEW:
Filters decoded lines down to well-formed protocol events.

WHAT IS HAPPENING HERE:
The response body is not guaranteed to carry only our protocol. Buffering
proxies, debug toolbars and dev servers inject HTML, CSS rules and inline
scripts. Only a line that starts with `{` is a candidate event; everything
else is dropped silently and never reaches the JSON parser.
A candidate that still fails to parse is logged, unless it looks like
injected markup. That check is a heuristic: a miss only makes the logs
noisier, it never changes which events get dispatched.
"""
import json
import re
from loguru import logger

from chatstream.shared.models import StreamEvent, parse_stream_event

_INJECTION_PATTERN = re.compile(
    r"^\s*[.#\w\[\]-]+\s*\{|<\w|position:\s|cursor:\s|display:\s|content:\s|^\s*\[[\w-]+\]\s*\{",
    re.IGNORECASE,
)


def looks_like_injection(text: str) -> bool:
    """True when the line resembles a CSS rule, a style declaration or a tag."""
    return bool(_INJECTION_PATTERN.search(text[:80]))


class EventClassifier:
    def __init__(self):
        self.accepted = 0
        self.dropped_noise = 0
        self.dropped_invalid = 0

    def classify(self, line: str) -> StreamEvent | None:
        text = line.strip()
        if not text:
            return None
        if not text.startswith("{"):
            self.dropped_noise += 1
            logger.trace(f"event=noise_dropped preview={text[:40]!r}")
            return None

        try:
            obj = json.loads(text)
        except json.JSONDecodeError:
            self.dropped_invalid += 1
            if looks_like_injection(text):
                logger.trace(f"event=injection_dropped preview={text[:40]!r}")
            else:
                logger.warning(f"event=invalid_json preview={text[:100]!r}")
            return None

        if not isinstance(obj, dict) or not obj.get("type"):
            self.dropped_invalid += 1
            logger.warning(f"event=invalid_structure value={str(obj)[:100]!r}")
            return None

        self.accepted += 1
        return parse_stream_event(obj)
