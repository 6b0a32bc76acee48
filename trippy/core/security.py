"""
Log-safety for user-authored text.

Chat messages, itinerary fields, group and channel names and model output
are user-authored and end up in log lines. ``sanitize_for_logging`` turns
such a value into a single line with no raw control characters, bounded
to ``MAX_LOGGED_CHARS``.
"""

import re

MAX_LOGGED_CHARS = 200

_LINE_BREAKS = re.compile(r"[\r\n\u2028\u2029]+")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_for_logging(value: object) -> str:
    """One log-safe line: breaks collapsed, control characters escaped, long text cut."""
    text = value if isinstance(value, str) else str(value)
    text = _LINE_BREAKS.sub(" ", text)
    text = _CONTROL_CHARS.sub(lambda m: f"\\x{ord(m.group(0)):02x}", text)
    if len(text) > MAX_LOGGED_CHARS:
        text = text[: MAX_LOGGED_CHARS - 3] + "..."
    return text
