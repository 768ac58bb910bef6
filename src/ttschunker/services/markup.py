"""Markup enrichment: plain text to the payload actually sent to the provider."""

from __future__ import annotations

import re
from xml.sax.saxutils import escape

_SENTENCE_END = re.compile(r"([.!?]+)(\s+)")
_TAG = re.compile(r"<(/?)([a-zA-Z][\w-]*)[^>]*?(/?)>")


def utf8_size(text: str) -> int:
    return len(text.encode("utf-8"))


class PlainTextEnricher:
    """No markup: the wire payload is the text itself."""

    is_ssml = False

    def enrich(self, text: str) -> str:
        return text

    def wire_size(self, text: str) -> int:
        return utf8_size(text)


class SsmlEnricher:
    """Wrap text in ``<speak>`` with a pause after every sentence.

    The Segmenter budgets against :meth:`wire_size`, so escaping and the
    inserted breaks count toward the provider's byte limit.
    """

    is_ssml = True

    def __init__(self, break_ms: int = 360) -> None:
        self.break_ms = break_ms

    def enrich(self, text: str) -> str:
        body = escape(text.strip())
        if self.break_ms > 0:
            body = _SENTENCE_END.sub(rf'\1<break time="{self.break_ms}ms"/>\2', body)
        return f"<speak>{body}</speak>"

    def wire_size(self, text: str) -> int:
        return utf8_size(self.enrich(text))


def strip_markup(ssml: str) -> str:
    """Drop tags and unescape entities, for providers that only take plain text."""
    text = _TAG.sub("", ssml)
    return text.replace("&lt;", "<").replace("&gt;", ">").replace("&amp;", "&").strip()


def validate_ssml(ssml: str) -> list[str]:
    """Return structural problems in *ssml*; an empty list means it is usable."""
    errors: list[str] = []
    if not ssml or not ssml.strip():
        return ["SSML content is empty"]

    trimmed = ssml.strip()
    if not (trimmed.startswith("<speak") and trimmed.endswith("</speak>")):
        errors.append("SSML must be wrapped in <speak>...</speak>")

    stack: list[str] = []
    for closing, name, self_closing in _TAG.findall(trimmed):
        if self_closing:
            continue
        if closing:
            if not stack or stack.pop() != name:
                errors.append(f"Mismatched closing tag </{name}>")
                break
        else:
            stack.append(name)
    else:
        if stack:
            errors.append(f"Unclosed tag <{stack[-1]}>")
    return errors
