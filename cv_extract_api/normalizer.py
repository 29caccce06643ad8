"""Turn raw model text into an ExtractionResult.

Generative output is not guaranteed to be well-formed JSON. Normalization
strips markdown/prose artifacts, isolates the outermost JSON object, parses
it, and on failure runs an ordered list of textual repairs before a single
re-parse. Each repair is a plain ``str -> str`` function so it can be tested
and diagnosed on its own.
"""

import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from cv_extract_api.errors import IncompleteExtraction, NoJsonFound, ParseError
from cv_extract_api.observability import preview

logger = structlog.get_logger()

PROFILE_KEY = "cvData"
POSTING_KEY = "jobData"


@dataclass
class ExtractionResult:
    """Parsed model output with both required top-level objects present."""

    data: dict[str, Any]

    @property
    def cv_data(self) -> dict[str, Any]:
        return self.data[PROFILE_KEY]

    @property
    def job_data(self) -> dict[str, Any]:
        return self.data[POSTING_KEY]


# =============================================================================
# Artifact stripping
# =============================================================================

_FENCE_OPEN = re.compile(r"```(?:json)?[ \t]*\n?", re.IGNORECASE)
_FENCE = "```"
_LEADING_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```\s*$")
_PREAMBLE = re.compile(r"^here(?:\s+is|'s)\s+(?:the\s+|your\s+)?json\b[^{\n]*\s*", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def _fenced_bodies(text: str) -> list[str]:
    """Bodies from the first opening fence to each later fence, shortest first."""
    opening = _FENCE_OPEN.search(text)
    if not opening:
        return []
    start = opening.end()
    bodies = []
    close = text.find(_FENCE, start)
    while close != -1:
        bodies.append(text[start:close])
        close = text.find(_FENCE, close + len(_FENCE))
    return bodies


def _has_complete_object(text: str) -> bool:
    """True if braces outside string literals close the first ``{``."""
    first = text.find("{")
    if first == -1:
        return False
    depth = 0
    for is_literal, seg in split_string_literals(text[first:]):
        if is_literal:
            continue
        for ch in seg:
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return True
    return False


def strip_artifacts(text: str) -> str:
    """Remove code fences and a leading "Here is the JSON:" style preamble.

    When a fenced block holding an object exists anywhere in the text its
    body wins, so prose before and after the fence is dropped too. A fence
    inside a JSON string does not end the block: the body runs to the first
    closing fence that leaves a complete object.
    """
    text = text.strip()
    candidates = [body for body in _fenced_bodies(text) if "{" in body]
    for body in candidates:
        if _has_complete_object(body):
            return body.strip()
    if candidates:
        return candidates[-1].strip()

    text = _LEADING_FENCE.sub("", text)
    text = _TRAILING_FENCE.sub("", text)
    text = _PREAMBLE.sub("", text)
    return text.strip()


def locate_json_span(text: str) -> str:
    """Slice from the first ``{`` to the last ``}``."""
    first = text.find("{")
    last = text.rfind("}")
    if first == -1 or last == -1 or first >= last:
        raise NoJsonFound("No valid JSON object found in AI response")
    return text[first : last + 1]


def strip_control_characters(text: str) -> str:
    """Drop control characters other than tab, newline and carriage return."""
    return _CONTROL_CHARS.sub("", text)


# =============================================================================
# Repair transforms
# =============================================================================


def split_string_literals(text: str) -> list[tuple[bool, str]]:
    """Split text into ``(is_string_literal, segment)`` pairs.

    Both double- and single-quoted literals count, honoring backslash escapes.
    An unterminated literal runs to the end of the text.
    """
    segments: list[tuple[bool, str]] = []
    quote: str | None = None
    start = 0
    i = 0
    while i < len(text):
        ch = text[i]
        if quote is None:
            if ch in ('"', "'"):
                if i > start:
                    segments.append((False, text[start:i]))
                start = i
                quote = ch
        elif ch == "\\":
            i += 2
            continue
        elif ch == quote:
            segments.append((True, text[start : i + 1]))
            start = i + 1
            quote = None
        i += 1

    if start < len(text):
        segments.append((quote is not None, text[start:]))
    return segments


def _outside_strings(text: str, fn: Callable[[str], str]) -> str:
    return "".join(seg if is_literal else fn(seg) for is_literal, seg in split_string_literals(text))


_SMART_DOUBLE = str.maketrans({"“": '"', "”": '"', "„": '"', "‟": '"'})
_SMART_SINGLE = str.maketrans({"‘": "'", "’": "'", "‚": "'", "‛": "'"})


def normalize_smart_quotes(text: str) -> str:
    """Replace typographic quotes used as delimiters with ASCII quotes."""
    return _outside_strings(text, lambda seg: seg.translate(_SMART_DOUBLE).translate(_SMART_SINGLE))


_UNESCAPED_DOUBLE_QUOTE = re.compile(r'(?<!\\)"')


def convert_single_quoted_strings(text: str) -> str:
    """Rewrite ``'value'`` literals as ``"value"``."""
    parts = []
    for is_literal, seg in split_string_literals(text):
        if is_literal and seg.startswith("'") and len(seg) >= 2 and seg.endswith("'"):
            inner = seg[1:-1].replace("\\'", "'")
            seg = '"' + _UNESCAPED_DOUBLE_QUOTE.sub('\\"', inner) + '"'
        parts.append(seg)
    return "".join(parts)


_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_$][\w$\-]*)(\s*:)")


def quote_bare_keys(text: str) -> str:
    """Quote identifier-like object keys: ``{name: 1}`` -> ``{"name": 1}``."""
    return _outside_strings(text, lambda seg: _BARE_KEY.sub(r'\1"\2"\3', seg))


_BARE_VALUE = re.compile(r"(:\s*)([A-Za-z_][^,{}\[\]\"]*?)(\s*)(?=[,}\]])")
_JSON_LITERALS = {"true", "false", "null", "NaN", "Infinity"}


def _quote_value(match: re.Match) -> str:
    prefix, value, trailing = match.groups()
    if value in _JSON_LITERALS:
        return match.group(0)
    return f'{prefix}"{value}"{trailing}'


def quote_bare_values(text: str) -> str:
    """Quote unquoted word values; numbers and JSON literals are left alone."""
    return _outside_strings(text, lambda seg: _BARE_VALUE.sub(_quote_value, seg))


_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def remove_trailing_commas(text: str) -> str:
    """Drop commas directly before ``}`` or ``]``."""
    return _outside_strings(text, lambda seg: _TRAILING_COMMA.sub(r"\1", seg))


def collapse_newlines(text: str) -> str:
    """Replace raw line breaks (invalid inside JSON strings) with spaces."""
    return re.sub(r"[\r\n]+", " ", text)


# Applied in order; quotes are normalized first so later steps can tell
# string literals from structure.
REPAIR_TRANSFORMS: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("smart_quotes", normalize_smart_quotes),
    ("single_quotes", convert_single_quoted_strings),
    ("bare_keys", quote_bare_keys),
    ("bare_values", quote_bare_values),
    ("trailing_commas", remove_trailing_commas),
    ("newlines", collapse_newlines),
)


def repair_json(text: str) -> str:
    """Run every repair transform over ``text``."""
    for name, transform in REPAIR_TRANSFORMS:
        repaired = transform(text)
        if repaired != text:
            logger.debug("JSON repair applied", transform=name)
        text = repaired
    return text.strip()


def parse_with_repair(span: str) -> Any:
    """Strict parse, then one repaired re-parse.

    Raises:
        ParseError: both attempts failed; carries the original and repaired text.
    """
    try:
        return json.loads(span)
    except json.JSONDecodeError as e:
        logger.warning("Initial JSON parse failed, attempting repairs", error=str(e))

    repaired = repair_json(span)
    try:
        return json.loads(repaired)
    except json.JSONDecodeError as e:
        logger.error(
            "JSON repair failed",
            error=str(e),
            original_preview=preview(span),
            repaired_preview=preview(repaired),
        )
        raise ParseError(f"JSON parse failed: {e}", original=span, repaired=repaired) from e


# =============================================================================
# Normalizer
# =============================================================================


class ResponseNormalizer:
    """Extracts and validates the ExtractionResult from raw model text."""

    def __init__(self, profile_key: str = PROFILE_KEY, posting_key: str = POSTING_KEY):
        self._required_keys = (profile_key, posting_key)

    def normalize(self, raw_text: str | None) -> ExtractionResult:
        """Parse raw model text.

        Raises:
            NoJsonFound: no object span in the text.
            ParseError: span could not be parsed even after repair.
            IncompleteExtraction: a required top-level object is missing.
        """
        if not raw_text or not raw_text.strip():
            raise NoJsonFound("Empty AI response")

        span = locate_json_span(strip_artifacts(raw_text))
        data = parse_with_repair(strip_control_characters(span))
        return self._validate_shape(data)

    def _validate_shape(self, data: Any) -> ExtractionResult:
        if not isinstance(data, dict):
            raise IncompleteExtraction("AI response is not a JSON object")

        missing = [key for key in self._required_keys if not isinstance(data.get(key), dict)]
        if missing:
            raise IncompleteExtraction(
                f"AI response missing required fields: {', '.join(missing)}"
            )
        return ExtractionResult(data=data)
