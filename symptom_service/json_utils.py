"""
JSON location and repair utilities for free-text model output.

Handles: markdown code blocks, prose around the object, truncated JSON,
missing commas, trailing commas, and literal newlines in strings.
Non-finite numbers (NaN, Infinity, 1e999) are refused at parse time.
"""
import json
import logging
import math
import re
from typing import NamedTuple

logger = logging.getLogger(__name__)

_CLOSERS = {'{': '}', '[': ']'}


class MalformedModelOutput(ValueError):
    """No JSON object could be recovered from the model reply."""


class _Scan(NamedTuple):
    text: str            # input with newlines inside strings turned into spaces
    open_brackets: list  # openers still unclosed at the end, outermost first
    in_string: bool      # text ends inside a string literal
    escaped: bool        # ... right after a backslash


def _scan_json(text: str) -> _Scan:
    """Walk text once, tracking string literals and bracket nesting.

    A regex cannot reliably find string boundaries, so both repairs below
    share this character walk.
    """
    out = []
    stack = []
    in_string = False
    escaped = False
    for c in text:
        if in_string:
            if escaped:
                escaped = False
            elif c == '\\':
                escaped = True
            elif c == '"':
                in_string = False
            elif c == '\n':
                c = ' '
        elif c == '"':
            in_string = True
        elif c in _CLOSERS:
            stack.append(c)
        elif stack and c == _CLOSERS[stack[-1]]:
            stack.pop()
        out.append(c)
    return _Scan(''.join(out), stack, in_string, escaped)


def _fix_newlines_in_json_strings(text: str) -> str:
    """Replace literal newlines inside JSON string values with spaces."""
    return _scan_json(text).text


def _repair_truncated_json(text: str) -> str:
    """Close the strings, arrays and objects left open by a cut-off reply."""
    text = re.sub(r',\s*$', '', text.rstrip())
    scan = _scan_json(text)

    if scan.in_string:
        if scan.escaped:
            text = text[:-1]
        text += '"'
    return text + ''.join(_CLOSERS[opener] for opener in reversed(scan.open_brackets))


def _reject_constant(name: str):
    raise ValueError(f"Non-finite number {name} is not valid JSON")


def _parse_finite_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        raise ValueError(f"Number {literal[:40]} overflows a float")
    return value


def _loads(text: str):
    """json.loads that refuses values a JSON response cannot carry."""
    return json.loads(text, parse_constant=_reject_constant, parse_float=_parse_finite_float)


def find_json_object(text: str) -> str | None:
    """Return the outermost ``{...}`` span of text, or None.

    A fenced ```json block wins over bare braces. A span with an opening
    brace but no closing one (truncated output) runs to the end of text.
    """
    block = re.search(r'```(?:json)?\s*([\s\S]*?)```', text)
    if block and '{' in block.group(1):
        text = block.group(1)

    start = text.find('{')
    if start == -1:
        return None
    end = text.rfind('}')
    if end > start:
        return text[start:end + 1]
    return text[start:]


def _comma_fix(text: str) -> str:
    fixed = re.sub(r'"\s*\n\s*"', '",\n"', text)
    return re.sub(r',\s*([}\]])', r'\1', fixed)


def _truncation_fix(text: str) -> str:
    return re.sub(r',\s*([}\]])', r'\1', _repair_truncated_json(text))


_ATTEMPTS = [
    ("direct", lambda text: text),
    ("comma fix", _comma_fix),
    ("truncation repair", _truncation_fix),
]


def extract_json(text: str) -> dict:
    """Extract a JSON object from model output, repairing it if needed.

    Raises:
        MalformedModelOutput: no object found, or every repair attempt failed
    """
    candidate = find_json_object(text)
    if candidate is None:
        logger.warning(f"No JSON object found in response: {text[:200]!r}")
        raise MalformedModelOutput("Model response contained no JSON")

    candidate = _fix_newlines_in_json_strings(candidate)

    for attempt, (label, repair) in enumerate(_ATTEMPTS, start=1):
        try:
            value = _loads(repair(candidate))
        except (ValueError, RecursionError) as e:
            # ValueError also covers over-long integer literals and non-finite numbers
            logger.warning(f"JSON parse error (attempt {attempt} - {label}): {str(e)[:200]}")
            continue
        if not isinstance(value, dict):
            raise MalformedModelOutput(f"Expected a JSON object, got {type(value).__name__}")
        if attempt > 1:
            logger.info(f"JSON successfully repaired ({label})")
        return value

    logger.error(f"All JSON repair attempts failed. Raw text: {candidate[:500]!r}")
    raise MalformedModelOutput("Failed to parse model response as JSON")
