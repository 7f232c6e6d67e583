"""
JSON extraction and repair for free-form model output.

Model providers do not guarantee syntactically valid JSON even in "JSON mode",
so the raw text is run through a fixed sequence of increasingly permissive
strategies. The first one that produces an object wins; every attempt is
recorded for diagnostics. Nothing in this module raises on bad input.
"""

import json
import logging
import re
from typing import Any

from pydantic import BaseModel, Field

from meal_analysis.models import ExtractionStrategy

logger = logging.getLogger(__name__)


FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON|javascript|js)?[ \t]*\r?\n?(.*?)```", re.DOTALL)
OPEN_FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON|javascript|js)?[ \t]*\r?\n?(.*)$", re.DOTALL)

# "key": / 'key': / key:  (bare keys must not be glued to a word or quote)
KEY_RE = re.compile(
    r"""(?:"(?P<dq>[A-Za-z_][\w-]*)"|'(?P<sq>[A-Za-z_][\w-]*)'|(?<![\w"'])(?P<bare>[A-Za-z_][\w-]*))\s*:\s*"""
)
STRING_VALUE_RE = re.compile(r'"((?:[^"\\]|\\.)*)"', re.DOTALL)
SINGLE_STRING_VALUE_RE = re.compile(r"'((?:[^'\\]|\\.)*)'", re.DOTALL)
NUMBER_VALUE_RE = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
LITERAL_VALUE_RE = re.compile(r"(true|false|null|True|False|None)\b")

ESCAPE_RE = re.compile(r"\\(u[0-9a-fA-F]{4}|.)", re.DOTALL)
VALID_ESCAPES = set('"\\/bfnrt')

# Labelled fragments for the last-resort scan
FRAGMENT_PATTERNS = {
    "description": re.compile(
        r"""(?i)\b(?:description|meal description|summary)\b["']?\s*[:=\-]\s*["']?([^"'\n{}\[\]]{3,500})"""
    ),
    "feedback": re.compile(
        r"""(?i)\b(?:feedback|assessment)\b["']?\s*[:=\-]\s*["']?([^"'\n{}\[\]]{3,500})"""
    ),
}

PY_LITERALS = {"True": "true", "False": "false", "None": "null"}
JSON_LITERALS = {"true", "false", "null"}


class ExtractionAttempt(BaseModel):
    """One strategy attempt and why it failed."""

    strategy: ExtractionStrategy
    success: bool
    error: str | None = None


class ExtractionResult(BaseModel):
    """Outcome of running the extraction strategies over one text blob."""

    data: dict[str, Any] | None = Field(None, description="Recovered object, None when exhausted")
    strategy: ExtractionStrategy | None = Field(None, description="Strategy that succeeded")
    attempts: list[ExtractionAttempt] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.data is not None

    @property
    def was_repaired(self) -> bool:
        """True when anything other than a direct parse was needed."""
        return self.strategy not in (None, ExtractionStrategy.DIRECT)


# =============================================================================
# Low-level scanning helpers
# =============================================================================


def _scan_string(text: str, start: int, quote: str) -> int:
    """Return the index just past the string starting at ``start`` (or len on EOF)."""
    i = start + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        i += 1
    return n


def _scan_single_quoted(text: str, start: int) -> int:
    """
    Return the index just past a single-quoted string.

    An apostrophe only closes the string when it is followed by a JSON
    delimiter, so "it's" inside the value survives.
    """
    i = start + 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "'":
            j = i + 1
            while j < n and text[j] in " \t\r\n":
                j += 1
            if j >= n or text[j] in ",:}]":
                return i + 1
        i += 1
    return n


def match_brackets(text: str) -> dict[int, int]:
    """
    Map every balanced ``{``/``[`` in ``text`` to the index just past its closer.

    One linear pass; brackets inside double-quoted strings are ignored. A
    mismatched closer invalidates every bracket still open at that point, and
    brackets never closed are left out of the map.
    """
    matches: dict[int, int] = {}
    stack: list[tuple[int, str]] = []
    closers = {"{": "}", "[": "]"}
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"':
            i = _scan_string(text, i, '"')
            continue
        if ch in closers:
            stack.append((i, closers[ch]))
        elif ch in "}]" and stack:
            start, expected = stack.pop()
            if expected == ch:
                matches[start] = i + 1
            else:
                stack.clear()
        i += 1
    return matches


def find_object_spans(text: str) -> tuple[list[tuple[int, int]], int | None]:
    """
    Locate every top-level balanced ``{...}`` span in ``text``.

    Returns the closed spans and the start of a trailing unclosed object
    (truncated output), if there is one.
    """
    spans = []
    depth = 0
    start = 0
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '"' and depth > 0:
            i = _scan_string(text, i, '"')
            continue
        if ch == "{":
            if depth == 0:
                start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                spans.append((start, i + 1))
        i += 1
    return spans, (start if depth > 0 else None)


def _fix_escapes(token: str) -> str:
    """Double the backslash of any escape sequence JSON does not accept."""

    def replace(match: re.Match) -> str:
        seq = match.group(1)
        if len(seq) == 5 or seq in VALID_ESCAPES:
            return match.group(0)
        return "\\\\" + seq

    return ESCAPE_RE.sub(replace, token)


def _single_to_double(content: str) -> str:
    content = content.replace("\\'", "'")
    content = re.sub(r'(?<!\\)"', '\\"', content)
    return _fix_escapes(f'"{content}"')


def clean_json_text(text: str) -> str:
    """
    Rewrite near-JSON into JSON.

    Line breaks become spaces, trailing commas are dropped, single-quoted
    strings become double-quoted, bare keys are quoted, invalid escapes are
    fixed and Python literals are mapped to JSON ones. Double-quoted string
    contents are never touched except for escape repair.
    """
    text = text.replace("\r\n", " ").replace("\n", " ").replace("\r", " ").replace("\t", " ")

    out: list[str] = []
    last = ""  # Last significant character emitted
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        if ch == '"':
            end = _scan_string(text, i, '"')
            token = text[i:end]
            if not token.endswith('"') or len(token) == 1:
                token += '"'
            out.append(_fix_escapes(token))
            last = '"'
            i = end
            continue

        if ch == "'" and (last in "{[,:" or last == ""):
            end = _scan_single_quoted(text, i)
            content = text[i + 1:end - 1] if text[end - 1:end] == "'" else text[i + 1:end]
            out.append(_single_to_double(content))
            last = '"'
            i = end
            continue

        if ch.isalpha() or ch == "_":
            j = i
            while j < n and (text[j].isalnum() or text[j] in "_-"):
                j += 1
            word = text[i:j]
            k = j
            while k < n and text[k] == " ":
                k += 1
            if k < n and text[k] == ":" and last in "{,":
                out.append(f'"{word}"')
            elif word in PY_LITERALS:
                out.append(PY_LITERALS[word])
            else:
                out.append(word)
            last = word[-1]
            i = j
            continue

        if ch == ",":
            k = i + 1
            while k < n and text[k] == " ":
                k += 1
            if k >= n or text[k] in "}]":
                i += 1
                continue

        out.append(ch)
        if ch != " ":
            last = ch
        i += 1

    return "".join(out)


def close_truncated(text: str) -> str:
    """Close any strings, arrays and objects left open by truncated output."""
    stack: list[str] = []
    closers = {"{": "}", "[": "]"}
    in_string = False
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 2
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in closers:
            stack.append(closers[ch])
        elif ch in "}]" and stack and stack[-1] == ch:
            stack.pop()
        i += 1

    if in_string:
        text += '"'
    text = text.rstrip()
    if text.endswith(","):
        text = text[:-1]
    elif text.endswith(":"):
        text += " null"
    return text + "".join(reversed(stack))


# =============================================================================
# Extractor
# =============================================================================


class JSONExtractor:
    """
    Recovers one JSON object from arbitrary model text.

    Strategies, in order:
        1. Direct parse of the whole string
        2. Longest balanced ``{...}`` span outside code fences, then cleaned
        3. Fenced code block contents, then cleaned
        4. Key/value reconstruction from regex matches
        5. Labelled description/feedback sentence fragments
    """

    def __init__(self, max_chars: int = 200_000):
        self.max_chars = max_chars

    def extract(self, text: str | None, request_id: str = "-") -> ExtractionResult:
        """
        Run the strategies in order, stopping at the first success.

        Args:
            text: Raw model output
            request_id: Correlation id for log lines

        Returns:
            ExtractionResult with ``data`` None when every strategy failed
        """
        result = ExtractionResult()
        if not isinstance(text, str) or not text.strip():
            result.attempts.append(
                ExtractionAttempt(
                    strategy=ExtractionStrategy.DIRECT, success=False, error="empty input"
                )
            )
            logger.warning(f"[{request_id}] Nothing to extract: empty model output")
            return result

        text = text.strip()
        window = text[: self.max_chars]

        strategies = [
            (ExtractionStrategy.DIRECT, lambda: self._parse_direct(text)),
            (ExtractionStrategy.BRACE_SPAN, lambda: self._parse_brace_span(window)),
            (ExtractionStrategy.CODE_BLOCK, lambda: self._parse_code_block(window)),
            (ExtractionStrategy.KEY_VALUE, lambda: self._reconstruct(window)),
            (ExtractionStrategy.SENTENCE_SCAN, lambda: self._scan_fragments(window)),
        ]

        for strategy, attempt in strategies:
            data, error = attempt()
            result.attempts.append(
                ExtractionAttempt(strategy=strategy, success=data is not None, error=error)
            )
            if data is not None:
                result.data = data
                result.strategy = strategy
                if strategy != ExtractionStrategy.DIRECT:
                    logger.warning(
                        f"[{request_id}] Recovered model output with strategy "
                        f"{strategy.value} after {len(result.attempts) - 1} failed attempt(s)"
                    )
                return result
            logger.debug(f"[{request_id}] Extraction strategy {strategy.value} failed: {error}")

        logger.warning(f"[{request_id}] All extraction strategies exhausted")
        return result

    # -------------------------------------------------------------------------
    # Strategies; each returns (data, error)
    # -------------------------------------------------------------------------

    def _loads_object(self, candidate: str) -> tuple[dict[str, Any] | None, str | None]:
        try:
            data = json.loads(candidate)
        except (json.JSONDecodeError, RecursionError) as e:
            return None, f"parse error: {e}"
        if not isinstance(data, dict):
            return None, f"parsed a {type(data).__name__}, not an object"
        return data, None

    def _loads_with_cleaning(
        self, candidate: str, truncated: bool = False
    ) -> tuple[dict[str, Any] | None, str | None]:
        data, error = self._loads_object(candidate)
        if data is not None:
            return data, None
        cleaned = clean_json_text(candidate)
        if truncated:
            cleaned = close_truncated(cleaned)
        data, clean_error = self._loads_object(cleaned)
        if data is not None:
            return data, None
        return None, f"{error}; after cleaning: {clean_error}"

    def _parse_direct(self, text: str) -> tuple[dict[str, Any] | None, str | None]:
        return self._loads_object(text)

    def _parse_brace_span(self, text: str) -> tuple[dict[str, Any] | None, str | None]:
        # Fenced blocks belong to the next strategy
        outside = FENCE_RE.sub(lambda m: " " * len(m.group(0)), text)
        spans, open_start = find_object_spans(outside)

        if spans:
            start, end = max(spans, key=lambda s: s[1] - s[0])
            return self._loads_with_cleaning(outside[start:end])
        if open_start is not None and "```" not in outside[open_start:]:
            return self._loads_with_cleaning(outside[open_start:], truncated=True)
        return None, "no balanced object outside code fences"

    def _parse_code_block(self, text: str) -> tuple[dict[str, Any] | None, str | None]:
        blocks = FENCE_RE.findall(text)
        if not blocks:
            match = OPEN_FENCE_RE.search(text)
            if match:
                blocks = [match.group(1)]
        if not blocks:
            return None, "no code block"

        errors = []
        for block in sorted(blocks, key=len, reverse=True):
            spans, open_start = find_object_spans(block)
            if spans:
                start, end = max(spans, key=lambda s: s[1] - s[0])
                data, error = self._loads_with_cleaning(block[start:end])
            elif open_start is not None:
                data, error = self._loads_with_cleaning(block[open_start:], truncated=True)
            else:
                data, error = None, "code block has no object"
            if data is not None:
                return data, None
            errors.append(error)
        return None, "; ".join(e for e in errors if e)

    def _reconstruct(self, text: str) -> tuple[dict[str, Any] | None, str | None]:
        data = self._reconstruct_object(text)
        if not data:
            return None, "no key/value pairs found"
        return data, None

    def _reconstruct_object(self, text: str, depth: int = 0) -> dict[str, Any]:
        """Assemble an object from every recognisable key/value pair in ``text``."""
        data: dict[str, Any] = {}
        brackets = match_brackets(text)
        consumed_until = 0

        for match in KEY_RE.finditer(text):
            if match.start() < consumed_until:
                continue
            key = match.group("dq") or match.group("sq") or match.group("bare")
            pos = match.end()
            if pos >= len(text) or key in data:
                continue

            value, end = self._read_value(text, pos, depth, brackets)
            if end is None:
                continue
            data[key] = value
            consumed_until = end

        return data

    def _read_value(
        self, text: str, pos: int, depth: int, brackets: dict[int, int]
    ) -> tuple[Any, int | None]:
        ch = text[pos]

        if ch in "{[":
            end = brackets.get(pos)
            if end is None:
                return None, None
            span = text[pos:end]
            try:
                return json.loads(clean_json_text(span)), end
            except (json.JSONDecodeError, RecursionError):
                pass
            if ch == "[":
                return self._salvage_array(span, depth), end
            if depth >= 3:
                return None, None
            inner = self._reconstruct_object(span[1:-1], depth + 1)
            return (inner, end) if inner else (None, None)

        if ch == '"':
            match = STRING_VALUE_RE.match(text, pos)
            if match:
                return self._decode_string(match.group(1)), match.end()
            return None, None

        if ch == "'":
            match = SINGLE_STRING_VALUE_RE.match(text, pos)
            if match:
                return match.group(1).replace("\\'", "'"), match.end()
            return None, None

        match = NUMBER_VALUE_RE.match(text, pos)
        if match:
            raw = match.group(0)
            try:
                return (int(raw) if raw.lstrip("-").isdigit() else float(raw)), match.end()
            except ValueError:
                return None, None

        match = LITERAL_VALUE_RE.match(text, pos)
        if match:
            return json.loads(PY_LITERALS.get(match.group(1), match.group(1))), match.end()

        return None, None

    def _salvage_array(self, span: str, depth: int) -> list[Any]:
        """Recover what we can from an array that would not parse."""
        if depth < 3:
            spans, _ = find_object_spans(span[1:-1])
            objects = []
            for start, end in spans:
                inner = self._reconstruct_object(span[1:-1][start + 1:end - 1], depth + 1)
                if inner:
                    objects.append(inner)
            if objects:
                return objects

        items: list[Any] = [self._decode_string(s) for s in STRING_VALUE_RE.findall(span)]
        if not items:
            items = [
                float(n) if any(c in n for c in ".eE") else int(n)
                for n in NUMBER_VALUE_RE.findall(span)
            ]
        return items

    @staticmethod
    def _decode_string(raw: str) -> str:
        try:
            return json.loads(_fix_escapes(f'"{raw}"'))
        except json.JSONDecodeError:
            return raw

    def _scan_fragments(self, text: str) -> tuple[dict[str, Any] | None, str | None]:
        data = {}
        for key, pattern in FRAGMENT_PATTERNS.items():
            match = pattern.search(text)
            if match:
                fragment = match.group(1).strip().rstrip(",;")
                if fragment:
                    data[key] = fragment
        if not data:
            return None, "no description or feedback fragment"
        return data, None
