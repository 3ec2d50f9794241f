from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple
import json
import re


class FailureKind(str, Enum):
    EXTRACT = "EXTRACT"
    PARSE = "PARSE"
    TRUNCATED = "TRUNCATED"
    SCHEMA = "SCHEMA"


# Human-readable reasons shown in the coverage appendix
FAILURE_REASONS = {
    FailureKind.EXTRACT: "Model returned no usable JSON output.",
    FailureKind.PARSE: "JSON could not be parsed.",
    FailureKind.TRUNCATED: "JSON appears truncated.",
    FailureKind.SCHEMA: "JSON did not match the expected schema.",
}

FENCE_RE = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\n?(.*?)\n?[ \t]*```\s*$", re.DOTALL)
DANGLING_BACKSLASH_RE = re.compile(r'(?<!\\)\\"(?=\s*[,}\]])')
VALID_ESCAPES = set('"\\/bfnrt')
HEX = set("0123456789abcdefABCDEF")


@dataclass
class ScanState:
    start: int                    # index of the first "{", -1 when absent
    end: int                      # index just past the balancing "}", -1 when unbalanced
    stack: List[str] = field(default_factory=list)
    in_string: bool = False
    mismatched: bool = False


@dataclass
class RepairResult:
    repaired: str
    steps: List[str]


@dataclass
class ParseOutcome:
    ok: bool
    value: Any = None
    kind: Optional[FailureKind] = None
    detail: str = ""
    repaired: bool = False
    repair_steps: List[str] = field(default_factory=list)
    violations: List[str] = field(default_factory=list)

    @property
    def reason(self) -> str:
        if self.kind is None:
            return ""
        return FAILURE_REASONS[self.kind]


# Strip ```json ... ``` wrapping (also an unterminated opening fence)
def strip_code_fences(text: str) -> str:
    value = (text or "").strip()
    match = FENCE_RE.match(value)
    if match:
        return match.group(1).strip()
    if value.startswith("```"):
        value = value.split("\n", 1)[1] if "\n" in value else ""
    return value.strip()


# String-aware bracket scan from the first "{"
def scan_json(text: str) -> ScanState:

    start = text.find("{")
    if start < 0:
        return ScanState(start=-1, end=-1)

    stack: List[str] = []
    in_string = False
    escape = False

    for i in range(start, len(text)):
        ch = text[i]

        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            stack.append("}")
        elif ch == "[":
            stack.append("]")
        elif ch in "}]":
            if not stack or stack[-1] != ch:
                return ScanState(start=start, end=-1, stack=stack, mismatched=True)
            stack.pop()
            if not stack:
                return ScanState(start=start, end=i + 1)

    return ScanState(start=start, end=-1, stack=stack, in_string=in_string)


# First balanced top-level object, or None
def extract_first_json_object(text: str) -> Optional[str]:
    state = scan_json(text or "")
    if state.start < 0 or state.end < 0:
        return None
    return text[state.start:state.end]


# Why no object could be extracted
def classify_unextractable(text: str) -> FailureKind:
    value = strip_code_fences(text)
    if not value:
        return FailureKind.EXTRACT

    state = scan_json(value)
    if state.start < 0:
        return FailureKind.EXTRACT
    if state.mismatched:
        return FailureKind.PARSE
    if state.stack or state.in_string:
        return FailureKind.TRUNCATED
    return FailureKind.PARSE


def _fix_dangling_backslash(text: str) -> str:
    return DANGLING_BACKSLASH_RE.sub(r'\\\\"', text)


def _fix_invalid_escapes(text: str) -> str:
    out = []
    in_string = False
    i = 0
    n = len(text)

    while i < n:
        ch = text[i]
        if not in_string:
            if ch == '"':
                in_string = True
            out.append(ch)
            i += 1
            continue

        if ch == "\\":
            nxt = text[i + 1] if i + 1 < n else ""
            if nxt and nxt in VALID_ESCAPES:
                out.append(ch + nxt)
                i += 2
                continue
            if nxt == "u" and len(text[i + 2:i + 6]) == 4 and all(c in HEX for c in text[i + 2:i + 6]):
                out.append(text[i:i + 6])
                i += 6
                continue
            out.append("\\\\")
            i += 1
            continue

        if ch == '"':
            in_string = False
        out.append(ch)
        i += 1

    return "".join(out)


def _drop_trailing_commas(text: str) -> str:
    out = []
    in_string = False
    escape = False

    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            out.append(ch)
            continue

        if ch == '"':
            in_string = True
        elif ch == ",":
            rest = text[i + 1:].lstrip()
            if rest[:1] in ("}", "]"):
                continue
        out.append(ch)

    return "".join(out)


# Escape quotes that sit inside a string value rather than closing it
def _escape_inner_quotes(text: str) -> str:
    out = []
    in_string = False
    escape = False

    for i, ch in enumerate(text):
        if not in_string:
            if ch == '"':
                in_string = True
            out.append(ch)
            continue

        if escape:
            escape = False
            out.append(ch)
            continue
        if ch == "\\":
            escape = True
            out.append(ch)
            continue
        if ch == '"':
            rest = text[i + 1:].lstrip()
            if not rest or rest[0] in ",:}]":
                in_string = False
                out.append(ch)
            else:
                out.append('\\"')
            continue
        out.append(ch)

    return "".join(out)


def _close_truncated(text: str, state: ScanState) -> str:
    out = text
    if state.in_string:
        if out.endswith("\\") and not out.endswith("\\\\"):
            out = out[:-1]
        out += '"'

    out = out.rstrip()
    while out and out[-1] in ",:":
        if out[-1] == ":":
            out += " null"
            break
        out = out[:-1].rstrip()

    closers = scan_json(out).stack
    return out + "".join(reversed(closers))


def _loads(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


# Minimal syntax-only repair; returns None when nothing parses
def repair_json_minimal(text: str, close_truncated: bool = False) -> Optional[RepairResult]:

    value = strip_code_fences(text)
    start = value.find("{")
    if start < 0:
        return None

    steps: List[str] = []
    if start > 0:
        steps.append("trim_prefix")
    value = value[start:]

    state = scan_json(value)
    if state.end < 0 and state.in_string:
        fixed = _fix_dangling_backslash(value)
        if fixed != value:
            value = fixed
            steps.append("dangling_backslash")
            state = scan_json(value)

    if state.end > 0:
        if value[state.end:].strip():
            steps.append("trim_suffix")
        value = value[:state.end]
    elif close_truncated and not state.mismatched:
        value = _close_truncated(value, state)
        steps.append("close_brackets")
    else:
        return None

    fixes = [
        ("invalid_escapes", _fix_invalid_escapes),
        ("trailing_commas", _drop_trailing_commas),
        ("inner_quotes", _escape_inner_quotes),
    ]
    for name, fix in fixes:
        ok, _ = _loads(value)
        if ok:
            return RepairResult(repaired=value, steps=steps)
        fixed = fix(value)
        if fixed != value:
            value = fixed
            steps.append(name)

    ok, _ = _loads(value)
    if ok:
        return RepairResult(repaired=value, steps=steps)
    return None


# Full parse pipeline: fences → extract → parse → repair → schema
def parse_json_response(
    raw: str,
    validate: Optional[Callable[[Any], Tuple[Any, List[str]]]] = None,
    close_truncated: bool = False,
) -> ParseOutcome:

    text = strip_code_fences(raw)
    if not text:
        return ParseOutcome(ok=False, kind=FailureKind.EXTRACT, detail="empty model output")

    value = None
    parsed = False
    repaired = False
    steps: List[str] = []

    candidate = extract_first_json_object(text)
    if candidate is not None:
        parsed, value = _loads(candidate)

    if not parsed:
        result = repair_json_minimal(text, close_truncated=close_truncated)
        if result is None:
            if candidate is None:
                kind = classify_unextractable(text)
                detail = "no JSON object found" if kind == FailureKind.EXTRACT else "unbalanced JSON"
            else:
                kind = FailureKind.PARSE
                detail = "JSON object could not be parsed"
            return ParseOutcome(ok=False, kind=kind, detail=detail)
        _, value = _loads(result.repaired)
        repaired = True
        steps = result.steps

    if not isinstance(value, dict):
        return ParseOutcome(
            ok=False,
            kind=FailureKind.SCHEMA,
            detail="top-level JSON value is not an object",
            repaired=repaired,
            repair_steps=steps,
        )

    if validate is None:
        return ParseOutcome(ok=True, value=value, repaired=repaired, repair_steps=steps)

    model, violations = validate(value)
    if violations:
        return ParseOutcome(
            ok=False,
            value=value,
            kind=FailureKind.SCHEMA,
            detail="; ".join(violations[:5]),
            repaired=repaired,
            repair_steps=steps,
            violations=violations,
        )

    return ParseOutcome(ok=True, value=model, repaired=repaired, repair_steps=steps)
