from __future__ import annotations

import collections
import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Sequence

from ..errors import ConfigurationError

BASE_DIR = Path(__file__).resolve().parent
DEFAULT_CASES_PATH = BASE_DIR / "data" / "bench_cases.json"

# Characters of the hex digest that make up the short case-set hash.
HASH_OFFSETS: tuple[int, ...] = (4, 8, 16, 24)


@dataclass(frozen=True)
class BenchCase:
    """One named query workload."""

    id: str
    query: str
    signal_expression: str | None = None


@dataclass(frozen=True)
class BenchCaseSet:
    """Ordered, validated collection of cases plus the hash of its source text."""

    cases: tuple[BenchCase, ...]
    hash: str
    source: str

    def __iter__(self) -> Iterator[BenchCase]:
        return iter(self.cases)

    def __len__(self) -> int:
        return len(self.cases)


def case_set_hash(text: str) -> str:
    """Return the 4-character identity token of a case-set document.

    The token is taken from fixed offsets of the upper-case MD5 hex digest of
    the ASCII-encoded text, so identical documents always share a token.
    """
    digest = hashlib.md5(text.encode("ascii", errors="replace")).hexdigest().upper()
    return "".join(digest[offset] for offset in HASH_OFFSETS)


def load_cases(path: str | Path | None = None) -> BenchCaseSet:
    """Read, parse and validate a case-set document.

    With no ``path`` the bundled default case set is used.
    """
    if path is None or not str(path).strip():
        source_path = DEFAULT_CASES_PATH
        source = "<default>"
    else:
        source_path = Path(path)
        source = str(path)

    try:
        text = source_path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise ConfigurationError(f"Unable to read cases file {source}: {exc}") from exc

    return parse_cases(text, source)


def parse_cases(text: str, source: str = "<string>") -> BenchCaseSet:
    try:
        document = json.loads(text)
    except ValueError as exc:
        raise ConfigurationError(f"Cases file {source} is not valid JSON: {exc}") from exc

    entries = _case_entries(document, source)
    cases = tuple(_parse_case(raw, source, index) for index, raw in enumerate(entries))

    counts = collections.Counter(case.id for case in cases)
    duplicates = sorted(case_id for case_id, count in counts.items() if count > 1)
    if duplicates:
        raise ConfigurationError(
            f"Cases file {source} contains a duplicate id: {', '.join(duplicates)}"
        )

    if not cases:
        raise ConfigurationError(f"Cases file {source} contains no cases")

    return BenchCaseSet(cases=cases, hash=case_set_hash(text), source=source)


def _case_entries(document: Any, source: str) -> Sequence[Any]:
    if document is None:
        return []
    if isinstance(document, list):
        return document
    if isinstance(document, dict):
        entries = _lookup(document, "cases")
        if entries is None:
            return []
        if isinstance(entries, list):
            return entries
    raise ConfigurationError(f"Cases file {source} must contain a list of cases")


def _parse_case(raw: Any, source: str, index: int) -> BenchCase:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Cases file {source}: case #{index + 1} is not an object")

    case_id = _lookup(raw, "id")
    query = _lookup(raw, "query")
    if not isinstance(case_id, str) or not case_id.strip():
        raise ConfigurationError(f"Cases file {source}: case #{index + 1} has no id")
    if not isinstance(query, str) or not query.strip():
        raise ConfigurationError(f"Cases file {source}: case {case_id!r} has no query")

    signal = _lookup(raw, "signalExpression")
    if signal is not None and not isinstance(signal, str):
        raise ConfigurationError(
            f"Cases file {source}: case {case_id!r} has a non-string signalExpression"
        )
    if signal is not None and not signal.strip():
        signal = None

    return BenchCase(id=case_id, query=query, signal_expression=signal)


def _lookup(obj: dict[str, Any], name: str) -> Any:
    # Property names are matched without regard to case: `Cases`, `cases`, ...
    lowered = name.lower()
    for key, value in obj.items():
        if isinstance(key, str) and key.lower() == lowered:
            return value
    return None


__all__ = [
    "BenchCase",
    "BenchCaseSet",
    "DEFAULT_CASES_PATH",
    "case_set_hash",
    "load_cases",
    "parse_cases",
]
