"""Derive redistribution-safe metadata from component source and strip the source.

Every token family is an independent rule ``(text) -> sorted unique list``
registered in :data:`RULES` together with the ``meta`` section it lands in.
Adding a family means adding one function and one registry entry.

Stripping is irreversible: the output record carries identifiers,
availability flags, preview URLs and the derived ``meta`` block, never code.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Tuple

from ..core import (
    K_CATEGORY,
    K_CODE,
    K_DARK,
    K_ID,
    K_LIGHT,
    K_META,
    K_NAME,
    K_PREVIEW,
    K_SUB_SUBCATEGORY,
    K_SUBCATEGORY,
    K_SYSTEM,
    K_UUID,
    K_VERSION,
    MODES,
)
from .harvest_config import (
    COLOR_PREFIXES,
    FONT_SIZES,
    FONT_WEIGHTS,
    ICON_PACKAGE,
    METADATA_PROGRESS_EVERY,
    SPACING_PREFIXES,
)
from .harvest_utils import count_lines, dumps_line, iter_ndjson

logger = logging.getLogger(__name__)

Rule = Callable[[str], List[str]]


def _alternation(options: Iterable[str]) -> str:
    # Longest first so "gap-x" is tried before "gap".
    return "|".join(re.escape(o) for o in sorted(options, key=len, reverse=True))


_CLASS_ATTR = re.compile(r"\b(?:className|class)=\"([^\"]*)\"")
_PACKAGE = re.compile(r"from ['\"](@[^'\"]+|[^@'\"]+)['\"]")
_ICON_IMPORT = re.compile(
    r"import\s*\{([^}]+)\}\s*from\s*['\"]" + re.escape(ICON_PACKAGE)
)
_ICON_NAME = re.compile(r"^[A-Z].*Icon$")
_COLOR = re.compile(
    r"^(?:" + _alternation(COLOR_PREFIXES) + r")-(?:[a-z]+-)?(?P<color>[a-z]+-\d+)"
)
_SPACING = re.compile(r"^(?:" + _alternation(SPACING_PREFIXES) + r")-\d")
_TYPOGRAPHY = re.compile(
    r"^(?:text-(?:" + _alternation(FONT_SIZES) + r")"
    r"|font-(?:" + _alternation(FONT_WEIGHTS) + r")"
    r"|tracking|leading|truncate|sr-only)"
)
_V4_FEATURE = re.compile(r"^(data-[a-z-]+:|has-\[[^\]]+\]|inset-ring|inset-shadow|size-)")


def _unique(values: Iterable[str]) -> List[str]:
    return sorted({v for v in values if v})


def class_tokens(text: str) -> List[str]:
    """Whitespace-separated tokens of every ``className``/``class`` attribute."""

    tokens: List[str] = []
    for match in _CLASS_ATTR.finditer(text or ""):
        tokens.extend(match.group(1).split())
    return tokens


def _base_utility(token: str) -> str:
    """Drop variant prefixes: ``md:hover:bg-blue-600`` -> ``bg-blue-600``."""

    depth = 0
    cut = 0
    for index, char in enumerate(token):
        if char == "[":
            depth += 1
        elif char == "]":
            depth = max(0, depth - 1)
        elif char == ":" and depth == 0:
            cut = index + 1
    return token[cut:]


def extract_packages(text: str) -> List[str]:
    return _unique(m.group(1) for m in _PACKAGE.finditer(text or "") if not m.group(1).startswith("."))


def extract_icons(text: str) -> List[str]:
    names: List[str] = []
    for match in _ICON_IMPORT.finditer(text or ""):
        for item in match.group(1).split(","):
            name = item.strip().split(" as ", 1)[0].strip()
            if _ICON_NAME.match(name):
                names.append(name)
    return _unique(names)


def extract_colors(text: str) -> List[str]:
    found: List[str] = []
    for token in class_tokens(text):
        match = _COLOR.match(_base_utility(token))
        if match:
            found.append(match.group("color"))
    return _unique(found)


def extract_spacing(text: str) -> List[str]:
    return _unique(t for t in map(_base_utility, class_tokens(text)) if _SPACING.match(t))


def extract_typography(text: str) -> List[str]:
    return _unique(t for t in map(_base_utility, class_tokens(text)) if _TYPOGRAPHY.match(t))


def extract_v4_features(text: str) -> List[str]:
    found: List[str] = []
    for token in class_tokens(text):
        match = _V4_FEATURE.match(token)
        if match:
            found.append(match.group(1).rstrip(":"))
    return _unique(found)


# name -> (meta section, rule); insertion order is output order
RULES: Dict[str, Tuple[str, Rule]] = {
    "packages": ("dependencies", extract_packages),
    "icons": ("dependencies", extract_icons),
    "colors": ("tokens", extract_colors),
    "spacing": ("tokens", extract_spacing),
    "typography": ("tokens", extract_typography),
    "v4_only": ("tailwind", extract_v4_features),
}


def register_rule(name: str, section: str, rule: Rule) -> None:
    if name in RULES:
        raise ValueError(f"rule already registered: {name}")
    RULES[name] = (section, rule)


def extract_metadata(text: str) -> Dict[str, Dict[str, Any]]:
    meta: Dict[str, Dict[str, Any]] = {}
    for name, (section, rule) in RULES.items():
        meta.setdefault(section, {})[name] = rule(text or "") if text else []
    tailwind = meta.setdefault("tailwind", {})
    tailwind["v3_compatible"] = not tailwind.get("v4_only")
    return meta


def empty_metadata() -> Dict[str, Dict[str, Any]]:
    return extract_metadata("")


def source_text(record: Mapping[str, Any]) -> str:
    for mode in (K_LIGHT, K_DARK, K_SYSTEM):
        snippet = record.get(mode)
        if isinstance(snippet, dict) and snippet.get(K_CODE):
            return str(snippet[K_CODE])
    return ""


_IDENTITY_KEYS = (K_ID, K_UUID, K_NAME, K_VERSION, K_CATEGORY, K_SUBCATEGORY, K_SUB_SUBCATEGORY)


def _is_stripped(record: Mapping[str, Any]) -> bool:
    return not any(mode in record for mode in MODES)


def strip_record(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Replace source code with availability flags, preview URLs and ``meta``."""

    if _is_stripped(record):
        kept = {k: v for k, v in record.items() if v is not None}
        if not isinstance(kept.get(K_META), dict):
            kept[K_META] = empty_metadata()
        return kept

    out: Dict[str, Any] = {key: record.get(key) for key in _IDENTITY_KEYS}
    for mode in (K_LIGHT, K_DARK, K_SYSTEM):
        out[f"has_{mode}"] = record.get(mode) is not None
    for mode in (K_LIGHT, K_DARK, K_SYSTEM):
        snippet = record.get(mode)
        out[f"preview_{mode}"] = snippet.get(K_PREVIEW) if isinstance(snippet, dict) else None
    out[K_META] = extract_metadata(source_text(record))
    return {k: v for k, v in out.items() if v is not None}


def strip_file(path: Path, progress_every: int = METADATA_PROGRESS_EVERY) -> int:
    """Rewrite one NDJSON file in place; the original is replaced only on success."""

    total = count_lines(path)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    processed = 0
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            for record in iter_ndjson(path):
                processed += 1
                if progress_every and processed % progress_every == 0:
                    logger.info("  Processing component %d/%d...", processed, total)
                fh.write(dumps_line(strip_record(record)) + "\n")
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    logger.info("  Completed: %d components processed", processed)
    return processed


def strip_corpus(input_dir: Path, progress_every: int = METADATA_PROGRESS_EVERY) -> Dict[str, Any]:
    if not input_dir.is_dir():
        raise FileNotFoundError(f"Input directory does not exist: {input_dir}")
    files = sorted(p for p in input_dir.glob("*-v*.ndjson") if p.is_file())
    if not files:
        logger.warning("No NDJSON files found in %s", input_dir)
        return {"files": 0, "records": 0, "per_file": {}}

    logger.info("Processing %d NDJSON files...", len(files))
    per_file: Dict[str, int] = {}
    for index, path in enumerate(files, start=1):
        logger.info("[%d/%d] Processing %s...", index, len(files), path.name)
        per_file[path.name] = strip_file(path, progress_every)
    logger.info("Done! Processed %d files.", len(files))
    return {"files": len(files), "records": sum(per_file.values()), "per_file": per_file}


__all__ = [
    "RULES",
    "register_rule",
    "class_tokens",
    "extract_packages",
    "extract_icons",
    "extract_colors",
    "extract_spacing",
    "extract_typography",
    "extract_v4_features",
    "extract_metadata",
    "empty_metadata",
    "source_text",
    "strip_record",
    "strip_file",
    "strip_corpus",
]
