"""Fold per-subcategory fragments into one product tree per variant.

Placement is driven exclusively by the context each fragment carries
(``props.subcategory`` with its ``category`` and ``category.product``); file
names are never consulted for hierarchy. Fragments are visited in sorted file
order so re-running a merge over the same directory yields the same tree.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple

from ..core import K_SNIPPET, K_UUID
from .errors import MergeConflict
from .harvest_utils import write_json

logger = logging.getLogger(__name__)

SNIPPET_KEYS = ("code", "name", "language", "version", "mode", "supportsDarkMode", "preview")

Tree = Dict[str, Dict[str, Dict[str, Dict[str, Dict[str, Any]]]]]


class ConflictPolicy(str, Enum):
    LAST_WINS = "last_wins"
    FIRST_WINS = "first_wins"
    ERROR = "error"


def normalize_snippet(snippet: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    source = snippet or {}
    return {key: source.get(key) for key in SNIPPET_KEYS}


def fragment_context(fragment: Mapping[str, Any]) -> Optional[Tuple[str, str, str, list]]:
    """Return ``(product, category, subcategory, components)`` or ``None``."""

    sub = ((fragment or {}).get("props") or {}).get("subcategory")
    if not isinstance(sub, dict):
        return None
    category = sub.get("category") or {}
    product = category.get("product") or {}
    names = (product.get("name"), category.get("name"), sub.get("name"))
    if not all(isinstance(n, str) and n for n in names):
        return None
    return names[0], names[1], names[2], list(sub.get("components") or [])


def merge_fragments(
    fragments: Iterable[Tuple[str, Mapping[str, Any]]],
    policy: ConflictPolicy = ConflictPolicy.LAST_WINS,
) -> Tree:
    """Merge ``(label, fragment)`` pairs; ``label`` is only used in log lines."""

    tree: Tree = {}
    for label, fragment in fragments:
        context = fragment_context(fragment)
        if context is None:
            logger.warning("merge: %s has no subcategory context, skipped", label)
            continue
        product, category, subcategory, components = context
        branch = tree.setdefault(product, {}).setdefault(category, {}).setdefault(subcategory, {})
        for comp in components:
            if not isinstance(comp, dict) or not comp.get("name"):
                continue
            name = str(comp["name"])
            if name in branch:
                if policy is ConflictPolicy.ERROR:
                    raise MergeConflict((product, category, subcategory, name))
                if policy is ConflictPolicy.FIRST_WINS:
                    continue
            branch[name] = {
                K_UUID: comp.get("uuid"),
                K_SNIPPET: normalize_snippet(comp.get("snippet")),
            }
    return tree


def load_fragments(raw_dir: Path) -> Iterator[Tuple[str, Dict[str, Any]]]:
    for path in sorted(raw_dir.glob("*.json")):
        try:
            yield path.name, json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("merge: %s is not valid JSON (%s), skipped", path.name, exc)


def count_components(tree: Mapping[str, Any]) -> int:
    return sum(
        len(components)
        for categories in tree.values()
        for subcategories in categories.values()
        for components in subcategories.values()
    )


def merge_directory(
    raw_dir: Path,
    output_path: Path,
    policy: ConflictPolicy = ConflictPolicy.LAST_WINS,
) -> int:
    if not raw_dir.is_dir():
        raise FileNotFoundError(f"merge: directory not found: {raw_dir}")
    tree = merge_fragments(load_fragments(raw_dir), policy)
    write_json(output_path, tree)
    total = count_components(tree)
    logger.info("Merged: %s (%d components)", output_path.name, total)
    return total


__all__ = [
    "ConflictPolicy",
    "SNIPPET_KEYS",
    "normalize_snippet",
    "fragment_context",
    "merge_fragments",
    "load_fragments",
    "count_components",
    "merge_directory",
]
