"""Correlate the three merged mode trees of a framework/version into records."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..core import (
    K_CATEGORY,
    K_DARK,
    K_ID,
    K_LIGHT,
    K_NAME,
    K_SNIPPET,
    K_SUB_SUBCATEGORY,
    K_SUBCATEGORY,
    K_SYSTEM,
    K_UUID,
    K_VERSION,
)
from .harvest_utils import human_size, read_json, write_ndjson

logger = logging.getLogger(__name__)

_ID_UNSAFE = re.compile(r"[^a-zA-Z0-9/]+")

LeafPath = Tuple[str, str, str, str]


def record_id(path: Sequence[str]) -> str:
    """``["Marketing", "Heroes", "Simple", "Centered CTA"]`` -> ``marketing/heroes/simple/centered-cta``."""

    return _ID_UNSAFE.sub("-", "/".join(path)).lower()


def _is_leaf(node: Any) -> bool:
    return isinstance(node, dict) and K_UUID in node and K_SNIPPET in node


def iter_leaf_paths(tree: Mapping[str, Any]) -> Iterator[LeafPath]:
    for product, categories in tree.items():
        if not isinstance(categories, dict):
            continue
        for category, subcategories in categories.items():
            if not isinstance(subcategories, dict):
                continue
            for subcategory, components in subcategories.items():
                if not isinstance(components, dict):
                    continue
                for name, leaf in components.items():
                    if _is_leaf(leaf):
                        yield product, category, subcategory, name


def snippet_at(tree: Optional[Mapping[str, Any]], path: LeafPath) -> Optional[Dict[str, Any]]:
    node: Any = tree or {}
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    if not _is_leaf(node):
        return None
    return node[K_SNIPPET]


def flatten_trees(
    light: Mapping[str, Any],
    dark: Optional[Mapping[str, Any]],
    system: Optional[Mapping[str, Any]],
    version: str,
) -> Iterator[Dict[str, Any]]:
    """One record per light leaf; absent dark/system payloads are explicit ``None``."""

    for path in iter_leaf_paths(light):
        leaf = light[path[0]][path[1]][path[2]][path[3]]
        yield {
            K_ID: record_id(path),
            K_UUID: leaf.get(K_UUID),
            K_NAME: path[3],
            K_VERSION: version,
            K_CATEGORY: path[0],
            K_SUBCATEGORY: path[1],
            K_SUB_SUBCATEGORY: path[2],
            K_LIGHT: leaf.get(K_SNIPPET),
            K_DARK: snippet_at(dark, path),
            K_SYSTEM: snippet_at(system, path),
        }


def write_records(records: Iterable[Dict[str, Any]], path: Path) -> int:
    return write_ndjson(path, records)


def _load_tree(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    data = read_json(path)
    return data if isinstance(data, dict) else {}


def flatten_variant_files(raw_dir: Path, output_dir: Path, framework: str, version: str) -> Optional[int]:
    """Write ``<framework>-<version>.ndjson``; returns the record count or ``None`` if skipped."""

    stem = f"{framework}-{version}"
    light_path = raw_dir / f"{stem}-light.json"
    if not light_path.exists():
        logger.warning("Missing %s, skipping %s", light_path.name, stem)
        return None
    output_path = output_dir / f"{stem}.ndjson"
    count = write_records(
        flatten_trees(
            _load_tree(light_path),
            _load_tree(raw_dir / f"{stem}-dark.json"),
            _load_tree(raw_dir / f"{stem}-system.json"),
            version,
        ),
        output_path,
    )
    logger.info("Created: %s (%d components, %s)", output_path.name, count, human_size(output_path.stat().st_size))
    return count


def flatten_all(raw_dir: Path, output_dir: Path, frameworks: Iterable[str], versions: Iterable[str]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    framework_list: List[str] = list(frameworks)
    for version in versions:
        for framework in framework_list:
            count = flatten_variant_files(raw_dir, output_dir, framework, version)
            if count is not None:
                counts[f"{framework}-{version}"] = count
    return counts


__all__ = [
    "record_id",
    "iter_leaf_paths",
    "snippet_at",
    "flatten_trees",
    "write_records",
    "flatten_variant_files",
    "flatten_all",
]
