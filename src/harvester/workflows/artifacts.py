"""Run-level artifacts: component index, manifest, tracking file and ``current`` link."""

from __future__ import annotations

import logging
import os
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from ..core import K_CATEGORY, K_DARK, K_ID, K_NAME, K_SUB_SUBCATEGORY, K_SUBCATEGORY, K_SYSTEM, K_UUID
from .harvest_config import CANONICAL_STREAM, DATA_SOURCES, FRAMEWORKS
from .harvest_utils import atomic_write_text, human_size, iter_ndjson, read_json, write_json

logger = logging.getLogger(__name__)

INDEX_NAME = "component-index.json"
MANIFEST_NAME = "manifest.json"
CURRENT_LINK = "current"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _has_mode(record: Mapping[str, Any], mode: str) -> bool:
    # Works before (payload present) and after (has_<mode> flag) stripping.
    if record.get(mode) is not None:
        return True
    return bool(record.get(f"has_{mode}"))


def category_tree(records: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Three-level ``category > subcategory > sub_subcategory`` count tree, sorted by name."""

    counts: Dict[str, Dict[str, Dict[str, int]]] = {}
    for record in records:
        cat = str(record.get(K_CATEGORY) or "")
        sub = str(record.get(K_SUBCATEGORY) or "")
        subsub = str(record.get(K_SUB_SUBCATEGORY) or "")
        bucket = counts.setdefault(cat, {}).setdefault(sub, {})
        bucket[subsub] = bucket.get(subsub, 0) + 1
    return [
        {
            "name": cat,
            "subcategories": [
                {
                    "name": sub,
                    "sub_subcategories": [
                        {"name": subsub, "count": n} for subsub, n in sorted(counts[cat][sub].items())
                    ],
                }
                for sub in sorted(counts[cat])
            ],
        }
        for cat in sorted(counts)
    ]


def _canonical_stream(ndjson_dir: Path, canonical: str) -> Optional[Path]:
    preferred = ndjson_dir / f"{canonical}.ndjson"
    if preferred.exists():
        return preferred
    candidates = sorted(ndjson_dir.glob("*.ndjson"))
    return candidates[0] if candidates else None


def build_index(
    ndjson_dir: Path,
    index_path: Path,
    versions: Sequence[str],
    *,
    frameworks: Sequence[str] = FRAMEWORKS,
    canonical: str = CANONICAL_STREAM,
) -> int:
    """Write the lightweight component index; returns the component count."""

    source = _canonical_stream(ndjson_dir, canonical)
    records: List[Dict[str, Any]] = []
    if source is None:
        logger.warning("No component streams in %s; index will be empty", ndjson_dir)
    else:
        if source.stem != canonical:
            logger.warning("%s.ndjson missing, indexing %s instead", canonical, source.name)
        records = list(iter_ndjson(source))

    index = OrderedDict(
        [
            ("generated_at", utc_timestamp()),
            ("component_count", len(records)),
            ("frameworks", list(frameworks)),
            ("versions", list(versions)),
            ("categories", category_tree(records)),
            (
                "components",
                [
                    {
                        K_ID: r.get(K_ID),
                        K_UUID: r.get(K_UUID),
                        K_NAME: r.get(K_NAME),
                        K_CATEGORY: r.get(K_CATEGORY),
                        K_SUBCATEGORY: r.get(K_SUBCATEGORY),
                        K_SUB_SUBCATEGORY: r.get(K_SUB_SUBCATEGORY),
                        "has_dark_mode": _has_mode(r, K_DARK),
                        "has_system_mode": _has_mode(r, K_SYSTEM),
                    }
                    for r in records
                ],
            ),
        ]
    )
    write_json(index_path, index)
    logger.info(
        "Created: %s (%d components, %s)", index_path.name, len(records), human_size(index_path.stat().st_size)
    )
    return len(records)


def read_component_count(index_path: Path) -> int:
    if not index_path.exists():
        return 0
    try:
        return int(read_json(index_path).get("component_count") or 0)
    except (ValueError, AttributeError):
        return 0


def kit_templates(kits_dir: Path) -> List[Dict[str, Any]]:
    templates: List[Dict[str, Any]] = []
    for path in sorted(kits_dir.glob("*.json")):
        try:
            data = read_json(path)
        except ValueError:
            logger.warning("Unreadable kit metadata: %s", path.name)
            continue
        templates.append(
            {
                "name": data.get("name"),
                "changelog_date": data.get("changelog_date"),
                "file_mtime": data.get("file_mtime"),
            }
        )
    return templates


def data_sources(versions: Iterable[str]) -> List[str]:
    label = "/".join(versions)
    return [source.format(versions=label) for source in DATA_SOURCES]


def write_manifest(
    run_dir: Path,
    *,
    downloaded_by: str,
    suffix: Optional[str],
    tailwind_version: str,
    elements_version: str,
    inertia_version: str,
    format_count: int,
    template_count: int,
    versions: Sequence[str],
    downloaded_at: Optional[str] = None,
) -> Dict[str, Any]:
    kits_dir = run_dir / "kits"
    manifest = {
        "downloaded_at": downloaded_at or utc_timestamp(),
        "downloaded_by": downloaded_by,
        "suffix": suffix or None,
        "versions": {
            "tailwind": tailwind_version,
            "elements": elements_version,
            "inertia": inertia_version,
        },
        "counts": {
            "components": read_component_count(run_dir / "data" / INDEX_NAME),
            "formats": format_count,
            "kits": sum(1 for p in kits_dir.glob("*.zip") if p.is_file()) if kits_dir.is_dir() else 0,
            "templates_available": template_count,
        },
        "templates": kit_templates(kits_dir) if kits_dir.is_dir() else [],
        "data_sources": data_sources(versions),
    }
    write_json(run_dir / MANIFEST_NAME, manifest)
    logger.info("Created: %s", MANIFEST_NAME)
    return manifest


def write_tracking_file(cache_dir: Path, date: str, suffix: Optional[str]) -> Path:
    """``<cache>/.<date>`` records the suffix of the latest pull for that date."""

    path = cache_dir / f".{date}"
    atomic_write_text(path, f"{suffix or ''}\n")
    logger.info("Tracking: %s -> %s", path.name, suffix or "(default)")
    return path


def update_current_link(cache_dir: Path, run_dir: Path) -> Path:
    link = cache_dir / CURRENT_LINK
    if link.is_symlink() or link.exists():
        link.unlink()
    os.symlink(run_dir.name, link)
    logger.info("%s/%s -> %s", cache_dir.name, CURRENT_LINK, run_dir.name)
    return link


__all__ = [
    "INDEX_NAME",
    "MANIFEST_NAME",
    "CURRENT_LINK",
    "utc_timestamp",
    "category_tree",
    "build_index",
    "read_component_count",
    "kit_templates",
    "data_sources",
    "write_manifest",
    "write_tracking_file",
    "update_current_link",
]
