"""Supplementary downloads: framework docs, Elements, Catalyst and template kits.

None of these steps is allowed to abort a harvest. Failures are logged and the
caller decides whether the unit is checkpointed (template kits are not, so a
resumed run tries them again).
"""

from __future__ import annotations

import logging
import re
import shutil
import tarfile
import zipfile
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

import requests

from .errors import HarvestError
from .harvest_config import (
    CATALYST_URL,
    ELEMENTS_DOCS_URL,
    ELEMENTS_PACKAGE,
    KIT_METADATA_URLS,
    NPM_REGISTRY_URL,
)
from .harvest_utils import atomic_write_text, human_size, write_json
from .session import HarvestSession, stream_to_file

logger = logging.getLogger(__name__)

ELEMENTS_VERSION_FILE = ".elements-version"
_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


# ---------------------------------------------------------------------------
# Framework documentation
# ---------------------------------------------------------------------------


def copy_framework_docs(source_root: Path, dest_root: Path, versions: Iterable[str] = ("v3", "v4")) -> Dict[str, int]:
    """Copy ``<source>/tailwind-<v>/*.md`` (README excluded) to ``<dest>/tailwind/<v>/``."""

    counts: Dict[str, int] = {}
    for version in versions:
        target = dest_root / "tailwind" / version
        target.mkdir(parents=True, exist_ok=True)
        copied = 0
        src = source_root / f"tailwind-{version}"
        if src.is_dir():
            for path in sorted(src.glob("*.md")):
                if path.name == "README.md" or not path.is_file():
                    continue
                shutil.copy2(path, target / path.name)
                copied += 1
        else:
            logger.warning("Docs source missing: %s", src)
        counts[version] = copied
    logger.info("Tailwind docs: %s", ", ".join(f"{v} ({n} files)" for v, n in counts.items()))
    return counts


# ---------------------------------------------------------------------------
# Elements
# ---------------------------------------------------------------------------


def latest_npm_version(client: requests.Session, package: str = ELEMENTS_PACKAGE, registry: str = NPM_REGISTRY_URL) -> str:
    resp = client.get(f"{registry}/{package}/latest", timeout=30)
    resp.raise_for_status()
    version = str(resp.json().get("version") or "")
    if not version:
        raise HarvestError(f"npm registry returned no version for {package}")
    return version


def tarball_url(version: str, package: str = ELEMENTS_PACKAGE, registry: str = NPM_REGISTRY_URL) -> str:
    short = package.rsplit("/", 1)[-1]
    return f"{registry}/{package}/-/{short}-{version}.tgz"


def unpack_npm_tarball(tgz: Path, dest: Path) -> int:
    """Extract the ``package/`` tree of an npm tarball into ``dest``; returns file count."""

    staging = dest.parent / f".{dest.name}-extract"
    shutil.rmtree(staging, ignore_errors=True)
    staging.mkdir(parents=True)
    try:
        with tarfile.open(tgz, "r:gz") as tar:
            tar.extractall(staging, filter="data")
        package_dir = staging / "package"
        if not package_dir.is_dir():
            raise HarvestError(f"{tgz.name} has no package/ directory")
        shutil.rmtree(dest, ignore_errors=True)
        shutil.move(str(package_dir), str(dest))
    finally:
        shutil.rmtree(staging, ignore_errors=True)
    return sum(1 for p in dest.rglob("*") if p.is_file())


def fetch_elements(
    session: HarvestSession,
    run_dir: Path,
    docs_dir: Path,
    *,
    npm: Optional[requests.Session] = None,
    docs_url: str = ELEMENTS_DOCS_URL,
    registry: str = NPM_REGISTRY_URL,
) -> Optional[str]:
    """Fetch the Elements docs and npm package; returns the package version if unpacked."""

    docs_path = docs_dir / "elements-llms.txt"
    try:
        status, _ = session.download(docs_url, docs_path)
    except requests.RequestException as exc:
        logger.warning("Failed to fetch Elements docs: %s", exc)
        status = 0
    if status == 200:
        logger.info("Elements docs: %d lines", len(docs_path.read_text(encoding="utf-8").splitlines()))
    else:
        logger.warning("Failed to fetch Elements docs (HTTP %s)", status)

    client = npm or requests.Session()
    elements_dir = run_dir / "elements"
    try:
        version = latest_npm_version(client, registry=registry)
    except (requests.RequestException, ValueError, HarvestError) as exc:
        logger.warning("Could not determine Elements version from npm: %s", exc)
        return None
    atomic_write_text(run_dir / ELEMENTS_VERSION_FILE, f"{version}\n")

    tgz = elements_dir / f"elements-{version}.tgz"
    try:
        status, _ = stream_to_file(client, tarball_url(version, registry=registry), tgz, timeout=60)
        if status != 200:
            logger.warning("Failed to download Elements npm package (HTTP %s)", status)
            return None
        file_count = unpack_npm_tarball(tgz, elements_dir / "src")
    except (requests.RequestException, tarfile.TarError, OSError, HarvestError) as exc:
        logger.warning("Failed to unpack Elements npm package: %s", exc)
        return None
    finally:
        tgz.unlink(missing_ok=True)
    logger.info("Elements npm: v%s (%d files)", version, file_count)
    return version


def read_elements_version(run_dir: Path) -> str:
    path = run_dir / ELEMENTS_VERSION_FILE
    if path.exists():
        return path.read_text(encoding="utf-8").strip() or "unknown"
    return "unknown"


# ---------------------------------------------------------------------------
# Zip kits (Catalyst + templates)
# ---------------------------------------------------------------------------


def _extract_top_dir(archive: Path, kits_dir: Path, name: str, prefix: str = "") -> Optional[Path]:
    """Extract ``archive`` and move its first top-level directory to ``kits_dir/name``."""

    staging = kits_dir / f".{name}-extract"
    shutil.rmtree(staging, ignore_errors=True)
    try:
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(staging)
        candidates = sorted(p for p in staging.iterdir() if p.is_dir() and p.name.startswith(prefix))
        if not candidates:
            return None
        target = kits_dir / name
        shutil.rmtree(target, ignore_errors=True)
        shutil.move(str(candidates[0]), str(target))
        return target
    finally:
        shutil.rmtree(staging, ignore_errors=True)


def _count_suffix(root: Optional[Path], suffix: str) -> int:
    if root is None or not root.is_dir():
        return 0
    return sum(1 for _ in root.rglob(f"*{suffix}"))


def fetch_catalyst(session: HarvestSession, kits_dir: Path, *, url: str = CATALYST_URL) -> bool:
    archive = kits_dir / "catalyst.zip"
    try:
        status, _ = session.download(url, archive)
    except requests.RequestException as exc:
        logger.warning("Failed to download Catalyst: %s", exc)
        return False
    if status != 200 or not zipfile.is_zipfile(archive):
        logger.warning("Failed to download Catalyst (HTTP %s)", status)
        archive.unlink(missing_ok=True)
        return False
    try:
        target = _extract_top_dir(archive, kits_dir, "catalyst", prefix="catalyst")
    except (zipfile.BadZipFile, OSError) as exc:
        logger.warning("Failed to extract Catalyst: %s", exc)
        return False
    finally:
        archive.unlink(missing_ok=True)
    if target is None:
        logger.warning("Could not find Catalyst in ZIP")
        return False
    logger.info("Catalyst: %d TypeScript components", _count_suffix(target, ".tsx"))
    return True


def changelog_date(archive: Path) -> Optional[str]:
    """Latest ISO date mentioned in any ``CHANGELOG.md`` inside the archive."""

    dates: List[str] = []
    with zipfile.ZipFile(archive) as zf:
        for name in zf.namelist():
            if name == "CHANGELOG.md" or name.endswith("/CHANGELOG.md"):
                text = zf.read(name).decode("utf-8", errors="replace")
                dates.extend(_ISO_DATE.findall(text))
    return max(dates) if dates else None


def latest_member_date(archive: Path) -> Optional[str]:
    with zipfile.ZipFile(archive) as zf:
        stamps = [info.date_time[:3] for info in zf.infolist()]
    if not stamps:
        return None
    year, month, day = max(stamps)
    return f"{year:04d}-{month:02d}-{day:02d}"


def fetch_kit_metadata(session: HarvestSession, slug: str, *, urls: Iterable[str] = KIT_METADATA_URLS) -> Optional[Dict[str, Any]]:
    """Product payload from ``/kits/<slug>``, falling back to ``/templates/<slug>``."""

    for template in urls:
        url = template.format(slug=slug)
        try:
            resp = session.get(url)
        except requests.RequestException as exc:
            logger.debug("kit metadata %s: %s", url, exc)
            continue
        if resp.status_code != 200:
            logger.debug("kit metadata %s: HTTP %s", url, resp.status_code)
            continue
        try:
            product = ((resp.json() or {}).get("props") or {}).get("product")
        except ValueError:
            continue
        if isinstance(product, dict) and product.get("download_url"):
            return product
    return None


def kit_record(product: Mapping[str, Any], changelog: Optional[str], mtime: Optional[str]) -> Dict[str, Any]:
    return {
        "name": product.get("name"),
        "type": product.get("type"),
        "technologies": product.get("technologies"),
        "themes": [t.get("name") for t in (product.get("themes") or []) if isinstance(t, dict)],
        "changelog_date": changelog,
        "file_mtime": mtime,
    }


def fetch_kit(session: HarvestSession, kits_dir: Path, slug: str) -> bool:
    """Download one template kit; returns True only if every artifact was written."""

    product = fetch_kit_metadata(session, slug)
    if product is None:
        logger.warning("%s: no download URL found", slug)
        return False

    archive = kits_dir / f"{slug}.zip"
    try:
        status, size = session.download(str(product["download_url"]), archive)
    except requests.RequestException as exc:
        logger.warning("%s: download failed (%s)", slug, exc)
        return False
    if status != 200 or not zipfile.is_zipfile(archive):
        logger.warning("%s: download failed (HTTP %s)", slug, status)
        archive.unlink(missing_ok=True)
        return False

    record_path = kits_dir / f"{slug}.json"
    try:
        changelog = changelog_date(archive)
        mtime = latest_member_date(archive)
        write_json(record_path, kit_record(product, changelog, mtime))
        target = _extract_top_dir(archive, kits_dir, slug)
    except (zipfile.BadZipFile, OSError) as exc:
        logger.warning("%s: unreadable archive (%s)", slug, exc)
        record_path.unlink(missing_ok=True)
        archive.unlink(missing_ok=True)
        shutil.rmtree(kits_dir / slug, ignore_errors=True)
        return False
    tsx_count = _count_suffix(target, ".tsx")

    if changelog and mtime and changelog != mtime:
        logger.info("%s: %s, %d tsx (changelog: %s, files: %s)", slug, human_size(size), tsx_count, changelog, mtime)
    elif changelog:
        logger.info("%s: %s, %d tsx (updated: %s)", slug, human_size(size), tsx_count, changelog)
    else:
        logger.info("%s: %s, %d tsx", slug, human_size(size), tsx_count)
    return True


__all__ = [
    "ELEMENTS_VERSION_FILE",
    "copy_framework_docs",
    "latest_npm_version",
    "tarball_url",
    "unpack_npm_tarball",
    "fetch_elements",
    "read_elements_version",
    "fetch_catalyst",
    "changelog_date",
    "latest_member_date",
    "fetch_kit_metadata",
    "kit_record",
    "fetch_kit",
]
