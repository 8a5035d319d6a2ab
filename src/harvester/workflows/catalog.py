"""Catalog discovery and the server-side snippet-language switch."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional
from urllib.parse import urljoin, urlparse

from .errors import HarvestError, SessionExpired, VariantSwitchFailed
from .harvest_config import (
    FRAMEWORKS,
    LANGUAGE_URL,
    PRODUCT_INDEX_URLS,
    SESSION_EXPIRED_STATUSES,
    SITE_URL,
    SWITCH_OK_STATUSES,
    SWITCH_ORDER,
    VERSIONS,
)
from .harvest_utils import atomic_write_text, read_json, write_json
from .session import HarvestSession

logger = logging.getLogger(__name__)

PORTAL_FILE = "portal.json"
ADDRESSES_FILE = "all-subcategory-urls.txt"
FORMAT_UUID_FILE = ".format-uuid"
FIRST_SUBCATEGORY_FILE = "first-subcategory.json"


def _dig(payload: Any, *keys: str) -> Any:
    node = payload
    for key in keys:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


@dataclass
class PortalInfo:
    """Facts read from the authenticated portal page."""

    user_email: str = "unknown"
    tailwind_version: str = "unknown"
    templates: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def template_count(self) -> int:
        return len(self.templates)

    @property
    def kit_slugs(self) -> List[str]:
        slugs: List[str] = []
        for template in self.templates:
            url = str(template.get("url") or "")
            slug = urlparse(url).path.rstrip("/").rsplit("/", 1)[-1]
            if slug and slug not in slugs:
                slugs.append(slug)
        return slugs

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "PortalInfo":
        templates = _dig(payload, "props", "templates") or []
        return cls(
            user_email=str(_dig(payload, "props", "auth", "user", "email") or "unknown"),
            tailwind_version=str(_dig(payload, "props", "tailwindVersion") or "unknown"),
            templates=[t for t in templates if isinstance(t, dict)],
        )


def fetch_portal(session: HarvestSession, run_dir: Path, *, url: str = SITE_URL) -> PortalInfo:
    payload = session.get_json(url)
    write_json(run_dir / PORTAL_FILE, payload)
    logger.info("saved to: %s", PORTAL_FILE)
    return PortalInfo.from_payload(payload)


def load_portal(run_dir: Path) -> PortalInfo:
    path = run_dir / PORTAL_FILE
    if not path.exists():
        raise HarvestError(f"Cannot resume: missing {PORTAL_FILE}")
    return PortalInfo.from_payload(read_json(path))


def subcategory_urls(payload: Mapping[str, Any], base_url: str) -> List[str]:
    urls: List[str] = []
    for category in _dig(payload, "props", "product", "categories") or []:
        for sub in (category or {}).get("subcategories") or []:
            url = (sub or {}).get("url")
            if url:
                urls.append(urljoin(base_url, str(url)))
    return urls


def discover_addresses(
    session: HarvestSession,
    run_dir: Path,
    *,
    index_urls: Optional[Mapping[str, str]] = None,
) -> List[str]:
    """Collect every subcategory address from the product index pages."""

    found: List[str] = []
    for product, url in (index_urls or PRODUCT_INDEX_URLS).items():
        payload = session.get_json(url)
        write_json(run_dir / f"{product}.json", payload)
        urls = subcategory_urls(payload, url)
        logger.info("saved to: %s.json (%d subcategories)", product, len(urls))
        found.extend(urls)

    addresses = sorted(set(found))
    atomic_write_text(run_dir / ADDRESSES_FILE, "".join(f"{a}\n" for a in addresses))
    logger.info("Generated %s (%d URLs)", ADDRESSES_FILE, len(addresses))
    return addresses


def load_addresses(run_dir: Path) -> List[str]:
    path = run_dir / ADDRESSES_FILE
    if not path.exists():
        raise HarvestError(f"Cannot resume: missing {ADDRESSES_FILE}")
    return [line.strip() for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def resolve_format_uuid(session: HarvestSession, run_dir: Path, addresses: Iterable[str]) -> str:
    first = next(iter(addresses), None)
    if not first:
        raise HarvestError("No subcategory addresses to resolve the format UUID from")
    payload = session.get_json(first)
    write_json(run_dir / FIRST_SUBCATEGORY_FILE, payload)
    components = _dig(payload, "props", "subcategory", "components") or []
    uuid = components[0].get("uuid") if components and isinstance(components[0], dict) else None
    if not uuid:
        raise HarvestError("Could not extract format UUID from first subcategory")
    atomic_write_text(run_dir / FORMAT_UUID_FILE, f"{uuid}\n")
    logger.info("Format UUID: %s", uuid)
    return str(uuid)


def load_format_uuid(run_dir: Path) -> str:
    path = run_dir / FORMAT_UUID_FILE
    uuid = path.read_text(encoding="utf-8").strip() if path.exists() else ""
    if not uuid:
        raise HarvestError(f"Cannot resume: missing {FORMAT_UUID_FILE}")
    return uuid


def switch_variant(session: HarvestSession, format_uuid: str, variant: str, *, url: str = LANGUAGE_URL) -> int:
    """Ask the server to render subsequent fragments in ``variant``."""

    resp = session.put_json(url, {"uuid": format_uuid, "snippet_lang": variant})
    status = resp.status_code
    if status in SWITCH_OK_STATUSES:
        logger.info("set-format: %s", variant)
        return status
    if status in SESSION_EXPIRED_STATUSES:
        raise SessionExpired(f"set-format {variant} rejected", status=status)
    if status == 409:
        raise VariantSwitchFailed(variant, status, "Inertia version mismatch")
    if status == 403:
        raise VariantSwitchFailed(variant, status, "auth error")
    raise VariantSwitchFailed(variant, status, (resp.text or "")[:200] or None)


def format_variants(with_v3: bool = True) -> List[str]:
    versions = VERSIONS if with_v3 else tuple(v for v in VERSIONS if v != "v3")
    return [
        f"{framework}-{version}-{mode}"
        for framework in FRAMEWORKS
        for version in versions
        for mode in SWITCH_ORDER
    ]


__all__ = [
    "PortalInfo",
    "fetch_portal",
    "load_portal",
    "subcategory_urls",
    "discover_addresses",
    "load_addresses",
    "resolve_format_uuid",
    "load_format_uuid",
    "switch_variant",
    "format_variants",
]
