"""End-to-end harvest: authenticate, discover, fetch every variant, merge,
flatten, index and strip.

Every unit is gated by the checkpoint log and marked done only after its side
effects are on disk, so an interrupted run can be resumed with ``resume=True``
and continues after the last completed unit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import requests
from dotenv import load_dotenv

from .workflows.artifacts import (
    INDEX_NAME,
    build_index,
    read_component_count,
    update_current_link,
    write_manifest,
    write_tracking_file,
)
from .workflows.bulk_fetch import BulkFetcher, FetchConfig, run_batch
from .workflows.catalog import (
    PortalInfo,
    discover_addresses,
    fetch_portal,
    format_variants,
    load_addresses,
    load_format_uuid,
    load_portal,
    resolve_format_uuid,
    switch_variant,
)
from .workflows.checkpoint import Checkpoint
from .workflows.credentials import Credentials, resolve_credentials
from .workflows.errors import VariantSwitchFailed
from .workflows.flatten import flatten_all
from .workflows.harvest_config import (
    COOKIE_FILE_NAME,
    DEFAULT_CACHE_DIR,
    DEFAULT_CONCURRENCY,
    DEFAULT_DOCS_DIR,
    ENV_CACHE_DIR,
    ENV_CONCURRENCY,
    ENV_DOCS_DIR,
    FRAMEWORKS,
    OUTCOME_LOG_NAME,
    PROGRESS_FILE_NAME,
    VERSIONS,
)
from .workflows.harvest_utils import count_lines, env_int, env_path, human_size
from .workflows.kits import copy_framework_docs, fetch_catalyst, fetch_elements, fetch_kit, read_elements_version
from .workflows.merge import ConflictPolicy, merge_directory
from .workflows.metadata import strip_corpus
from .workflows.session import HarvestSession

load_dotenv(override=True)

logger = logging.getLogger(__name__)


@dataclass
class CollectOptions:
    """Per-run options; defaults come from the environment."""

    suffix: Optional[str] = None
    with_v3: bool = True
    resume: bool = False
    cache_dir: Path = field(default_factory=lambda: env_path(ENV_CACHE_DIR, DEFAULT_CACHE_DIR))
    docs_dir: Path = field(default_factory=lambda: env_path(ENV_DOCS_DIR, DEFAULT_DOCS_DIR))
    concurrency: int = field(default_factory=lambda: env_int(ENV_CONCURRENCY, DEFAULT_CONCURRENCY))
    retry_failed_rounds: int = 0
    conflict_policy: ConflictPolicy = ConflictPolicy.LAST_WINS
    date: Optional[str] = None

    @property
    def run_date(self) -> str:
        return self.date or datetime.now().strftime("%Y-%m-%d")

    @property
    def run_name(self) -> str:
        return f"{self.run_date}-{self.suffix}" if self.suffix else self.run_date

    @property
    def run_dir(self) -> Path:
        return self.cache_dir / self.run_name

    @property
    def versions(self) -> List[str]:
        return list(VERSIONS) if self.with_v3 else [v for v in VERSIONS if v != "v3"]


@dataclass
class CollectionSummary:
    run_dir: Path
    addresses: int = 0
    fetched: Dict[str, int] = field(default_factory=dict)
    merged: Dict[str, int] = field(default_factory=dict)
    flattened: Dict[str, int] = field(default_factory=dict)
    extracted: int = 0
    components: int = 0
    kits: List[str] = field(default_factory=list)
    skipped_units: List[str] = field(default_factory=list)
    skipped_variants: List[str] = field(default_factory=list)
    incomplete_variants: List[str] = field(default_factory=list)
    failed_kits: List[str] = field(default_factory=list)
    manifest: Dict[str, Any] = field(default_factory=dict)

    def zero_count_warnings(self) -> List[str]:
        warnings: List[str] = []
        if not self.addresses:
            warnings.append("no subcategory addresses discovered")
        for variant, count in self.fetched.items():
            if not count:
                warnings.append(f"{variant}: zero fragments fetched")
        for variant, count in self.merged.items():
            if not count:
                warnings.append(f"{variant}: merged tree is empty")
        if not self.flattened:
            warnings.append("no record streams were written")
        for stream, count in self.flattened.items():
            if not count:
                warnings.append(f"{stream}: zero records flattened")
        if not self.components:
            warnings.append("component index is empty")
        return warnings


class Collector:
    def __init__(
        self,
        options: CollectOptions,
        *,
        session: Optional[HarvestSession] = None,
        fetcher: Optional[BulkFetcher] = None,
        credentials_resolver: Callable[[], Credentials] = resolve_credentials,
        npm: Optional[requests.Session] = None,
    ) -> None:
        self.options = options
        self.run_dir = options.run_dir
        self.raw_dir = self.run_dir / "raw"
        self.kits_dir = self.run_dir / "kits"
        self.docs_dir = self.run_dir / "docs"
        self.data_dir = self.run_dir / "data"
        self.session = session or HarvestSession(options.cache_dir / COOKIE_FILE_NAME)
        self.fetcher = fetcher or BulkFetcher(
            FetchConfig(concurrency=options.concurrency, retry_failed_rounds=options.retry_failed_rounds),
            outcome_log=self.run_dir / OUTCOME_LOG_NAME,
        )
        self.credentials_resolver = credentials_resolver
        self.npm = npm
        self.variants = format_variants(with_v3=options.with_v3)
        self.started_at = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        self.checkpoint = Checkpoint(self.run_dir / PROGRESS_FILE_NAME, resume=options.resume)
        # Set once any variant unit executes in this run; derived outputs are then rebuilt.
        self.variants_refetched = False
        self.summary = CollectionSummary(run_dir=self.run_dir)

    # ------------------------------------------------------------------

    def _skip(self, unit: str) -> bool:
        if self.checkpoint.skip_if_done(unit):
            self.summary.skipped_units.append(unit)
            return True
        return False

    def _done(self, unit: str) -> None:
        self.checkpoint.mark_done(unit)

    def _skip_derived(self, unit: str) -> bool:
        if self.variants_refetched:
            return False
        return self._skip(unit)

    def _done_derived(self, unit: str) -> None:
        open_variants = self.summary.skipped_variants + self.summary.incomplete_variants
        if open_variants:
            logger.warning("%s: not checkpointed while variants are open (%s)", unit, " ".join(open_variants))
            return
        self._done(unit)

    # ------------------------------------------------------------------

    def run(self) -> CollectionSummary:
        opts = self.options
        logger.info("=== Catalog Harvester ===")
        logger.info("Output directory: %s", self.run_dir)
        logger.info("Formats: %d (%s)", len(self.variants), " ".join(opts.versions))
        if opts.resume:
            logger.info("Mode: RESUME")
        for path in (self.run_dir, self.raw_dir, self.kits_dir, self.docs_dir):
            path.mkdir(parents=True, exist_ok=True)

        if opts.resume:
            self.session.load()
        else:
            self.session.discard()

        self.step_auth()
        self.step_docs()
        portal = self.step_portal()
        addresses = self.step_urls()
        format_uuid = self.step_format_uuid(addresses)
        for variant in self.variants:
            self.step_variant(variant, format_uuid, addresses)
        self.step_elements()
        self.step_catalyst()
        for slug in portal.kit_slugs:
            self.step_kit(slug)
        self.step_ndjson()
        self.step_index()
        self.step_manifest(portal)
        write_tracking_file(opts.cache_dir, opts.run_date, opts.suffix)
        self.step_metadata()
        update_current_link(opts.cache_dir, self.run_dir)

        for warning in self.summary.zero_count_warnings():
            logger.warning("Unexpected zero count: %s", warning)
        logger.info("=== Collection Complete ===")
        return self.summary

    # ------------------------------------------------------------------

    def step_auth(self) -> None:
        if self._skip("1-auth"):
            return
        logger.info("--- Step 1: Authenticating ---")
        credentials = self.credentials_resolver()
        self.session.login(credentials)
        self._done("1-auth")

    def step_docs(self) -> None:
        if self._skip("0-docs"):
            return
        logger.info("--- Step 0: Copying Tailwind CSS documentation ---")
        copy_framework_docs(self.options.docs_dir, self.docs_dir)
        self._done("0-docs")

    def _inertia_version(self) -> str:
        return self.session.inertia_version(self.run_dir / "data-page.json")

    def step_portal(self) -> PortalInfo:
        self._inertia_version()
        if self._skip("2-portal"):
            portal = load_portal(self.run_dir)
        else:
            logger.info("--- Step 2: Fetching portal data ---")
            portal = fetch_portal(self.session, self.run_dir)
            self._done("2-portal")
        logger.info("Authenticated as: %s", portal.user_email)
        logger.info("Tailwind version: %s", portal.tailwind_version)
        logger.info("Templates available: %d", portal.template_count)
        return portal

    def step_urls(self) -> List[str]:
        if self._skip("3-urls"):
            addresses = load_addresses(self.run_dir)
        else:
            logger.info("--- Step 3: Gathering UI component urls ---")
            addresses = discover_addresses(self.session, self.run_dir)
            self._done("3-urls")
        self.summary.addresses = len(addresses)
        return addresses

    def step_format_uuid(self, addresses: List[str]) -> str:
        if self._skip("4-uuid"):
            return load_format_uuid(self.run_dir)
        logger.info("--- Step 4: Extracting format UUID ---")
        uuid = resolve_format_uuid(self.session, self.run_dir, addresses)
        self._done("4-uuid")
        return uuid

    def step_variant(self, variant: str, format_uuid: str, addresses: List[str]) -> None:
        unit = f"5-format-{variant}"
        if self._skip(unit):
            return
        logger.info("--- Format: %s ---", variant)
        self.variants_refetched = True
        try:
            switch_variant(self.session, format_uuid, variant)
        except VariantSwitchFailed as exc:
            logger.warning("Skipping %s due to format switch failure: %s", variant, exc)
            self.summary.skipped_variants.append(variant)
            return

        out_dir = self.raw_dir / variant
        result = run_batch(
            self.fetcher,
            addresses,
            out_dir,
            cookies=self.session.cookies_for_batch(),
            headers=self.session.inertia_headers(),
        )
        self.session.absorb_batch_cookies(result.cookies)
        downloaded = sum(1 for _ in out_dir.glob("*.json"))
        self.summary.fetched[variant] = downloaded
        logger.info("Downloaded: %d files", downloaded)

        merged_path = self.raw_dir / f"{variant}.json"
        self.summary.merged[variant] = merge_directory(out_dir, merged_path, self.options.conflict_policy)
        logger.info("Merged: %s (%s)", merged_path.name, human_size(merged_path.stat().st_size))

        failed = result.failed_addresses()
        if failed:
            # Left unmarked so a resume fetches the whole variant again.
            logger.warning("%s: %d address(es) failed; not checkpointed", variant, len(failed))
            self.summary.incomplete_variants.append(variant)
            return
        self._done(unit)

    def step_elements(self) -> None:
        if self._skip("6-elements"):
            return
        logger.info("--- Step 6: Fetching Elements ---")
        fetch_elements(self.session, self.run_dir, self.docs_dir, npm=self.npm)
        self._done("6-elements")

    def step_catalyst(self) -> None:
        if self._skip("7-catalyst"):
            return
        logger.info("--- Step 7: Fetching Catalyst UI Kit ---")
        fetch_catalyst(self.session, self.kits_dir)
        self._done("7-catalyst")

    def step_kit(self, slug: str) -> None:
        unit = f"8-kit-{slug}"
        if self._skip(unit):
            return
        if fetch_kit(self.session, self.kits_dir, slug):
            self.summary.kits.append(slug)
            self._done(unit)
        else:
            self.summary.failed_kits.append(slug)

    def step_ndjson(self) -> None:
        components_dir = self.data_dir / "components"
        if self._skip_derived("9-ndjson"):
            self.summary.flattened = {p.stem: count_lines(p) for p in sorted(components_dir.glob("*.ndjson"))}
            return
        logger.info("--- Step 9: Generating NDJSON files ---")
        self.summary.flattened = flatten_all(
            self.raw_dir, components_dir, FRAMEWORKS, self.options.versions
        )
        self._done_derived("9-ndjson")

    def step_index(self) -> None:
        index_path = self.data_dir / INDEX_NAME
        if self._skip_derived("10-index"):
            self.summary.components = read_component_count(index_path)
            return
        logger.info("--- Step 10: Generating component index ---")
        self.summary.components = build_index(self.data_dir / "components", index_path, self.options.versions)
        self._done_derived("10-index")

    def step_manifest(self, portal: PortalInfo) -> None:
        logger.info("--- Step 11: Generating archive manifest ---")
        self.summary.manifest = write_manifest(
            self.run_dir,
            downloaded_by=portal.user_email,
            suffix=self.options.suffix,
            tailwind_version=portal.tailwind_version,
            elements_version=read_elements_version(self.run_dir),
            inertia_version=self._inertia_version(),
            format_count=len(self.variants),
            template_count=portal.template_count,
            versions=self.options.versions,
            downloaded_at=self.started_at,
        )

    def step_metadata(self) -> None:
        if self._skip_derived("12-metadata"):
            return
        logger.info("--- Step 12: Extracting component metadata ---")
        components_dir = self.data_dir / "components"
        if not components_dir.is_dir():
            logger.warning("Skipping metadata extraction (%s not found)", components_dir)
            return
        stats = strip_corpus(components_dir)
        self.summary.extracted = int(stats.get("records", 0))
        self._done_derived("12-metadata")


def collect(options: CollectOptions, **kwargs: Any) -> CollectionSummary:
    return Collector(options, **kwargs).run()


def authenticate(options: CollectOptions, *, session: Optional[HarvestSession] = None) -> HarvestSession:
    """Log in and persist the cookie store without harvesting anything."""

    session = session or HarvestSession(options.cache_dir / COOKIE_FILE_NAME)
    session.discard()
    session.login(resolve_credentials())
    return session


__all__ = ["CollectOptions", "CollectionSummary", "Collector", "collect", "authenticate"]
