"""Bounded-concurrency fetcher for catalog fragments.

A batch is one variant worth of subcategory addresses. The fetcher never
touches the persistent cookie store: it receives a snapshot from the session
manager, runs every request through a single ``aiohttp.ClientSession`` and
returns the cookies it ended with so the caller can fold them back in.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import urlparse

import aiohttp
from yarl import URL

from ..core import K_ERROR, K_PATH, K_STATUS, K_URL
from .errors import FetchFailed, SessionExpired
from .harvest_config import CATALOG_PREFIX, DEFAULT_CONCURRENCY, SESSION_EXPIRED_STATUSES, USER_AGENT
from .harvest_utils import atomic_write_bytes, dumps_line, slugify

logger = logging.getLogger(__name__)

# (name, value, domain, path)
CookieTuple = Tuple[str, str, str, str]
ProgressHook = Callable[[int, int, "FetchOutcome"], None]


def slugify_address(url: str) -> str:
    """File-name slug for a catalog address.

    ``https://host/plus/ui-blocks/marketing/sections/heroes`` becomes
    ``marketing_sections_heroes``.
    """

    path = urlparse(url).path or url
    if CATALOG_PREFIX in path:
        path = path.split(CATALOG_PREFIX, 1)[1]
    return slugify(path, "_")


@dataclass
class FetchConfig:
    """Configuration parameters for a bulk fragment batch."""

    concurrency: int = DEFAULT_CONCURRENCY
    # None keeps the transport defaults.
    timeout: Optional[float] = None
    retry_failed_rounds: int = 0
    user_agent: str = USER_AGENT
    accept_language: str = "en-US,en;q=0.9"


@dataclass
class FetchOutcome:
    """Result of one fragment request; one line of the outcome log."""

    url: str
    path: str
    status: int
    size_download: int = 0
    time_total: float = 0.0
    fetched_at: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == 200 and self.error is None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            K_URL: self.url,
            K_PATH: self.path,
            K_STATUS: self.status,
            "size_download": self.size_download,
            "time_total": round(self.time_total, 3),
            "fetched_at": self.fetched_at,
        }
        if self.error:
            payload[K_ERROR] = self.error
        return payload

    def to_json(self) -> str:
        return dumps_line(self.to_dict())


@dataclass
class BatchResult:
    outcomes: List[FetchOutcome] = field(default_factory=list)
    audit: Dict[str, Any] = field(default_factory=dict)
    cookies: List[CookieTuple] = field(default_factory=list)

    def latest(self) -> Dict[str, FetchOutcome]:
        latest: Dict[str, FetchOutcome] = {}
        for outcome in self.outcomes:
            latest[outcome.url] = outcome
        return latest

    def failed_addresses(self) -> List[str]:
        return [url for url, outcome in self.latest().items() if not outcome.ok]

    @property
    def fetched(self) -> int:
        return sum(1 for outcome in self.latest().values() if outcome.ok)

    def session_rejected(self) -> bool:
        return any(o.status in SESSION_EXPIRED_STATUSES for o in self.latest().values())


def _build_audit(outcomes: Sequence[FetchOutcome], target_total: int, runtime: float) -> Dict[str, Any]:
    histogram = Counter(str(o.status) for o in outcomes)
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "requested": target_total,
        "fetched": sum(1 for o in outcomes if o.ok),
        "failed": sum(1 for o in outcomes if not o.ok),
        "bytes": sum(o.size_download for o in outcomes if o.ok),
        "runtime_seconds": round(max(runtime, 0.001), 3),
        "status_histogram": dict(sorted(histogram.items())),
    }


def _seed_jar(cookies: Iterable[CookieTuple]) -> aiohttp.CookieJar:
    # unsafe: allow IP-address hosts (local test servers, proxies)
    jar = aiohttp.CookieJar(unsafe=True)
    for name, value, domain, path in cookies:
        host = (domain or "").lstrip(".")
        if not host:
            continue
        jar.update_cookies({name: value}, response_url=URL.build(scheme="https", host=host, path=path or "/"))
    return jar


def _jar_snapshot(jar: aiohttp.CookieJar) -> List[CookieTuple]:
    return [(m.key, m.value, m["domain"], m["path"] or "/") for m in jar]


class BulkFetcher:
    """Async fragment fetcher with a fixed in-flight ceiling."""

    def __init__(self, config: Optional[FetchConfig] = None, outcome_log: Optional[Path] = None) -> None:
        self.config = config or FetchConfig()
        self.outcome_log = outcome_log

    async def fetch_many(
        self,
        addresses: Iterable[str],
        out_dir: Path,
        *,
        cookies: Iterable[CookieTuple] = (),
        headers: Optional[Mapping[str, str]] = None,
        progress_hook: Optional[ProgressHook] = None,
    ) -> BatchResult:
        unique = list(dict.fromkeys(a.strip() for a in addresses if a and a.strip()))
        out_dir.mkdir(parents=True, exist_ok=True)
        result = BatchResult()

        base_headers = {
            "User-Agent": self.config.user_agent,
            "Accept-Language": self.config.accept_language,
        }
        base_headers.update(headers or {})
        timeout = aiohttp.ClientTimeout(total=self.config.timeout) if self.config.timeout else None
        session_kwargs: Dict[str, Any] = {"headers": base_headers, "cookie_jar": _seed_jar(cookies)}
        if timeout is not None:
            session_kwargs["timeout"] = timeout

        start_time = time.perf_counter()
        connector = aiohttp.TCPConnector(limit=self.config.concurrency)
        semaphore = asyncio.Semaphore(self.config.concurrency)
        async with aiohttp.ClientSession(connector=connector, **session_kwargs) as session:
            pending = unique
            rounds = 1 + max(0, self.config.retry_failed_rounds)
            for attempt in range(rounds):
                if attempt:
                    pending = result.failed_addresses()
                    if not pending:
                        break
                    logger.info("Retrying %d failed address(es), round %d", len(pending), attempt)
                await self._run_round(session, semaphore, pending, out_dir, result, progress_hook)
            result.cookies = _jar_snapshot(session.cookie_jar)  # type: ignore[arg-type]

        runtime = time.perf_counter() - start_time
        result.audit = _build_audit(list(result.latest().values()), len(unique), runtime)
        logger.info(
            "Batch complete: %d/%d fetched, %d failed (%.1fs)",
            result.audit["fetched"],
            len(unique),
            result.audit["failed"],
            runtime,
        )
        if result.session_rejected():
            raise SessionExpired("server rejected the session during bulk fetch")
        return result

    async def _run_round(
        self,
        session: aiohttp.ClientSession,
        semaphore: asyncio.Semaphore,
        addresses: Sequence[str],
        out_dir: Path,
        result: BatchResult,
        progress_hook: Optional[ProgressHook],
    ) -> None:
        tasks = [asyncio.create_task(self._fetch_entry(session, semaphore, url, out_dir)) for url in addresses]
        total = len(tasks)
        completed = 0
        for task in asyncio.as_completed(tasks):
            outcome = await task
            result.outcomes.append(outcome)
            self._record(outcome)
            completed += 1
            if not outcome.ok:
                logger.warning("FAILED (%s): %s", outcome.status, outcome.url)
            if progress_hook is not None:
                progress_hook(completed, total, outcome)

    async def _fetch_entry(
        self,
        session: aiohttp.ClientSession,
        semaphore: asyncio.Semaphore,
        url: str,
        out_dir: Path,
    ) -> FetchOutcome:
        dest = out_dir / f"{slugify_address(url)}.json"
        async with semaphore:
            started = time.perf_counter()
            fetched_at = datetime.now(timezone.utc).isoformat()
            try:
                async with session.get(url) as resp:
                    body = await resp.read()
                    if resp.status != 200:
                        raise FetchFailed(url, resp.status)
                    json.loads(body)
                    atomic_write_bytes(dest, body)
                    return FetchOutcome(
                        url=url,
                        path=str(dest),
                        status=resp.status,
                        size_download=len(body),
                        time_total=time.perf_counter() - started,
                        fetched_at=fetched_at,
                    )
            except FetchFailed as exc:
                return self._failure(url, dest, exc.status, str(exc), started, fetched_at)
            except json.JSONDecodeError:
                return self._failure(url, dest, 200, "response is not JSON", started, fetched_at)
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
                return self._failure(url, dest, 0, f"{type(exc).__name__}: {exc}", started, fetched_at)

    @staticmethod
    def _failure(url: str, dest: Path, status: int, error: str, started: float, fetched_at: str) -> FetchOutcome:
        return FetchOutcome(
            url=url,
            path=str(dest),
            status=status,
            time_total=time.perf_counter() - started,
            fetched_at=fetched_at,
            error=error,
        )

    def _record(self, outcome: FetchOutcome) -> None:
        if self.outcome_log is None:
            return
        self.outcome_log.parent.mkdir(parents=True, exist_ok=True)
        with self.outcome_log.open("a", encoding="utf-8") as fh:
            fh.write(outcome.to_json() + "\n")


def run_batch(
    fetcher: BulkFetcher,
    addresses: Iterable[str],
    out_dir: Path,
    *,
    cookies: Iterable[CookieTuple] = (),
    headers: Optional[Mapping[str, str]] = None,
    progress_hook: Optional[ProgressHook] = None,
) -> BatchResult:
    """Synchronous entry point used by the collector."""

    return asyncio.run(
        fetcher.fetch_many(addresses, out_dir, cookies=cookies, headers=headers, progress_hook=progress_hook)
    )


__all__ = [
    "CookieTuple",
    "FetchConfig",
    "FetchOutcome",
    "BatchResult",
    "BulkFetcher",
    "run_batch",
    "slugify_address",
]
