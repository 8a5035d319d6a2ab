"""Authenticated session against the catalog site.

The session owns a Netscape-format cookie store (the same file curl would
read) and the rotating anti-forgery token. The token is never cached across
requests: :meth:`HarvestSession.refresh` re-reads it from the cookie store
right before every state-changing call because the server rotates it.

The cookie store is mutated between bulk batches only. The bulk fetcher
receives a snapshot through :meth:`cookies_for_batch` and hands back whatever
it received via :meth:`absorb_batch_cookies` after the batch has finished.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from http.cookiejar import LoadError, MozillaCookieJar
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import unquote

import requests
from bs4 import BeautifulSoup
from requests.cookies import create_cookie

from .bulk_fetch import CookieTuple
from .credentials import Credentials
from .errors import AuthenticationFailed, FetchFailed, HarvestError, SessionExpired
from .harvest_config import (
    HDR_INERTIA_VERSION,
    HDR_XSRF,
    INERTIA_HEADERS,
    LOGIN_OK_STATUSES,
    LOGIN_URL,
    SESSION_EXPIRED_STATUSES,
    SITE_ORIGIN,
    SITE_URL,
    USER_AGENT,
    XSRF_COOKIE,
)

logger = logging.getLogger(__name__)


def decode_token(raw: str) -> str:
    """URL-decode the cookie representation of the anti-forgery token."""

    return unquote(raw or "")


def parse_data_page(html: str) -> Dict[str, Any]:
    """Return the JSON payload embedded in the Inertia ``data-page`` attribute."""

    soup = BeautifulSoup(html or "", "lxml")
    node = soup.find(attrs={"data-page": True})
    if node is None:
        raise HarvestError("data-page attribute not found in portal HTML")
    try:
        return json.loads(node["data-page"])
    except json.JSONDecodeError as exc:
        raise HarvestError(f"data-page attribute is not valid JSON: {exc}") from exc


class HarvestSession:
    """Cookie store + anti-forgery token, threaded explicitly through every request."""

    def __init__(
        self,
        cookie_path: Path,
        *,
        http: Optional[requests.Session] = None,
        site_url: str = SITE_URL,
        login_url: str = LOGIN_URL,
        origin: str = SITE_ORIGIN,
        timeout: Optional[float] = None,
    ) -> None:
        self.cookie_path = Path(cookie_path)
        self.site_url = site_url
        self.login_url = login_url
        self.origin = origin
        self.timeout = timeout
        self.jar = MozillaCookieJar(str(self.cookie_path))
        self.http = http or requests.Session()
        self.http.cookies = self.jar  # type: ignore[assignment]
        self.http.headers.update({"User-Agent": USER_AGENT})
        self._inertia_version: Optional[str] = None

    # ------------------------------------------------------------------
    # Cookie store lifecycle
    # ------------------------------------------------------------------

    def discard(self) -> None:
        """Forget any persisted session (start of a non-resumed run)."""

        self.jar.clear()
        self._inertia_version = None
        if self.cookie_path.exists():
            self.cookie_path.unlink()
            logger.debug("discarded cookie store %s", self.cookie_path)

    def load(self) -> bool:
        if not self.cookie_path.exists():
            return False
        try:
            self.jar.load(ignore_discard=True, ignore_expires=True)
        except (LoadError, OSError) as exc:
            logger.warning("failed to load cookies from %s: %s", self.cookie_path, exc)
            return False
        logger.debug("loaded cookies: %s", self.cookie_path)
        return True

    def save(self) -> None:
        self.cookie_path.parent.mkdir(parents=True, exist_ok=True)
        self.jar.save(ignore_discard=True, ignore_expires=True)

    def cookies_for_batch(self) -> List[CookieTuple]:
        return [(c.name, c.value or "", c.domain, c.path or "/") for c in self.jar]

    def absorb_batch_cookies(self, cookies: Iterable[CookieTuple]) -> None:
        changed = False
        for name, value, domain, path in cookies:
            self.jar.set_cookie(create_cookie(name, value, domain=domain, path=path or "/"))
            changed = True
        if changed:
            self.save()

    # ------------------------------------------------------------------
    # Anti-forgery token
    # ------------------------------------------------------------------

    def _read_token(self) -> Optional[str]:
        for cookie in self.jar:
            if cookie.name == XSRF_COOKIE and cookie.value:
                return decode_token(cookie.value)
        return None

    @property
    def authenticated(self) -> bool:
        return self._read_token() is not None

    def refresh(self) -> str:
        """Re-read the current anti-forgery token from the cookie store."""

        token = self._read_token()
        if not token:
            raise SessionExpired(f"{XSRF_COOKIE} not found in {self.cookie_path}")
        return token

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, credentials: Credentials) -> int:
        self.jar.clear()
        logger.info("Step 1: Getting CSRF token and session cookies...")
        landing = self.http.get(self.login_url, timeout=self.timeout)
        token = self._read_token()
        if not token:
            raise AuthenticationFailed(landing.status_code, f"{XSRF_COOKIE} cookie was not issued")

        logger.info("Step 2: Logging in as %s...", credentials.identifier)
        resp = self.http.post(
            self.login_url,
            data={"email": credentials.identifier, "password": credentials.secret},
            headers={
                HDR_XSRF: token,
                "Origin": self.origin,
                "Referer": self.login_url,
            },
            allow_redirects=False,
            timeout=self.timeout,
        )
        if resp.status_code not in LOGIN_OK_STATUSES:
            raise AuthenticationFailed(resp.status_code)
        self.save()
        logger.info("Login successful! Cookies saved to: %s", self.cookie_path)
        return resp.status_code

    # ------------------------------------------------------------------
    # Inertia protocol
    # ------------------------------------------------------------------

    def inertia_version(self, cache_path: Optional[Path] = None) -> str:
        if self._inertia_version:
            return self._inertia_version
        payload: Optional[Dict[str, Any]] = None
        if cache_path is not None and cache_path.exists():
            payload = json.loads(cache_path.read_text(encoding="utf-8"))
        else:
            resp = self.http.get(self.site_url, timeout=self.timeout)
            if resp.status_code != 200:
                self._raise_for_status(self.site_url, resp.status_code)
            payload = parse_data_page(resp.text)
            if cache_path is not None:
                cache_path.parent.mkdir(parents=True, exist_ok=True)
                cache_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
        version = str((payload or {}).get("version") or "")
        if not version:
            raise HarvestError("Inertia version missing from data-page payload")
        self._inertia_version = version
        return version

    def set_inertia_version(self, version: str) -> None:
        self._inertia_version = version

    def inertia_headers(self, *, with_token: bool = True) -> Dict[str, str]:
        headers = dict(INERTIA_HEADERS)
        if self._inertia_version:
            headers[HDR_INERTIA_VERSION] = self._inertia_version
        if with_token:
            headers[HDR_XSRF] = self.refresh()
        return headers

    def _raise_for_status(self, url: str, status: int) -> None:
        if status in SESSION_EXPIRED_STATUSES:
            raise SessionExpired(f"server rejected {url}", status=status)
        raise FetchFailed(url, status)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def get(self, url: str, *, inertia: bool = True, allow_redirects: bool = True) -> requests.Response:
        headers = self.inertia_headers() if inertia else None
        resp = self.http.get(url, headers=headers, allow_redirects=allow_redirects, timeout=self.timeout)
        self.save()
        return resp

    def get_json(self, url: str) -> Any:
        resp = self.get(url)
        if resp.status_code != 200:
            self._raise_for_status(url, resp.status_code)
        try:
            return resp.json()
        except ValueError as exc:
            raise FetchFailed(url, resp.status_code, "response is not JSON") from exc

    def put_json(self, url: str, payload: Dict[str, Any]) -> requests.Response:
        headers = self.inertia_headers()
        headers["Content-Type"] = "application/json"
        headers["Origin"] = self.origin
        resp = self.http.put(
            url,
            data=json.dumps(payload),
            headers=headers,
            allow_redirects=False,
            timeout=self.timeout,
        )
        self.save()
        return resp

    def download(self, url: str, dest: Path) -> Tuple[int, int]:
        result = stream_to_file(self.http, url, dest, timeout=self.timeout)
        self.save()
        return result


def stream_to_file(
    client: requests.Session,
    url: str,
    dest: Path,
    *,
    timeout: Optional[float] = None,
) -> Tuple[int, int]:
    """Stream ``url`` into ``dest``; returns ``(status, bytes_written)``.

    Nothing is left at ``dest`` unless the response was a 200.
    """

    dest.parent.mkdir(parents=True, exist_ok=True)
    with client.get(url, stream=True, allow_redirects=True, timeout=timeout) as resp:
        status = resp.status_code
        if status != 200:
            return status, 0
        fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", dir=str(dest.parent))
        written = 0
        try:
            with os.fdopen(fd, "wb") as fh:
                for chunk in resp.iter_content(chunk_size=65536):
                    if chunk:
                        fh.write(chunk)
                        written += len(chunk)
            os.replace(tmp_name, dest)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    return status, written


__all__ = ["HarvestSession", "decode_token", "parse_data_page", "stream_to_file"]
