"""Credential resolution: environment → secret manager → credentials file."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

from .errors import CredentialsNotFound
from .harvest_config import DEFAULT_CREDENTIALS_FILE, SITE_IDENTIFIER

logger = logging.getLogger(__name__)

Runner = Callable[[Sequence[str]], subprocess.CompletedProcess]

ENV_EMAIL = "TWP_EMAIL"
ENV_PASSWORD = "TWP_PASSWORD"
ENV_CREDENTIALS_FILE = "HARVEST_CREDENTIALS_FILE"
ENV_OP_BIN = "HARVEST_OP_BIN"


@dataclass(frozen=True)
class Credentials:
    identifier: str
    secret: str = field(repr=False)
    source: str = "unknown"


def _default_runner(argv: Sequence[str]) -> subprocess.CompletedProcess:
    return subprocess.run(list(argv), capture_output=True, text=True, timeout=30, check=False)


def _usable(value: Optional[str]) -> bool:
    return bool(value) and value != "null"


def from_environment(env: Mapping[str, str]) -> Optional[Credentials]:
    email = (env.get(ENV_EMAIL) or "").strip()
    password = env.get(ENV_PASSWORD) or ""
    if email and password:
        return Credentials(email, password, source="environment")
    return None


def _item_matches(item: Mapping[str, object], site: str) -> bool:
    urls = item.get("urls") or []
    if not isinstance(urls, list):
        return False
    return any(isinstance(url, dict) and url.get("href") == site for url in urls)


def from_secret_manager(
    *,
    runner: Runner = _default_runner,
    op_bin: str = "op",
    site: str = SITE_IDENTIFIER,
) -> Optional[Credentials]:
    """Look up a login item whose website matches ``site`` via the 1Password CLI."""

    if runner is _default_runner and shutil.which(op_bin) is None:
        return None
    logger.info("Trying 1Password CLI...")
    try:
        if runner([op_bin, "account", "get"]).returncode != 0:
            logger.info("1Password: not signed in")
            return None
        listing = runner([op_bin, "item", "list", "--format=json"])
        if listing.returncode != 0:
            return None
        items = json.loads(listing.stdout or "[]")
    except (OSError, subprocess.SubprocessError, json.JSONDecodeError) as exc:
        logger.warning("1Password lookup failed: %s", exc)
        return None

    item_id = next(
        (str(item.get("id")) for item in items if isinstance(item, dict) and _item_matches(item, site)),
        None,
    )
    if not item_id:
        logger.info("1Password: no item found for %s", site)
        return None

    try:
        username = runner([op_bin, "item", "get", item_id, "--fields", "username"])
        password = runner([op_bin, "item", "get", item_id, "--fields", "password", "--reveal"])
    except (OSError, subprocess.SubprocessError) as exc:
        logger.warning("1Password item read failed: %s", exc)
        return None
    email = (username.stdout or "").strip() if username.returncode == 0 else ""
    secret = (password.stdout or "").strip() if password.returncode == 0 else ""
    if email and secret:
        return Credentials(email, secret, source="1password")
    return None


def from_file(path: Path) -> Optional[Credentials]:
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Unreadable credentials file %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        return None
    email = data.get("email")
    password = data.get("password")
    if _usable(email) and _usable(password):
        return Credentials(str(email), str(password), source=f"file:{path}")
    return None


def resolve_credentials(
    *,
    env: Optional[Mapping[str, str]] = None,
    runner: Optional[Runner] = None,
    credentials_file: Optional[Path] = None,
) -> Credentials:
    """Return the first credential source that yields both identifier and secret."""

    env = os.environ if env is None else env
    tried: List[str] = []

    creds = from_environment(env)
    tried.append("environment")
    if creds is None:
        op_bin = env.get(ENV_OP_BIN) or "op"
        creds = from_secret_manager(runner=runner or _default_runner, op_bin=op_bin)
        tried.append("1password")
    if creds is None:
        path = credentials_file or Path(env.get(ENV_CREDENTIALS_FILE) or DEFAULT_CREDENTIALS_FILE)
        creds = from_file(path)
        tried.append(str(path))
    if creds is None:
        raise CredentialsNotFound(tried)

    logger.info("Using credentials from %s", creds.source)
    return creds


__all__ = [
    "Credentials",
    "ENV_EMAIL",
    "ENV_PASSWORD",
    "ENV_CREDENTIALS_FILE",
    "ENV_OP_BIN",
    "from_environment",
    "from_secret_manager",
    "from_file",
    "resolve_credentials",
]
