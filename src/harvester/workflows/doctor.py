from __future__ import annotations

import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .credentials import ENV_CREDENTIALS_FILE, ENV_EMAIL, ENV_OP_BIN, ENV_PASSWORD
from .harvest_config import (
    COOKIE_FILE_NAME,
    DEFAULT_CACHE_DIR,
    DEFAULT_CREDENTIALS_FILE,
    DEFAULT_DOCS_DIR,
    ENV_CACHE_DIR,
    ENV_DOCS_DIR,
)

_SECRET_TOKENS = ("key", "token", "secret", "password", "pass")


def _is_secret_name(name: str) -> bool:
    lowered = (name or "").lower()
    return any(token in lowered for token in _SECRET_TOKENS)


def redact_value(value: str, keep: int = 4) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    if len(raw) <= keep * 2:
        return "*" * len(raw)
    return f"{raw[:keep]}...{raw[-keep:]}"


def _redacted_env_value(name: str, value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return redact_value(value) if _is_secret_name(name) else value


def _check_writable(path: Path) -> bool:
    probe = path
    while not probe.exists():
        if probe.parent == probe:
            return False
        probe = probe.parent
    return probe.is_dir() and os.access(probe, os.W_OK)


def build_doctor_report(env: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    env = os.environ if env is None else env
    report: Dict[str, Any] = {
        "generated_at": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
        "ok": True,
        "checks": [],
    }

    def add_check(
        name: str,
        status: bool,
        *,
        detail: Optional[str] = None,
        remedy: Optional[str] = None,
        level: str = "warn",
        value: Optional[str] = None,
    ) -> None:
        entry = {
            "name": name,
            "status": "ok" if status else "missing",
            "level": level,
            "detail": detail,
        }
        if remedy:
            entry["remedy"] = remedy
        if value is not None:
            entry["value"] = _redacted_env_value(name, value)
        report["checks"].append(entry)
        if not status and level == "warn":
            report["ok"] = False

    email = env.get(ENV_EMAIL) or ""
    password = env.get(ENV_PASSWORD) or ""
    env_ok = bool(email.strip() and password)
    add_check(ENV_EMAIL, bool(email.strip()), level="info", value=email or None)
    add_check(ENV_PASSWORD, bool(password), level="info", value=password or None)

    op_bin = env.get(ENV_OP_BIN) or "op"
    op_path = shutil.which(op_bin)
    add_check(
        "1password-cli",
        op_path is not None,
        detail=op_path or f"{op_bin} not on PATH",
        remedy="Install the 1Password CLI and run `op signin`, or use another credential source.",
        level="info",
    )

    creds_file = Path(env.get(ENV_CREDENTIALS_FILE) or DEFAULT_CREDENTIALS_FILE)
    add_check(
        ENV_CREDENTIALS_FILE,
        creds_file.is_file(),
        detail=str(creds_file),
        remedy='Create a JSON file {"email": ..., "password": ...}.',
        level="info",
    )

    add_check(
        "credentials",
        env_ok or op_path is not None or creds_file.is_file(),
        detail="at least one credential source is available",
        remedy=f"Set {ENV_EMAIL}/{ENV_PASSWORD}, sign into the secret manager, or create {creds_file}.",
        level="warn",
    )

    cache_dir = Path(env.get(ENV_CACHE_DIR) or DEFAULT_CACHE_DIR)
    add_check(
        ENV_CACHE_DIR,
        _check_writable(cache_dir),
        detail=str(cache_dir),
        remedy=f"Create the cache directory or set {ENV_CACHE_DIR} to a writable location.",
        level="warn",
    )

    cookie_path = cache_dir / COOKIE_FILE_NAME
    add_check(
        "cookie-store",
        cookie_path.is_file(),
        detail=str(cookie_path) if cookie_path.is_file() else "no persisted session (run `harvester auth`)",
        level="info",
    )

    docs_dir = Path(env.get(ENV_DOCS_DIR) or DEFAULT_DOCS_DIR)
    add_check(
        ENV_DOCS_DIR,
        docs_dir.is_dir(),
        detail=str(docs_dir),
        remedy="Framework docs are optional; step 0 copies nothing without them.",
        level="info",
    )

    return report


def format_doctor_report(report: Dict[str, Any]) -> str:
    lines: List[str] = []
    lines.append("Harvester doctor")
    lines.append(f"Generated: {report.get('generated_at')}")
    lines.append("Values are redacted where applicable.")
    lines.append("")
    for check in report.get("checks", []):
        name = check.get("name", "check")
        status = check.get("status", "unknown")
        level = check.get("level", "info")
        detail = check.get("detail")
        value = check.get("value")
        label = f"{name}: {status}"
        if value:
            label = f"{label} ({value})"
        lines.append(f"- [{level}] {label}")
        if detail:
            lines.append(f"  detail: {detail}")
        remedy = check.get("remedy")
        if remedy and status != "ok":
            lines.append(f"  remedy: {remedy}")
    return "\n".join(lines).rstrip() + "\n"


__all__ = ["build_doctor_report", "format_doctor_report", "redact_value"]
