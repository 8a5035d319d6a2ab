from harvester.workflows.doctor import build_doctor_report, format_doctor_report, redact_value


def _check(report, name):
    return next(c for c in report["checks"] if c["name"] == name)


def test_redact_value():
    assert redact_value("") == ""
    assert redact_value("short") == "*****"
    assert redact_value("supersecretpassword") == "supe...word"


def test_environment_credentials_satisfy_doctor(tmp_path):
    env = {
        "TWP_EMAIL": "dev@example.com",
        "TWP_PASSWORD": "correct-horse-battery",
        "HARVEST_OP_BIN": "definitely-not-installed-op",
        "HARVEST_CREDENTIALS_FILE": str(tmp_path / "missing.json"),
        "HARVEST_CACHE_DIR": str(tmp_path / "cache"),
        "HARVEST_DOCS_DIR": str(tmp_path / "docs"),
    }
    report = build_doctor_report(env)

    assert report["ok"] is True
    assert _check(report, "credentials")["status"] == "ok"
    assert _check(report, "TWP_PASSWORD")["value"] == "corr...tery"
    assert _check(report, "TWP_EMAIL")["value"] == "dev@example.com"
    assert _check(report, "HARVEST_CACHE_DIR")["status"] == "ok"
    assert _check(report, "cookie-store")["status"] == "missing"


def test_missing_credentials_fail_the_report(tmp_path):
    env = {
        "HARVEST_OP_BIN": "definitely-not-installed-op",
        "HARVEST_CREDENTIALS_FILE": str(tmp_path / "missing.json"),
        "HARVEST_CACHE_DIR": str(tmp_path),
    }
    report = build_doctor_report(env)

    assert report["ok"] is False
    text = format_doctor_report(report)
    assert text.startswith("Harvester doctor")
    assert "- [warn] credentials: missing" in text
    assert "remedy: Set TWP_EMAIL/TWP_PASSWORD" in text
