import json

from typer.testing import CliRunner

from harvester import cli
from harvester.collector import CollectionSummary
from harvester.workflows.errors import AuthenticationFailed, CredentialsNotFound

runner = CliRunner()


def test_no_command_prints_minimal_help():
    result = runner.invoke(cli.app, [])
    assert result.exit_code == 0
    assert "harvester collect [SUFFIX]" in result.output


def test_doctor_exit_code_reflects_report(monkeypatch):
    monkeypatch.setattr(cli, "build_doctor_report", lambda: {"ok": False, "generated_at": "now", "checks": []})
    result = runner.invoke(cli.app, ["doctor"])
    assert result.exit_code == 2
    assert "Harvester doctor" in result.output


def test_collect_passes_options_and_reports(monkeypatch, tmp_path):
    seen = {}

    def fake_collect(options):
        seen["options"] = options
        summary = CollectionSummary(run_dir=tmp_path / "2026-01-02-nightly", components=42)
        summary.failed_kits.append("spotlight")
        return summary

    monkeypatch.setattr(cli, "collect", fake_collect)
    result = runner.invoke(cli.app, ["collect", "nightly", "--v4-only", "--resume", "--retry-failed", "2"])

    assert result.exit_code == 0
    options = seen["options"]
    assert options.suffix == "nightly"
    assert options.with_v3 is False
    assert options.resume is True
    assert options.retry_failed_rounds == 2
    assert "Components: 42" in result.output


def test_collect_fatal_errors_exit_3(monkeypatch):
    def boom(options):
        raise AuthenticationFailed(401)

    monkeypatch.setattr(cli, "collect", boom)
    result = runner.invoke(cli.app, ["collect"])
    assert result.exit_code == 3
    assert "fatal: Login failed with HTTP 401" in result.output


def test_collect_without_credentials_exit_2(monkeypatch):
    def missing(options):
        raise CredentialsNotFound(["environment"])

    monkeypatch.setattr(cli, "collect", missing)
    result = runner.invoke(cli.app, ["collect"])
    assert result.exit_code == 2


def test_metadata_command_strips_directory(tmp_path):
    path = tmp_path / "react-v4.ndjson"
    record = {"id": "a", "name": "A", "light": {"code": '<i className="text-sm"/>'}, "dark": None, "system": None}
    path.write_text(json.dumps(record) + "\n", encoding="utf-8")

    result = runner.invoke(cli.app, ["metadata", str(tmp_path), "--json"])

    assert result.exit_code == 0
    assert json.loads(result.stdout.strip().splitlines()[-1])["records"] == 1
    stripped = json.loads(path.read_text(encoding="utf-8"))
    assert stripped["meta"]["tokens"]["typography"] == ["text-sm"]
    assert "light" not in stripped


def test_metadata_missing_directory_exit_2(tmp_path):
    result = runner.invoke(cli.app, ["metadata", str(tmp_path / "nope")])
    assert result.exit_code == 2
