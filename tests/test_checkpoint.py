import pytest

from harvester.workflows.checkpoint import Checkpoint


def test_fresh_run_replaces_log_on_first_completed_unit(tmp_path):
    path = tmp_path / ".progress"
    path.write_text("1-auth\n0-docs\n2-portal\n", encoding="utf-8")

    cp = Checkpoint(path, resume=False)

    assert path.read_text(encoding="utf-8") == "1-auth\n0-docs\n2-portal\n"
    assert cp.completed == ()
    assert not cp.skip_if_done("1-auth")

    cp.mark_done("1-auth")
    cp.mark_done("0-docs")

    assert path.read_text(encoding="utf-8") == "1-auth\n0-docs\n"
    assert cp.completed == ("1-auth", "0-docs")


def test_fresh_run_creates_empty_log(tmp_path):
    path = tmp_path / "run" / ".progress"
    Checkpoint(path)
    assert path.read_text(encoding="utf-8") == ""


def test_resume_loads_units_and_skips_them(tmp_path):
    path = tmp_path / ".progress"
    path.write_text("1-auth\n\n0-docs\n1-auth\n", encoding="utf-8")

    cp = Checkpoint(path, resume=True)

    assert cp.completed == ("1-auth", "0-docs")
    assert cp.skip_if_done("0-docs")
    assert not cp.skip_if_done("2-portal")


def test_lookup_is_exact_match_only(tmp_path):
    path = tmp_path / ".progress"
    path.write_text("5-format-react-v4-light\n", encoding="utf-8")

    cp = Checkpoint(path, resume=True)

    assert cp.is_done("5-format-react-v4-light")
    assert not cp.is_done("5-format-react-v4")
    assert not cp.is_done("5-format-react-v4-light-extra")
    assert not cp.is_done("react-v4-light")


def test_mark_done_appends_once(tmp_path):
    path = tmp_path / ".progress"
    cp = Checkpoint(path)

    cp.mark_done("1-auth")
    cp.mark_done("1-auth")
    cp.mark_done("8-kit-spotlight")

    assert path.read_text(encoding="utf-8") == "1-auth\n8-kit-spotlight\n"
    reloaded = Checkpoint(path, resume=True)
    assert reloaded.completed == ("1-auth", "8-kit-spotlight")


def test_mark_done_rejects_multiline_ids(tmp_path):
    cp = Checkpoint(tmp_path / ".progress")
    with pytest.raises(ValueError):
        cp.mark_done("1-auth\n2-portal")
    with pytest.raises(ValueError):
        cp.mark_done("")


def test_resume_without_log_starts_empty(tmp_path):
    cp = Checkpoint(tmp_path / "run" / ".progress", resume=True)
    assert cp.completed == ()
    assert not cp.skip_if_done("1-auth")
