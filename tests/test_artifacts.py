import json
import os

from harvester.workflows.artifacts import (
    build_index,
    category_tree,
    data_sources,
    read_component_count,
    update_current_link,
    write_manifest,
    write_tracking_file,
)


def _write_stream(path, records):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(json.dumps(r) + "\n" for r in records), encoding="utf-8")


def _rec(cid, category="Marketing", sub="Sections", subsub="Heroes", dark=True):
    return {
        "id": cid,
        "uuid": f"u-{cid}",
        "name": cid,
        "category": category,
        "subcategory": sub,
        "sub_subcategory": subsub,
        "light": {"code": "x"},
        "dark": {"code": "y"} if dark else None,
        "system": None,
    }


def test_category_tree_counts_and_sorts():
    tree = category_tree([_rec("a"), _rec("b", subsub="Pricing"), _rec("c"), _rec("d", category="Ecommerce")])
    assert [c["name"] for c in tree] == ["Ecommerce", "Marketing"]
    subsubs = tree[1]["subcategories"][0]["sub_subcategories"]
    assert subsubs == [{"name": "Heroes", "count": 2}, {"name": "Pricing", "count": 1}]


def test_build_index_prefers_canonical_stream(tmp_path):
    components = tmp_path / "components"
    _write_stream(components / "html-v4.ndjson", [_rec("h1")])
    _write_stream(components / "react-v4.ndjson", [_rec("r1"), _rec("r2", dark=False)])

    count = build_index(components, tmp_path / "component-index.json", ["v4"])

    index = json.loads((tmp_path / "component-index.json").read_text(encoding="utf-8"))
    assert count == 2
    assert index["component_count"] == 2
    assert index["versions"] == ["v4"]
    assert [c["id"] for c in index["components"]] == ["r1", "r2"]
    assert index["components"][0]["has_dark_mode"] is True
    assert index["components"][1]["has_dark_mode"] is False
    assert index["components"][0]["has_system_mode"] is False
    assert read_component_count(tmp_path / "component-index.json") == 2


def test_build_index_reads_stripped_records(tmp_path):
    components = tmp_path / "components"
    _write_stream(components / "react-v4.ndjson", [{"id": "a", "has_light": True, "has_dark": True, "has_system": False}])

    build_index(components, tmp_path / "index.json", ["v4"])

    index = json.loads((tmp_path / "index.json").read_text(encoding="utf-8"))
    assert index["components"][0]["has_dark_mode"] is True


def test_build_index_without_streams_is_empty(tmp_path, caplog):
    assert build_index(tmp_path / "missing", tmp_path / "index.json", ["v4"]) == 0
    assert "index will be empty" in caplog.text
    assert read_component_count(tmp_path / "nope.json") == 0


def test_write_manifest_collects_counts(tmp_path):
    run_dir = tmp_path / "2026-01-02"
    _write_stream(run_dir / "data" / "components" / "react-v4.ndjson", [_rec("a")])
    build_index(run_dir / "data" / "components", run_dir / "data" / "component-index.json", ["v3", "v4"])
    kits = run_dir / "kits"
    kits.mkdir()
    (kits / "spotlight.zip").write_bytes(b"PK")
    (kits / "spotlight.json").write_text(
        json.dumps({"name": "Spotlight", "changelog_date": "2025-05-01", "file_mtime": "2025-05-02"}),
        encoding="utf-8",
    )

    manifest = write_manifest(
        run_dir,
        downloaded_by="dev@example.com",
        suffix=None,
        tailwind_version="4.1",
        elements_version="1.2.3",
        inertia_version="abc",
        format_count=18,
        template_count=5,
        versions=["v3", "v4"],
        downloaded_at="2026-01-02T00:00:00Z",
    )

    on_disk = json.loads((run_dir / "manifest.json").read_text(encoding="utf-8"))
    assert on_disk == manifest
    assert manifest["suffix"] is None
    assert manifest["counts"] == {"components": 1, "formats": 18, "kits": 1, "templates_available": 5}
    assert manifest["versions"] == {"tailwind": "4.1", "elements": "1.2.3", "inertia": "abc"}
    assert manifest["templates"] == [{"name": "Spotlight", "changelog_date": "2025-05-01", "file_mtime": "2025-05-02"}]
    assert "v3/v4" in manifest["data_sources"][0]


def test_data_sources_label_versions():
    assert "× v4 ×" in data_sources(["v4"])[0]


def test_tracking_file_and_current_link(tmp_path):
    run_dir = tmp_path / "2026-01-02-nightly"
    run_dir.mkdir()
    other = tmp_path / "2026-01-01"
    other.mkdir()

    tracking = write_tracking_file(tmp_path, "2026-01-02", "nightly")
    assert tracking.name == ".2026-01-02"
    assert tracking.read_text(encoding="utf-8") == "nightly\n"

    update_current_link(tmp_path, other)
    link = update_current_link(tmp_path, run_dir)
    assert link.is_symlink()
    assert os.readlink(link) == "2026-01-02-nightly"
    assert link.resolve() == run_dir.resolve()
