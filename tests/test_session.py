import html
import json

import pytest
import requests
from requests.cookies import create_cookie

from harvester.workflows.credentials import Credentials
from harvester.workflows.errors import AuthenticationFailed, FetchFailed, HarvestError, SessionExpired
from harvester.workflows.harvest_config import LOGIN_URL, SITE_URL
from harvester.workflows.session import HarvestSession, decode_token, parse_data_page


CREDS = Credentials("dev@example.com", "pw", source="test")


def _data_page_html(payload) -> str:
    return f'<html><body><div id="app" data-page="{html.escape(json.dumps(payload), quote=True)}"></div></body></html>'


def test_decode_token_url_decodes():
    assert decode_token("abc%3D%3D") == "abc=="
    assert decode_token("") == ""


def test_parse_data_page_reads_embedded_payload():
    payload = {"component": "Portal", "version": "7f3c", "props": {"tailwindVersion": "4.1"}}
    assert parse_data_page(_data_page_html(payload)) == payload


def test_parse_data_page_without_attribute_raises():
    with pytest.raises(HarvestError):
        parse_data_page("<html><body>nothing</body></html>")


def test_login_sends_decoded_token_and_saves_cookies(session, adapter):
    adapter.add("GET", LOGIN_URL, 200, "<html></html>", cookies={"XSRF-TOKEN": "tok%3D1", "twp_session": "s1"})
    adapter.add("POST", LOGIN_URL, 302)

    status = session.login(CREDS)

    assert status == 302
    post = adapter.calls_to("POST", LOGIN_URL)[0]
    assert post.headers["X-XSRF-TOKEN"] == "tok=1"
    assert "email=dev%40example.com" in post.body
    assert session.cookie_path.exists()
    assert session.authenticated


def test_login_401_raises_authentication_failed(session, adapter):
    adapter.add("GET", LOGIN_URL, 200, "", cookies={"XSRF-TOKEN": "tok"})
    adapter.add("POST", LOGIN_URL, 401)

    with pytest.raises(AuthenticationFailed) as excinfo:
        session.login(CREDS)

    assert excinfo.value.status == 401
    assert not session.cookie_path.exists()


def test_login_without_token_cookie_fails(session, adapter):
    adapter.add("GET", LOGIN_URL, 200, "")

    with pytest.raises(AuthenticationFailed):
        session.login(CREDS)
    assert adapter.calls_to("POST", LOGIN_URL) == []


def test_refresh_reads_rotated_token(session, adapter):
    adapter.add("GET", LOGIN_URL, 200, "", cookies={"XSRF-TOKEN": "first"})
    adapter.add("POST", LOGIN_URL, 200)
    session.login(CREDS)
    assert session.refresh() == "first"

    url = f"{SITE_URL}/ui-blocks/marketing"
    adapter.add("GET", url, 200, {"props": {}}, cookies={"XSRF-TOKEN": "second%2B"})
    session.get_json(url)

    assert session.refresh() == "second+"


def test_refresh_without_token_raises_session_expired(session):
    with pytest.raises(SessionExpired):
        session.refresh()


def test_cookie_store_round_trips_between_sessions(session, adapter, tmp_path):
    adapter.add("GET", LOGIN_URL, 200, "", cookies={"XSRF-TOKEN": "persisted%3D"})
    adapter.add("POST", LOGIN_URL, 302)
    session.login(CREDS)

    reopened = HarvestSession(session.cookie_path, http=requests.Session())
    assert reopened.load()
    assert reopened.refresh() == "persisted="

    reopened.discard()
    assert not session.cookie_path.exists()
    assert not reopened.authenticated


def test_load_missing_store_returns_false(tmp_path):
    assert not HarvestSession(tmp_path / "none.txt", http=requests.Session()).load()


def test_get_json_maps_session_statuses(session, adapter):
    session.jar.set_cookie(create_cookie("XSRF-TOKEN", "t", domain="tailwindcss.com", path="/"))
    expired = f"{SITE_URL}/expired"
    missing = f"{SITE_URL}/missing"
    adapter.add("GET", expired, 419, "")
    adapter.add("GET", missing, 500, "")

    with pytest.raises(SessionExpired) as excinfo:
        session.get_json(expired)
    assert excinfo.value.status == 419
    with pytest.raises(FetchFailed) as failed:
        session.get_json(missing)
    assert failed.value.status == 500


def test_inertia_version_is_cached_on_disk(session, adapter, tmp_path):
    adapter.add("GET", SITE_URL, 200, _data_page_html({"version": "abc123", "props": {}}))
    cache = tmp_path / "run" / "data-page.json"

    assert session.inertia_version(cache) == "abc123"
    assert json.loads(cache.read_text(encoding="utf-8"))["version"] == "abc123"

    fresh = HarvestSession(tmp_path / "other.txt", http=requests.Session())
    assert fresh.inertia_version(cache) == "abc123"


def test_put_json_carries_inertia_headers(session, adapter):
    session.jar.set_cookie(create_cookie("XSRF-TOKEN", "tok%3D", domain="tailwindcss.com", path="/"))
    session.set_inertia_version("v9")
    url = f"{SITE_URL}/ui-blocks/language"
    adapter.add("PUT", url, 303)

    resp = session.put_json(url, {"uuid": "u", "snippet_lang": "react-v4-dark"})

    assert resp.status_code == 303
    sent = adapter.calls_to("PUT", url)[0]
    assert sent.headers["X-Inertia"] == "true"
    assert sent.headers["X-Inertia-Version"] == "v9"
    assert sent.headers["X-XSRF-TOKEN"] == "tok="
    assert json.loads(sent.body) == {"uuid": "u", "snippet_lang": "react-v4-dark"}


def test_batch_cookies_are_folded_back(session):
    session.absorb_batch_cookies([("XSRF-TOKEN", "rotated", "tailwindcss.com", "/")])

    assert session.refresh() == "rotated"
    assert ("XSRF-TOKEN", "rotated", "tailwindcss.com", "/") in session.cookies_for_batch()
    assert session.cookie_path.exists()


def test_download_leaves_nothing_on_failure(session, adapter, tmp_path):
    ok_url = f"{SITE_URL}/files/ok.zip"
    bad_url = f"{SITE_URL}/files/bad.zip"
    adapter.add("GET", ok_url, 200, b"PK\x03\x04payload")
    adapter.add("GET", bad_url, 403, b"denied")

    status, size = session.download(ok_url, tmp_path / "out" / "ok.zip")
    assert (status, size) == (200, 11)
    assert (tmp_path / "out" / "ok.zip").read_bytes() == b"PK\x03\x04payload"

    status, size = session.download(bad_url, tmp_path / "out" / "bad.zip")
    assert (status, size) == (403, 0)
    assert not (tmp_path / "out" / "bad.zip").exists()
    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == ["ok.zip"]
