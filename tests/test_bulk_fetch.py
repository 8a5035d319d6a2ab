import asyncio
import json

import pytest
from aiohttp import web
from aiohttp import test_utils

from harvester.workflows.bulk_fetch import (
    BatchResult,
    BulkFetcher,
    FetchConfig,
    FetchOutcome,
    _build_audit,
    slugify_address,
)
from harvester.workflows.errors import SessionExpired


def _fragment(name: str) -> dict:
    return {
        "props": {
            "subcategory": {
                "name": name,
                "category": {"name": "Sections", "product": {"name": "Marketing"}},
                "components": [],
            }
        }
    }


async def _serve(handler, scenario):
    app = web.Application()
    app.router.add_route("GET", "/{tail:.*}", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        return await scenario(server)
    finally:
        await server.close()


def test_slugify_address_uses_path_after_catalog_prefix():
    url = "https://tailwindcss.com/plus/ui-blocks/marketing/sections/heroes"
    assert slugify_address(url) == "marketing_sections_heroes"
    assert slugify_address("https://tailwindcss.com/plus/ui-blocks/application-ui/forms/sign-in-forms") == (
        "application_ui_forms_sign_in_forms"
    )


def test_build_audit_counts():
    outcomes = [
        FetchOutcome(url="a", path="a.json", status=200, size_download=10),
        FetchOutcome(url="b", path="b.json", status=404, error="missing"),
    ]
    audit = _build_audit(outcomes, target_total=2, runtime=0.0)
    assert audit["requested"] == 2
    assert audit["fetched"] == 1
    assert audit["failed"] == 1
    assert audit["bytes"] == 10
    assert audit["status_histogram"] == {"200": 1, "404": 1}


def test_batch_result_latest_outcome_wins():
    result = BatchResult(
        outcomes=[
            FetchOutcome(url="a", path="a.json", status=0, error="timeout"),
            FetchOutcome(url="a", path="a.json", status=200),
            FetchOutcome(url="b", path="b.json", status=500, error="boom"),
        ]
    )
    assert result.fetched == 1
    assert result.failed_addresses() == ["b"]
    assert not result.session_rejected()


def test_fetch_many_writes_successes_and_records_failures(tmp_path):
    seen_headers = []

    async def handler(request):
        seen_headers.append(dict(request.headers))
        name = request.path.rsplit("/", 1)[-1]
        if name == "missing":
            return web.Response(status=404, text="nope")
        return web.json_response(_fragment(name))

    log_path = tmp_path / "batch-run.ndjson"
    fetcher = BulkFetcher(FetchConfig(concurrency=2), outcome_log=log_path)

    async def scenario(server):
        addresses = [
            str(server.make_url("/plus/ui-blocks/marketing/sections/heroes")),
            str(server.make_url("/plus/ui-blocks/marketing/sections/pricing")),
            str(server.make_url("/plus/ui-blocks/marketing/sections/missing")),
            str(server.make_url("/plus/ui-blocks/marketing/sections/heroes")),
        ]
        return await fetcher.fetch_many(addresses, tmp_path / "raw", headers={"X-Inertia": "true"})

    result = asyncio.run(_serve(handler, scenario))

    assert result.audit["requested"] == 3
    assert result.fetched == 2
    assert [url.rsplit("/", 1)[-1] for url in result.failed_addresses()] == ["missing"]
    written = sorted(p.name for p in (tmp_path / "raw").glob("*.json"))
    assert written == ["marketing_sections_heroes.json", "marketing_sections_pricing.json"]
    heroes = json.loads((tmp_path / "raw" / "marketing_sections_heroes.json").read_text(encoding="utf-8"))
    assert heroes["props"]["subcategory"]["name"] == "heroes"
    assert all(h.get("X-Inertia") == "true" for h in seen_headers)

    lines = [json.loads(line) for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert len(lines) == 3
    assert sorted(line["status"] for line in lines) == [200, 200, 404]


def test_non_json_body_is_not_written(tmp_path):
    async def handler(request):
        return web.Response(status=200, text="<html>login</html>", content_type="text/html")

    async def scenario(server):
        url = str(server.make_url("/plus/ui-blocks/marketing/sections/heroes"))
        return await BulkFetcher().fetch_many([url], tmp_path / "raw")

    result = asyncio.run(_serve(handler, scenario))

    assert result.fetched == 0
    assert result.outcomes[0].error == "response is not JSON"
    assert list((tmp_path / "raw").glob("*.json")) == []


def test_retry_rounds_refetch_only_failed_addresses(tmp_path):
    hits = {}

    async def handler(request):
        name = request.path.rsplit("/", 1)[-1]
        hits[name] = hits.get(name, 0) + 1
        if name == "flaky" and hits[name] == 1:
            return web.Response(status=503)
        return web.json_response(_fragment(name))

    fetcher = BulkFetcher(FetchConfig(concurrency=4, retry_failed_rounds=2))

    async def scenario(server):
        addresses = [
            str(server.make_url("/plus/ui-blocks/marketing/sections/stable")),
            str(server.make_url("/plus/ui-blocks/marketing/sections/flaky")),
        ]
        return await fetcher.fetch_many(addresses, tmp_path / "raw")

    result = asyncio.run(_serve(handler, scenario))

    assert hits == {"stable": 1, "flaky": 2}
    assert result.fetched == 2
    assert result.failed_addresses() == []
    assert len(result.outcomes) == 3


def test_session_rejection_raises_session_expired(tmp_path):
    async def handler(request):
        return web.Response(status=419)

    async def scenario(server):
        url = str(server.make_url("/plus/ui-blocks/marketing/sections/heroes"))
        return await BulkFetcher().fetch_many([url], tmp_path / "raw")

    with pytest.raises(SessionExpired):
        asyncio.run(_serve(handler, scenario))


def test_cookies_are_forwarded_and_returned(tmp_path):
    received = []

    async def handler(request):
        received.append(request.cookies.get("twp_session"))
        resp = web.json_response(_fragment("heroes"))
        resp.set_cookie("XSRF-TOKEN", "rotated")
        return resp

    async def scenario(server):
        url = str(server.make_url("/plus/ui-blocks/marketing/sections/heroes"))
        cookies = [("twp_session", "abc", server.host, "/")]
        return await BulkFetcher().fetch_many([url], tmp_path / "raw", cookies=cookies)

    result = asyncio.run(_serve(handler, scenario))

    assert received == ["abc"]
    names = {name: value for name, value, _domain, _path in result.cookies}
    assert names["twp_session"] == "abc"
    assert names["XSRF-TOKEN"] == "rotated"


def test_connection_errors_become_status_zero(tmp_path):
    fetcher = BulkFetcher(FetchConfig(timeout=2))
    result = asyncio.run(fetcher.fetch_many(["http://127.0.0.1:9/plus/ui-blocks/a/b/c"], tmp_path / "raw"))
    assert result.outcomes[0].status == 0
    assert result.outcomes[0].error
    assert result.failed_addresses() == ["http://127.0.0.1:9/plus/ui-blocks/a/b/c"]
