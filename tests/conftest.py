import io
import json
from typing import Any, Dict, List, Optional, Tuple

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.cookies import create_cookie
from requests.structures import CaseInsensitiveDict

from harvester.workflows.session import HarvestSession


class FakeAdapter(BaseAdapter):
    """Route table transport: ``(METHOD, url) -> queued responses``.

    Cookies listed on a route are written straight into ``jar`` the way a
    ``Set-Cookie`` header would land in the session's cookie store.
    """

    def __init__(self) -> None:
        super().__init__()
        self.routes: Dict[Tuple[str, str], List[Dict[str, Any]]] = {}
        self.calls: List[requests.PreparedRequest] = []
        self.jar = None

    def add(
        self,
        method: str,
        url: str,
        status: int = 200,
        body: Any = b"",
        *,
        cookies: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        if isinstance(body, (dict, list)):
            body = json.dumps(body).encode("utf-8")
        elif isinstance(body, str):
            body = body.encode("utf-8")
        spec = {"status": status, "body": body, "cookies": cookies or {}, "headers": headers or {}}
        self.routes.setdefault((method.upper(), url), []).append(spec)

    def send(self, request, **kwargs):  # type: ignore[override]
        self.calls.append(request)
        queue = self.routes.get((request.method, request.url))
        if not queue:
            spec = {"status": 404, "body": b"not found", "cookies": {}, "headers": {}}
        elif len(queue) > 1:
            spec = queue.pop(0)
        else:
            spec = queue[0]
        if self.jar is not None:
            for name, value in spec["cookies"].items():
                self.jar.set_cookie(create_cookie(name, value, domain="tailwindcss.com", path="/"))
        resp = requests.Response()
        resp.status_code = spec["status"]
        resp._content = spec["body"]
        resp._content_consumed = True
        resp.raw = io.BytesIO(spec["body"])
        resp.headers = CaseInsensitiveDict(spec["headers"])
        resp.url = request.url
        resp.request = request
        resp.encoding = "utf-8"
        resp.reason = "OK" if spec["status"] < 400 else "Error"
        return resp

    def close(self) -> None:
        pass

    def calls_to(self, method: str, url: str) -> List[requests.PreparedRequest]:
        return [c for c in self.calls if c.method == method.upper() and c.url == url]


@pytest.fixture
def adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def session(tmp_path, adapter) -> HarvestSession:
    http = requests.Session()
    http.mount("https://", adapter)
    http.mount("http://", adapter)
    hs = HarvestSession(tmp_path / "twp-cookies.txt", http=http)
    adapter.jar = hs.jar
    return hs
