import asyncio
import json
import threading
import urllib.error
import urllib.request

import pytest

from wsrelay.http_server import HTTPListener, HTTPServer


@pytest.fixture
def site(tmp_path):
    root = tmp_path / "static"
    root.mkdir()
    (root / "index.html").write_text("<h1>index</h1>")
    (root / "live.html").write_text("<h1>live</h1>")
    (root / "app.js").write_text("console.log(1)")

    httpd = HTTPServer(str(root), ("127.0.0.1", 0), save_endpoint="/api/save")
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}", tmp_path
    httpd.shutdown()
    httpd.server_close()


def request(url, data=None, method=None, headers=None):
    req = urllib.request.Request(url, data=data, method=method, headers=headers or {})
    try:
        with urllib.request.urlopen(req, timeout=5) as resp:
            return resp.status, dict(resp.headers), resp.read()
    except urllib.error.HTTPError as e:
        return e.code, dict(e.headers), e.read()


def post_json(url, obj):
    return request(url, data=json.dumps(obj).encode(), method="POST",
                   headers={"Content-Type": "application/json"})


def test_root_serves_index(site):
    base, _ = site
    status, _, body = request(base + "/")
    assert status == 200
    assert body == b"<h1>index</h1>"


def test_page_alias(site):
    base, _ = site
    status, _, body = request(base + "/live")
    assert status == 200
    assert body == b"<h1>live</h1>"


def test_static_file(site):
    base, _ = site
    status, _, body = request(base + "/app.js")
    assert status == 200
    assert body == b"console.log(1)"


def test_missing_file_is_json_404(site):
    base, _ = site
    status, headers, body = request(base + "/nope.html")
    assert status == 404
    assert headers["Content-Type"] == "application/json"
    assert "error" in json.loads(body)


def test_save_writes_file(site):
    base, tmp_path = site
    target = tmp_path / "configs" / "nested"
    payload = {"name": "a.json", "root": str(target), "data": {"key": [1, 2]}}

    status, _, body = post_json(base + "/api/save", payload)

    assert status == 200
    response = json.loads(body)
    assert response["success"] is True
    assert response["path"] == str(target / "a.json")
    written = (target / "a.json").read_text(encoding="utf-8")
    assert json.loads(written) == {"key": [1, 2]}
    assert written == json.dumps({"key": [1, 2]}, indent=2)


def test_save_accepts_empty_object(site):
    base, tmp_path = site
    status, _, _ = post_json(base + "/api/save", {"name": "b.json", "root": str(tmp_path), "data": {}})
    assert status == 200
    assert json.loads((tmp_path / "b.json").read_text()) == {}


@pytest.mark.parametrize("payload", [
    {"root": "x", "data": {}},
    {"name": "a.json", "data": {}},
    {"name": "a.json", "root": "x"},
    {"name": "", "root": "x", "data": {}},
    {"name": "a.json", "root": "x", "data": None},
    [1, 2, 3],
])
def test_save_rejects_incomplete_body(site, payload):
    base, _ = site
    status, _, body = post_json(base + "/api/save", payload)
    assert status == 400
    assert "error" in json.loads(body)


def test_save_rejects_invalid_json(site):
    base, _ = site
    status, _, _ = request(base + "/api/save", data=b"{not json", method="POST")
    assert status == 400


def test_save_unwritable_target(site):
    base, tmp_path = site
    blocker = tmp_path / "file"
    blocker.write_text("x")
    status, _, body = post_json(base + "/api/save", {"name": "a.json", "root": str(blocker), "data": {}})
    assert status == 500
    assert "error" in json.loads(body)


def test_unknown_post_route(site):
    base, _ = site
    status, _, _ = post_json(base + "/elsewhere", {})
    assert status == 404


def test_cors_preflight(site):
    base, _ = site
    status, headers, _ = request(base + "/api/save", method="OPTIONS",
                                 headers={"Origin": "http://example.com"})
    assert status == 204
    assert headers["Access-Control-Allow-Origin"] == "http://example.com"
    assert headers["Vary"] == "Origin"
    assert "POST" in headers["Access-Control-Allow-Methods"]


def test_cors_origin_not_echoed_when_disabled(tmp_path):
    httpd = HTTPServer(str(tmp_path), ("127.0.0.1", 0), allow_origin=False)
    threading.Thread(target=httpd.serve_forever, daemon=True).start()
    try:
        status, headers, _ = request(f"http://127.0.0.1:{httpd.server_address[1]}/", method="OPTIONS",
                                     headers={"Origin": "http://example.com"})
    finally:
        httpd.shutdown()
        httpd.server_close()
    assert status == 204
    assert "Access-Control-Allow-Origin" not in headers


def test_listener_closes_from_event_loop(tmp_path):
    async def scenario():
        listener = HTTPListener(HTTPServer(str(tmp_path), ("127.0.0.1", 0)))
        listener.start()
        listener.close()
        await asyncio.wait_for(listener.wait_closed(), 5)
        return listener

    listener = asyncio.run(scenario())
    assert listener.server.socket.fileno() == -1
