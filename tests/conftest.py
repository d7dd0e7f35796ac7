import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

import pytest

from webshotbatch.config import RunOptions, ServerConfig


class RenderServer:
    """Stand-in rendering server. Responds to HEAD /ping and GET /shot."""

    def __init__(self):
        self.requests = []
        self.lock = threading.Lock()
        # Url -> (status, body); anything else gets 200 with a body derived from the Url
        self.responses = {}
        self.ping_status = 200

    def body_for(self, url):
        return b"\x89PNG-fake-" + url.encode("utf-8")


def _make_handler(state):
    class Handler(BaseHTTPRequestHandler):
        def log_message(self, format, *args):
            pass

        def do_HEAD(self):
            with state.lock:
                state.requests.append(("HEAD", self.path, {}))
            self.send_response(state.ping_status)
            self.end_headers()

        def do_GET(self):
            parsed = urlparse(self.path)
            query = {k: v[0] for k, v in parse_qs(parsed.query).items()}
            with state.lock:
                state.requests.append(("GET", parsed.path, query))

            url = query.get("Url", "")
            status, body = state.responses.get(url, (200, state.body_for(url)))
            self.send_response(status)
            self.send_header("Content-Type", "image/png")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

    return Handler


@pytest.fixture
def render_server():
    state = RenderServer()
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(state))
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    state.config = ServerConfig(
        host="http://127.0.0.1",
        port=httpd.server_address[1],
        ping_path="ping",
        action_path="shot",
    )
    try:
        yield state
    finally:
        httpd.shutdown()
        httpd.server_close()


@pytest.fixture
def write_urls(tmp_path):
    def _write(*urls, name="urls.txt"):
        path = tmp_path / name
        path.write_text("\n".join(urls) + "\n", encoding="utf-8")
        return str(path)
    return _write


@pytest.fixture
def make_options(tmp_path):
    def _make(**overrides):
        out = tmp_path / "out"
        out.mkdir(exist_ok=True)
        values = dict(input_file=str(tmp_path / "urls.txt"), output_dir=str(out), http_timeout=10.0)
        values.update(overrides)
        return RunOptions(**values)
    return _make
