import os
from urllib.parse import urlencode

import pytest
import requests

from webshotbatch import fetcher
from webshotbatch.config import ServerConfig
from webshotbatch.errors import ServerUnavailableError
from webshotbatch.fetcher import (
    FAILED,
    SAVED,
    SKIPPED,
    build_query,
    check_server_available,
    create_requests_session,
    fetch_screenshot,
)


def _closed_port():
    import socket
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def test_health_check_sends_head_to_ping_path(render_server):
    check_server_available(render_server.config, timeout=5)
    assert render_server.requests == [("HEAD", "/ping", {})]


def test_health_check_unreachable_server():
    conf = ServerConfig("http://127.0.0.1", _closed_port(), "ping", "shot")
    with pytest.raises(ServerUnavailableError):
        check_server_available(conf, timeout=2)


def test_build_query_parameters(make_options):
    opts = make_options(delay=3, width=640, height=480)
    assert build_query(opts, "http://a/?b=c", "x.jpeg") == [
        ("TimeoutSeconds", "3"),
        ("FileName", "x.jpeg"),
        ("Url", "http://a/?b=c"),
        ("Width", "640"),
        ("Height", "480"),
    ]


def test_saved_body_matches_response(render_server, make_options):
    opts = make_options(use_query_param="name", postfix="_a", image_format="png", delay=2)
    url = "http://example.com/page?name=foo&x=1"

    outcome = fetch_screenshot(render_server.config.action_url, url, opts)

    assert outcome.status == SAVED
    assert outcome.file_name == "foo_a.png"
    path = os.path.join(opts.output_dir, "foo_a.png")
    assert outcome.path == path
    with open(path, "rb") as f:
        assert f.read() == render_server.body_for(url)
    assert outcome.bytes_written == len(render_server.body_for(url))

    method, path_, query = render_server.requests[-1]
    assert (method, path_) == ("GET", "/shot")
    assert query == {
        "TimeoutSeconds": "2",
        "FileName": "foo_a.png",
        "Url": url,
        "Width": "1024",
        "Height": "768",
    }


def test_existing_file_is_overwritten(render_server, make_options):
    opts = make_options(use_query_param="name", image_format="png")
    target = os.path.join(opts.output_dir, "dup.png")
    with open(target, "wb") as f:
        f.write(b"old contents that are longer than the new body" * 10)

    url = "http://example.com/?name=dup"
    outcome = fetch_screenshot(render_server.config.action_url, url, opts)

    assert outcome.status == SAVED
    with open(target, "rb") as f:
        assert f.read() == render_server.body_for(url)


def test_error_status_skips_without_writing(render_server, make_options):
    opts = make_options(use_query_param="name")
    url = "http://example.com/?name=gone"
    render_server.responses[url] = (404, b"not found")

    outcome = fetch_screenshot(render_server.config.action_url, url, opts)

    assert outcome.status == SKIPPED
    assert outcome.status_code == 404
    assert os.listdir(opts.output_dir) == []


def test_redirect_range_is_not_an_error(render_server, make_options):
    opts = make_options(use_query_param="name")
    url = "http://example.com/?name=created"
    render_server.responses[url] = (201, b"body")

    outcome = fetch_screenshot(render_server.config.action_url, url, opts)

    assert outcome.status == SAVED
    assert outcome.status_code == 201


def test_network_failure_is_reported_not_raised(make_options):
    opts = make_options()
    action_url = f"http://127.0.0.1:{_closed_port()}/shot"

    outcome = fetch_screenshot(action_url, "http://example.com/", opts)

    assert outcome.status == FAILED
    assert outcome.error
    assert os.listdir(opts.output_dir) == []


def test_unwritable_output_is_reported_not_raised(render_server, make_options, tmp_path):
    opts = make_options(output_dir=str(tmp_path / "does" / "not" / "exist"))

    outcome = fetch_screenshot(render_server.config.action_url, "http://example.com/", opts)

    assert outcome.status == FAILED
    assert outcome.status_code == 200


def test_shared_session_is_left_open(render_server, make_options):
    opts = make_options()
    with create_requests_session(pool_size=2) as session:
        first = fetch_screenshot(render_server.config.action_url, "http://a/", opts, session=session)
        second = fetch_screenshot(render_server.config.action_url, "http://b/", opts, session=session)
    assert first.status == second.status == SAVED
    assert first.file_name != second.file_name


def test_session_has_no_retries():
    session = create_requests_session(pool_size=3, verify_ssl=False)
    adapter = session.get_adapter("http://example.com")
    assert adapter.max_retries.total == 0
    assert session.verify is False
    assert isinstance(session, requests.Session)


def test_health_check_ignores_status_code(render_server):
    for status in (404, 500):
        render_server.ping_status = status
        check_server_available(render_server.config, timeout=5)
    assert [r[0] for r in render_server.requests] == ["HEAD", "HEAD"]


@pytest.mark.parametrize("name_factory", [
    lambda tmp_path: str(tmp_path / "elsewhere" / "x"),
    lambda tmp_path: "../x",
])
def test_query_name_cannot_leave_output_dir(render_server, make_options, tmp_path, name_factory):
    (tmp_path / "elsewhere").mkdir()
    opts = make_options(use_query_param="name", image_format="png")
    url = "http://example.com/?" + urlencode({"name": name_factory(tmp_path)})

    outcome = fetch_screenshot(render_server.config.action_url, url, opts)

    assert outcome.status == SAVED
    assert os.path.dirname(outcome.path) == opts.output_dir
    assert os.listdir(tmp_path / "elsewhere") == []
    assert not (tmp_path / "x.png").exists()


def test_postfix_escaping_output_dir_is_refused(render_server, make_options, tmp_path):
    opts = make_options(postfix="/../../escaped")

    outcome = fetch_screenshot(render_server.config.action_url, "http://example.com/", opts)

    assert outcome.status == FAILED
    assert "outside" in outcome.error
    assert render_server.requests == []
    assert not any(p.name.startswith("escaped") for p in tmp_path.iterdir())


def test_failed_open_keeps_existing_file(render_server, make_options, monkeypatch):
    opts = make_options(use_query_param="name")
    target = os.path.join(opts.output_dir, "keep.jpeg")
    with open(target, "wb") as f:
        f.write(b"earlier run")

    def denied(path, mode="r", *args, **kwargs):
        raise PermissionError(13, "Permission denied", path)

    monkeypatch.setattr(fetcher, "open", denied, raising=False)
    outcome = fetch_screenshot(render_server.config.action_url, "http://example.com/?name=keep", opts)
    monkeypatch.undo()

    assert outcome.status == FAILED
    with open(target, "rb") as f:
        assert f.read() == b"earlier run"
