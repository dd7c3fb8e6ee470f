from __future__ import annotations

import httpx
import pytest

from muxlink.remote.probe import candidate_url, probe

URL = "https://box.lan:8082/dev"


def _transport(status: int) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "HEAD"
        return httpx.Response(status)
    return httpx.MockTransport(handler)


def _raising(exc: Exception) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc
    return httpx.MockTransport(handler)


@pytest.mark.parametrize(
    "status, reachable",
    [(200, True), (302, True), (401, True), (403, True), (404, False), (500, False)],
)
def test_status_classification(status, reachable):
    assert probe(URL, transport=_transport(status)) is reachable


def test_timeout_is_unreachable():
    assert probe(URL, transport=_raising(httpx.ConnectTimeout("timed out"))) is False


def test_connection_refused_is_unreachable():
    assert probe(URL, transport=_raising(httpx.ConnectError("[Errno 111] Connection refused"))) is False


def test_unexpected_errors_do_not_escape():
    assert probe(URL, transport=_raising(RuntimeError("boom"))) is False


def test_candidate_url():
    assert candidate_url("box.lan", "dev") == "https://box.lan:8082/dev"
    assert candidate_url("localhost", "dev") == "https://10.0.2.2:8082/dev"
    assert candidate_url("127.0.0.1", None, port=9000, loopback_alias=None) == "https://127.0.0.1:9000"
    assert candidate_url("box.lan", "dev", token="t0k") == "https://box.lan:8082/dev?token=t0k"
