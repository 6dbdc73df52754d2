"""
Request executor tests
"""
import json

import httpx
import pytest
from pydantic import BaseModel

from dify_client import (
    Context,
    ContextCancelledError,
    DifyClient,
    DifyConnectionError,
    DifyError,
    DifyRateLimitError,
    DifyRequestError,
    DifyTimeoutError,
    RequestBuilder,
)
from dify_client.client import build_url, error_from_response, join_url, marshal_body


class UserBody(BaseModel):
    name: str


def _request(base_url="http://example.com", path="users", method="POST", **kwargs):
    builder = RequestBuilder().base_url(base_url).path(path).method(method).token("token")
    if "body" in kwargs:
        builder.body(kwargs["body"])
    for query in kwargs.get("query", ()):
        builder.query(query)
    if "headers" in kwargs:
        builder.headers(kwargs["headers"])
    return builder.build()


@pytest.mark.unit
class TestUrls:

    @pytest.mark.parametrize(
        "base, elems, expected",
        [
            ("http://a.com", ("v1/workflows/run",), "http://a.com/v1/workflows/run"),
            ("http://a.com/", ("/v1/workflows/run",), "http://a.com/v1/workflows/run"),
            ("http://a.com/api", ("v1", "files"), "http://a.com/api/v1/files"),
            ("http://a.com/api/", ("v1/",), "http://a.com/api/v1/"),
            ("http://a.com/a/b", ("../c",), "http://a.com/a/c"),
            ("http://a.com", ("./x//y",), "http://a.com/x/y"),
        ],
    )
    def test_join_url(self, base, elems, expected):
        assert join_url(base, *elems) == expected

    def test_join_url_rejects_invalid_base(self):
        with pytest.raises(DifyRequestError):
            join_url("http://a.com:port", "x")

    def test_query_structs_accumulate(self):
        url = httpx.URL(build_url("http://a.com", "logs", ({"k": "1", "page": 2}, {"k": "2"})))
        assert url.path == "/logs"
        assert url.params.get_list("k") == ["1", "2"]
        assert url.params["page"] == "2"

    def test_existing_query_is_kept(self):
        url = httpx.URL(build_url("http://a.com/api?k=0", "logs", ({"k": "1"},)))
        assert url.path == "/api/logs"
        assert url.params.get_list("k") == ["0", "1"]

    def test_no_query(self):
        assert build_url("http://a.com", "v1/workflows/run") == "http://a.com/v1/workflows/run"

    def test_bad_query_struct(self):
        with pytest.raises(DifyRequestError):
            build_url("http://a.com", "logs", (object(),))


@pytest.mark.unit
class TestMarshalBody:

    def test_model_uses_json(self):
        assert json.loads(marshal_body(UserBody(name="wyz"))) == {"name": "wyz"}

    def test_plain_values(self):
        assert json.loads(marshal_body({"name": "wyz", "tags": ("a",)})) == {"name": "wyz", "tags": ["a"]}

    def test_none_means_no_payload(self):
        assert marshal_body(None) is None

    def test_unserializable_body(self):
        with pytest.raises(DifyRequestError):
            marshal_body({"x": object()})


@pytest.mark.unit
class TestErrorFromResponse:

    def test_dify_error_body(self):
        err = error_from_response(400, b'{"code":"invalid_param","message":"user is required","status":400}')
        assert type(err) is DifyError
        assert err.status_code == 400
        assert err.code == "invalid_param"
        assert err.message == "user is required"

    def test_rate_limit(self):
        err = error_from_response(429, b'{"message":"slow down"}', httpx.Headers({"Retry-After": "17"}))
        assert isinstance(err, DifyRateLimitError)
        assert err.retry_after == 17
        assert err.status_code == 429

    def test_plain_text_body(self):
        err = error_from_response(502, b"Bad Gateway")
        assert err.status_code == 502
        assert err.message == "Bad Gateway"

    def test_empty_body(self):
        err = error_from_response(500, b"")
        assert err.message == "HTTP error resp code: 500"


@pytest.mark.unit
class TestSend:

    @pytest.mark.asyncio
    async def test_send_returns_status_body_headers(self, recorder):
        transport, calls = recorder(
            lambda request: httpx.Response(200, json={"ok": True}, headers={"X-Trace": "abc"})
        )
        client = DifyClient(transport=transport)
        try:
            resp = await client.send(_request(body=UserBody(name="wyz"), headers={"X-Extra": "1"}))
        finally:
            await client.aclose()

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        assert resp.headers["x-trace"] == "abc"

        sent = calls[0]
        assert sent.method == "POST"
        assert str(sent.url) == "http://example.com/users"
        assert sent.headers["authorization"] == "Bearer token"
        assert sent.headers["content-type"] == "application/json"
        assert sent.headers["x-extra"] == "1"
        assert json.loads(sent.content) == {"name": "wyz"}

    @pytest.mark.asyncio
    async def test_non_2xx_is_returned_not_raised(self, recorder):
        transport, _ = recorder(lambda request: httpx.Response(404, text="missing"))
        client = DifyClient(transport=transport)
        try:
            resp = await client.send(_request(method="GET"))
        finally:
            await client.aclose()
        assert resp.status_code == 404
        assert resp.text == "missing"

    @pytest.mark.asyncio
    async def test_get_with_query(self, recorder):
        transport, calls = recorder(lambda request: httpx.Response(200, json={}))
        client = DifyClient(transport=transport)
        try:
            await client.send(_request(method="GET", query=[{"user": "abc"}, {"limit": 20}]))
        finally:
            await client.aclose()
        assert calls[0].url.params["user"] == "abc"
        assert calls[0].url.params["limit"] == "20"
        assert calls[0].content == b""

    @pytest.mark.asyncio
    async def test_connection_failure(self, recorder):
        def refuse(request):
            raise httpx.ConnectError("connection refused")

        transport, _ = recorder(refuse)
        client = DifyClient(transport=transport)
        try:
            with pytest.raises(DifyConnectionError) as exc_info:
                await client.send(_request())
        finally:
            await client.aclose()
        assert "connection refused" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self, recorder):
        def slow(request):
            raise httpx.ReadTimeout("timed out")

        transport, _ = recorder(slow)
        client = DifyClient(timeout=5.0, transport=transport)
        try:
            with pytest.raises(DifyTimeoutError) as exc_info:
                await client.send(_request())
        finally:
            await client.aclose()
        assert exc_info.value.timeout == 5.0

    @pytest.mark.asyncio
    async def test_cancelled_context_sends_nothing(self, recorder):
        transport, calls = recorder(lambda request: httpx.Response(200))
        client = DifyClient(transport=transport)
        ctx = Context()
        ctx.cancel()
        try:
            with pytest.raises(ContextCancelledError):
                await client.send(_request(), ctx)
        finally:
            await client.aclose()
        assert calls == []

    @pytest.mark.asyncio
    async def test_bad_body_fails_before_sending(self, recorder):
        transport, calls = recorder(lambda request: httpx.Response(200))
        client = DifyClient(transport=transport)
        try:
            with pytest.raises(DifyRequestError):
                await client.send(_request(body={"x": object()}))
        finally:
            await client.aclose()
        assert calls == []


@pytest.mark.unit
class TestSendStream:

    @pytest.mark.asyncio
    async def test_stream_headers_and_events(self, recorder, sse_body):
        body = sse_body([{"x": 1}])
        transport, calls = recorder(
            lambda request: httpx.Response(200, content=body, headers={"Content-Type": "text/event-stream"})
        )
        client = DifyClient(transport=transport)
        try:
            events = await client.send_stream(_request(body={"q": 1}))
            first = await events.get()
            second = await events.get()
        finally:
            await client.aclose()

        assert first.data == b'{"x": 1}'
        assert second.done
        headers = calls[0].headers
        assert headers["accept"] == "text/event-stream"
        assert headers["cache-control"] == "no-cache"
        assert headers["connection"] == "keep-alive"
        assert headers["authorization"] == "Bearer token"

    @pytest.mark.asyncio
    async def test_non_200_raises_dify_error(self, recorder):
        transport, _ = recorder(
            lambda request: httpx.Response(401, json={"code": "unauthorized", "message": "Access token is invalid"})
        )
        client = DifyClient(transport=transport)
        try:
            with pytest.raises(DifyError) as exc_info:
                await client.send_stream(_request())
        finally:
            await client.aclose()
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Access token is invalid"

    @pytest.mark.asyncio
    async def test_other_2xx_is_rejected(self, recorder):
        transport, _ = recorder(lambda request: httpx.Response(202, text=""))
        client = DifyClient(transport=transport)
        try:
            with pytest.raises(DifyError) as exc_info:
                await client.send_stream(_request())
        finally:
            await client.aclose()
        assert exc_info.value.status_code == 202


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
