"""Unit tests for the OneBot transport."""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from livewatch.exceptions import DeliveryFailure
from livewatch.notifications.base import MessageSegment
from livewatch.notifications.onebot import OneBotTransport, to_onebot_segments
from livewatch.storage.models import SubscriberKind


class TestSegmentConversion:
    """Test OneBot message conversion."""

    def test_to_onebot_segments(self):
        segments = [
            MessageSegment.at_all(),
            MessageSegment.text("Alice is live"),
            MessageSegment.image("https://i0.hdslb.com/cover.jpg"),
        ]

        assert to_onebot_segments(segments) == [
            {"type": "at", "data": {"qq": "all"}},
            {"type": "text", "data": {"text": "Alice is live"}},
            {
                "type": "image",
                "data": {"file": "https://i0.hdslb.com/cover.jpg", "url": "https://i0.hdslb.com/cover.jpg"},
            },
        ]


@pytest.fixture
async def onebot_server():
    """Provide a fake OneBot HTTP API."""
    state = {"requests": [], "reply": {"status": "ok", "retcode": 0, "data": {"message_id": 1}}, "http_status": 200}

    async def handler(request):
        state["requests"].append(
            {
                "action": request.match_info["action"],
                "auth": request.headers.get("Authorization"),
                "body": await request.json(),
            }
        )
        if state["http_status"] != 200:
            return web.Response(status=state["http_status"], text="boom")
        return web.json_response(state["reply"])

    app = web.Application()
    app.router.add_post("/{action}", handler)

    server = TestServer(app)
    await server.start_server()
    server.state = state
    yield server
    await server.close()


@pytest.fixture
async def transport(onebot_server):
    transport = OneBotTransport(
        f"http://{onebot_server.host}:{onebot_server.port}/",
        access_token="token",
        timeout=5,
    )
    yield transport
    await transport.close()


class TestOneBotTransport:
    """Test deliveries against a fake OneBot server."""

    async def test_group_message(self, transport, onebot_server):
        """Test the group endpoint and payload."""
        await transport.deliver(SubscriberKind.GROUP, "123456", [MessageSegment.text("hi")])

        request = onebot_server.state["requests"][0]
        assert request["action"] == "send_group_msg"
        assert request["auth"] == "Bearer token"
        assert request["body"] == {
            "group_id": 123456,
            "message": [{"type": "text", "data": {"text": "hi"}}],
        }

    async def test_private_message(self, transport, onebot_server):
        """Test the private endpoint."""
        await transport.deliver(SubscriberKind.USER, "42", [MessageSegment.text("hi")])

        request = onebot_server.state["requests"][0]
        assert request["action"] == "send_private_msg"
        assert request["body"]["user_id"] == 42

    async def test_failed_reply_raises(self, transport, onebot_server):
        """Test that a non-ok reply is a delivery failure."""
        onebot_server.state["reply"] = {"status": "failed", "retcode": 1200}

        with pytest.raises(DeliveryFailure, match="1200"):
            await transport.deliver(SubscriberKind.GROUP, "1", [MessageSegment.text("hi")])

    async def test_http_error_raises(self, transport, onebot_server):
        """Test that an HTTP error status is a delivery failure."""
        onebot_server.state["http_status"] = 500

        with pytest.raises(DeliveryFailure, match="HTTP 500"):
            await transport.deliver(SubscriberKind.GROUP, "1", [MessageSegment.text("hi")])

    async def test_unreachable_server_raises(self):
        """Test that connection errors are delivery failures."""
        transport = OneBotTransport("http://127.0.0.1:1", timeout=1)
        try:
            with pytest.raises(DeliveryFailure):
                await transport.deliver(SubscriberKind.GROUP, "1", [MessageSegment.text("hi")])
        finally:
            await transport.close()
