"""Tests for the 3D render endpoint client."""

import json

import httpx
import pytest

from visionviz.errors import MissingEndpointError, RenderError
from visionviz.render_client import RenderClient, normalize_endpoint


class TestNormalizeEndpoint:
    def test_trailing_slash(self):
        assert normalize_endpoint("https://abc.ngrok.app/") == "https://abc.ngrok.app"

    def test_blank(self):
        assert normalize_endpoint("   ") is None
        assert normalize_endpoint(None) is None


class TestRenderClient:
    @pytest.mark.asyncio
    async def test_missing_endpoint_makes_no_request(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, content=b"x")

        client = RenderClient(None, transport=httpx.MockTransport(handler))
        with pytest.raises(MissingEndpointError):
            await client.render("import bpy")
        assert requests == []
        assert client.call_count == 0

    @pytest.mark.asyncio
    async def test_posts_script(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=b"glTF-binary")

        client = RenderClient("http://render.local/", transport=httpx.MockTransport(handler))
        data = await client.render("import bpy")

        assert data == b"glTF-binary"
        assert seen["url"] == "http://render.local/render"
        assert seen["body"] == {"script": "import bpy"}

    @pytest.mark.asyncio
    async def test_non_200(self):
        client = RenderClient(
            "http://render.local",
            transport=httpx.MockTransport(lambda r: httpx.Response(500, text="blender crashed")),
        )
        with pytest.raises(RenderError, match="500"):
            await client.render("import bpy")

    @pytest.mark.asyncio
    async def test_empty_body(self):
        client = RenderClient(
            "http://render.local",
            transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b"")),
        )
        with pytest.raises(RenderError):
            await client.render("import bpy")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = RenderClient("http://render.local", transport=httpx.MockTransport(handler))
        with pytest.raises(RenderError):
            await client.render("import bpy")

    def test_endpoint_setter(self):
        client = RenderClient()
        assert not client.configured
        client.endpoint = "https://abc.ngrok.app/"
        assert client.configured
        assert client.endpoint == "https://abc.ngrok.app"
