"""
端到端测试

通过 FastAPI TestClient 调用完整的请求流程：
参数校验 -> 限流 -> 源站下载 -> 解码 -> 处理 -> 编码 -> 响应。

运行测试：
    cd backend
    pytest tests/test_server.py -v
"""

import asyncio
import socket
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from image_proxy.config import FetchConfig, ProxyConfig, ThrottlerConfig
from image_proxy.main import create_app
from image_proxy.server import (
    BANNER,
    DNS_ERROR_MESSAGE,
    INVALID_REDIRECT_URL_MESSAGE,
    INVALID_URL_MESSAGE,
    UNKNOWN_ERROR_MESSAGE,
    ImageServer,
)
from manipulators import ManipulationPipeline, Manipulator
from throttler import MemoryThrottleBackend, Throttler
from conftest import make_image, open_bytes, png_response


def _unresolvable(request: httpx.Request) -> httpx.Response:
    try:
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
    except socket.gaierror as e:
        raise httpx.ConnectError("[Errno -2] Name or service not known", request=request) from e


@pytest.fixture
def origin_routes(landscape_png):
    return {
        "example.com/a.png": lambda request: httpx.Response(
            200, content=landscape_png, headers={"content-type": "image/png"},
        ),
        "example.com/page.html": lambda request: httpx.Response(
            200, content=b"<html></html>", headers={"content-type": "text/html"},
        ),
        "nowhere.invalid/a.png": _unresolvable,
    }


@pytest.fixture
def client(proxy_config, make_fetcher, origin_routes):
    """带模拟源站的 TestClient"""
    app = create_app(proxy_config, fetcher=make_fetcher(origin_routes))
    with TestClient(app) as test_client:
        yield test_client


# ============================================
# 1. 正常请求
# ============================================

class TestImageRequests:
    """成功请求测试"""

    def test_square_crop_with_alignment(self, client):
        """测试：1000x600 的图片 w=300&h=300&t=square&a=top 得到 300x300"""
        response = client.get("/", params={"url": "example.com/a.png", "w": "300", "h": "300", "t": "square", "a": "top"})

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "public, max-age=31536000"
        assert open_bytes(response.content).size == (300, 300)

    def test_no_parameters_returns_origin_pixels(self, client, landscape_png):
        response = client.get("/", params={"url": "example.com/a.png"})

        assert response.status_code == 200
        assert open_bytes(response.content).tobytes() == open_bytes(landscape_png).convert("RGB").tobytes()

    def test_last_value_wins(self, client):
        response = client.get("/?url=example.com/a.png&w=100&w=200")

        assert open_bytes(response.content).size == (200, 120)

    def test_output_format(self, client):
        response = client.get("/", params={"url": "example.com/a.png", "w": "100", "output": "jpg", "q": "50"})

        assert response.headers["content-type"] == "image/jpeg"
        assert open_bytes(response.content).format == "JPEG"

    def test_base64_encoding(self, client):
        response = client.get("/", params={"url": "example.com/a.png", "w": "50", "encoding": "base64"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text.startswith("data:image/png;base64,")

    def test_filename_sets_content_disposition(self, client):
        response = client.get("/", params={"url": "example.com/a.png", "w": "50", "filename": "photo1"})

        assert response.headers["content-disposition"] == "inline; filename=photo1.png"

    def test_non_alphanumeric_filename_is_ignored(self, client):
        response = client.get("/", params={"url": "example.com/a.png", "w": "50", "filename": "../etc"})

        assert "content-disposition" not in response.headers

    def test_missing_url_returns_banner(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.text == BANNER

    def test_empty_url_returns_banner(self, client):
        """测试：url 为空时和缺省一样返回说明文字"""
        response = client.get("/?url=")

        assert response.status_code == 200
        assert response.text == BANNER

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {
            "status": "healthy",
            "service": "image-proxy",
            "throttler_enabled": False,
            "throttler_driver": "none",
            "firewall_enabled": False,
        }


# ============================================
# 2. 错误响应
# ============================================

class TestErrorResponses:
    """错误类型到响应的映射测试"""

    def test_invalid_url(self, client):
        """测试：带 scheme 的 url 被拒绝"""
        response = client.get("/", params={"url": "http://example.com/a.png"})

        assert response.status_code == 404
        assert response.text == INVALID_URL_MESSAGE

    def test_dns_error_is_never_redirected(self, client):
        """测试：DNS 失败返回 410，即使设置了 errorredirect 也不跳转"""
        response = client.get(
            "/",
            params={"url": "nowhere.invalid/a.png", "errorredirect": "example.com/fallback.png"},
            follow_redirects=False,
        )

        assert response.status_code == 410
        assert response.text == DNS_ERROR_MESSAGE
        assert "location" not in response.headers

    def test_origin_error(self, client):
        response = client.get("/", params={"url": "example.com/missing.png"})

        assert response.status_code == 404
        assert response.headers["content-type"].startswith("text/html")
        assert response.text.endswith("The requested URL returned error: 404 Not Found")

    def test_origin_error_redirects(self, client):
        """测试：源站错误跳转到 errorredirect，并去掉嵌套的 errorredirect"""
        response = client.get(
            "/",
            params={
                "url": "example.com/missing.png",
                "errorredirect": "ssl:cdn.example.com/fallback.png?errorredirect=loop.example.com/x.png",
            },
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == "https://cdn.example.com/fallback.png"

    def test_unparsable_errorredirect(self, client):
        response = client.get(
            "/",
            params={"url": "example.com/missing.png", "errorredirect": "http://cdn.example.com/x.png"},
            follow_redirects=False,
        )

        assert response.status_code == 404
        assert response.text == INVALID_REDIRECT_URL_MESSAGE

    def test_invalid_image(self, client):
        response = client.get("/", params={"url": "example.com/page.html"})

        assert response.status_code == 400

    def test_image_too_big(self, tmp_path, make_fetcher, origin_routes):
        """测试：超过大小限制时返回实际大小和限制"""
        fetch_config = FetchConfig(tmp_dir=str(tmp_path), max_image_size=100)
        config = ProxyConfig(fetch=fetch_config)

        app = create_app(config, fetcher=make_fetcher(origin_routes, fetch_config))
        with TestClient(app) as test_client:
            response = test_client.get("/", params={"url": "example.com/a.png"})

        assert response.status_code == 400
        lines = response.text.split("\n")
        assert lines[0] == "The image is too big to be downloaded."
        assert lines[1].startswith("Image size ")
        assert lines[2] == "Max image size: 100.00 B"
        assert list(tmp_path.iterdir()) == []

    def test_image_too_large(self, client):
        response = client.get("/", params={"url": "example.com/a.png", "w": "20000", "h": "20000", "t": "absolute"})

        assert response.status_code == 400
        assert response.text.startswith("400 Bad Request - ")

    def test_rate_exceeded(self, proxy_config, make_fetcher, origin_routes):
        """测试：超过限流返回 429"""
        throttler = Throttler(MemoryThrottleBackend(), ThrottlerConfig(enabled=True, allowed_requests=1))
        app = create_app(proxy_config, fetcher=make_fetcher(origin_routes), throttler=throttler)

        with TestClient(app) as test_client:
            first = test_client.get("/", params={"url": "example.com/a.png", "w": "10"})
            second = test_client.get("/", params={"url": "example.com/a.png", "w": "10"})

        assert first.status_code == 200
        assert second.status_code == 429
        assert second.text.startswith("429 Too Many Requests - ")


# ============================================
# 3. ImageServer 直接调用
# ============================================

class ExplodingStage(Manipulator):
    name = "boom"

    def run(self, raster, params):
        raise RuntimeError("unexpected")


class SlowStage(Manipulator):
    name = "slow"

    def run(self, raster, params):
        time.sleep(0.5)


class TestImageServer:

    @pytest.mark.asyncio
    async def test_unknown_error(self, proxy_config, make_fetcher, caplog):
        """测试：未分类的异常返回 500，并记录 URL 和异常类型"""
        server = ImageServer(
            proxy_config,
            fetcher=make_fetcher({"example.com/a.png": png_response()}),
            pipeline=ManipulationPipeline([ExplodingStage()]),
        )

        response = await server.handle({"url": "example.com/a.png", "boom": "1"}, "203.0.113.1")

        assert response.status_code == 500
        assert response.body.decode() == UNKNOWN_ERROR_MESSAGE
        assert "RuntimeError" in caplog.text
        assert "example.com/a.png" in caplog.text
        await server.close()

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_processing_timeout(self, tmp_fetch_config, make_fetcher, tmp_path):
        config = ProxyConfig(fetch=tmp_fetch_config, process_timeout=0.05)
        server = ImageServer(
            config,
            fetcher=make_fetcher({"example.com/a.png": png_response(make_image((8, 8)))}),
            pipeline=ManipulationPipeline([SlowStage()]),
        )

        response = await server.handle({"url": "example.com/a.png", "slow": "1"})

        assert response.status_code == 400
        assert response.body.decode().startswith("400 Bad Request - ")
        assert list(tmp_path.iterdir()) == []
        await server.close()

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_timeout_stops_remaining_stages(self, tmp_fetch_config, make_fetcher):
        """测试：超时后工作线程在下一个阶段前停止"""
        ran = []

        class Marker(Manipulator):
            name = "mark"

            def run(self, raster, params):
                ran.append(self.name)

        config = ProxyConfig(fetch=tmp_fetch_config, process_timeout=0.05)
        server = ImageServer(
            config,
            fetcher=make_fetcher({"example.com/a.png": png_response(make_image((8, 8)))}),
            pipeline=ManipulationPipeline([SlowStage(), Marker()]),
        )

        response = await server.handle({"url": "example.com/a.png", "slow": "1", "mark": "1"})
        await asyncio.sleep(0.8)

        assert response.status_code == 400
        assert ran == []
        await server.close()

    @pytest.mark.asyncio
    async def test_params_are_read_only(self, proxy_config, make_fetcher):
        seen = {}

        class Recorder(Manipulator):
            name = "record"

            def run(self, raster, params):
                seen["params"] = params

        server = ImageServer(
            proxy_config,
            fetcher=make_fetcher({"example.com/a.png": png_response()}),
            pipeline=ManipulationPipeline([Recorder()]),
        )
        await server.handle({"url": "example.com/a.png", "record": "1"})

        with pytest.raises(TypeError):
            seen["params"]["w"] = "10"
        await server.close()
