"""
源站下载测试

测试 OriginFetcher 的大小限制、类型过滤、重定向和错误分类。
所有请求都通过 httpx.MockTransport 模拟。

运行测试：
    cd backend
    pytest tests/test_origin_fetcher.py -v
"""

import asyncio
import os
import socket

import httpx
import pytest

from image_fetcher.client import FetchFailure
from image_proxy.config import FetchConfig
from image_proxy.errors import ErrorKind, ImageTooBigError, ProxyError
from conftest import assert_error_kind, image_bytes, make_image, png_response


def _unresolvable(request: httpx.Request) -> httpx.Response:
    try:
        raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
    except socket.gaierror as e:
        raise httpx.ConnectError("[Errno -2] Name or service not known", request=request) from e


def _refused(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("[Errno 111] Connection refused", request=request)


# ============================================
# 1. 正常下载
# ============================================

class TestFetchSuccess:
    """成功下载测试"""

    @pytest.mark.asyncio
    async def test_fetch_writes_temp_file(self, make_fetcher, tmp_path):
        """测试：下载内容写入临时文件，离开上下文后删除"""
        data = image_bytes(make_image())
        fetcher = make_fetcher({
            "example.com/a.png": httpx.Response(200, content=data, headers={"content-type": "image/png"}),
        })

        async with fetcher.fetch("http://example.com/a.png") as result:
            assert os.path.exists(result.path)
            assert result.size == len(data)
            assert result.mime_type == "image/png"
            with open(result.path, "rb") as f:
                assert f.read() == data
            path = result.path

        assert not os.path.exists(path)
        assert list(tmp_path.iterdir()) == []
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_fetch_follows_redirects(self, make_fetcher):
        """测试：在重定向预算内跟随跳转"""
        fetcher = make_fetcher({
            "example.com/old.png": httpx.Response(302, headers={"Location": "http://cdn.example.com/new.png"}),
            "cdn.example.com/new.png": png_response(),
        })

        async with fetcher.fetch("http://example.com/old.png") as result:
            assert result.size > 0

        await fetcher.close()

    @pytest.mark.asyncio
    async def test_svg_keeps_extension(self, make_fetcher):
        fetcher = make_fetcher({
            "example.com/logo.svg": httpx.Response(200, content=b"<svg/>", headers={"content-type": "image/svg+xml"}),
        })

        async with fetcher.fetch("http://example.com/logo.svg") as result:
            assert result.path.endswith(".svg")

        await fetcher.close()


# ============================================
# 2. 资源限制
# ============================================

class TestFetchLimits:
    """大小、类型、重定向和超时限制测试"""

    @pytest.mark.asyncio
    async def test_too_big_reports_observed_size(self, make_fetcher, tmp_path):
        """测试：超过大小限制时中止，报告实际收到的字节数"""
        config = FetchConfig(tmp_dir=str(tmp_path), max_image_size=100)
        fetcher = make_fetcher({
            "example.com/big.png": httpx.Response(200, content=b"x" * 1000, headers={"content-type": "image/png"}),
        }, config)

        with pytest.raises(ImageTooBigError) as exc_info:
            async with fetcher.fetch("http://example.com/big.png"):
                pass

        assert exc_info.value.received_bytes == 1000
        assert exc_info.value.max_bytes == 100
        assert exc_info.value.message == "1000.00 B"
        assert list(tmp_path.iterdir()) == []
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_content_length_is_not_trusted(self, make_fetcher, tmp_path):
        """测试：Content-Length 偏小也会按实际字节数中止"""
        config = FetchConfig(tmp_dir=str(tmp_path), max_image_size=100)

        def lying(request):
            return httpx.Response(
                200,
                stream=httpx.ByteStream(b"x" * 500),
                headers={"content-type": "image/png", "content-length": "10"},
            )

        fetcher = make_fetcher({"example.com/lie.png": lying}, config)

        with pytest.raises(ImageTooBigError) as exc_info:
            async with fetcher.fetch("http://example.com/lie.png"):
                pass

        assert exc_info.value.received_bytes == 500
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_unlimited_size(self, make_fetcher, tmp_path):
        """测试：max_image_size=0 表示不限制"""
        config = FetchConfig(tmp_dir=str(tmp_path), max_image_size=0)
        fetcher = make_fetcher({
            "example.com/a.bin": httpx.Response(200, content=b"x" * 5000),
        }, config)

        async with fetcher.fetch("http://example.com/a.bin") as result:
            assert result.size == 5000

        await fetcher.close()

    @pytest.mark.asyncio
    async def test_mime_type_rejected(self, make_fetcher, tmp_path):
        """测试：不在白名单中的 Content-Type 被拒绝"""
        config = FetchConfig(tmp_dir=str(tmp_path), allowed_mime_types=frozenset({"image/png", "image/jpeg"}))
        fetcher = make_fetcher({
            "example.com/page": httpx.Response(200, content=b"<html/>", headers={"content-type": "text/html; charset=utf-8"}),
        }, config)

        with pytest.raises(ProxyError) as exc_info:
            async with fetcher.fetch("http://example.com/page"):
                pass

        assert_error_kind(exc_info, ErrorKind.INVALID_IMAGE, "text/html")
        assert exc_info.value.details["failure"] is FetchFailure.TYPE_REJECTED
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_too_many_redirects(self, make_fetcher, tmp_path):
        """测试：超过重定向预算是单独的失败原因"""
        config = FetchConfig(tmp_dir=str(tmp_path), max_redirects=2)
        fetcher = make_fetcher({
            "example.com/loop": lambda request: httpx.Response(302, headers={"Location": "/loop"}),
        }, config)

        with pytest.raises(ProxyError) as exc_info:
            async with fetcher.fetch("http://example.com/loop"):
                pass

        assert_error_kind(exc_info, ErrorKind.ORIGIN_ERROR, "redirects")
        assert exc_info.value.details["failure"] is FetchFailure.TOO_MANY_REDIRECTS
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_timeout(self, make_fetcher, tmp_path):
        """测试：整体超时归类为源站错误"""
        config = FetchConfig(tmp_dir=str(tmp_path), timeout=0.05)

        async def slow(request):
            await asyncio.sleep(1)
            return png_response()

        fetcher = make_fetcher({"example.com/slow.png": slow}, config)

        with pytest.raises(ProxyError) as exc_info:
            async with fetcher.fetch("http://example.com/slow.png"):
                pass

        assert_error_kind(exc_info, ErrorKind.ORIGIN_ERROR)
        assert exc_info.value.details["failure"] is FetchFailure.TIMEOUT
        assert list(tmp_path.iterdir()) == []
        await fetcher.close()


# ============================================
# 3. 错误分类
# ============================================

class TestFetchErrors:
    """源站错误分类测试"""

    @pytest.mark.asyncio
    async def test_http_error_status(self, make_fetcher):
        """测试：HTTP 4xx/5xx 归类为源站错误并保留状态行"""
        fetcher = make_fetcher({})

        with pytest.raises(ProxyError) as exc_info:
            async with fetcher.fetch("http://example.com/missing.png"):
                pass

        assert_error_kind(exc_info, ErrorKind.ORIGIN_ERROR)
        assert exc_info.value.status_line == "404 Not Found"
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_resolver_failure_is_dns_error(self, make_fetcher):
        """测试：域名解析失败归类为 DNS 错误"""
        fetcher = make_fetcher({"nowhere.invalid/a.png": _unresolvable})

        with pytest.raises(ProxyError) as exc_info:
            async with fetcher.fetch("http://nowhere.invalid/a.png"):
                pass

        assert_error_kind(exc_info, ErrorKind.DNS_ERROR)
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_squid_dns_header_is_dns_error(self, make_fetcher):
        """测试：代理返回 X-Squid-Error: ERR_DNS_FAIL 也算 DNS 错误"""
        fetcher = make_fetcher({
            "example.com/a.png": httpx.Response(503, headers={"X-Squid-Error": "ERR_DNS_FAIL 0"}),
        })

        with pytest.raises(ProxyError) as exc_info:
            async with fetcher.fetch("http://example.com/a.png"):
                pass

        assert_error_kind(exc_info, ErrorKind.DNS_ERROR)
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_connection_refused_is_origin_error(self, make_fetcher):
        """测试：其他网络错误归类为源站错误"""
        fetcher = make_fetcher({"example.com/a.png": _refused})

        with pytest.raises(ProxyError) as exc_info:
            async with fetcher.fetch("http://example.com/a.png"):
                pass

        assert_error_kind(exc_info, ErrorKind.ORIGIN_ERROR, "refused")
        assert exc_info.value.details["failure"] is FetchFailure.NETWORK
        await fetcher.close()
