"""
Image Proxy 测试配置文件

这个文件包含 pytest fixtures（测试夹具）和共用的辅助函数。

关键概念：
- 图片在内存中用 Pillow 生成，不依赖测试素材文件
- 源站请求通过 httpx.MockTransport 模拟，不访问网络
- Redis 通过 fakeredis 模拟
"""

import io
import sys
from pathlib import Path
from typing import Callable, Dict, Union

import httpx
import pytest
from PIL import Image

# 添加 backend 目录到 Python 路径
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from image_fetcher.client import OriginFetcher
from image_proxy.config import FetchConfig, ProxyConfig
from image_proxy.raster import RasterBuffer

Route = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


# ============================================
# 图片工具
# ============================================

def make_image(size=(64, 48), color=(200, 30, 30), mode="RGB") -> Image.Image:
    """生成纯色图片"""
    if mode in ("RGBA", "LA") and isinstance(color, tuple) and len(color) == 3:
        color = color + (255,)
    return Image.new(mode, size, color)


def image_bytes(image: Image.Image, fmt: str = "PNG", **save_kwargs) -> bytes:
    """把图片编码成字节"""
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **save_kwargs)
    return buffer.getvalue()


def make_raster(image: Image.Image, source_format: str = "png", exif_orientation: int = 1) -> RasterBuffer:
    return RasterBuffer(
        image=image,
        source_format=source_format,
        exif_orientation=exif_orientation,
        interpretation=image.mode,
    )


def open_bytes(data: bytes) -> Image.Image:
    image = Image.open(io.BytesIO(data))
    image.load()
    return image


# ============================================
# 源站模拟
# ============================================

def origin_transport(routes: Dict[str, Route]) -> httpx.MockTransport:
    """
    按 host + path 分发的模拟源站。

    使用方式：
    ```python
    transport = origin_transport({
        "example.com/a.png": httpx.Response(200, content=data, headers={"content-type": "image/png"}),
    })
    ```
    未注册的地址返回 404。
    """
    def handler(request: httpx.Request) -> httpx.Response:
        route = routes.get(f"{request.url.host}{request.url.path}")
        if route is None:
            return httpx.Response(404)
        if callable(route):
            return route(request)
        return route

    return httpx.MockTransport(handler)


def png_response(image: Image.Image = None, **headers) -> httpx.Response:
    data = image_bytes(image or make_image())
    return httpx.Response(200, content=data, headers={"content-type": "image/png", **headers})


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def tmp_fetch_config(tmp_path) -> FetchConfig:
    """临时文件写到 pytest 的临时目录，便于检查清理情况"""
    return FetchConfig(tmp_dir=str(tmp_path), max_image_size=1024 * 1024)


@pytest.fixture
def proxy_config(tmp_fetch_config) -> ProxyConfig:
    return ProxyConfig(fetch=tmp_fetch_config)


@pytest.fixture
def landscape_png() -> bytes:
    """1000x600 的横向 PNG，左右两半颜色不同"""
    image = make_image((1000, 600), (255, 0, 0))
    image.paste((0, 0, 255), (500, 0, 1000, 600))
    return image_bytes(image)


@pytest.fixture
def make_fetcher(tmp_fetch_config):
    """
    创建带模拟源站的 OriginFetcher。
    """

    def factory(routes: Dict[str, Route], config: FetchConfig = None) -> OriginFetcher:
        return OriginFetcher(config or tmp_fetch_config, transport=origin_transport(routes))

    return factory


# ============================================
# Helper Functions
# ============================================

def assert_pixels_equal(first: Image.Image, second: Image.Image):
    """断言两张图片逐像素相同"""
    assert first.size == second.size, f"Size differs: {first.size} != {second.size}"
    assert first.mode == second.mode, f"Mode differs: {first.mode} != {second.mode}"
    assert first.tobytes() == second.tobytes(), "Pixel data differs"


def assert_error_kind(exc_info, kind, message_contains=None):
    """
    断言抛出的 ProxyError 属于指定类型。

    使用方式：
    ```python
    with pytest.raises(ProxyError) as exc_info:
        ...
    assert_error_kind(exc_info, ErrorKind.DNS_ERROR)
    ```
    """
    error = exc_info.value
    assert error.kind is kind, f"Expected {kind}, got {error.kind}: {error.message}"
    if message_contains:
        assert message_contains.lower() in error.message.lower(), \
            f"Error message should contain '{message_contains}', got: {error.message}"
