"""
URL 处理测试

测试 ?url= 和 ?errorredirect= 的解析规则。

运行测试：
    cd backend
    pytest tests/test_urls.py -v
"""

import pytest

from image_proxy.urls import parse_url, path_extension, sanitize_error_redirect


# ============================================
# 1. parse_url 测试
# ============================================

class TestParseUrl:
    """URL 规范化测试"""

    def test_plain_host_defaults_to_http(self):
        """测试：没有前缀时使用 http"""
        assert parse_url("example.com/a.jpg") == "http://example.com/a.jpg"

    def test_ssl_prefix_uses_https(self):
        """测试：ssl: 前缀改写为 https"""
        assert parse_url("ssl:example.com/a.jpg") == "https://example.com/a.jpg"

    def test_leading_slashes_are_ignored(self):
        assert parse_url("//example.com/a.jpg") == "http://example.com/a.jpg"
        assert parse_url("ssl://example.com/a.jpg") == "https://example.com/a.jpg"

    def test_query_string_is_kept(self):
        assert parse_url("example.com/img.php?id=5&size=l") == "http://example.com/img.php?id=5&size=l"

    @pytest.mark.parametrize("url", [
        "http://example.com/a.jpg",
        "https://example.com/a.jpg",
    ])
    def test_explicit_scheme_is_rejected(self, url):
        """测试：已经带 http:/https: 的地址被拒绝"""
        with pytest.raises(ValueError):
            parse_url(url)

    @pytest.mark.parametrize("url", [
        "",
        "example .com/a.jpg",
        "example.com/a<b>.jpg",
        "example.com/%zz.jpg",
        "example.com:99999/a.jpg",
        "example.com:port/a.jpg",
        "/",
    ])
    def test_invalid_urls(self, url):
        """测试：非法地址抛出 ValueError"""
        with pytest.raises(ValueError):
            parse_url(url)


# ============================================
# 2. errorredirect 测试
# ============================================

class TestSanitizeErrorRedirect:
    """errorredirect 清理测试"""

    def test_nested_errorredirect_is_removed(self):
        """测试：嵌套的 errorredirect 参数被移除，其余参数保留"""
        url = parse_url("ssl:images.example.com/?url=example.com/a.jpg&errorredirect=example.com/b.jpg&w=300")
        sanitized = sanitize_error_redirect(url)

        assert "errorredirect" not in sanitized
        assert sanitized == "https://images.example.com/?url=example.com%2Fa.jpg&w=300"

    def test_url_without_errorredirect_is_unchanged(self):
        url = "https://images.example.com/?url=example.com/a.jpg&w=300"
        assert sanitize_error_redirect(url) == url

    def test_url_without_query_is_unchanged(self):
        assert sanitize_error_redirect("http://example.com/fallback.png") == "http://example.com/fallback.png"


# ============================================
# 3. path_extension 测试
# ============================================

class TestPathExtension:

    @pytest.mark.parametrize("url,expected", [
        ("http://example.com/a.SVG", "svg"),
        ("http://example.com/dir.v2/icon.ico?x=1", "ico"),
        ("http://example.com/dir.v2/image", ""),
        ("http://example.com/", ""),
    ])
    def test_extension(self, url, expected):
        assert path_extension(url) == expected
