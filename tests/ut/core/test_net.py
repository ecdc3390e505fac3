"""URL scheme 校验测试"""

import pytest

from largo.core.exceptions import UnreachableSource, ValidationError
from largo.utils.net import fetch_bytes, is_url, validate_url_scheme


class TestValidateUrlScheme:
    def test_http_ok(self) -> None:
        validate_url_scheme("http://example.com/refs.bib")

    def test_https_ok(self) -> None:
        validate_url_scheme("https://example.com/refs.bib")

    def test_file_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("file:///etc/passwd")

    def test_empty_scheme_rejected(self) -> None:
        with pytest.raises(ValidationError, match="不允许的 URL 协议"):
            validate_url_scheme("/local/path")

    def test_context_in_error(self) -> None:
        with pytest.raises(ValidationError, match="registry index"):
            validate_url_scheme("file:///x", context="registry index foo")


class TestIsUrl:
    @pytest.mark.parametrize(("ref", "expected"), [
        ("https://example.org/refs.bib", True),
        ("http://example.org", True),
        ("refs.bib", False),
        ("../shared", False),
        ("git@example.org:x.git", False),
    ])
    def test_is_url(self, ref: str, expected: bool) -> None:
        assert is_url(ref) is expected


class TestFetchBytes:
    def test_network_error_is_unreachable(self, monkeypatch) -> None:
        import urllib.error
        import urllib.request

        def _boom(*args, **kwargs):
            raise urllib.error.URLError("connection refused")

        monkeypatch.setattr(urllib.request, "urlopen", _boom)
        with pytest.raises(UnreachableSource, match="connection refused"):
            fetch_bytes("https://example.org/refs.bib")
