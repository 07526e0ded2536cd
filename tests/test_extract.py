"""Tests for MetadataExtractor: rule chain, resolution, classification and fetch failures."""

from typing import Callable, List

import httpx
import pytest

from link_preview.config import Settings
from link_preview.extract import MetadataExtractor
from link_preview.models import FetchError, FetchErrorKind, PreviewRecord, content_hash

Handler = Callable[[httpx.Request], httpx.Response]


def _extractor(handler: Handler, settings: Settings) -> MetadataExtractor:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return MetadataExtractor(settings, client=client)


def _html_response(html: str, status_code: int = 200, **headers: str) -> Handler:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            status_code,
            content=html.encode("utf-8"),
            headers={"content-type": "text/html; charset=utf-8", **headers},
        )
    return handler


class TestParse:
    """Rule-chain parsing without any network."""

    def test_open_graph_wins(self, settings: Settings, og_html: str) -> None:
        record = MetadataExtractor(settings).parse(og_html, "https://example.com/post/1")
        assert record.title == "OG Title"
        assert record.description == "OG description of the page."
        assert record.image_url == "https://example.com/images/cover.png"
        assert record.site_name == "Example Site"
        assert record.content_type == "article"

    def test_twitter_card_fallback(self, settings: Settings, twitter_only_html: str) -> None:
        record = MetadataExtractor(settings).parse(twitter_only_html, "https://example.com/")
        assert record.title == "Twitter Title"
        assert record.description == "Twitter description"
        assert record.image_url == "https://cdn.example.com/twitter.png"
        assert record.site_name == "@example"

    def test_html_fallback(self, settings: Settings, plain_html: str) -> None:
        record = MetadataExtractor(settings).parse(plain_html, "https://example.com/docs/page")
        assert record.title is not None and record.title.startswith("Plain")
        assert record.description == "Plain description"
        assert record.image_url == "https://example.com/docs/favicon.ico"
        assert record.site_name is None
        assert record.content_type == "website"

    def test_empty_og_value_falls_through(self, settings: Settings) -> None:
        html = '<html><head><meta property="og:title" content="   "><title>Real</title></head></html>'
        record = MetadataExtractor(settings).parse(html, "https://example.com/")
        assert record.title == "Real"

    def test_no_metadata(self, settings: Settings) -> None:
        record = MetadataExtractor(settings).parse("<html><body>hi</body></html>", "https://example.com/")
        assert record.title is None
        assert record.description is None
        assert record.image_url is None
        assert record.quality_score == 0

    def test_canonical_url_overrides_record_url(self, settings: Settings) -> None:
        html = """
        <html><head>
            <link rel="canonical" href="/canonical/path">
            <meta property="og:image" content="img.png">
            <title>T</title>
        </head></html>
        """
        record = MetadataExtractor(settings).parse(html, "https://example.com/a/b?utm=1")
        assert record.url == "https://example.com/canonical/path"
        assert record.image_url == "https://example.com/canonical/img.png"

    def test_unresolvable_image_dropped(self, settings: Settings) -> None:
        html = '<html><head><meta property="og:image" content="data:image/png;base64,AAAA"></head></html>'
        record = MetadataExtractor(settings).parse(html, "https://example.com/")
        assert record.image_url is None

    def test_lengths_are_capped(self) -> None:
        s = Settings(max_title_length=10, max_extracted_description_length=20, max_site_name_length=5)
        html = f"""
        <html><head>
            <meta property="og:title" content="{'t' * 50}">
            <meta property="og:description" content="{'d' * 50}">
            <meta property="og:site_name" content="{'s' * 50}">
        </head></html>
        """
        record = MetadataExtractor(s).parse(html, "https://example.com/")
        assert len(record.title) == 10
        assert len(record.description) == 20
        assert len(record.site_name) == 5

    def test_multibyte_truncation_keeps_codepoints(self) -> None:
        s = Settings(max_title_length=3)
        html = '<html><head><meta property="og:title" content="日本語のタイトル"></head></html>'
        record = MetadataExtractor(s).parse(html, "https://example.com/")
        assert record.title == "日本語"

    def test_content_hash(self, settings: Settings, og_html: str) -> None:
        record = MetadataExtractor(settings).parse(og_html, "https://example.com/post/1")
        assert record.content_hash == content_hash(
            "https://example.com/post/1", "OG Title", "OG description of the page."
        )

    def test_no_store_marks_dynamic(self, settings: Settings) -> None:
        html = '<html><head><title>T</title></head></html>'
        ex = MetadataExtractor(settings)
        assert ex.parse(html, "https://a.com/", headers={"cache-control": "private, no-store"}).is_dynamic
        assert not ex.parse(html, "https://a.com/", headers={"cache-control": "max-age=60"}).is_dynamic

    def test_meta_no_store_marks_dynamic(self, settings: Settings) -> None:
        html = '<html><head><meta http-equiv="Cache-Control" content="no-store"><title>T</title></head></html>'
        assert MetadataExtractor(settings).parse(html, "https://a.com/").is_dynamic


class TestClassify:
    def test_docs_service_name(self, settings: Settings) -> None:
        ex = MetadataExtractor(settings)
        assert ex.classify("https://docs.aws.amazon.com/lambda/latest/dg/welcome.html") == (True, "LAMBDA")

    def test_subdomain_of_first_party(self, settings: Settings) -> None:
        ex = MetadataExtractor(settings)
        assert ex.classify("https://ap-northeast-1.console.aws.amazon.com/s3/buckets") == (True, "S3")

    def test_no_path_segment(self, settings: Settings) -> None:
        ex = MetadataExtractor(settings)
        assert ex.classify("https://aws.amazon.com/") == (True, None)

    def test_third_party(self, settings: Settings) -> None:
        ex = MetadataExtractor(settings)
        assert ex.classify("https://github.com/aws/aws-cli") == (False, None)
        assert ex.classify("https://fakeaws.amazon.com.example.org/x") == (False, None)

    def test_configured_domains(self) -> None:
        ex = MetadataExtractor(Settings(first_party_domains=["example-aws.com"]))
        assert ex.classify("https://docs.example-aws.com/ec2/") == (True, "EC2")
        assert ex.classify("https://docs.aws.amazon.com/ec2/") == (False, None)


@pytest.mark.asyncio
class TestExtract:
    """Full fetch + parse through httpx.MockTransport."""

    async def test_success(self, settings: Settings, og_html: str) -> None:
        ex = _extractor(_html_response(og_html), settings)
        result = await ex.extract("https://example.com/post/1")
        assert isinstance(result, PreviewRecord)
        assert result.title == "OG Title"
        assert result.quality_score > 0
        await ex.aclose()

    async def test_invalid_url_makes_no_request(self, settings: Settings) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        ex = _extractor(handler, settings)
        result = await ex.extract("ftp://example.com/file")
        assert isinstance(result, FetchError)
        assert result.kind is FetchErrorKind.INVALID_URL
        assert seen == []

    async def test_sends_user_agent_and_single_request(self, og_html: str) -> None:
        s = Settings(user_agent="test-agent/1.0")
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=og_html.encode())

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler), headers={"user-agent": s.user_agent})
        await MetadataExtractor(s, client=client).extract("https://example.com/")
        assert len(seen) == 1
        assert seen[0].method == "GET"
        assert seen[0].headers["user-agent"] == "test-agent/1.0"

    async def test_force_refresh_requests_no_cache(self, settings: Settings, og_html: str) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=og_html.encode())

        await _extractor(handler, settings).extract("https://example.com/", force_refresh=True)
        assert seen[0].headers["cache-control"] == "no-cache"

    async def test_http_error_status(self, settings: Settings) -> None:
        ex = _extractor(_html_response("<html></html>", status_code=404), settings)
        result = await ex.extract("https://example.com/missing")
        assert isinstance(result, FetchError)
        assert result.kind is FetchErrorKind.HTTP_STATUS
        assert result.status_code == 404
        assert "404" in result.message

    async def test_timeout(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        result = await _extractor(handler, settings).extract("https://slow.example.com/")
        assert isinstance(result, FetchError)
        assert result.kind is FetchErrorKind.TIMEOUT

    async def test_network_error(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await _extractor(handler, settings).extract("https://down.example.com/")
        assert isinstance(result, FetchError)
        assert result.kind is FetchErrorKind.NETWORK
        assert "connection refused" in result.message

    async def test_too_large(self, og_html: str) -> None:
        s = Settings(max_content_bytes=64)
        result = await _extractor(_html_response(og_html), s).extract("https://example.com/")
        assert isinstance(result, FetchError)
        assert result.kind is FetchErrorKind.TOO_LARGE

    async def test_too_large_without_content_length(self) -> None:
        s = Settings(max_content_bytes=64)

        async def body():
            for _ in range(10):
                yield b"x" * 32

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body())

        result = await _extractor(handler, s).extract("https://example.com/")
        assert isinstance(result, FetchError)
        assert result.kind is FetchErrorKind.TOO_LARGE

    async def test_empty_body_is_parse_error(self, settings: Settings) -> None:
        result = await _extractor(_html_response("   "), settings).extract("https://example.com/")
        assert isinstance(result, FetchError)
        assert result.kind is FetchErrorKind.PARSE

    async def test_relative_links_resolve_against_final_url(self, settings: Settings) -> None:
        html = '<html><head><meta property="og:image" content="cover.png"><title>T</title></head></html>'

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "https://example.com/new/page"})
            return httpx.Response(200, content=html.encode())

        result = await _extractor(handler, settings).extract("https://example.com/old")
        assert isinstance(result, PreviewRecord)
        assert result.image_url == "https://example.com/new/cover.png"
        assert result.url == "https://example.com/old"

    async def test_no_store_header(self, settings: Settings) -> None:
        ex = _extractor(_html_response("<title>T</title>", **{"cache-control": "no-store"}), settings)
        result = await ex.extract("https://example.com/")
        assert isinstance(result, PreviewRecord)
        assert result.is_dynamic is True

    async def test_url_rejected_by_client(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.InvalidURL("Invalid non-printable ASCII character in URL")

        result = await _extractor(handler, settings).extract("https://example.com/a")
        assert isinstance(result, FetchError)
        assert result.kind is FetchErrorKind.INVALID_URL

    async def test_control_characters_make_no_request(self, settings: Settings) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        result = await _extractor(handler, settings).extract("https://example.com/a\tb")
        assert isinstance(result, FetchError)
        assert result.kind is FetchErrorKind.INVALID_URL
        assert seen == []
