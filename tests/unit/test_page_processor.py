"""Tests for turning a fetched page into a PageResult."""

from typing import Dict, List, Optional

import pytest

from sitequarry.config.options import ExtractOptions, FetchOptions, LocationOptions, ScrapeOptions
from sitequarry.exceptions import FetchError
from sitequarry.processors.page import PageProcessor, has_enough_content, run_hook
from sitequarry.protocols import ExtractResult, FetchedContent, PageData, PageMetadata, PageResult

URL = "https://site.test/page"


class StubFetcher:
    """Serves canned HTML per URL; URLs without a page raise ``FetchError``."""

    def __init__(self, pages: Dict[str, str], rendered: bool = False) -> None:
        self.pages = pages
        self.rendered = rendered
        self.calls: List[FetchOptions] = []

    async def fetch(self, url: str, options: Optional[FetchOptions] = None) -> FetchedContent:
        self.calls.append(options)
        if url not in self.pages:
            raise FetchError(url, "HTTP error! Status: 500", status_code=500)
        return FetchedContent(html=self.pages[url], status_code=200, rendered_with_heavy_engine=self.rendered)


class StubExtractor:
    def __init__(self, result: ExtractResult) -> None:
        self.result = result
        self.calls: List[str] = []

    async def extract_structured_data(self, content, options=None):
        self.calls.append(content)
        return self.result


@pytest.fixture
def page_html(sample_html) -> str:
    return sample_html


@pytest.mark.unit
class TestHelpers:
    def test_has_enough_content(self):
        assert has_enough_content(PageData(markdown="x" * 101))
        assert not has_enough_content(PageData(markdown="x" * 100))
        assert has_enough_content(PageData(links=["https://a.test/"]))
        assert has_enough_content(PageData(metadata=PageMetadata(source_url=URL, status_code=0, title="T")))
        assert not has_enough_content(PageData(metadata=PageMetadata(source_url=URL, status_code=0)))

    @pytest.mark.asyncio
    async def test_run_hook_accepts_sync_async_and_none_returns(self):
        result = PageResult(success=True)

        def mutate(r):
            r.error = "note"

        async def replace(r):
            return PageResult(success=False, error="stop")

        assert await run_hook(None, result) is result
        assert await run_hook(mutate, result) is result
        assert result.error == "note"
        replaced = await run_hook(replace, result)
        assert replaced.error == "stop"


@pytest.mark.unit
class TestPageProcessor:
    @pytest.mark.asyncio
    async def test_default_formats(self, page_html):
        processor = PageProcessor(StubFetcher({URL: page_html}))

        result = await processor.process(URL)

        assert result.success
        assert result.error is None
        assert result.data.url == URL
        assert "# Sample Page" in result.data.markdown
        assert result.data.html is None
        assert result.data.links is None
        assert result.data.metadata.title == "Sample Page"
        assert result.data.metadata.status_code == 200

    @pytest.mark.asyncio
    async def test_all_formats(self, page_html):
        processor = PageProcessor(StubFetcher({URL: page_html}, rendered=True))
        options = ScrapeOptions(formats=["markdown", "html", "raw_html", "links", "screenshot"])

        data = (await processor.process(URL, options)).data

        assert data.raw_html == page_html
        assert "<script" not in data.html
        assert "https://site.test/about" in data.links
        assert data.screenshot == ""
        assert data.rendered_with_heavy_engine

    @pytest.mark.asyncio
    async def test_links_can_be_requested_without_format(self, page_html):
        processor = PageProcessor(StubFetcher({URL: page_html}))
        data = (await processor.process(URL, ScrapeOptions(extract_links=True))).data
        assert data.links

        data = (await processor.process(URL, ScrapeOptions(formats=["links"], extract_links=False))).data
        assert data.links is None

    @pytest.mark.asyncio
    async def test_metadata_skipped_keeps_status(self, page_html):
        processor = PageProcessor(StubFetcher({URL: page_html}))
        data = (await processor.process(URL, ScrapeOptions(extract_metadata=False))).data
        assert data.metadata.title is None
        assert data.metadata.status_code == 200

    @pytest.mark.asyncio
    async def test_location_sets_accept_language(self, page_html):
        fetcher = StubFetcher({URL: page_html})
        processor = PageProcessor(fetcher)
        options = ScrapeOptions(
            location=LocationOptions(languages=["de-DE", "de"]),
            fetch=FetchOptions(headers={"X-Test": "1"}, timeout=5),
        )

        await processor.process(URL, options)

        sent = fetcher.calls[0]
        assert sent.headers == {"X-Test": "1", "Accept-Language": "de-DE,de"}
        assert sent.timeout == 5

    @pytest.mark.asyncio
    async def test_failed_fetch_without_fallback_is_failure(self):
        result = await PageProcessor(StubFetcher({})).process(URL)

        assert not result.success
        assert result.error == f"Fetch issue: Failed to fetch {URL}: HTTP error! Status: 500"
        assert result.data.url == URL

    @pytest.mark.asyncio
    async def test_partial_success_from_fallback_fetch(self, page_html):
        processor = PageProcessor(StubFetcher({}), fallback_fetcher=StubFetcher({URL: page_html}))

        result = await processor.process(URL)

        assert result.success
        assert result.error.startswith("Partial content retrieved despite fetch issues: Failed to fetch")
        assert result.data.metadata.title == "Sample Page"

    @pytest.mark.asyncio
    async def test_fallback_without_content_stays_failed(self):
        processor = PageProcessor(StubFetcher({}), fallback_fetcher=StubFetcher({URL: "<html><body></body></html>"}))
        result = await processor.process(URL, ScrapeOptions(extract_metadata=False))
        assert not result.success

    @pytest.mark.asyncio
    async def test_before_hook_can_stop_processing(self, page_html):
        async def stop(result):
            return PageResult(success=False, error="blocked", data=result.data)

        result = await PageProcessor(StubFetcher({URL: page_html})).process(URL, ScrapeOptions(before_transform=stop))

        assert not result.success
        assert result.error == "blocked"
        assert result.data.markdown is None

    @pytest.mark.asyncio
    async def test_after_hook_sees_final_data(self, page_html):
        seen = []

        def after(result):
            seen.append(result.data.markdown)
            result.data.markdown = "replaced"
            return result

        result = await PageProcessor(StubFetcher({URL: page_html})).process(URL, ScrapeOptions(after_transform=after))

        assert "# Sample Page" in seen[0]
        assert result.data.markdown == "replaced"

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_result(self, page_html):
        def explode(result):
            raise RuntimeError("hook exploded")

        result = await PageProcessor(StubFetcher({URL: page_html})).process(URL, ScrapeOptions(before_transform=explode))

        assert not result.success
        assert result.error == f"Failed to scrape {URL}: hook exploded"

    @pytest.mark.asyncio
    async def test_markdown_is_cached_per_url_and_length(self, page_html):
        processor = PageProcessor(StubFetcher({URL: page_html}))
        await processor.process(URL)
        await processor.process(URL)
        stats = processor.markdown_cache.stats()
        assert stats.misses == 1
        assert stats.hits == 1


@pytest.mark.unit
class TestExtractFormat:
    OPTIONS = ScrapeOptions(formats=["extract"], extract_options=ExtractOptions(prompt="Get the title"))

    @pytest.mark.asyncio
    async def test_extracted_data_returned_and_cached(self, page_html):
        extractor = StubExtractor(ExtractResult(success=True, data={"title": "Sample Page"}))
        processor = PageProcessor(StubFetcher({URL: page_html}), extractor=extractor)

        first = await processor.process(URL, self.OPTIONS)
        second = await processor.process(URL, self.OPTIONS)

        assert first.data.extract == {"title": "Sample Page"}
        assert second.data.extract == {"title": "Sample Page"}
        assert len(extractor.calls) == 1
        assert first.data.markdown is None

    @pytest.mark.asyncio
    async def test_short_content_gets_warning(self):
        extractor = StubExtractor(ExtractResult(success=True, data={}))
        processor = PageProcessor(StubFetcher({URL: "<p>tiny</p>"}), extractor=extractor)

        data = (await processor.process(URL, self.OPTIONS)).data

        assert data.extract == {"warning": "Content was too short for meaningful extraction", "url": URL}
        assert extractor.calls == []

    @pytest.mark.asyncio
    async def test_unparsed_reply_kept_raw(self, page_html):
        extractor = StubExtractor(ExtractResult(success=False, error="bad json", raw_response="not json"))
        data = (await PageProcessor(StubFetcher({URL: page_html}), extractor=extractor).process(URL, self.OPTIONS)).data
        assert data.extract == {"_raw": "not json"}

    @pytest.mark.asyncio
    async def test_server_error_reported(self, page_html):
        extractor = StubExtractor(ExtractResult(success=False, error="Ollama server is not available"))
        data = (await PageProcessor(StubFetcher({URL: page_html}), extractor=extractor).process(URL, self.OPTIONS)).data
        assert data.extract == {"error": "Ollama server is not available", "url": URL}

    @pytest.mark.asyncio
    async def test_without_options_extract_is_empty(self, page_html):
        extractor = StubExtractor(ExtractResult(success=True, data={"x": 1}))
        processor = PageProcessor(StubFetcher({URL: page_html}), extractor=extractor)
        data = (await processor.process(URL, ScrapeOptions(formats=["extract"]))).data
        assert data.extract == {}
