"""Tests for link extraction, normalization and filtering."""

import re

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from sitequarry.processors.links import (
    LinkFilter,
    compile_pattern,
    extract_links,
    filter_links,
    normalize_url,
)

BASE = "https://site.test/docs/index.html"


@pytest.mark.unit
class TestNormalizeUrl:
    def test_absolute_urls_unchanged(self):
        assert normalize_url("http://other.test/x", BASE) == "http://other.test/x"

    def test_fragment_appended_to_base(self):
        assert normalize_url("#section", BASE) == f"{BASE}#section"

    def test_relative_paths_resolve(self):
        assert normalize_url("guide.html", BASE) == "https://site.test/docs/guide.html"
        assert normalize_url("/about", BASE) == "https://site.test/about"
        assert normalize_url("../blog/", BASE) == "https://site.test/blog/"

    def test_different_relative_paths_resolve_to_same_url(self):
        base = "https://site.test/a/page.html"
        assert normalize_url("./b", base) == normalize_url("../a/b", base) == "https://site.test/a/b"


@pytest.mark.unit
class TestExtractLinks:
    def test_extracts_normalized_unique_links(self, sample_html):
        links = extract_links(sample_html, "https://site.test/")
        assert links == [
            "https://site.test/about",
            "https://site.test/contact.html",
            "https://site.test/blog/first-post",
            "https://other.test/elsewhere",
            "https://site.test/#top",
        ]

    def test_skips_script_mail_and_phone_links(self):
        html = '<a href="javascript:go()">a</a><a href="mailto:x@y">b</a><a href="tel:123">c</a><a href="">d</a>'
        assert extract_links(html, BASE) == []

    def test_duplicates_collapse_keeping_first_position(self):
        html = '<a href="/b">1</a><a href="/a">2</a><a href="https://site.test/b">3</a>'
        assert extract_links(html, BASE) == ["https://site.test/b", "https://site.test/a"]


@pytest.mark.unit
class TestPatterns:
    def test_plain_pattern_is_substring(self):
        assert compile_pattern("/blog/") == "/blog/"

    def test_wildcard_pattern_becomes_regex(self):
        matcher = compile_pattern("site.test/*/post")
        assert isinstance(matcher, re.Pattern)
        assert matcher.search("https://site.test/2024/post")
        # The dot is literal
        assert not matcher.search("https://siteXtest/2024/post")

    def test_invalid_wildcard_regex_matches_literally(self):
        assert compile_pattern("*(unclosed") == "*(unclosed"


@pytest.mark.unit
class TestFilterLinks:
    LINKS = [
        "https://site.test/docs/a",
        "https://site.test/blog/b",
        "https://site.test/blog/private/c",
        "https://other.test/docs/d",
        "not-a-url",
    ]

    def test_default_keeps_same_host_only(self):
        assert filter_links(self.LINKS, BASE) == self.LINKS[:3]

    def test_external_domains_allowed(self):
        assert filter_links(self.LINKS, BASE, allow_external_domains=True) == self.LINKS[:4]

    def test_include_patterns(self):
        assert filter_links(self.LINKS, BASE, include_patterns=["/blog/"]) == self.LINKS[1:3]

    def test_bare_star_or_empty_include_accepts_everything(self):
        assert filter_links(self.LINKS, BASE, include_patterns=["*"]) == self.LINKS[:3]
        assert filter_links(self.LINKS, BASE, include_patterns=[]) == self.LINKS[:3]

    def test_exclude_wins_over_include(self):
        kept = filter_links(self.LINKS, BASE, include_patterns=["/blog/*"], exclude_patterns=["*private*"])
        assert kept == ["https://site.test/blog/b"]

    def test_external_check_happens_before_patterns(self):
        kept = filter_links(self.LINKS, BASE, include_patterns=["/docs/"])
        assert kept == ["https://site.test/docs/a"]

    def test_link_filter_object_is_reusable(self):
        link_filter = LinkFilter(exclude_patterns=["/blog/"])
        assert link_filter(self.LINKS, BASE) == ["https://site.test/docs/a"]
        assert link_filter(self.LINKS, BASE) == ["https://site.test/docs/a"]


paths = st.lists(st.sampled_from(["docs", "blog", "private", "a", "b", "2024"]), min_size=0, max_size=3)
hosts = st.sampled_from(["site.test", "other.test", "www.site.test"])
urls = st.builds(lambda host, parts: f"https://{host}/" + "/".join(parts), hosts, paths)
pattern_lists = st.one_of(
    st.none(),
    st.lists(st.sampled_from(["/blog", "docs", "*private*", "site.test/*/a", "*"]), max_size=2),
)


@pytest.mark.unit
class TestFilterIdempotence:
    @settings(max_examples=200, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(
        links=st.lists(urls, max_size=12),
        include=pattern_lists,
        exclude=pattern_lists,
        external=st.booleans(),
    )
    def test_filtering_twice_equals_filtering_once(self, links, include, exclude, external):
        once = filter_links(links, BASE, include, exclude, external)
        twice = filter_links(once, BASE, include, exclude, external)
        assert twice == once
