"""Tests for page_selectors module functionality."""

import unittest
from unittest.mock import patch

from docpulse.models import SelectorDescriptor
from docpulse.page_selectors import (
    ConfiguredSelector,
    DefaultSelector,
    PageSnapshot,
    selector_for,
)

PAGE_HTML = (
    "<html><head><title>Quarterly plan - Google Docs</title></head>"
    "<body><div class='docs-title-input'> Quarterly plan </div></body></html>"
)


def make_page(url="https://docs.google.com/document/d/abc123/edit?tab=t.0"):
    return PageSnapshot(url=url, title="Quarterly plan - Google Docs", html=PAGE_HTML)


class TestPageSnapshot(unittest.TestCase):
    """Test cases for PageSnapshot."""

    def test_domain_and_path(self):
        """Test domain and path derive from the URL."""
        page = make_page("https://Docs.Google.com/document/d/abc123/edit")
        self.assertEqual(page.domain, "docs.google.com")
        self.assertEqual(page.path, "/document/d/abc123/edit")

    def test_empty_path_is_root(self):
        """Test a bare host has root path."""
        self.assertEqual(PageSnapshot(url="https://chatgpt.com").path, "/")


class TestDefaultSelector(unittest.TestCase):
    """Test cases for page-default extraction."""

    def test_extract_uses_page_defaults(self):
        """Test path, page title and current URL are used."""
        page = make_page()
        target = DefaultSelector().extract(page)

        self.assertEqual(target.doc_identifier, "/document/d/abc123/edit")
        self.assertEqual(target.title, "Quarterly plan - Google Docs")
        self.assertEqual(target.url, page.url)


class TestConfiguredSelector(unittest.TestCase):
    """Test cases for descriptor-driven extraction."""

    def test_pattern_capture_group_is_identifier(self):
        """Test first capture group of the pattern wins."""
        selector = ConfiguredSelector(
            SelectorDescriptor(domain="docs.google.com", doc_id_pattern=r"/d/([\w-]+)")
        )
        self.assertEqual(selector.doc_identifier(make_page()), "abc123")

    def test_pattern_without_group_uses_whole_match(self):
        """Test a group-less pattern yields the full match."""
        selector = ConfiguredSelector(
            SelectorDescriptor(domain="meet.google.com", doc_id_pattern=r"[a-z]{3}-[a-z]{4}-[a-z]{3}")
        )
        page = PageSnapshot(url="https://meet.google.com/abc-defg-hij")
        self.assertEqual(selector.doc_identifier(page), "abc-defg-hij")

    def test_pattern_miss_falls_back_to_path(self):
        """Test no match falls back to the page path."""
        selector = ConfiguredSelector(
            SelectorDescriptor(domain="docs.google.com", doc_id_pattern=r"/spreadsheets/d/(\w+)")
        )
        self.assertEqual(selector.doc_identifier(make_page()), "/document/d/abc123/edit")

    def test_path_source_ignores_query_string(self):
        """Test doc_id_source 'path' matches against the path only."""
        selector = ConfiguredSelector(
            SelectorDescriptor(
                domain="chatgpt.com", doc_id_pattern=r"c=(\w+)", doc_id_source="path"
            )
        )
        page = PageSnapshot(url="https://chatgpt.com/chat?c=xyz")
        self.assertEqual(selector.doc_identifier(page), "/chat")

    def test_invalid_pattern_falls_back_to_path(self):
        """Test a broken regex is reported and ignored."""
        with patch("builtins.print") as mock_print:
            selector = ConfiguredSelector(
                SelectorDescriptor(domain="docs.google.com", doc_id_pattern="(unclosed")
            )
        mock_print.assert_called()
        self.assertEqual(selector.doc_identifier(make_page()), "/document/d/abc123/edit")

    def test_title_selector_reads_element_text(self):
        """Test CSS selector text is stripped and used as title."""
        selector = ConfiguredSelector(
            SelectorDescriptor(domain="docs.google.com", title_selector=".docs-title-input")
        )
        self.assertEqual(selector.title(make_page()), "Quarterly plan")

    def test_title_selector_miss_falls_back_to_page_title(self):
        """Test missing element falls back to the document title."""
        selector = ConfiguredSelector(
            SelectorDescriptor(domain="docs.google.com", title_selector="#nope")
        )
        self.assertEqual(selector.title(make_page()), "Quarterly plan - Google Docs")

    @patch("builtins.print")
    def test_malformed_title_selector_falls_back(self, mock_print):
        """Test CSS syntax errors are reported and use the page title."""
        selector = ConfiguredSelector(
            SelectorDescriptor(domain="docs.google.com", title_selector="div[")
        )
        self.assertEqual(selector.title(make_page()), "Quarterly plan - Google Docs")
        self.assertIn("Title selector failed", mock_print.call_args[0][0])

    def test_title_extraction_bug_propagates(self):
        """Test only selector syntax errors are absorbed."""
        selector = ConfiguredSelector(
            SelectorDescriptor(domain="docs.google.com", title_selector=".docs-title-input")
        )
        with patch("bs4.BeautifulSoup.select_one", side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                selector.title(make_page())

    def test_title_selector_empty_element_falls_back(self):
        """Test an element with no text falls back to the page title."""
        page = PageSnapshot(
            url="https://docs.google.com/d/x", title="Fallback", html="<div id='t'>  </div>"
        )
        selector = ConfiguredSelector(
            SelectorDescriptor(domain="docs.google.com", title_selector="#t")
        )
        self.assertEqual(selector.title(page), "Fallback")

    def test_url_template_substitution(self):
        """Test canonical URL built from the template."""
        selector = ConfiguredSelector(
            SelectorDescriptor(
                domain="docs.google.com",
                doc_id_pattern=r"/d/([\w-]+)",
                url_template="https://{domain}/document/d/{doc_id}",
            )
        )
        self.assertEqual(
            selector.canonical_url(make_page()),
            "https://docs.google.com/document/d/abc123",
        )

    def test_no_template_uses_current_url(self):
        """Test canonical URL falls back to the current URL."""
        page = make_page()
        selector = ConfiguredSelector(SelectorDescriptor(domain="docs.google.com"))
        self.assertEqual(selector.canonical_url(page), page.url)


class TestSelectorFor(unittest.TestCase):
    """Test cases for strategy resolution."""

    def test_none_resolves_to_default(self):
        self.assertIsInstance(selector_for(None), DefaultSelector)

    def test_descriptor_resolves_to_configured(self):
        selector = selector_for(SelectorDescriptor(domain="docs.google.com"))
        self.assertIsInstance(selector, ConfiguredSelector)
        self.assertEqual(selector.kind, "configured")


def test_configured_extract_from_fixture_page(sample_page_html):
    """Test full extraction over a realistic page."""
    page = PageSnapshot(
        url="https://docs.google.com/document/d/doc-1/edit",
        title="Quarterly plan - Google Docs",
        html=sample_page_html,
    )
    selector = selector_for(
        SelectorDescriptor(
            domain="docs.google.com",
            title_selector="div.docs-title-input",
            doc_id_pattern=r"/document/d/([\w-]+)",
            url_template="https://{domain}/document/d/{doc_id}",
        )
    )

    target = selector.extract(page)

    assert target.doc_identifier == "doc-1"
    assert target.title == "Quarterly plan"
    assert target.url == "https://docs.google.com/document/d/doc-1"
