"""
Document extraction from a tracked page.

A domain resolves to exactly one strategy: ``ConfiguredSelector`` when the
ingestion server holds a Selector Descriptor for it, ``DefaultSelector``
otherwise. The emitter resolves the strategy once and caches it.
"""

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from .models import SelectorDescriptor


@dataclass
class PageSnapshot:
    """What the injected script can see of the page at tick time."""

    url: str
    title: str = ""
    html: str = ""

    @property
    def domain(self) -> str:
        return (urlparse(self.url).hostname or "").lower()

    @property
    def path(self) -> str:
        return urlparse(self.url).path or "/"


@dataclass
class DocumentTarget:
    """Identifier, title and canonical URL derived from a page."""

    doc_identifier: str
    title: str
    url: str


class PageSelector:
    """Strategy interface for deriving a DocumentTarget from a page."""

    kind = "base"

    def extract(self, page: PageSnapshot) -> DocumentTarget:
        return DocumentTarget(
            doc_identifier=self.doc_identifier(page),
            title=self.title(page),
            url=self.canonical_url(page),
        )

    def doc_identifier(self, page: PageSnapshot) -> str:
        return page.path

    def title(self, page: PageSnapshot) -> str:
        return page.title

    def canonical_url(self, page: PageSnapshot) -> str:
        return page.url


class DefaultSelector(PageSelector):
    """Page defaults: path as identifier, document title, current URL."""

    kind = "default"


class ConfiguredSelector(PageSelector):
    """Extraction driven by a Selector Descriptor, falling back per field."""

    kind = "configured"

    def __init__(self, descriptor: SelectorDescriptor):
        self.descriptor = descriptor
        self._pattern: Optional[re.Pattern] = None
        if descriptor.doc_id_pattern:
            try:
                self._pattern = re.compile(descriptor.doc_id_pattern)
            except re.error as e:
                print(
                    f"Warning: Invalid doc_id_pattern for {descriptor.domain}: {e}"
                )

    def doc_identifier(self, page: PageSnapshot) -> str:
        if self._pattern is None:
            return page.path

        source = page.path if self.descriptor.doc_id_source == "path" else page.url
        match = self._pattern.search(source)
        if not match:
            return page.path
        # Prefer the first capture group, like a JS match()[1]
        value = match.group(1) if self._pattern.groups else match.group(0)
        return value or page.path

    def title(self, page: PageSnapshot) -> str:
        title_selector = self.descriptor.title_selector
        if not title_selector or not page.html:
            return page.title

        try:
            soup = BeautifulSoup(page.html, "html.parser")
            element = soup.select_one(title_selector)
        except SelectorSyntaxError as e:
            print(f"Warning: Title selector failed for {self.descriptor.domain}: {e}")
            return page.title

        if element is None:
            return page.title
        text = element.get_text(" ", strip=True)
        return text or page.title

    def canonical_url(self, page: PageSnapshot) -> str:
        template = self.descriptor.url_template
        if not template:
            return page.url
        return template.replace(
            "{doc_id}", self.doc_identifier(page)
        ).replace("{domain}", page.domain)


def selector_for(descriptor: Optional[SelectorDescriptor]) -> PageSelector:
    """Pick the extraction strategy for a lookup result."""
    if descriptor is None:
        return DefaultSelector()
    return ConfiguredSelector(descriptor)
