"""Abstract contracts for parsers and platform adapters."""

from abc import ABC, abstractmethod
from typing import Any

from harvester.core.errors import UnsupportedQueryError
from harvester.core.schemas import JobType, PageType


class RecordParser(ABC):
    """Turns one snapshot's HTML into a structured record.

    Implementations must be pure: no job or account side effects, and the
    same (content, source_url) always yields the same dict. Failures raise
    ParseError.
    """

    @property
    @abstractmethod
    def page_type(self) -> PageType:
        """Page type this parser understands."""

    @abstractmethod
    def parse(self, content: str, source_url: str) -> dict[str, Any]:
        """Parse raw HTML into a record dict."""

    def entity_url(self, data: dict[str, Any], source_url: str) -> str:
        """Canonical URL of the entity the record describes."""
        return source_url


class PlatformAdapter(ABC):
    """Everything the pipeline needs to know about one platform."""

    @property
    @abstractmethod
    def platform_id(self) -> str:
        """Unique identifier for this platform (e.g. 'linkedin')."""

    @abstractmethod
    def page_type_for(self, job_type: JobType) -> PageType:
        """Page type fetched for jobs of this type."""

    @abstractmethod
    def parser_for(self, page_type: PageType) -> RecordParser | None:
        """Parser for a page type, or None when unsupported."""

    def scroll_selectors(self, page_type: PageType) -> tuple[str, ...]:
        """Item selectors to scroll through before capture (empty: no scrolling)."""
        return ()

    def search_urls(self, query: str, max_pages: int) -> list[str]:
        """Expand a search expression into result-page URLs."""
        msg = f"{self.platform_id} does not support search queries"
        raise UnsupportedQueryError(msg)

    def canonical_url(self, url: str) -> str:
        """Normalize an entity URL for de-duplication."""
        return url
