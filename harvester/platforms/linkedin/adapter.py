"""LinkedIn platform adapter: wires job types to page types, parsers and URLs."""

import logging

from harvester.core.schemas import JobType, PageType
from harvester.platforms.base import PlatformAdapter, RecordParser
from harvester.platforms.linkedin.parser import CompanyParser, ProfileParser, SearchResultsParser
from harvester.platforms.linkedin.searcher import build_search_urls, canonical_url
from harvester.platforms.linkedin.selectors import RESULT_CARD_SELECTORS

logger = logging.getLogger(__name__)

_PAGE_TYPES: dict[JobType, PageType] = {
    JobType.PROFILES: PageType.PROFILE,
    JobType.COMPANIES: PageType.ORGANIZATION,
    JobType.SEARCH: PageType.SEARCH_PAGE,
}


class LinkedInAdapter(PlatformAdapter):
    """LinkedIn adapter.

    Parsers can be overridden per page type, e.g. to plug in a parser for a
    redesigned page without touching the pipeline.
    """

    def __init__(self, parsers: dict[PageType, RecordParser] | None = None) -> None:
        self._parsers: dict[PageType, RecordParser] = {
            PageType.PROFILE: ProfileParser(),
            PageType.ORGANIZATION: CompanyParser(),
            PageType.SEARCH_PAGE: SearchResultsParser(),
        }
        if parsers:
            self._parsers.update(parsers)

    @property
    def platform_id(self) -> str:
        return "linkedin"

    def page_type_for(self, job_type: JobType) -> PageType:
        return _PAGE_TYPES[job_type]

    def parser_for(self, page_type: PageType) -> RecordParser | None:
        return self._parsers.get(page_type)

    def scroll_selectors(self, page_type: PageType) -> tuple[str, ...]:
        if page_type is PageType.SEARCH_PAGE:
            return RESULT_CARD_SELECTORS
        return ()

    def search_urls(self, query: str, max_pages: int) -> list[str]:
        return build_search_urls(query, max_pages)

    def canonical_url(self, url: str) -> str:
        return canonical_url(url)
