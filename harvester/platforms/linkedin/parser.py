"""LinkedIn HTML parsers: turn stored snapshots into record dicts.

Design rules:
  - Every selector lookup uses a fallback tuple (selectors.py).
  - Missing optional fields come back as "" or [] (never crash).
  - A page without its identifying field (person or company name) is a
    ParseError: the snapshot is most likely an error or login page.
"""

import logging
import re
from typing import Any

from bs4 import BeautifulSoup, Tag

from harvester.core.errors import ParseError
from harvester.core.schemas import PageType
from harvester.platforms.base import RecordParser
from harvester.platforms.linkedin.searcher import absolute_url, canonical_url, company_id_from_url
from harvester.platforms.linkedin.selectors import (
    COMPANY_DETAILS_TERM_SELECTOR,
    COMPANY_FOLLOWERS_SELECTORS,
    COMPANY_HQ_SELECTORS,
    COMPANY_INDUSTRY_SELECTORS,
    COMPANY_LINK_SELECTOR,
    COMPANY_NAME_SELECTORS,
    COMPANY_SIZE_SELECTORS,
    COMPANY_WEBSITE_SELECTORS,
    EXPERIENCE_COMPANY_SELECTORS,
    EXPERIENCE_DATES_SELECTORS,
    EXPERIENCE_ITEM_SELECTORS,
    EXPERIENCE_TITLE_SELECTORS,
    PROFILE_ABOUT_SELECTORS,
    PROFILE_HEADLINE_SELECTORS,
    PROFILE_LOCATION_SELECTORS,
    PROFILE_NAME_SELECTORS,
    RESULT_CARD_SELECTORS,
    RESULT_HEADLINE_SELECTORS,
    RESULT_LINK_SELECTORS,
    RESULT_LOCATION_SELECTORS,
    RESULT_NAME_SELECTORS,
    SKILL_SELECTORS,
)

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")
_NUMBER_RE = re.compile(r"(\d[\d,.]*)\s*([KkMm])?")


def _clean(text: str | None) -> str:
    """Collapse runs of whitespace and strip."""
    return _WS_RE.sub(" ", text or "").strip()


def _find_first(parent: BeautifulSoup | Tag, selectors: tuple[str, ...]) -> Tag | None:
    """Return the first element with text matching any selector, in order."""
    for selector in selectors:
        el = parent.select_one(selector)
        if el is not None and _clean(el.get_text()):
            return el
    return None


def _select_first(parent: BeautifulSoup | Tag, selectors: tuple[str, ...]) -> Tag | None:
    """Return the first element matching any selector, text or not."""
    for selector in selectors:
        el = parent.select_one(selector)
        if el is not None:
            return el
    return None


def _text(parent: BeautifulSoup | Tag, selectors: tuple[str, ...]) -> str:
    el = _find_first(parent, selectors)
    return _clean(el.get_text(" ")) if el is not None else ""


def _all_texts(parent: BeautifulSoup | Tag, selectors: tuple[str, ...]) -> list[str]:
    """Texts of every match of the first selector that matches anything, de-duplicated."""
    for selector in selectors:
        elements = parent.select(selector)
        if elements:
            seen: dict[str, None] = {}
            for el in elements:
                text = _clean(el.get_text(" "))
                if text:
                    seen.setdefault(text, None)
            return list(seen)
    return []


def _soup(content: str) -> BeautifulSoup:
    if not content or not content.strip():
        msg = "snapshot content is empty"
        raise ParseError(msg)
    return BeautifulSoup(content, "html.parser")


def parse_count(text: str) -> int | None:
    """'12,345 followers' -> 12345, '1.2K' -> 1200. None if no number."""
    match = _NUMBER_RE.search(text or "")
    if match is None:
        return None
    number, suffix = match.groups()
    if suffix:
        value = float(number.replace(",", ""))
        return int(value * (1_000 if suffix.lower() == "k" else 1_000_000))
    digits = number.replace(",", "").replace(".", "")
    return int(digits) if digits else None


class ProfileParser(RecordParser):
    """Parses a member profile page."""

    @property
    def page_type(self) -> PageType:
        return PageType.PROFILE

    def parse(self, content: str, source_url: str) -> dict[str, Any]:
        soup = _soup(content)
        full_name = _text(soup, PROFILE_NAME_SELECTORS)
        if not full_name:
            msg = f"no profile name found at {source_url}"
            raise ParseError(msg)

        first_name, _, last_name = full_name.partition(" ")
        experience = self._parse_experience(soup)
        current = experience[0] if experience else {}

        return {
            "profile_url": canonical_url(source_url),
            "full_name": full_name,
            "first_name": first_name,
            "last_name": last_name,
            "headline": _text(soup, PROFILE_HEADLINE_SELECTORS),
            "location": _text(soup, PROFILE_LOCATION_SELECTORS),
            "about": _text(soup, PROFILE_ABOUT_SELECTORS),
            "current_job_title": current.get("title", ""),
            "current_company": current.get("company", ""),
            "current_company_url": current.get("company_url", ""),
            "experience": experience,
            "skills": _all_texts(soup, SKILL_SELECTORS),
        }

    def entity_url(self, data: dict[str, Any], source_url: str) -> str:
        return data.get("profile_url") or canonical_url(source_url)

    @staticmethod
    def _parse_experience(soup: BeautifulSoup) -> list[dict[str, str]]:
        items: list[Tag] = []
        for selector in EXPERIENCE_ITEM_SELECTORS:
            items = soup.select(selector)
            if items:
                break

        experience: list[dict[str, str]] = []
        for item in items:
            link = item.select_one(COMPANY_LINK_SELECTOR)
            if link is None and item.parent is not None:
                # Company link often wraps the summary block.
                link = item.find_parent("a", href=re.compile(r"/company/"))
            href = link.get("href") if link is not None else None
            experience.append({
                "title": _text(item, EXPERIENCE_TITLE_SELECTORS),
                "company": _text(item, EXPERIENCE_COMPANY_SELECTORS),
                "company_url": canonical_url(str(href)) if href else "",
                "dates": _text(item, EXPERIENCE_DATES_SELECTORS),
            })
        return experience


class CompanyParser(RecordParser):
    """Parses an organization page (top card plus the About details list)."""

    @property
    def page_type(self) -> PageType:
        return PageType.ORGANIZATION

    def parse(self, content: str, source_url: str) -> dict[str, Any]:
        soup = _soup(content)
        name = _text(soup, COMPANY_NAME_SELECTORS)
        if not name:
            msg = f"no company name found at {source_url}"
            raise ParseError(msg)

        details = self._details(soup)
        website_el = _select_first(soup, COMPANY_WEBSITE_SELECTORS)
        website = str(website_el.get("href") or "") if website_el is not None else ""

        followers_text = _text(soup, COMPANY_FOLLOWERS_SELECTORS)
        return {
            "company_url": canonical_url(source_url),
            "company_id": company_id_from_url(source_url) or "",
            "company_name": name,
            "industry": _text(soup, COMPANY_INDUSTRY_SELECTORS) or details.get("industry", ""),
            "headquarters": _text(soup, COMPANY_HQ_SELECTORS) or details.get("headquarters", ""),
            "followers": parse_count(followers_text) if followers_text else None,
            "employee_size": _text(soup, COMPANY_SIZE_SELECTORS) or details.get("company size", ""),
            "website": website or details.get("website", ""),
            "company_type": details.get("type", ""),
            "specialties": details.get("specialties", ""),
        }

    def entity_url(self, data: dict[str, Any], source_url: str) -> str:
        return data.get("company_url") or canonical_url(source_url)

    @staticmethod
    def _details(soup: BeautifulSoup) -> dict[str, str]:
        """Read the About <dl> into a {lower-cased term: value} dict."""
        details: dict[str, str] = {}
        for term in soup.select(COMPANY_DETAILS_TERM_SELECTOR):
            value = term.find_next_sibling("dd")
            key = _clean(term.get_text()).lower()
            if key and value is not None and key not in details:
                details[key] = _clean(value.get_text(" "))
        return details


class SearchResultsParser(RecordParser):
    """Parses one page of people-search results into a list of hits."""

    @property
    def page_type(self) -> PageType:
        return PageType.SEARCH_PAGE

    def parse(self, content: str, source_url: str) -> dict[str, Any]:
        soup = _soup(content)
        cards: list[Tag] = []
        for selector in RESULT_CARD_SELECTORS:
            cards = soup.select(selector)
            if cards:
                break

        results: list[dict[str, Any]] = []
        for card in cards:
            link = _select_first(card, RESULT_LINK_SELECTORS) or card.select_one("a[href]")
            href = str(link.get("href") or "") if link is not None else ""
            name = _text(card, RESULT_NAME_SELECTORS)
            if not href and not name:
                logger.debug("Search card without link or name, skipping")
                continue
            results.append({
                "position": len(results) + 1,
                "profile_url": canonical_url(href) if href else "",
                "full_name": name,
                "headline": _text(card, RESULT_HEADLINE_SELECTORS),
                "location": _text(card, RESULT_LOCATION_SELECTORS),
            })

        return {
            "search_url": absolute_url(source_url),
            "result_count": len(results),
            "results": results,
        }
