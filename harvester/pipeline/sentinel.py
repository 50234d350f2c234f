"""Anti-detection sentinel: tells normal pages from challenge and ban pages.

A pure function of page state. Rules are checked in a fixed order (URL,
title, DOM markers, body phrases) and the first hit wins. Erring towards
"challenge" is intended: a false positive only aborts a job early.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


class Verdict(str, Enum):
    CLEAN = "clean"
    CHALLENGE = "challenge"


@dataclass(frozen=True)
class SentinelRules:
    """Detection heuristics. Lower-case substrings except dom_markers (CSS)."""

    url_patterns: tuple[str, ...] = (
        "/challenge/",
        "/captcha",
        "/security/challenge",
        "/checkpoint/challenge",
        "/checkpoint/lg/",
        "/authwall",
    )
    title_phrases: tuple[str, ...] = (
        "security challenge",
        "please complete this security check",
        "verify your identity",
        "security verification",
    )
    dom_markers: tuple[str, ...] = (
        '[data-test-id="captcha"]',
        ".captcha-container",
        "#captcha",
        ".challenge-form",
        ".security-challenge",
        ".verification-challenge",
        'iframe[src*="captcha"]',
    )
    content_phrases: tuple[str, ...] = (
        "your account has been restricted",
        "temporarily restricted",
        "unusual activity",
        "verify your identity",
        "security challenge",
        "please complete this security check",
    )


DEFAULT_RULES = SentinelRules()


class Sentinel:
    """Classifies a loaded page as clean or challenge."""

    def __init__(self, rules: SentinelRules = DEFAULT_RULES) -> None:
        self._rules = rules

    def classify(self, page_url: str, page_title: str, page_content: str) -> Verdict:
        reason = self.explain(page_url, page_title, page_content)
        return Verdict.CLEAN if reason is None else Verdict.CHALLENGE

    def explain(self, page_url: str, page_title: str, page_content: str) -> str | None:
        """Return the first rule that matched, or None for a clean page."""
        path = urlparse(page_url or "").path.lower()
        for pattern in self._rules.url_patterns:
            if pattern in path:
                return f"url:{pattern}"

        title = (page_title or "").lower()
        for phrase in self._rules.title_phrases:
            if phrase in title:
                return f"title:{phrase}"

        if page_content:
            soup = BeautifulSoup(page_content, "html.parser")
            for marker in self._rules.dom_markers:
                if soup.select_one(marker) is not None:
                    return f"dom:{marker}"

            text = page_content.lower()
            for phrase in self._rules.content_phrases:
                if phrase in text:
                    return f"content:{phrase}"

        return None
