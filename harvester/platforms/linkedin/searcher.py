"""LinkedIn URL builders and canonicalization.

Pure functions, no browser dependency.
"""

import logging
from urllib.parse import quote_plus, urlencode, urlparse, urlunparse

logger = logging.getLogger(__name__)

LINKEDIN_BASE = "https://www.linkedin.com"


def build_search_url(query: str, page: int = 1) -> str:
    """Build a people-search URL for a query.

    Args:
        query: Search expression (will be URL-encoded).
        page: One-based page number. page=1 omits the ``page`` param.
    """
    params: dict[str, str] = {"keywords": query.strip(), "origin": "GLOBAL_SEARCH_HEADER"}
    if page > 1:
        params["page"] = str(page)
    return f"{LINKEDIN_BASE}/search/results/people/?{urlencode(params, quote_via=quote_plus)}"


def build_search_urls(query: str, max_pages: int) -> list[str]:
    """One URL per result page, first page first."""
    return [build_search_url(query, page) for page in range(1, max_pages + 1)]


def absolute_url(href: str) -> str:
    """Prepend the LinkedIn domain to relative links."""
    if href.startswith("/"):
        return f"{LINKEDIN_BASE}{href}"
    return href


def canonical_url(href: str) -> str:
    """Strip query and fragment, force https and a trailing slash.

    ``/company/acme/about/?trk=x`` and ``/company/acme`` both become
    ``https://www.linkedin.com/company/acme/`` so they compare equal.
    """
    parsed = urlparse(absolute_url(href.strip()))
    netloc = parsed.netloc.lower()
    if netloc == "linkedin.com" or netloc.endswith(".linkedin.com"):
        netloc = "www.linkedin.com"
    parts = [p for p in parsed.path.split("/") if p]
    if len(parts) >= 2 and parts[0] in ("company", "in", "school"):
        parts = parts[:2]
    path = "/" + "/".join(parts) + "/" if parts else "/"
    return urlunparse(("https", netloc, path, "", "", ""))


def company_id_from_url(url: str) -> str | None:
    """Extract the company slug/id from a /company/<id>/ URL."""
    parts = [p for p in urlparse(absolute_url(url)).path.split("/") if p]
    if len(parts) >= 2 and parts[0] == "company":
        return parts[1]
    return None
