"""LinkedIn DOM selector constants with fallbacks.

Ordered by stability: data-* > aria-* > class names.
Each constant is a tuple so callers iterate until a match is found.
"""

# --- Profile page ---
PROFILE_NAME_SELECTORS: tuple[str, ...] = (
    "h1.text-heading-xlarge",
    ".pv-text-details__left-panel h1",
    'h1[data-anonymize="person-name"]',
    ".ph5 h1",
)

PROFILE_HEADLINE_SELECTORS: tuple[str, ...] = (
    '[data-anonymize="headline"]',
    ".text-body-medium.break-words",
    ".pv-text-details__left-panel .text-body-medium",
    ".ph5 .text-body-medium",
)

PROFILE_LOCATION_SELECTORS: tuple[str, ...] = (
    '[data-anonymize="location"]',
    ".text-body-small.inline.t-black--light.break-words",
    ".pv-text-details__left-panel .text-body-small",
    ".ph5 .text-body-small",
)

PROFILE_ABOUT_SELECTORS: tuple[str, ...] = (
    '[data-section="summary"] .pv-about__summary-text',
    ".pv-about-section .pv-about__summary-text",
    ".pv-about__summary-text .inline-show-more-text",
    ".about .inline-show-more-text",
)

EXPERIENCE_ITEM_SELECTORS: tuple[str, ...] = (
    '[data-section="experience"] .pv-entity__summary-info',
    ".experience-section .pv-entity__summary-info",
    ".experience .pv-entity__summary-info",
)

EXPERIENCE_TITLE_SELECTORS: tuple[str, ...] = ("h3", ".t-16")
EXPERIENCE_COMPANY_SELECTORS: tuple[str, ...] = (".pv-entity__secondary-title", "h4", ".t-14")
EXPERIENCE_DATES_SELECTORS: tuple[str, ...] = (".pv-entity__date-range", ".t-black--light")
COMPANY_LINK_SELECTOR: str = 'a[href*="/company/"]'

SKILL_SELECTORS: tuple[str, ...] = (
    '[data-section="skills"] .pv-skill-entity__skill-name',
    ".pv-skill-category-entity__name",
    ".pv-skill-entity__skill-name",
)

# --- Company page ---
COMPANY_NAME_SELECTORS: tuple[str, ...] = (
    'h1[data-anonymize="company-name"]',
    "h1.org-top-card-summary__title",
    ".org-top-card-summary__title",
    ".org-top-card-summary__info h1",
)

COMPANY_INDUSTRY_SELECTORS: tuple[str, ...] = (
    ".org-top-card-summary__industry",
    ".org-top-card-summary-info-list__info-item",
)

COMPANY_HQ_SELECTORS: tuple[str, ...] = (".org-top-card-summary__headquarter",)
COMPANY_FOLLOWERS_SELECTORS: tuple[str, ...] = (
    ".org-top-card-summary__follower-count",
    ".follower-count",
)
COMPANY_SIZE_SELECTORS: tuple[str, ...] = (".org-top-card-summary__employee-count",)
COMPANY_WEBSITE_SELECTORS: tuple[str, ...] = (
    ".org-top-card-summary__website a",
    ".org-top-card-primary-actions__inner a[href^='http']",
)

# "About" definition list: <dt>Industry</dt><dd>Software</dd>
COMPANY_DETAILS_TERM_SELECTOR: str = "dl dt"

# --- Search results page ---
RESULT_CARD_SELECTORS: tuple[str, ...] = (
    "li.reusable-search__result-container",
    ".artdeco-entity-lockup",
    ".search-results__result-item",
    ".result-lockup",
)

RESULT_LINK_SELECTORS: tuple[str, ...] = (
    'a[href*="/in/"]',
    ".artdeco-entity-lockup__title a",
    ".result-lockup__name a",
)

RESULT_NAME_SELECTORS: tuple[str, ...] = (
    'span[aria-hidden="true"]',
    ".artdeco-entity-lockup__title",
    ".result-lockup__name",
)

RESULT_HEADLINE_SELECTORS: tuple[str, ...] = (
    ".entity-result__primary-subtitle",
    ".artdeco-entity-lockup__subtitle",
    ".result-lockup__highlight-keyword",
)

RESULT_LOCATION_SELECTORS: tuple[str, ...] = (
    ".entity-result__secondary-subtitle",
    ".artdeco-entity-lockup__caption",
    ".result-lockup__misc-item",
)
