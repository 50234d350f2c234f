"""Reusable browser pacing: randomized sleeps and incremental scrolling.

All waits between requests go through random_sleep() so they can be patched
out in tests and so the floor is enforced in one place.
"""

import asyncio
import logging
import random
from typing import Any

from harvester.core.config import FETCH_DELAY_FLOOR, SchedulerConfig

logger = logging.getLogger(__name__)

MAX_SCROLL_ATTEMPTS = 5
SCROLL_DELAY_FLOOR = 1.5


async def random_sleep(min_s: float, max_s: float) -> float:
    """Sleep for a uniform random duration in [min_s, max_s].

    Negative minimums are clamped to 0 and a max below min is raised to min.
    Returns the duration slept.
    """
    floor = max(min_s, 0.0)
    ceiling = max(max_s, floor)
    duration = random.uniform(floor, ceiling)
    await asyncio.sleep(duration)
    return duration


async def between_urls(config: SchedulerConfig) -> float:
    """Pause between two page fetches on the same account.

    The configured window is raised to FETCH_DELAY_FLOOR when set lower.
    """
    low = max(config.delay_min_s, FETCH_DELAY_FLOOR)
    high = max(config.delay_max_s, low)
    duration = await random_sleep(low, high)
    logger.debug("Waited %.1fs before next URL", duration)
    return duration


async def scroll_until_stable(
    page: Any,
    *,
    item_selectors: tuple[str, ...],
    max_attempts: int = MAX_SCROLL_ATTEMPTS,
    scroll_delay_min: float = SCROLL_DELAY_FLOOR,
    scroll_delay_max: float = 3.0,
) -> int:
    """Scroll down step by step until the number of matched items stops growing.

    Lazy-loaded result lists only render their tail after scrolling, so the
    snapshot is taken once the count is stable or max_attempts is reached.
    Returns the last item count seen.
    """
    scroll_delay_min = max(scroll_delay_min, SCROLL_DELAY_FLOOR)
    scroll_delay_max = max(scroll_delay_max, scroll_delay_min)

    previous = -1
    count = 0
    for attempt in range(max_attempts):
        count = await _count_items(page, item_selectors)
        logger.debug("Scroll %d/%d: %d items", attempt + 1, max_attempts, count)
        if count == previous:
            break
        previous = count
        await page.evaluate("window.scrollBy(0, Math.floor(window.innerHeight * 0.9))")
        await random_sleep(scroll_delay_min, scroll_delay_max)
    return count


async def _count_items(page: Any, selectors: tuple[str, ...]) -> int:
    """Count items using the first selector that matches anything."""
    for selector in selectors:
        items = await page.query_selector_all(selector)
        if items:
            return len(items)
    return 0
