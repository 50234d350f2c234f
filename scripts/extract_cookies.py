"""Capture LinkedIn session cookies for a pool account via patchright.

Usage:
    .venv/bin/python scripts/extract_cookies.py [output.json]

Opens a Chromium window. Log in to LinkedIn manually with the account you
want to add, then press Enter in the terminal. Register the saved file with:

    python main.py add-account --cookies <output.json> --label <e-mail>
"""

import json
import sys
from pathlib import Path

from patchright.sync_api import sync_playwright

DEFAULT_OUTPUT = Path("config/cookies/account.json")


def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    output = Path(argv[0]) if argv else DEFAULT_OUTPUT
    output.parent.mkdir(parents=True, exist_ok=True)

    with sync_playwright() as p:
        browser = p.chromium.launch(headless=False)
        context = browser.new_context()
        page = context.new_page()
        page.goto("https://www.linkedin.com/login")

        input("\n>>> Log in to LinkedIn, then press Enter here to save cookies...")

        cookies = [c for c in context.cookies() if "linkedin.com" in c.get("domain", "")]
        if not any(c["name"] == "li_at" for c in cookies):
            print("Warning: no li_at cookie found, the login may not have completed")
        output.write_text(json.dumps(cookies, indent=2))
        print(f"Saved {len(cookies)} cookies to {output}")

        browser.close()


if __name__ == "__main__":
    main()
