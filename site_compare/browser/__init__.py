"""site_compare.browser: WebDriver session, readiness waits and page signatures."""
