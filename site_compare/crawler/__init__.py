"""site_compare.crawler: frontier items, the session pair and the role crawler."""
