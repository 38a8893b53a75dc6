"""site_compare.parser: HTML sanitizing and hashing."""
