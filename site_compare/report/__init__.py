# File: site_compare/report/__init__.py
"""site_compare.report: JSON- и HTML-отчёты по результатам сравнения, используемые CLI и тестами."""

from site_compare.report.html_report import render_html
from site_compare.report.json_report import render_json

__all__ = ["render_json", "render_html"]
