# File: site_compare/report/html_report.py
"""site_compare.report.html_report: Генерация HTML-отчёта с помощью Jinja2."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Sequence, Union

from jinja2 import Environment, FileSystemLoader, select_autoescape

from site_compare.aggregator import CrawlResult, aggregate_results

TEMPLATE_NAME = "report.html.j2"


def render_html(
    results: Sequence[CrawlResult],
    template_dir: Union[Path, str],
    output_path: Union[Path, str],
) -> Path:
    """Рендерит HTML-отчёт из шаблона и сохраняет его по указанному пути.

    Args:
        results: результаты обхода, по одному CrawlResult на роль.
        template_dir: директория с Jinja2-шаблонами.
        output_path: путь к итоговому HTML-файлу.

    Returns:
        Path до сохранённого HTML-файла.
    """
    template_dir = Path(template_dir)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    env = Environment(
        loader=FileSystemLoader(str(template_dir)),
        autoescape=select_autoescape(["html", "xml"]),
    )
    template = env.get_template(TEMPLATE_NAME)

    report = aggregate_results(list(results))
    context: dict[str, Any] = {
        "roles": report["roles"],
        "totals": report["totals"],
    }

    html_content = template.render(**context)
    output_path.write_text(html_content, encoding="utf-8")

    return output_path
