# site_compare/report/json_report.py

"""
Генерация JSON-отчёта для проекта SiteCompare.

Сериализация результатов всех ролей (CrawlResult) в один файл.
"""
import json
from pathlib import Path
from typing import Sequence

from site_compare.aggregator import CrawlResult, aggregate_results


def render_json(results: Sequence[CrawlResult], output_path: Path | str) -> Path:
    """
    Сохраняет результаты обхода в формате JSON по указанному пути.

    :param results: список CrawlResult, по одному на роль
    :param output_path: путь к JSON-файлу
    :return: Path сохранённого файла

    Пример:
    ```python
    from site_compare.report.json_report import render_json
    report_path = render_json(results, 'results/report.json')
    ```
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    data = aggregate_results(list(results))

    # Запись в файл с отступами и Unicode
    with output.open('w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)

    return output
