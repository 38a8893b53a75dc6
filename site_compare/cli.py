# === FILE: site_compare/cli.py ===
#!/usr/bin/env python3
"""
Точка входа для запуска SiteCompare через командную строку.

Команды:
  run       Обойти сайты ref и new по всем включённым ролям и сохранить отчёты
  worker    Запустить воркер с одной браузерной сессией (режим daemon)
  config    Показать текущую конфигурацию

Общие опции:
  --config PATH       Путь к YAML/JSON-конфигу (default: configs/default.yaml)
  --log-level LEVEL   Уровень логирования (DEBUG, INFO, ...)
  --log-file PATH     Файл для логов (stdout, если не указан)
  --log-format FORMAT Формат логирования (e.g. "%(asctime)s %(levelname)s %(message)s")

Команда run опции:
  --output DIR        Корень для артефактов (override output_dir)
  --max-visited INT   Макс. число посещённых мест (0 – без ограничения)
  --link/--no-link    Обход по ссылкам
  --click/--no-click  Обход по кликам
  --json PATH         Сохранить JSON-отчёт в файл (default: <output>/report.json)
  --html PATH         Сохранить HTML-отчёт в файл
  --template DIR      Папка с Jinja2-шаблонами

Дополнительно:
  --version, -v       Показать версию SiteCompare

Пример:
  site-compare --config configs/default.yaml run --max-visited 100 --click --html results/report.html
"""
import sys
import json
from pathlib import Path

import click

from site_compare import __version__
from site_compare.config import RunOverrides, load_config
from site_compare.engine import run_worker, start_compare
from site_compare.logger import init_logging
from site_compare.report.html_report import render_html
from site_compare.report.json_report import render_json

CONTEXT_SETTINGS = dict(help_option_names=["--help"])


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='SiteCompare, version %(version)s')
@click.option(
    '--config', '-c', 'config_path',
    default='configs/default.yaml',
    show_default=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Путь к файлу конфигурации YAML или JSON.'
)
@click.option(
    '--log-level', 'log_level',
    default='INFO', show_default=True,
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']),
    help='Уровень логирования'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Путь к файлу логов (stdout, если не указан)'
)
@click.option(
    '--log-format', 'log_format',
    default='%(asctime)s %(levelname)s %(name)s %(message)s',
    show_default=True,
    help='Строка формата для логов'
)
@click.pass_context
def cli(ctx, config_path, log_level, log_file, log_format):
    """Группа команд SiteCompare CLI."""
    init_logging(
        level=log_level,
        log_file=str(log_file) if log_file else None,
        log_format=log_format
    )
    try:
        cfg = load_config(config_path)
    except Exception as e:
        print_error(f'Ошибка загрузки конфигурации: {e}')
    ctx.ensure_object(dict)
    ctx.obj['config'] = cfg


@cli.command('run', context_settings=CONTEXT_SETTINGS)
@click.option(
    '--output', '-o', 'output_dir',
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help='Корень для артефактов и отчётов (override output_dir)'
)
@click.option(
    '--max-visited', '-m', 'max_visited',
    type=click.IntRange(min=0),
    default=None,
    help='Макс. число посещённых мест (override crawl.max_visited)'
)
@click.option('--link/--no-link', 'by_link', default=None, help='Обход по ссылкам')
@click.option('--click/--no-click', 'by_click', default=None, help='Обход по кликам')
@click.option(
    '--json', '-j', 'json_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Сохранить JSON-отчёт в файл'
)
@click.option(
    '--html', '-h', 'html_output',
    default=None,
    type=click.Path(writable=True, dir_okay=False, path_type=Path),
    help='Сохранить HTML-отчёт в файл'
)
@click.option(
    '--template', '-t', 'template_dir',
    default='templates',
    show_default=True,
    type=click.Path(file_okay=False, path_type=Path),
    help='Папка с Jinja2-шаблонами'
)
@click.pass_context
def run(ctx, output_dir, max_visited, by_link, by_click, json_output, html_output, template_dir):
    """Сравнить сайты ref и new и сгенерировать отчёты."""
    cfg = ctx.obj['config'].with_overrides(
        RunOverrides(max_visited=max_visited, by_link=by_link, by_click=by_click, output_dir=output_dir)
    )
    click.echo(f'Comparing {cfg.bases.ref} with {cfg.bases.new}')
    try:
        results = start_compare(cfg)
    except Exception as e:
        print_error(f'Ошибка при сравнении: {e}')

    for result in results:
        click.echo(f'Role {result.role}:')
        for line in result.summary_lines():
            click.echo(line)

    # JSON-отчёт
    if json_output:
        try:
            saved_json = render_json(results, json_output)
            click.echo(f'JSON report: {saved_json}')
        except Exception as e:
            print_error(f'Ошибка при сохранении JSON: {e}')

    # HTML-отчёт
    if html_output:
        try:
            saved_html = render_html(results, template_dir, html_output)
            click.echo(f'HTML report: {saved_html}')
        except Exception as e:
            print_error(f'Ошибка при сохранении HTML: {e}')


@cli.command('worker', context_settings=CONTEXT_SETTINGS)
@click.option('--role', '-r', 'role_name', required=True, help='Имя роли из конфигурации')
@click.option('--which', '-w', type=click.Choice(['ref', 'new']), required=True, help='Сайт воркера')
@click.option('--port', '-p', type=click.IntRange(1, 65535), default=None, help='Порт (по умолчанию из roles.<role>.workers)')
@click.pass_context
def worker(ctx, role_name, which, port):
    """Запустить воркер: одна браузерная сессия, команды по TCP."""
    cfg = ctx.obj['config']
    role = cfg.roles.get(role_name)
    if role is None:
        print_error(f'Неизвестная роль: {role_name}')
    if port is None:
        if role.workers is None:
            print_error(f'Для роли {role_name} не задан порт воркера')
        port = getattr(role.workers, which)
    try:
        run_worker(cfg, role_name, which, port)
    except KeyboardInterrupt:
        click.echo('Worker stopped')
    except Exception as e:
        print_error(f'Ошибка воркера: {e}')


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@click.pass_context
def show_config(ctx):
    """Показать текущую конфигурацию в JSON."""
    cfg = ctx.obj['config']
    click.echo(json.dumps(cfg.model_dump(mode='json'), indent=2, ensure_ascii=False))


# expose these names at module level for test monkey-patching
cli.start_compare = start_compare
cli.run_worker = run_worker
cli.render_json = render_json
cli.render_html = render_html

if __name__ == "__main__":
    cli()
