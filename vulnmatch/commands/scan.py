from pathlib import Path

import structlog
import typer
from rich.table import Table

from vulnmatch.core.config import load_env_file
from vulnmatch.core.container import get_container
from vulnmatch.core.decorators import handle_errors
from vulnmatch.core.logging import console
from vulnmatch.core.storage import load_components
from vulnmatch.core.storage import save_results

load_env_file()
logger = structlog.get_logger('scan_command')


def _summary(report) -> Table:
    stats = report.stats
    table = Table(title='Scan Summary')
    table.add_column('Metric', style='cyan')
    table.add_column('Value', style='magenta', justify='right')
    table.add_row('Components Scanned', f'{stats.components:,}')
    table.add_row('Components Reported', f'{len(report.components):,}')
    table.add_row('Merged', f'{stats.merged:,}')
    table.add_row('Identified', f'{stats.identified:,}')
    table.add_row('Identifiers', f'{stats.identifiers:,}')
    table.add_row('Findings', f'{stats.findings:,}')
    table.add_row('Suppressed', f'{stats.suppressed:,}')
    table.add_row('Errors', f'{len(report.errors):,}', style='red' if report.errors else None)
    table.add_row('Duration', f'{stats.elapsed_time:.2f}s')
    return table


def _findings(components) -> Table:
    table = Table(title='Findings')
    table.add_column('Component', style='cyan')
    table.add_column('Identifiers', style='green')
    table.add_column('Vulnerability', style='bold')
    table.add_column('CVSS', justify='right')
    table.add_column('Severity', style='magenta')
    for component in components:
        if not component.vulnerabilities:
            continue
        identifiers = ', '.join(i.value for i in component.cpe_identifiers()) or '-'
        for vulnerability in sorted(component.vulnerabilities.values(), key=lambda v: v.name):
            score = f'{vulnerability.cvss_score:.1f}' if vulnerability.cvss_score is not None else '-'
            table.add_row(
                component.file_path, identifiers, vulnerability.name, score,
                vulnerability.severity or '-',
            )
    return table


@handle_errors
def main(
    components_file: Path = typer.Argument(..., help='JSONL file with collected components'),
    output: Path | None = typer.Option(None, '--output', '-o', help='Write results as JSONL'),
    suppression: list[str] = typer.Option(
        [], '--suppression', '-s', help='Suppression file path or URL (repeatable)',
    ),
    no_base_suppressions: bool = typer.Option(
        False, '--no-base-suppressions', help='Do not load the packaged base rules',
    ),
    fail_on_unused_suppression: bool = typer.Option(
        False, '--fail-on-unused-suppression', help='Fail when a suppression rule never matched',
    ),
    fail_on_cvss: float | None = typer.Option(
        None, '--fail-on-cvss', help='Exit with 1 when a finding scores at or above this value',
    ),
    workers: int | None = typer.Option(None, help='Worker threads for parallel stages'),
):
    """
    Scan collected components: identify CPEs, filter false positives,
    match vulnerabilities and apply suppressions.
    """
    container = get_container()
    config = container.config

    # CLI Overrides
    config.suppression.files = [*config.suppression.files, *suppression]
    if no_base_suppressions:
        config.suppression.include_base = False
    if fail_on_unused_suppression:
        config.suppression.fail_on_unused_rule = True
    if workers:
        config.analysis.workers = workers

    if not components_file.exists():
        raise ValueError(f"Components file not found: {components_file}")
    components = load_components(components_file)
    logger.info('Components loaded', path=str(components_file), components=len(components))

    engine = container.create_engine(components)
    report = engine.analyze()

    console.print(_findings(report.components))
    console.print(_summary(report))

    if output:
        count = save_results(output, report.components)
        console.print(f"[green]Results written to {output} ({count:,} components)[/green]")

    if fail_on_cvss is not None:
        failing = [
            (c.file_path, v.name)
            for c in report.components
            for v in c.vulnerabilities.values()
            if v.cvss_score is not None and v.cvss_score >= fail_on_cvss
        ]
        if failing:
            console.print(
                f"[bold red]{len(failing)} finding(s) scored {fail_on_cvss} or higher[/bold red]",
            )
            raise typer.Exit(1)
