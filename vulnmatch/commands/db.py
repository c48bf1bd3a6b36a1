from pathlib import Path

import structlog
import typer
from rich.table import Table

from vulnmatch.core.container import get_container
from vulnmatch.core.decorators import handle_errors
from vulnmatch.core.logging import console

logger = structlog.get_logger('db_command')
app = typer.Typer(help='Vulnerability dataset operations')


@app.command(name='import')
@handle_errors
def import_dataset(
    source: Path = typer.Argument(..., help='JSONL file with one vulnerability record per line'),
):
    """
    Install a vulnerability dataset into the data directory.
    Holds the update lock while writing.
    """
    store = get_container().get_dataset_store()
    count = store.install(source)
    console.print(f"[green]Installed {count:,} records into {store.path}[/green]")


@app.command()
@handle_errors
def status():
    """Show the installed dataset and lock state."""
    store = get_container().get_dataset_store()
    info = store.status()

    table = Table(title='Dataset Status')
    table.add_column('Metric', style='cyan')
    table.add_column('Value', style='magenta')
    table.add_row('Path', info['path'])
    table.add_row('Installed', 'yes' if info['installed'] else 'no')
    table.add_row('Size', f"{info['size']:,} bytes")
    table.add_row('Update Lock', 'held' if info['locked'] else 'free')
    if info['installed']:
        dataset = store.load()
        table.add_row('Records', f'{len(dataset):,}')
        table.add_row('Vendor/Product Pairs', f'{len(dataset.vendor_products()):,}')
    console.print(table)


@app.command()
@handle_errors
def unlock(
    force: bool = typer.Option(False, '--force', '-f', help='Do not ask for confirmation'),
):
    """Remove a leftover update lock file."""
    lock = get_container().create_write_lock()
    if not lock.lock_file.exists():
        console.print('[dim]No lock file present.[/dim]')
        return
    if not force and not typer.confirm(f"Remove {lock.lock_file}? Make sure no update is running"):
        raise typer.Exit(1)
    lock.break_lock()
    console.print(f"[green]Removed {lock.lock_file}[/green]")
