import typer

from vulnmatch.__version__ import __version__
from vulnmatch.commands import db
from vulnmatch.commands import scan
from vulnmatch.core.logging import console
from vulnmatch.core.logging import setup_logging

app = typer.Typer(
    help='vulnmatch: identify components from evidence and match known vulnerabilities.',
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)

app.command(name='scan')(scan.main)
app.add_typer(db.app, name='db')


def _show_version(value: bool):
    if value:
        console.print(f"vulnmatch {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    debug: bool = typer.Option(False, '--debug', help='Enable debug logging'),
    version: bool = typer.Option(
        False, '--version', callback=_show_version, is_eager=True, help='Show the version and exit',
    ),
):
    """
    Evidence-based component identification and vulnerability matching.
    """
    setup_logging(level='DEBUG' if debug else 'INFO')


if __name__ == '__main__':
    app()
