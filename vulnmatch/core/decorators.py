import functools
from collections.abc import Callable
from typing import Any

import structlog
import typer

from vulnmatch.core.errors import ConfigurationError
from vulnmatch.core.errors import DatasetError
from vulnmatch.core.errors import FatalAnalysisError
from vulnmatch.core.errors import LockError
from vulnmatch.core.logging import console

logger = structlog.get_logger('cli')


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn vulnmatch errors into a readable message and a non-zero exit code."""
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except ConfigurationError as e:
            console.print(f"[bold red]Configuration Error:[/] {e}")
            logger.debug('Configuration error', exc_info=True)
            raise typer.Exit(2)
        except DatasetError as e:
            console.print(f"[bold red]Dataset Error:[/] {e}")
            raise typer.Exit(2)
        except LockError as e:
            console.print(f"[bold red]Lock Error:[/] {e}")
            raise typer.Exit(3)
        except FatalAnalysisError as e:
            console.print(f"[bold red]Analysis Failed:[/] {e}")
            raise typer.Exit(1)
        except ValueError as e:
            console.print(f"[bold red]Validation Error:[/] {e}")
            logger.debug('Validation error', exc_info=True)
            raise typer.Exit(1)
        except KeyboardInterrupt:
            console.print('\n[yellow]Operation cancelled by user.[/]')
            raise typer.Exit(130)
        except Exception as e:
            console.print(f"[bold red]Unexpected Error:[/] {e}")
            logger.exception('Unexpected error')
            raise typer.Exit(1)
    return wrapper
