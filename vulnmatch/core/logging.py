import logging
import os
import sys
from typing import Any

import structlog
from rich.console import Console

# Shared console for CLI output and log rendering
console = Console()

# Context keys rendered right after the event instead of in the key=value tail
_LEADING_KEYS = ('stage', 'phase', 'component')


class RichConsoleRenderer:
    """
    Render structlog events through rich.

    The scan pipeline logs a lot of per-component events, so the stage,
    phase and component context is printed next to the event name and the
    remaining pairs follow as key=value. A '_style' key overrides the line
    style.
    """

    def __init__(self, target: Console | None = None):
        self._console = target or Console(stderr=True)
        self._level_styles = {
            'debug': 'dim',
            'info': 'green',
            'warning': 'yellow',
            'error': 'bold red',
            'critical': 'bold magenta',
        }

    def __call__(self, logger, name, event_dict):
        custom_style = event_dict.pop('_style', None)

        event = event_dict.pop('event', '')
        log_level = event_dict.pop('level', 'info')
        logger_name = event_dict.pop('logger', None)
        timestamp = event_dict.pop('timestamp', '')
        exception = event_dict.pop('exception', None)
        stack_info = event_dict.pop('stack_info', None)

        level_style = self._level_styles.get(log_level, 'white')
        parts = []
        if timestamp:
            parts.append(f"[dim]{timestamp}[/dim]")
        parts.append(f"[{level_style}]{log_level:<8}[/{level_style}]")
        if logger_name:
            parts.append(f"[bold]{logger_name}[/bold]")
        parts.append(str(event))

        for key in _LEADING_KEYS:
            if key in event_dict:
                parts.append(f"[magenta]{event_dict.pop(key)}[/magenta]")

        for key, value in event_dict.items():
            parts.append(f"[cyan]{key}[/cyan]=[green]{value!r}[/green]")

        message = ' '.join(parts)
        if exception:
            message += f"\n[red]{exception}[/red]"
        if stack_info:
            message += f"\n[dim]{stack_info}[/dim]"

        self._console.print(message, style=custom_style, highlight=False)
        raise structlog.DropEvent


def drop_style_processor(logger, method_name, event_dict):
    """Strip the rich-only '_style' hint before JSON rendering."""
    event_dict.pop('_style', None)
    return event_dict


def setup_logging(level: str = 'INFO', json_output: bool | None = None) -> None:
    """
    Configure structlog for the whole application.

    JSON lines are emitted when ``json_output`` is true or, if it is left
    unset, when ``ENV=production``; otherwise events go to the rich console.
    """
    logging.basicConfig(format='%(message)s', stream=sys.stderr, level=level)

    if json_output is None:
        json_output = os.getenv('ENV') == 'production'

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors = shared_processors + [
            drop_style_processor,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [RichConsoleRenderer()]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
