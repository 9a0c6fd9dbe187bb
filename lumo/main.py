"""
Main — logging setup and the shell's run entry point.

``configure_logging()`` must run before the shell starts so every module's
structlog logger renders the same way. ``run_shell()`` drives one Shell on
a fresh event loop and returns the process exit status.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import structlog

from lumo.config import LumoConfig
from lumo.shell import Shell

_INPUT_FIELDS = ("text", "line")
_MAX_DISPLAY_LEN = 80


def _truncate_input_fields(logger, method_name, event_dict):
    """
    Structlog processor that shortens user input carried in log events.

    Lines and dispatched units can be arbitrarily long; logs only need
    enough to recognise them.
    """
    for key in _INPUT_FIELDS:
        val = event_dict.get(key)
        if isinstance(val, str) and len(val) > _MAX_DISPLAY_LEN:
            event_dict[key] = val[:_MAX_DISPLAY_LEN] + "... [truncated]"
    return event_dict


_logging_configured = False


def configure_logging(verbose: bool = False) -> None:
    """Configure structlog and standard-library logging.

    Safe to call more than once — subsequent calls are no-ops.
    Logs go to stderr so they never mix with session output on stdout.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=logging.INFO if verbose else logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _truncate_input_fields,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def run_shell(config: LumoConfig, shell: Optional[Shell] = None) -> int:
    """Run the shell to completion and return its exit status."""
    shell = shell if shell is not None else Shell(config)
    try:
        return asyncio.run(shell.run())
    except KeyboardInterrupt:
        return 130
