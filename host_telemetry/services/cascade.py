"""
Ordered "first successful result" evaluation.

A cascade is a list of named strategies. Each strategy returns a value or
None; the first non-empty value wins. Expected failures of a strategy
(missing files, unreadable content, subprocess errors) are logged and the
cascade moves on.
"""
import subprocess
from typing import Any, Callable, Iterable, NamedTuple, Optional

import structlog

# Errors a single strategy may raise without aborting the cascade.
RECOVERABLE_ERRORS = (OSError, ValueError, subprocess.SubprocessError)


class Strategy(NamedTuple):
    name: str
    run: Callable[[], Any]


class Resolution(NamedTuple):
    source: str
    value: Any


def first_successful(
    strategies: Iterable[Strategy],
    logger=None,
    **context,
) -> Optional[Resolution]:
    """Run ``strategies`` in order and return the first non-empty result."""
    log = (logger or structlog.get_logger()).bind(**context)
    for strategy in strategies:
        try:
            value = strategy.run()
        except RECOVERABLE_ERRORS as exc:
            log.debug("strategy_failed", strategy=strategy.name, error=str(exc))
            continue
        if value is None or value == "":
            log.debug("strategy_miss", strategy=strategy.name)
            continue
        log.debug("strategy_hit", strategy=strategy.name)
        return Resolution(strategy.name, value)
    return None
