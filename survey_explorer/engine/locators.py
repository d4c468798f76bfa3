from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union


@dataclass
class LocatorStrategy:
    """One way of finding (or acting on) an element.

    With only ``selector`` set the strategy is a plain ``query_selector`` lookup.
    ``locate`` overrides that with any coroutine taking the driver; a truthy
    return value counts as found.
    """

    name: str
    selector: Optional[str] = None
    locate: Optional[Callable[[Any], Awaitable[Any]]] = None


@dataclass
class Located:
    strategy: str
    selector: Optional[str]
    handle: Any


@dataclass
class NotFound:
    tried: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


Resolution = Union[Located, NotFound]


async def resolve(driver: Any, strategies: list[LocatorStrategy]) -> Resolution:
    """Try strategies in order and return the first hit, or NotFound listing every attempt."""
    missed = NotFound()
    for strategy in strategies:
        missed.tried.append(strategy.name)
        try:
            if strategy.locate is not None:
                handle = await strategy.locate(driver)
            elif strategy.selector:
                handle = await driver.query_selector(strategy.selector)
            else:
                continue
        except Exception as exc:
            missed.errors[strategy.name] = str(exc)
            logging.debug("locator_strategy_failed strategy=%s reason=%s", strategy.name, exc)
            continue
        if handle:
            return Located(strategy=strategy.name, selector=strategy.selector, handle=handle)
    return missed
