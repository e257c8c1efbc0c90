"""Process-wide singletons that tests need to rebuild between cases."""

from __future__ import annotations

from collections.abc import Callable

_reset_fns: list[Callable[[], None]] = []


def register_singleton(reset_fn: Callable[[], None]) -> None:
    """Remember *reset_fn* so :func:`reset_all_singletons` can rebuild its module state."""
    _reset_fns.append(reset_fn)


def reset_all_singletons() -> None:
    for fn in _reset_fns:
        fn()
