"""Filesystem change source for watch mode, backed by watchfiles."""

from collections.abc import Iterator, Sequence
from pathlib import Path

from watchfiles import Change, watch

from scenario_grader.infrastructure.loader import SCENARIO_SUFFIXES


def _is_scenario(change: Change, path: str) -> bool:
    return Path(path).suffix in SCENARIO_SUFFIXES


def watchfiles_source(
    paths: Sequence[Path], *, tick: float = 0.2
) -> Iterator[set[str]]:
    """
    Yield sets of changed scenario paths.

    watchfiles does its own short debounce; an empty set is yielded every
    ``tick`` seconds so the watch controller can close its debounce window.
    """
    for changes in watch(
        *paths,
        watch_filter=_is_scenario,
        yield_on_timeout=True,
        rust_timeout=int(tick * 1000),
    ):
        yield {path for _, path in changes}
