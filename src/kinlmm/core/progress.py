"""Progress bar helper for long kinlmm loops (GRM batches, marker scans)."""

import sys
from collections.abc import Iterable, Iterator

import progressbar


def progress_iterator(iterable: Iterable, total: int, desc: str = "") -> Iterator:
    """Wrap an iterable with a progressbar2 display written to stdout.

    The bar is finished in a finally block so an early break or an exception
    in the caller leaves the terminal clean.

    Args:
        iterable: Items to iterate over.
        total: Total number of items.
        desc: Optional label shown before the counter.

    Yields:
        Items from the wrapped iterable.
    """
    widgets = [
        f"{desc}: " if desc else "",
        progressbar.Counter(),
        f"/{total} ",
        progressbar.Percentage(),
        " ",
        progressbar.Bar(),
        " ",
        progressbar.ETA(),
    ]
    bar = progressbar.ProgressBar(max_value=total, widgets=widgets, fd=sys.stdout)
    bar.start()
    try:
        for done, item in enumerate(iterable, start=1):
            yield item
            bar.update(done)
    finally:
        bar.finish()
