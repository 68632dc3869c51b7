"""
console_capture/cdp/target_resolver.py

Selection of page targets by tab position and URL substring.
"""

from collections.abc import Iterable

from console_capture.data_models.cdp import Target, TargetFilter


def page_targets(all_targets: Iterable[Target]) -> list[Target]:
    """Return the page-kind targets, in listing order."""
    return [target for target in all_targets if target.is_page]


def resolve_targets(all_targets: Iterable[Target], target_filter: TargetFilter) -> list[Target]:
    """
    Choose the targets to attach to.

    Only page targets are considered. Tab positions are 1-based and counted over
    the page targets before the URL check is applied, so `--tabs 2` always means
    the second tab the browser lists. Positions that do not exist match nothing.
    Args:
        all_targets: Every target the browser reported.
        target_filter: Position and URL criteria.
    Returns:
        The matching targets; an empty list when nothing matches.
    """
    pages = page_targets(all_targets)

    if target_filter.tab_indices:
        wanted_positions = set(target_filter.tab_indices)
        pages = [
            target
            for position, target in enumerate(pages, start=1)
            if position in wanted_positions
        ]

    if target_filter.url_substring is not None:
        pages = [target for target in pages if target_filter.url_substring in target.url]

    return pages
