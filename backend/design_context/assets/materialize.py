"""Ordered file-materialization strategies.

Each strategy has the signature ``(source, target) -> MaterializeOutcome``
and raises OSError when it cannot place the file. ``materialize`` walks the
chain in order and returns the first outcome. Every strategy either
completes or leaves source and target as it found them.

Default chain:
    1. rename        os.replace (atomic on one filesystem)
    2. copy          copy, verify byte size, delete source
    3. hardlink      link at target, source stays in place
    4. keep-original report success at the source path with a warning
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from ..errors import FilesystemError

logger = logging.getLogger("design_context.assets")


@dataclass
class MaterializeOutcome:
    strategy: str
    final_path: str
    size_bytes: int
    warning: Optional[str] = None


Strategy = Callable[[str, str], MaterializeOutcome]


def _remove_if_exists(path: str) -> None:
    if os.path.lexists(path):
        os.remove(path)


def rename_strategy(source: str, target: str) -> MaterializeOutcome:
    os.replace(source, target)
    return MaterializeOutcome("rename", target, os.path.getsize(target))


def copy_strategy(source: str, target: str) -> MaterializeOutcome:
    expected = os.path.getsize(source)
    staging = f"{target}.partial"
    try:
        shutil.copyfile(source, staging)
        actual = os.path.getsize(staging)
        if actual != expected:
            raise OSError(f"copy size mismatch: expected {expected} bytes, got {actual}")
        os.replace(staging, target)
    except OSError:
        _remove_if_exists(staging)
        raise

    warning = None
    try:
        os.remove(source)
    except OSError as e:
        # Canonical file is in place; a leftover source is only clutter
        warning = f"copied to {os.path.basename(target)} but could not remove {source}: {e}"
        logger.warning(f"materialize: {warning}")
    return MaterializeOutcome("copy", target, expected, warning)


def hardlink_strategy(source: str, target: str) -> MaterializeOutcome:
    staging = f"{target}.link"
    _remove_if_exists(staging)
    os.link(source, staging)
    try:
        os.replace(staging, target)
    except OSError:
        _remove_if_exists(staging)
        raise
    return MaterializeOutcome("hardlink", target, os.path.getsize(target))


def keep_original_strategy(source: str, target: str) -> MaterializeOutcome:
    return MaterializeOutcome(
        "keep-original",
        source,
        os.path.getsize(source),
        warning=(
            f"could not materialize {os.path.basename(target)}; "
            f"file kept at {os.path.basename(source)}"
        ),
    )


DEFAULT_STRATEGIES: Sequence[Strategy] = (
    rename_strategy,
    copy_strategy,
    hardlink_strategy,
    keep_original_strategy,
)


def materialize(
    source: str,
    target: str,
    strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
) -> MaterializeOutcome:
    """Place ``source`` at ``target`` using the first strategy that succeeds."""
    if not os.path.isfile(source):
        raise FilesystemError(f"Cannot materialize missing file: {source}", source=source, target=target)
    if os.path.abspath(source) == os.path.abspath(target):
        return MaterializeOutcome("rename", target, os.path.getsize(target))

    failures: List[str] = []
    for strategy in strategies:
        try:
            outcome = strategy(source, target)
        except OSError as e:
            failures.append(f"{strategy.__name__}: {e}")
            logger.warning(f"materialize: {strategy.__name__} failed for {target}: {e}")
            continue
        if failures:
            logger.info(f"materialize: {target} placed via {outcome.strategy} after {len(failures)} fallback(s)")
        return outcome

    raise FilesystemError(
        f"All materialization strategies failed for {target}",
        source=source, target=target, failures=failures,
    )
