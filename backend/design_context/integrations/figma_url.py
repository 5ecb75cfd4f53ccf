"""Figma URL parsing and node-id normalization.

Browser URLs carry node ids as ``1530-166``; the REST API expects ``1530:166``.
"""

from __future__ import annotations

import re
from typing import Optional, Tuple
from urllib.parse import parse_qs, urlparse

from ..errors import InvalidInputError

_FILE_PATH_MARKERS = ("design", "file", "proto", "board")
_NODE_ID_RE = re.compile(r"^[A-Za-z0-9;:_-]+$")


def normalize_node_id(node_id: Optional[str]) -> Optional[str]:
    """Convert URL-style ``1-2`` ids to API-style ``1:2``. Empty -> None."""
    if node_id is None:
        return None
    node_id = node_id.strip()
    if not node_id:
        return None
    if not _NODE_ID_RE.match(node_id):
        raise InvalidInputError(f"Malformed node id: {node_id!r}", node_id=node_id)
    return node_id.replace("-", ":")


def parse_figma_url(url: str) -> Tuple[str, Optional[str]]:
    """Extract ``(file_key, node_id)`` from a Figma file/design URL."""
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidInputError(f"Invalid Figma URL: {url!r}")

    parts = [p for p in parsed.path.split("/") if p]
    file_key = None
    for i, part in enumerate(parts[:-1]):
        if part in _FILE_PATH_MARKERS:
            file_key = parts[i + 1]
            break
    if not file_key:
        raise InvalidInputError(
            f"Invalid Figma URL: could not extract file key from {url!r}"
        )

    node_param = parse_qs(parsed.query).get("node-id", [None])[0]
    return file_key, normalize_node_id(node_param)
