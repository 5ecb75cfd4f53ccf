"""Design-context runtime settings: tunable parameters for pipeline execution.

All values read from environment variables with sensible defaults. Import
from here instead of hardcoding.

Infrastructure config (API base URL, tokens, rule profile) stays in
design_context/config.py.
"""

from __future__ import annotations

import os


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _str(key: str, default: str) -> str:
    return os.getenv(key, default)


# =====================================================================
# Remote Graph Client (Figma REST)
# =====================================================================

# HTTP timeout for Figma API calls (seconds)
FIGMA_HTTP_TIMEOUT = _float("FIGMA_HTTP_TIMEOUT", 60.0)

# HTTP timeout for CDN image downloads (seconds)
FIGMA_DOWNLOAD_TIMEOUT = _float("FIGMA_DOWNLOAD_TIMEOUT", 60.0)

# Response cache lifetime (seconds) and eviction ceiling
FIGMA_CACHE_TTL_SECONDS = _float("FIGMA_CACHE_TTL_SECONDS", 300.0)
FIGMA_CACHE_MAX_ENTRIES = _int("FIGMA_CACHE_MAX_ENTRIES", 256)

# Token bucket: sustained rate and capacity
FIGMA_REQUESTS_PER_MINUTE = _int("FIGMA_REQUESTS_PER_MINUTE", 60)
FIGMA_BURST_SIZE = _int("FIGMA_BURST_SIZE", 10)

# Longest a call may wait for a token before RateLimitExceeded (seconds)
FIGMA_RATE_LIMIT_MAX_WAIT = _float("FIGMA_RATE_LIMIT_MAX_WAIT", 120.0)

# Retries for idempotent GETs on 5xx / network errors
FIGMA_RETRY_ATTEMPTS = _int("FIGMA_RETRY_ATTEMPTS", 3)
FIGMA_RETRY_BASE_DELAY = _float("FIGMA_RETRY_BASE_DELAY", 1.0)

# Max node ids per export-URL request
FIGMA_EXPORT_BATCH_CEILING = _int("FIGMA_EXPORT_BATCH_CEILING", 50)


# =====================================================================
# Tree Processor
# =====================================================================

# Depth ceiling for the AI-facing tree
TREE_MAX_DEPTH = _int("TREE_MAX_DEPTH", 10)

# Text longer than this is truncated with a marker
TREE_TEXT_LIMIT = _int("TREE_TEXT_LIMIT", 1000)

# Runs of this many identical siblings collapse into one representative
TREE_REPEAT_THRESHOLD = _int("TREE_REPEAT_THRESHOLD", 3)

# Bounding boxes at or below this size (both axes) are icon candidates
ICON_MAX_SIZE = _float("ICON_MAX_SIZE", 32.0)


# =====================================================================
# Comment Matcher
# =====================================================================

# Centroid distance (document units) for proximity candidates
COMMENT_PROXIMITY_RADIUS = _float("COMMENT_PROXIMITY_RADIUS", 100.0)

# Intent confidence at or above this value is actionable
INTENT_ACTIONABLE_THRESHOLD = _float("INTENT_ACTIONABLE_THRESHOLD", 0.3)

# Confidence bonus for imperative language ("should", "must", "need")
INTENT_IMPERATIVE_BONUS = _float("INTENT_IMPERATIVE_BONUS", 0.2)


# =====================================================================
# Asset Resolver
# =====================================================================

# Depth for the export-settings scan (independent of TREE_MAX_DEPTH)
ASSET_SCAN_DEPTH = _int("ASSET_SCAN_DEPTH", 10)

# Max parallel CDN downloads per resolver run
ASSET_DOWNLOAD_CONCURRENCY = _int("ASSET_DOWNLOAD_CONCURRENCY", 4)

# Canonical reference snapshot filename and render scale
REFERENCE_FILENAME = _str("REFERENCE_FILENAME", "reference.png")
REFERENCE_SCALE = _float("REFERENCE_SCALE", 1.0)
