"""Pydantic models for pipeline inputs and driver-facing results."""

from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from . import settings
from .errors import PartialFailureError

ExportFormat = Literal["png", "jpg", "svg", "pdf"]
MatchMethod = Literal["exact", "exact-by-containment", "proximity", "none"]
IntentType = Literal["animation", "interaction", "behavior", "style", "general"]
StrategyName = Literal["rename", "copy", "hardlink", "keep-original"]

RASTER_FORMATS = frozenset({"png", "jpg"})
VECTOR_FORMATS = frozenset({"svg", "pdf"})


class ClientConfig(BaseModel):
    """Construction-time options for the Remote Graph Client.

    Accepts both snake_case and camelCase keys (``ttlSeconds``,
    ``maxCacheEntries``, ``requestsPerMinute``, ``burstSize`` ...).
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    ttl_seconds: float = Field(default=settings.FIGMA_CACHE_TTL_SECONDS, ge=0)
    max_cache_entries: int = Field(default=settings.FIGMA_CACHE_MAX_ENTRIES, ge=1)
    requests_per_minute: int = Field(default=settings.FIGMA_REQUESTS_PER_MINUTE, ge=1)
    burst_size: int = Field(default=settings.FIGMA_BURST_SIZE, ge=1)
    max_wait_seconds: float = Field(default=settings.FIGMA_RATE_LIMIT_MAX_WAIT, ge=0)
    timeout: float = Field(default=settings.FIGMA_HTTP_TIMEOUT, gt=0)
    download_timeout: float = Field(default=settings.FIGMA_DOWNLOAD_TIMEOUT, gt=0)
    retry_attempts: int = Field(default=settings.FIGMA_RETRY_ATTEMPTS, ge=1, le=10)
    retry_base_delay: float = Field(default=settings.FIGMA_RETRY_BASE_DELAY, ge=0)
    batch_ceiling: int = Field(default=settings.FIGMA_EXPORT_BATCH_CEILING, ge=1)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


class Point(BaseModel):
    x: float
    y: float


class Bounds(BaseModel):
    """Axis-aligned rectangle in absolute document coordinates."""
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def centroid(self) -> Point:
        return Point(x=self.x + self.width / 2, y=self.y + self.height / 2)

    def contains(self, point: Point) -> bool:
        return (
            self.x <= point.x <= self.x + self.width
            and self.y <= point.y <= self.y + self.height
        )

    def distance_to_centroid(self, point: Point) -> float:
        c = self.centroid
        return math.hypot(point.x - c.x, point.y - c.y)

    @classmethod
    def from_node(cls, node: Dict[str, Any]) -> Optional["Bounds"]:
        """Read bounds from a raw or reduced node; None when missing or malformed."""
        box = node.get("absoluteBoundingBox") or node.get("bounds")
        if not isinstance(box, dict):
            return None
        try:
            values = [float(box[k]) for k in ("x", "y", "width", "height")]
        except (KeyError, TypeError, ValueError):
            return None
        if any(math.isnan(v) or math.isinf(v) for v in values):
            return None
        x, y, width, height = values
        if width < 0 or height < 0:
            return None
        return cls(x=x, y=y, width=width, height=height)


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------


class Annotation(BaseModel):
    """A reviewer comment anchored to a node, a point, or nothing."""
    id: str
    message: str = ""
    author_handle: str = ""
    anchor_node_id: Optional[str] = None
    # Absolute document coordinates
    anchor_point: Optional[Point] = None
    # Offset from the anchor node's top-left corner (Figma FrameOffset)
    anchor_offset: Optional[Point] = None
    created_at: Optional[str] = None
    resolved: bool = False


class TargetElement(BaseModel):
    id: str
    name: str
    type: str
    bounds: Optional[Bounds] = None
    path: List[str] = Field(default_factory=list)


class Intent(BaseModel):
    type: IntentType = "general"
    keywords: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    actionable: bool = False


class AnnotationMatch(BaseModel):
    annotation: Annotation
    target_element: Optional[TargetElement] = None
    match_method: MatchMethod = "none"
    distance: Optional[float] = None
    intent: Intent


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


class ProcessingStats(BaseModel):
    """Counters for one ProcessGraph run (or an explicit accumulation of runs)."""
    nodes_visited: int = 0
    nodes_kept: int = 0
    nodes_enhanced: int = 0
    rules_applied: int = 0
    warnings: List[str] = Field(default_factory=list)

    def add(self, other: "ProcessingStats") -> None:
        self.nodes_visited += other.nodes_visited
        self.nodes_kept += other.nodes_kept
        self.nodes_enhanced += other.nodes_enhanced
        self.rules_applied += other.rules_applied
        self.warnings.extend(other.warnings)


class ProcessResult(BaseModel):
    status: Literal["success"] = "success"
    file_key: str
    node_id: Optional[str] = None
    reduced_tree: Dict[str, Any]
    stats: ProcessingStats


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class ExportRequest(BaseModel):
    node_id: str
    node_name: str = ""
    format: ExportFormat = "png"
    scale: float = Field(default=1.0, ge=0.5, le=4.0)
    suffix: str = ""


class DownloadResult(BaseModel):
    node_id: str
    node_name: str = ""
    requested_format: ExportFormat = "png"
    final_file_path: Optional[str] = None
    success: bool
    size_bytes: int = 0
    strategy_used: Optional[StrategyName] = None
    warning: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _error_iff_failed(self) -> "DownloadResult":
        if self.success and self.error:
            raise ValueError("successful download cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("failed download must carry an error")
        return self


class AssetSummary(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0


class AssetResolution(BaseModel):
    status: Literal["success", "partial", "failed"] = "success"
    file_key: str
    target_dir: str
    downloads: List[DownloadResult] = Field(default_factory=list)
    reference: Optional[DownloadResult] = None
    summary: AssetSummary = Field(default_factory=AssetSummary)
    failed_node_ids: List[str] = Field(default_factory=list)

    @property
    def partial_failure(self) -> Optional[PartialFailureError]:
        failed = [
            {"node_id": d.node_id, "error": d.error}
            for d in self.downloads if not d.success
        ]
        if not failed:
            return None
        return PartialFailureError(
            f"{len(failed)}/{len(self.downloads)} asset downloads failed",
            failed=failed,
            results=self.downloads,
        )


class ReferenceCheck(BaseModel):
    path: str
    exists: bool
    size_bytes: int = 0
