"""DesignContextPipeline: the four driver-facing operations.

    process_graph      fetch -> enhance -> reduce, returns reduced tree + stats
    match_annotations  process_graph + comments -> bound, classified annotations
    resolve_assets     export scan + downloads + reference snapshot
    stats/reset_stats  running totals across process_graph calls on this instance

One FigmaClient (and so one cache and one rate limiter) is shared by every
call on the same pipeline instance.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from . import settings
from .assets.asset_resolver import AssetResolver, check_reference
from .assets.materialize import DEFAULT_STRATEGIES, Strategy
from .errors import InvalidInputError
from .integrations.figma_client import FigmaClient
from .integrations.figma_url import normalize_node_id
from .models import (
    AssetResolution,
    Annotation,
    AnnotationMatch,
    Bounds,
    ClientConfig,
    ProcessingStats,
    ProcessResult,
    ReferenceCheck,
)
from .processing.bounds_index import BoundsIndex
from .processing.comment_matcher import CommentMatcher
from .processing.rules import RuleConfiguration, load_rule_config
from .processing.tree_processor import TreeProcessor

logger = logging.getLogger("design_context.pipeline")


def load_client_config(data: Union[ClientConfig, Dict[str, Any], None]) -> ClientConfig:
    """Accept a ClientConfig or a camelCase/snake_case dict."""
    if isinstance(data, ClientConfig):
        return data
    try:
        return ClientConfig.model_validate(data or {})
    except ValidationError as e:
        raise InvalidInputError(
            f"Invalid client configuration: {e.error_count()} error(s)",
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ],
        ) from e


class DesignContextPipeline:
    """Facade the driver talks to.

    Args:
        token: Figma PAT (falls back to FIGMA_TOKEN).
        config: ClientConfig or dict with ttlSeconds/maxCacheEntries/
            requestsPerMinute/burstSize (plus the extra client options).
        client: Pre-built FigmaClient; ``token``/``config`` are ignored when given.
        radius: Proximity radius for comment matching.
        strategies: Materialization chain used for the reference snapshot.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        config: Union[ClientConfig, Dict[str, Any], None] = None,
        client: Optional[FigmaClient] = None,
        radius: float = settings.COMMENT_PROXIMITY_RADIUS,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ):
        self.client = client or FigmaClient(token=token, config=load_client_config(config))
        self.radius = radius
        self.strategies = strategies
        self._stats = ProcessingStats()
        self._stats_lock = threading.Lock()

    async def close(self) -> None:
        await self.client.close()

    async def __aenter__(self) -> "DesignContextPipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # ProcessGraph
    # ------------------------------------------------------------------

    async def _process(
        self,
        file_key: str,
        node_id: Optional[str],
        depth: Optional[int],
        rule_config: Union[RuleConfiguration, Dict[str, Any], None],
        timeout: Optional[float],
        cancel_event: Optional[Any],
    ) -> Tuple[Optional[Dict[str, Any]], ProcessResult]:
        if not file_key:
            raise InvalidInputError("file_key is required", operation="process_graph")
        node_id = normalize_node_id(node_id)
        rules = load_rule_config(rule_config)
        if depth is not None:
            if depth < 1:
                raise InvalidInputError(
                    f"depth must be >= 1, got {depth}",
                    operation="process_graph", file_key=file_key, node_id=node_id,
                )
            rules = rules.model_copy(update={"max_depth": depth})

        raw = await self.client.fetch_subtree(
            file_key, node_id, max_depth=rules.max_depth, timeout=timeout,
        )

        stats = ProcessingStats()
        processor = TreeProcessor(rules, stats=stats, cancel_event=cancel_event)
        enhanced, reduced = processor.process(raw)
        with self._stats_lock:
            self._stats.add(stats)

        logger.info(
            f"process_graph: file={file_key}, node={node_id}, depth={rules.max_depth}, "
            f"visited={stats.nodes_visited}, kept={stats.nodes_kept}, "
            f"enhanced={stats.nodes_enhanced}, warnings={len(stats.warnings)}"
        )
        return enhanced, ProcessResult(
            file_key=file_key, node_id=node_id, reduced_tree=reduced, stats=stats,
        )

    async def process_graph(
        self,
        file_key: str,
        node_id: Optional[str] = None,
        depth: Optional[int] = None,
        rule_config: Union[RuleConfiguration, Dict[str, Any], None] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[Any] = None,
    ) -> ProcessResult:
        """Fetch a subtree and return its AI-facing reduced form.

        ``depth`` overrides ``rule_config.max_depth`` for this call. The
        returned stats cover this call only; ``stats()`` keeps the running total.
        """
        _, result = await self._process(file_key, node_id, depth, rule_config, timeout, cancel_event)
        return result

    # ------------------------------------------------------------------
    # MatchAnnotations
    # ------------------------------------------------------------------

    async def match_annotations(
        self,
        file_key: str,
        node_id: Optional[str] = None,
        rule_config: Union[RuleConfiguration, Dict[str, Any], None] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[Any] = None,
    ) -> List[AnnotationMatch]:
        """Bind file comments to nodes of the processed subtree and classify intent.

        With a ``node_id``, comments anchored outside the selection are left
        out; comments with no anchor at all are always kept.
        """
        enhanced, result = await self._process(
            file_key, node_id, None, rule_config, timeout, cancel_event,
        )
        index = BoundsIndex.from_tree(enhanced)
        annotations = await self.client.fetch_annotations(file_key, timeout=timeout)

        if result.node_id is not None:
            root = index.root
            scope = root.bounds if root is not None else None
            annotations = [a for a in annotations if _in_scope(a, index, scope)]

        return CommentMatcher(index, radius=self.radius).match_all(annotations)

    # ------------------------------------------------------------------
    # ResolveAssets
    # ------------------------------------------------------------------

    async def resolve_assets(
        self,
        file_key: str,
        node_id: Optional[str] = None,
        target_dir: str = "",
        fallback_scale: float = 1.0,
        fallback_format: str = "png",
        timeout: Optional[float] = None,
        cancel_event: Optional[Any] = None,
    ) -> AssetResolution:
        resolver = AssetResolver(
            self.client, strategies=self.strategies, cancel_event=cancel_event,
        )
        return await resolver.resolve(
            file_key,
            normalize_node_id(node_id),
            target_dir,
            fallback_scale=fallback_scale,
            fallback_format=fallback_format,
            timeout=timeout,
        )

    def check_reference(self, target_dir: str) -> ReferenceCheck:
        return check_reference(target_dir)

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> ProcessingStats:
        with self._stats_lock:
            return self._stats.model_copy(deep=True)

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = ProcessingStats()

    def cache_stats(self) -> Dict[str, Any]:
        return self.client.cache_stats()


def _in_scope(annotation: Annotation, index: BoundsIndex, scope: Optional[Bounds]) -> bool:
    # Node-relative offsets only count through their anchor node
    if annotation.anchor_node_id is None and annotation.anchor_point is None:
        return True
    if annotation.anchor_node_id is not None and annotation.anchor_node_id in index:
        return True
    if annotation.anchor_point is not None and scope is not None:
        return scope.contains(annotation.anchor_point)
    return False
