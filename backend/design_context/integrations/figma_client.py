"""Figma REST API client for the design-context pipeline.

Fetches node subtrees, reviewer comments, and rendered export URLs from
Figma files using Personal Access Token (PAT) authentication. Every API call
goes through a shared response cache and a token-bucket rate limiter;
idempotent GETs are retried on 5xx and network errors.

Environment:
    FIGMA_TOKEN: Figma Personal Access Token (required)

Usage:
    async with FigmaClient(config=ClientConfig(requests_per_minute=30)) as client:
        root = await client.fetch_subtree("6kGd851qaAX4TiL44vpIrO", "16650:538", max_depth=4)
        comments = await client.fetch_annotations("6kGd851qaAX4TiL44vpIrO")
        urls = await client.fetch_export_urls("6kGd851qaAX4TiL44vpIrO", ["16650:539"], "png", 2)
"""

import asyncio
import logging
import os
import random
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ..config import FIGMA_API_BASE
from ..errors import (
    FigmaClientError,
    InvalidInputError,
    NodeNotFoundError,
    RateLimitExceededError,
    RemoteUnavailableError,
)
from ..models import Annotation, ClientConfig, Point, RASTER_FORMATS, VECTOR_FORMATS
from .rate_limiter import TokenBucketRateLimiter
from .response_cache import ResponseCache, make_cache_key

logger = logging.getLogger("design_context.integrations.figma")

EXPORT_FORMATS = RASTER_FORMATS | VECTOR_FORMATS
MIN_EXPORT_SCALE = 0.5
MAX_EXPORT_SCALE = 4.0


def parse_comments(data: Dict[str, Any]) -> List[Annotation]:
    """Convert a /v1/files/:key/comments response into Annotations.

    ``client_meta`` is either a canvas Vector ``{x, y}`` (absolute) or a
    FrameOffset ``{node_id, node_offset: {x, y}}`` relative to that node.
    Offsets stay on ``anchor_offset`` and bind through ``anchor_node_id``.
    """
    annotations: List[Annotation] = []
    for comment in data.get("comments", []):
        meta = comment.get("client_meta") or {}
        anchor_point: Optional[Point] = None
        anchor_offset: Optional[Point] = None
        if "x" in meta and "y" in meta:
            anchor_point = Point(x=meta["x"], y=meta["y"])
        elif isinstance(meta.get("node_offset"), dict):
            offset = meta["node_offset"]
            anchor_offset = Point(x=offset.get("x", 0), y=offset.get("y", 0))

        annotations.append(Annotation(
            id=str(comment.get("id", "")),
            message=comment.get("message", "") or "",
            author_handle=(comment.get("user") or {}).get("handle", ""),
            anchor_node_id=meta.get("node_id") or None,
            anchor_point=anchor_point,
            anchor_offset=anchor_offset,
            created_at=comment.get("created_at"),
            resolved=bool(comment.get("resolved_at")),
        ))
    return annotations


class FigmaClient:
    """Async Figma REST API client (the Remote Graph Client).

    Args:
        token: Figma PAT. Falls back to FIGMA_TOKEN env var.
        config: Cache, rate-limit, retry and timeout options.
        cache: Shared ResponseCache; built from ``config`` when omitted.
        rate_limiter: Shared limiter; built from ``config`` when omitted.
        sleep: Coroutine used for retry backoff (injectable for tests).
    """

    def __init__(
        self,
        token: Optional[str] = None,
        config: Optional[ClientConfig] = None,
        cache: Optional[ResponseCache] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._token = token or os.getenv("FIGMA_TOKEN", "")
        if not self._token:
            raise FigmaClientError(
                "Figma token not configured. Set FIGMA_TOKEN environment variable "
                "or pass token= to FigmaClient()."
            )
        self.config = config or ClientConfig()
        self._cache = cache or ResponseCache(
            ttl_seconds=self.config.ttl_seconds,
            max_entries=self.config.max_cache_entries,
        )
        self._limiter = rate_limiter or TokenBucketRateLimiter(
            requests_per_minute=self.config.requests_per_minute,
            burst_size=self.config.burst_size,
            max_wait=self.config.max_wait_seconds,
        )
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None
        self._download_client: Optional[httpx.AsyncClient] = None

    @property
    def batch_ceiling(self) -> int:
        return self.config.batch_ceiling

    @property
    def burst_size(self) -> int:
        return self._limiter.burst_size

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=FIGMA_API_BASE,
                headers={"X-FIGMA-TOKEN": self._token},
                timeout=self.config.timeout,
                limits=httpx.Limits(max_connections=5, max_keepalive_connections=3),
            )
        return self._client

    async def _get_download_client(self) -> httpx.AsyncClient:
        # CDN image URLs are pre-signed; never send the PAT there
        if self._download_client is None or self._download_client.is_closed:
            self._download_client = httpx.AsyncClient(
                timeout=self.config.download_timeout,
                follow_redirects=True,
            )
        return self._download_client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
        if self._download_client and not self._download_client.is_closed:
            await self._download_client.aclose()
            self._download_client = None

    async def __aenter__(self) -> "FigmaClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Transport: rate limit + retry + error mapping
    # ------------------------------------------------------------------

    async def _send(
        self,
        http: httpx.AsyncClient,
        url: str,
        params: Optional[Dict] = None,
        *,
        operation: str,
        file_key: Optional[str] = None,
        node_id: Optional[str] = None,
        rate_limited: bool = True,
    ) -> httpx.Response:
        """GET with bounded exponential backoff on 5xx and network errors."""
        attempts = self.config.retry_attempts
        last_error = ""
        for attempt in range(1, attempts + 1):
            if rate_limited:
                await self._limiter.acquire(operation)
            try:
                resp = await http.get(url, params=params)
            except httpx.TimeoutException as e:
                last_error = f"timeout: {e}"
            except httpx.TransportError as e:
                last_error = f"connection error: {e}"
            else:
                if resp.status_code == 200:
                    return resp
                if resp.status_code < 500:
                    self._raise_for_status(resp, operation, file_key, node_id)
                last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"

            if attempt < attempts:
                delay = self.config.retry_base_delay * (2 ** (attempt - 1))
                delay *= 1 + random.uniform(-0.25, 0.25)
                logger.warning(
                    f"{operation}: attempt {attempt}/{attempts} failed ({last_error}), "
                    f"retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        raise RemoteUnavailableError(
            f"Figma API unavailable after {attempts} attempts ({operation}): {last_error}",
            operation=operation,
            file_key=file_key,
            node_id=node_id,
        )

    @staticmethod
    def _raise_for_status(
        resp: httpx.Response,
        operation: str,
        file_key: Optional[str],
        node_id: Optional[str],
    ) -> None:
        context = dict(operation=operation, file_key=file_key, node_id=node_id,
                       status_code=resp.status_code)
        if resp.status_code == 403:
            raise FigmaClientError(
                "Figma API returned 403 Forbidden. Check that FIGMA_TOKEN is valid "
                "and has file_content:read scope.",
                **context,
            )
        if resp.status_code == 404:
            raise FigmaClientError(f"Figma resource not found ({operation}): file={file_key}", **context)
        if resp.status_code == 429:
            raise RateLimitExceededError("Figma API rate limit exceeded. Retry later.", **context)
        raise FigmaClientError(
            f"Figma API error {resp.status_code} ({operation}): {resp.text[:200]}",
            **context,
        )

    async def _get(
        self,
        path: str,
        params: Optional[Dict] = None,
        *,
        operation: str,
        file_key: Optional[str] = None,
        node_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Make a GET request to the Figma API."""
        client = await self._get_client()
        resp = await self._send(
            client, path, params,
            operation=operation, file_key=file_key, node_id=node_id,
        )
        return resp.json()

    async def _cached_get(
        self,
        key: tuple,
        path: str,
        params: Optional[Dict],
        timeout: Optional[float],
        *,
        operation: str,
        file_key: str,
        node_id: Optional[str] = None,
        cacheable: Callable[[Dict[str, Any]], bool] = lambda data: True,
    ) -> Dict[str, Any]:
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        data = await self._with_timeout(
            self._get(path, params, operation=operation, file_key=file_key, node_id=node_id),
            timeout, operation, file_key, node_id,
        )
        if cacheable(data):
            self._cache.set(key, data)
        return data

    @staticmethod
    async def _with_timeout(
        coro: Awaitable[Any],
        timeout: Optional[float],
        operation: str,
        file_key: Optional[str],
        node_id: Optional[str] = None,
    ) -> Any:
        if timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise RemoteUnavailableError(
                f"{operation} timed out after {timeout}s",
                operation=operation, file_key=file_key, node_id=node_id,
            ) from e

    # ------------------------------------------------------------------
    # Remote Graph Client operations
    # ------------------------------------------------------------------

    async def fetch_subtree(
        self,
        file_key: str,
        node_id: Optional[str] = None,
        max_depth: Optional[int] = None,
        use_absolute_bounds: bool = True,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Fetch one node subtree, or the whole document when node_id is None.

        GET /v1/files/:key/nodes?ids=...&depth=...  (node_id given)
        GET /v1/files/:key?depth=...                 (whole document)
        """
        if not file_key:
            raise InvalidInputError("file_key is required", operation="fetch_subtree")
        if max_depth is not None and max_depth < 1:
            raise InvalidInputError(
                f"max_depth must be >= 1, got {max_depth}",
                operation="fetch_subtree", file_key=file_key,
            )

        params: Dict[str, str] = {}
        if max_depth is not None:
            params["depth"] = str(max_depth)
        if use_absolute_bounds:
            params["use_absolute_bounds"] = "true"
        key = make_cache_key(
            "fetch_subtree", file_key, node_id, max_depth, None, None, use_absolute_bounds,
        )

        if node_id is None:
            data = await self._cached_get(
                key, f"/v1/files/{file_key}", params, timeout,
                operation="fetch_subtree", file_key=file_key,
            )
            document = data.get("document")
            if not document:
                raise FigmaClientError(
                    f"Figma file {file_key} returned no document",
                    operation="fetch_subtree", file_key=file_key,
                )
            logger.info(f"fetch_subtree: file={file_key}, node=<document>, depth={max_depth}")
            return document

        params["ids"] = node_id
        data = await self._cached_get(
            key, f"/v1/files/{file_key}/nodes", params, timeout,
            operation="fetch_subtree", file_key=file_key, node_id=node_id,
        )
        nodes = data.get("nodes") or {}
        entry = nodes.get(node_id)
        if not entry or not entry.get("document"):
            raise NodeNotFoundError(
                f"Node {node_id} not found in file {file_key}",
                file_key=file_key,
                node_id=node_id,
                available=[k for k, v in nodes.items() if v][:20],
            )
        logger.info(f"fetch_subtree: file={file_key}, node={node_id}, depth={max_depth}")
        return entry["document"]

    async def fetch_annotations(
        self,
        file_key: str,
        timeout: Optional[float] = None,
    ) -> List[Annotation]:
        """Fetch reviewer comments for a file.

        GET /v1/files/:key/comments
        """
        if not file_key:
            raise InvalidInputError("file_key is required", operation="fetch_annotations")
        key = make_cache_key("fetch_annotations", file_key)
        data = await self._cached_get(
            key, f"/v1/files/{file_key}/comments", None, timeout,
            operation="fetch_annotations", file_key=file_key,
        )
        annotations = parse_comments(data)
        logger.info(f"fetch_annotations: file={file_key}, comments={len(annotations)}")
        return annotations

    async def fetch_export_urls(
        self,
        file_key: str,
        node_ids: List[str],
        fmt: str = "png",
        scale: float = 1.0,
        timeout: Optional[float] = None,
    ) -> Dict[str, Optional[str]]:
        """Render nodes via Figma's image export API.

        GET /v1/images/:key?ids=...&format=png&scale=2

        Returns a map in input order; nodes Figma failed to render map to None.
        Batches larger than ``batch_ceiling`` are rejected, never truncated.
        """
        if not file_key:
            raise InvalidInputError("file_key is required", operation="fetch_export_urls")
        if not node_ids:
            raise InvalidInputError(
                "node_ids must not be empty",
                operation="fetch_export_urls", file_key=file_key,
            )
        if len(node_ids) > self.batch_ceiling:
            raise InvalidInputError(
                f"Export batch of {len(node_ids)} nodes exceeds the ceiling of "
                f"{self.batch_ceiling}; split the request",
                operation="fetch_export_urls", file_key=file_key,
                requested=len(node_ids), ceiling=self.batch_ceiling,
            )
        if fmt not in EXPORT_FORMATS:
            raise InvalidInputError(
                f"Unsupported export format {fmt!r}; expected one of {sorted(EXPORT_FORMATS)}",
                operation="fetch_export_urls", file_key=file_key,
            )
        if not MIN_EXPORT_SCALE <= scale <= MAX_EXPORT_SCALE:
            raise InvalidInputError(
                f"Export scale {scale} outside {MIN_EXPORT_SCALE}-{MAX_EXPORT_SCALE}",
                operation="fetch_export_urls", file_key=file_key,
            )

        ids_param = ",".join(node_ids)
        params: Dict[str, str] = {"ids": ids_param, "format": fmt, "scale": str(scale)}
        key = make_cache_key("fetch_export_urls", file_key, ids_param, None, fmt, scale)
        data = await self._cached_get(
            key, f"/v1/images/{file_key}", params, timeout,
            operation="fetch_export_urls", file_key=file_key,
            cacheable=lambda d: not d.get("err"),
        )

        if data.get("err"):
            raise FigmaClientError(
                f"Figma image render error: {data['err']}",
                operation="fetch_export_urls", file_key=file_key,
            )

        images = data.get("images") or {}
        result = {nid: images.get(nid) for nid in node_ids}
        logger.info(
            f"fetch_export_urls: file={file_key}, requested={len(node_ids)}, "
            f"rendered={sum(1 for v in result.values() if v)}, format={fmt}, scale={scale}"
        )
        return result

    async def download(self, url: str, timeout: Optional[float] = None) -> bytes:
        """Fetch rendered image bytes from the CDN (not rate limited, retried on 5xx)."""
        if not url:
            raise InvalidInputError("download url is required", operation="download")
        client = await self._get_download_client()
        resp = await self._with_timeout(
            self._send(client, url, operation="download", rate_limited=False),
            timeout, "download", None,
        )
        return resp.content

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def cache_stats(self) -> Dict[str, Any]:
        return self._cache.stats()

    def clear_cache(self) -> int:
        return self._cache.clear()
