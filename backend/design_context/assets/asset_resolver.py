"""Asset resolver: export scan, batched downloads, reference snapshot.

Flow for one run:
    1. Fetch the raw subtree at ASSET_SCAN_DEPTH (independent of the AI-facing depth)
    2. Collect one ExportRequest per export setting, pre-order
    3. Assign collision-free filenames (node name + suffix or -x{scale})
    4. Group by (format, scale), split into batches under the client ceiling
    5. Download concurrently, write each file atomically, keep input order
    6. Render the reference snapshot and materialize it to REFERENCE_FILENAME
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .. import settings
from ..errors import (
    DesignContextError,
    FilesystemError,
    InvalidInputError,
    OperationCancelledError,
)
from ..integrations.figma_client import EXPORT_FORMATS, FigmaClient
from ..models import (
    AssetResolution,
    AssetSummary,
    DownloadResult,
    ExportRequest,
    ReferenceCheck,
    VECTOR_FORMATS,
)
from .materialize import DEFAULT_STRATEGIES, Strategy, materialize

logger = logging.getLogger("design_context.assets")

_UNSAFE_CHARS_RE = re.compile(r'[/\\:*?"<>|\x00-\x1f]')
_MAX_STEM_LENGTH = 100


# ---------------------------------------------------------------------------
# Scan + naming (pure)
# ---------------------------------------------------------------------------


def sanitize_filename(name: str) -> str:
    """Filesystem-safe version of a layer name ("Icon / Close" -> "Icon - Close")."""
    cleaned = _UNSAFE_CHARS_RE.sub("-", name)
    cleaned = re.sub(r"\s+", " ", cleaned).strip(" .")
    return cleaned[:_MAX_STEM_LENGTH] or "asset"


def _clamp_scale(scale: float) -> float:
    return min(4.0, max(0.5, scale))


def scan_export_requests(
    root: Dict[str, Any],
    fallback_scale: float = 1.0,
    fallback_format: str = "png",
) -> List[ExportRequest]:
    """Depth-first pre-order walk collecting every node with export settings."""
    requests: List[ExportRequest] = []
    seen = set()
    stack = [root]
    while stack:
        node = stack.pop()
        if not isinstance(node, dict):
            continue
        for setting in node.get("exportSettings") or []:
            if not isinstance(setting, dict):
                continue
            fmt = str(setting.get("format") or fallback_format).lower()
            if fmt not in EXPORT_FORMATS:
                fmt = fallback_format
            constraint = setting.get("constraint") or {}
            if constraint.get("type") == "SCALE" and isinstance(constraint.get("value"), (int, float)):
                scale = float(constraint["value"])
            else:
                scale = fallback_scale
            # Vector output is resolution independent
            scale = 1.0 if fmt in VECTOR_FORMATS else _clamp_scale(scale)
            suffix = str(setting.get("suffix") or "")
            key = (node.get("id"), fmt, scale, suffix)
            if key in seen:
                continue
            seen.add(key)
            requests.append(ExportRequest(
                node_id=str(node.get("id", "")),
                node_name=str(node.get("name", "")),
                format=fmt,
                scale=scale,
                suffix=suffix,
            ))
        children = node.get("children") or []
        stack.extend(reversed([c for c in children if isinstance(c, dict)]))
    return requests


def assign_filenames(
    requests: Sequence[ExportRequest],
    reserved: Sequence[str] = (),
) -> List[str]:
    """One unique filename per request; collisions get the node id appended."""
    used = {r.lower() for r in reserved}
    names: List[str] = []
    for req in requests:
        base = sanitize_filename(req.node_name)
        stem = f"{base}{sanitize_filename(req.suffix)}" if req.suffix else f"{base}-x{req.scale:g}"
        filename = f"{stem}.{req.format}"
        if filename.lower() in used:
            stem = f"{stem}-{sanitize_filename(req.node_id.replace(':', '-'))}"
            filename = f"{stem}.{req.format}"
            counter = 2
            while filename.lower() in used:
                filename = f"{stem}-{counter}.{req.format}"
                counter += 1
        used.add(filename.lower())
        names.append(filename)
    return names


def group_into_batches(
    requests: Sequence[ExportRequest],
    ceiling: int,
) -> List[Tuple[str, float, List[int]]]:
    """Group request positions by (format, scale), then split under ``ceiling`` unique ids."""
    groups: Dict[Tuple[str, float], List[int]] = {}
    for i, req in enumerate(requests):
        groups.setdefault((req.format, req.scale), []).append(i)

    batches: List[Tuple[str, float, List[int]]] = []
    for (fmt, scale), positions in groups.items():
        current: List[int] = []
        ids: set = set()
        for pos in positions:
            node_id = requests[pos].node_id
            if node_id not in ids and len(ids) >= ceiling:
                batches.append((fmt, scale, current))
                current, ids = [], set()
            current.append(pos)
            ids.add(node_id)
        if current:
            batches.append((fmt, scale, current))
    return batches


def _write_atomic(path: str, content: bytes) -> None:
    staging = f"{path}.part"
    try:
        with open(staging, "wb") as f:
            f.write(content)
        os.replace(staging, path)
    except OSError:
        if os.path.exists(staging):
            os.remove(staging)
        raise


def check_reference(
    target_dir: str,
    filename: str = settings.REFERENCE_FILENAME,
) -> ReferenceCheck:
    """Report whether the reference snapshot exists in ``target_dir``."""
    path = os.path.join(target_dir, filename)
    exists = os.path.isfile(path)
    return ReferenceCheck(path=path, exists=exists, size_bytes=os.path.getsize(path) if exists else 0)


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------


class AssetResolver:
    """Downloads export-flagged nodes and the reference snapshot for one file.

    Args:
        client: Remote Graph Client (shared cache + rate limiter).
        concurrency: Parallel downloads; capped by the client's burst size.
        strategies: Materialization chain for the reference snapshot.
        cancel_event: Checked between downloads; set() aborts the run.
    """

    def __init__(
        self,
        client: FigmaClient,
        concurrency: Optional[int] = None,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
        scan_depth: int = settings.ASSET_SCAN_DEPTH,
        reference_filename: str = settings.REFERENCE_FILENAME,
        reference_scale: float = settings.REFERENCE_SCALE,
        cancel_event: Optional[Any] = None,
    ):
        self._client = client
        self._concurrency = max(1, min(
            concurrency or settings.ASSET_DOWNLOAD_CONCURRENCY,
            client.burst_size,
        ))
        self._strategies = strategies
        self._scan_depth = scan_depth
        self._reference_filename = reference_filename
        self._reference_scale = reference_scale
        self._cancel_event = cancel_event

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise OperationCancelledError("Asset resolution cancelled")

    async def _run_io(self, func, *args, timeout: Optional[float] = None):
        coro = asyncio.to_thread(func, *args)
        if timeout is None:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise FilesystemError(f"Disk I/O timed out after {timeout}s") from e

    async def resolve(
        self,
        file_key: str,
        node_id: Optional[str],
        target_dir: str,
        fallback_scale: float = 1.0,
        fallback_format: str = "png",
        timeout: Optional[float] = None,
    ) -> AssetResolution:
        if not file_key:
            raise InvalidInputError("file_key is required", operation="resolve_assets")
        if not target_dir:
            raise InvalidInputError("target_dir is required", operation="resolve_assets", file_key=file_key)
        if fallback_format not in EXPORT_FORMATS:
            raise InvalidInputError(
                f"Unsupported fallback format {fallback_format!r}",
                operation="resolve_assets", file_key=file_key,
            )
        if not 0.5 <= fallback_scale <= 4.0:
            raise InvalidInputError(
                f"Fallback scale {fallback_scale} outside 0.5-4",
                operation="resolve_assets", file_key=file_key,
            )

        target_dir = os.path.abspath(target_dir)
        try:
            os.makedirs(target_dir, exist_ok=True)
        except OSError as e:
            raise FilesystemError(
                f"Cannot create target directory {target_dir}: {e}", target_dir=target_dir,
            ) from e

        root = await self._client.fetch_subtree(
            file_key, node_id, max_depth=self._scan_depth, timeout=timeout,
        )
        requests = scan_export_requests(root, fallback_scale, fallback_format)
        filenames = assign_filenames(requests, reserved=[self._reference_filename])
        logger.info(
            f"resolve_assets: file={file_key}, node={node_id}, "
            f"export_requests={len(requests)}, target={target_dir}"
        )

        downloads = await self._download_all(file_key, requests, filenames, target_dir, timeout)

        # Reference goes last so its materialization log follows every asset download
        reference = await self._resolve_reference(
            file_key, node_id, root, target_dir, filenames, timeout,
        )

        successful = sum(1 for d in downloads if d.success)
        failed_ids = [d.node_id for d in downloads if not d.success]
        if not failed_ids and reference.success:
            status = "success"
        elif successful or reference.success:
            status = "partial"
        else:
            status = "failed"
        result = AssetResolution(
            status=status,
            file_key=file_key,
            target_dir=target_dir,
            downloads=downloads,
            reference=reference,
            summary=AssetSummary(total=len(downloads), successful=successful, failed=len(failed_ids)),
            failed_node_ids=failed_ids,
        )
        logger.info(
            f"resolve_assets: {successful}/{len(downloads)} assets saved, "
            f"reference={'ok' if reference.success else 'failed'} ({reference.strategy_used})"
        )
        return result

    # ------------------------------------------------------------------
    # Per-node downloads
    # ------------------------------------------------------------------

    async def _download_all(
        self,
        file_key: str,
        requests: List[ExportRequest],
        filenames: List[str],
        target_dir: str,
        timeout: Optional[float],
    ) -> List[DownloadResult]:
        results: List[Optional[DownloadResult]] = [None] * len(requests)
        urls: Dict[int, Optional[str]] = {}

        for fmt, scale, positions in group_into_batches(requests, self._client.batch_ceiling):
            self._check_cancelled()
            node_ids = list(dict.fromkeys(requests[p].node_id for p in positions))
            try:
                batch_urls = await self._client.fetch_export_urls(
                    file_key, node_ids, fmt=fmt, scale=scale, timeout=timeout,
                )
            except DesignContextError as e:
                logger.warning(f"resolve_assets: export batch failed ({fmt}@{scale}x, {len(node_ids)} nodes): {e}")
                for p in positions:
                    results[p] = self._failure(requests[p], f"export request failed: {e}")
                continue
            for p in positions:
                urls[p] = batch_urls.get(requests[p].node_id)

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _one(pos: int) -> None:
            async with semaphore:
                self._check_cancelled()
                req = requests[pos]
                url = urls.get(pos)
                if not url:
                    results[pos] = self._failure(req, "Figma returned no image URL for this node")
                    return
                path = os.path.join(target_dir, filenames[pos])
                try:
                    content = await self._client.download(url, timeout=timeout)
                    await self._run_io(_write_atomic, path, content, timeout=timeout)
                except (DesignContextError, OSError) as e:
                    logger.warning(f"resolve_assets: download failed for {req.node_id}: {e}")
                    results[pos] = self._failure(req, str(e))
                    return
                results[pos] = DownloadResult(
                    node_id=req.node_id,
                    node_name=req.node_name,
                    requested_format=req.format,
                    final_file_path=path,
                    success=True,
                    size_bytes=len(content),
                )

        pending = [p for p in range(len(requests)) if results[p] is None]
        await asyncio.gather(*(_one(p) for p in pending))
        return [r for r in results if r is not None]

    @staticmethod
    def _failure(req: ExportRequest, error: str) -> DownloadResult:
        return DownloadResult(
            node_id=req.node_id,
            node_name=req.node_name,
            requested_format=req.format,
            success=False,
            error=error,
        )

    # ------------------------------------------------------------------
    # Reference snapshot
    # ------------------------------------------------------------------

    def _reference_node(self, root: Dict[str, Any], node_id: Optional[str]) -> Tuple[str, str]:
        if node_id:
            return node_id, str(root.get("name", node_id))
        if root.get("type") == "DOCUMENT":
            pages = [c for c in root.get("children") or [] if isinstance(c, dict)]
            if pages:
                return str(pages[0].get("id")), str(pages[0].get("name", "page"))
        return str(root.get("id", "")), str(root.get("name", "reference"))

    async def _resolve_reference(
        self,
        file_key: str,
        node_id: Optional[str],
        root: Dict[str, Any],
        target_dir: str,
        taken: List[str],
        timeout: Optional[float],
    ) -> DownloadResult:
        self._check_cancelled()
        ref_id, ref_name = self._reference_node(root, node_id)
        request = ExportRequest(node_id=ref_id, node_name=ref_name, format="png", scale=self._reference_scale)
        staged_name = assign_filenames([request], reserved=[*taken, self._reference_filename])[0]
        staged_path = os.path.join(target_dir, staged_name)
        canonical = os.path.join(target_dir, self._reference_filename)

        try:
            urls = await self._client.fetch_export_urls(
                file_key, [ref_id], fmt="png", scale=self._reference_scale, timeout=timeout,
            )
            url = urls.get(ref_id)
            if not url:
                return self._failure(request, "Figma returned no image URL for the reference node")
            content = await self._client.download(url, timeout=timeout)
            await self._run_io(_write_atomic, staged_path, content, timeout=timeout)
            outcome = await self._run_io(
                materialize, staged_path, canonical, self._strategies, timeout=timeout,
            )
        except (DesignContextError, OSError) as e:
            logger.warning(f"resolve_assets: reference snapshot failed for {ref_id}: {e}")
            return self._failure(request, f"reference snapshot failed: {e}")

        if outcome.warning:
            logger.warning(f"resolve_assets: reference {outcome.warning}")
        return DownloadResult(
            node_id=ref_id,
            node_name=ref_name,
            requested_format="png",
            final_file_path=outcome.final_path,
            success=True,
            size_bytes=outcome.size_bytes,
            strategy_used=outcome.strategy,
            warning=outcome.warning,
        )
