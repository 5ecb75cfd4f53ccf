"""Tests for export scanning, batched downloads and the reference snapshot."""

import asyncio
import os
import threading
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import frame
from design_context.assets.asset_resolver import (
    AssetResolver,
    assign_filenames,
    check_reference,
    group_into_batches,
    sanitize_filename,
    scan_export_requests,
)
from design_context.assets.materialize import copy_strategy, hardlink_strategy, keep_original_strategy
from design_context.errors import (
    FigmaClientError,
    InvalidInputError,
    OperationCancelledError,
    RemoteUnavailableError,
)
from design_context.models import ExportRequest


def _png(scale=1, suffix=""):
    return {"format": "PNG", "suffix": suffix, "constraint": {"type": "SCALE", "value": scale}}


def _svg():
    return {"format": "SVG", "suffix": "", "constraint": {"type": "SCALE", "value": 1}}


def _url(node_id, fmt="png", scale=1.0):
    return f"https://cdn.example.com/{node_id.replace(':', '_')}@{scale:g}.{fmt}"


def make_client(tree, ceiling=50, missing=(), failing_downloads=(), failing_formats=()):
    """Fake Remote Graph Client: URLs for every id except ``missing``."""
    client = MagicMock()
    client.batch_ceiling = ceiling
    client.burst_size = 4
    client.fetch_subtree = AsyncMock(return_value=tree)

    async def fetch_export_urls(file_key, node_ids, fmt="png", scale=1.0, timeout=None):
        if len(node_ids) > ceiling:
            raise InvalidInputError("over ceiling")
        if fmt in failing_formats:
            raise FigmaClientError("Figma image render error: boom", operation="fetch_export_urls")
        return {nid: None if nid in missing else _url(nid, fmt, scale) for nid in node_ids}

    async def download(url, timeout=None):
        if url in failing_downloads:
            raise RemoteUnavailableError("Figma API unavailable after 3 attempts (download)")
        # Later urls finish first so completion order differs from request order
        await asyncio.sleep(0.001 * (10 - len(url) % 10))
        return f"bytes:{url}".encode()

    client.fetch_export_urls = AsyncMock(side_effect=fetch_export_urls)
    client.download = AsyncMock(side_effect=download)
    return client


@pytest.fixture
def export_tree():
    """Screen with three export-flagged nodes, one nested deep inside a group."""
    deep = frame("5:5", "Close", 0, 0, 16, 16, node_type="VECTOR", exportSettings=[_svg()])
    nested = deep
    for level in range(12):
        nested = frame(f"g{level}", f"Group {level}", 0, 0, 20, 20, node_type="GROUP", children=[nested])
    return frame("1:1", "Screen", 0, 0, 400, 800, children=[
        frame("2:2", "Logo", 0, 0, 120, 40, exportSettings=[_png(2, "@2x"), _svg()]),
        frame("3:3", "Hero / Banner", 0, 40, 400, 200, exportSettings=[_png()]),
        nested,
        frame("4:4", "Plain", 0, 240, 400, 100),
    ])


# ---------------------------------------------------------------------------
# Scan + naming
# ---------------------------------------------------------------------------


class TestScanExportRequests:

    def test_pre_order_one_request_per_setting(self, export_tree):
        requests = scan_export_requests(export_tree)
        assert [(r.node_id, r.format, r.scale) for r in requests] == [
            ("2:2", "png", 2.0),
            ("2:2", "svg", 1.0),
            ("3:3", "png", 1.0),
            ("5:5", "svg", 1.0),
        ]

    def test_nodes_without_settings_never_requested(self, export_tree):
        assert "4:4" not in {r.node_id for r in scan_export_requests(export_tree)}

    def test_vector_formats_force_scale_one(self):
        node = frame("1", "Icon", 0, 0, 10, 10, exportSettings=[
            {"format": "SVG", "constraint": {"type": "SCALE", "value": 3}},
        ])
        assert scan_export_requests(node)[0].scale == 1.0

    def test_fallbacks_apply_when_setting_is_incomplete(self):
        node = frame("1", "Photo", 0, 0, 10, 10, exportSettings=[
            {"format": "PNG", "constraint": {"type": "WIDTH", "value": 300}},
            {"format": "HEIC"},
        ])
        requests = scan_export_requests(node, fallback_scale=3, fallback_format="jpg")
        assert [(r.format, r.scale) for r in requests] == [("png", 3.0), ("jpg", 3.0)]

    def test_scale_clamped_to_supported_range(self):
        node = frame("1", "Huge", 0, 0, 10, 10, exportSettings=[_png(8)])
        assert scan_export_requests(node)[0].scale == 4.0


class TestFilenames:

    @pytest.mark.parametrize("name,expected", [
        ("Hero / Banner", "Hero - Banner"),
        ('a:b*c?"d<e>f|g\\h', "a-b-c--d-e-f-g-h"),
        ("  spaced   out  ", "spaced out"),
        ("...", "asset"),
        ("", "asset"),
    ])
    def test_sanitize(self, name, expected):
        assert sanitize_filename(name) == expected

    def test_suffix_or_scale_naming(self):
        names = assign_filenames([
            ExportRequest(node_id="1:1", node_name="Logo", format="png", scale=2, suffix="@2x"),
            ExportRequest(node_id="1:1", node_name="Logo", format="svg"),
            ExportRequest(node_id="1:2", node_name="Badge", format="png", scale=1.5),
        ])
        assert names == ["Logo@2x.png", "Logo-x1.svg", "Badge-x1.5.png"]

    def test_collisions_get_node_id(self):
        names = assign_filenames([
            ExportRequest(node_id="2:5", node_name="Icon"),
            ExportRequest(node_id="2:6", node_name="icon"),
            ExportRequest(node_id="2:7", node_name="Icon"),
        ])
        assert names == ["Icon-x1.png", "icon-x1-2-6.png", "Icon-x1-2-7.png"]

    def test_reserved_names_avoided(self):
        names = assign_filenames(
            [ExportRequest(node_id="9:1", node_name="reference", suffix="")],
            reserved=["reference-x1.png"],
        )
        assert names == ["reference-x1-9-1.png"]


class TestBatching:

    def test_groups_by_format_and_scale_then_splits(self):
        requests = [
            ExportRequest(node_id=f"1:{i}", format="png") for i in range(5)
        ] + [ExportRequest(node_id="2:1", format="svg")]
        batches = group_into_batches(requests, ceiling=2)
        assert [(fmt, scale, positions) for fmt, scale, positions in batches] == [
            ("png", 1.0, [0, 1]),
            ("png", 1.0, [2, 3]),
            ("png", 1.0, [4]),
            ("svg", 1.0, [5]),
        ]


# ---------------------------------------------------------------------------
# AssetResolver.resolve
# ---------------------------------------------------------------------------


class TestResolveAssets:

    @pytest.mark.asyncio
    async def test_zero_exports_still_returns_reference(self, tmp_path):
        client = make_client(frame("1:1", "Screen", 0, 0, 100, 100))
        result = await AssetResolver(client).resolve("file", "1:1", str(tmp_path))

        assert result.downloads == []
        assert result.reference is not None
        assert result.reference.success is True
        assert result.reference.strategy_used == "rename"
        assert result.reference.final_file_path == os.path.join(str(tmp_path), "reference.png")
        assert result.status == "success"
        assert result.summary.total == 0
        assert sorted(os.listdir(tmp_path)) == ["reference.png"]

    @pytest.mark.asyncio
    async def test_downloads_written_in_scan_order(self, tmp_path, export_tree):
        client = make_client(export_tree)
        result = await AssetResolver(client).resolve("file", "1:1", str(tmp_path))

        assert [(d.node_id, d.requested_format) for d in result.downloads] == [
            ("2:2", "png"), ("2:2", "svg"), ("3:3", "png"), ("5:5", "svg"),
        ]
        assert all(d.success for d in result.downloads)
        assert sorted(os.listdir(tmp_path)) == [
            "Close-x1.svg", "Hero - Banner-x1.png", "Logo-x1.svg", "Logo@2x.png", "reference.png",
        ]
        logo = result.downloads[0]
        with open(logo.final_file_path, "rb") as f:
            assert f.read() == f"bytes:{_url('2:2', 'png', 2.0)}".encode()
        assert logo.size_bytes == os.path.getsize(logo.final_file_path)
        assert result.summary.successful == 4
        assert result.partial_failure is None

    @pytest.mark.asyncio
    async def test_scan_uses_its_own_depth(self, tmp_path, export_tree):
        client = make_client(export_tree)
        await AssetResolver(client, scan_depth=25).resolve("file", "1:1", str(tmp_path))
        assert client.fetch_subtree.call_args.kwargs["max_depth"] == 25

    @pytest.mark.asyncio
    async def test_batches_respect_client_ceiling(self, tmp_path):
        icons = [frame(f"7:{i}", f"Icon {i}", 0, 0, 16, 16, exportSettings=[_png()]) for i in range(5)]
        client = make_client(frame("1:1", "Icons", 0, 0, 100, 100, children=icons), ceiling=2)
        result = await AssetResolver(client).resolve("file", "1:1", str(tmp_path))

        batch_sizes = [len(c.args[1]) for c in client.fetch_export_urls.call_args_list]
        assert batch_sizes == [2, 2, 1, 1]  # three asset batches + the reference
        assert [d.node_id for d in result.downloads] == [f"7:{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_missing_url_recorded_not_raised(self, tmp_path, export_tree):
        client = make_client(export_tree, missing={"3:3"})
        result = await AssetResolver(client).resolve("file", "1:1", str(tmp_path))

        hero = result.downloads[2]
        assert hero.success is False
        assert "no image URL" in hero.error
        assert hero.final_file_path is None
        assert result.status == "partial"
        assert result.failed_node_ids == ["3:3"]
        assert result.summary.failed == 1
        assert result.partial_failure.failed == [{"node_id": "3:3", "error": hero.error}]

    @pytest.mark.asyncio
    async def test_failed_batch_marks_only_its_items(self, tmp_path, export_tree):
        client = make_client(export_tree, failing_formats={"svg"})
        result = await AssetResolver(client).resolve("file", "1:1", str(tmp_path))

        outcome = {(d.node_id, d.requested_format): d.success for d in result.downloads}
        assert outcome == {
            ("2:2", "png"): True, ("2:2", "svg"): False, ("3:3", "png"): True, ("5:5", "svg"): False,
        }
        assert result.reference.success is True

    @pytest.mark.asyncio
    async def test_download_error_does_not_abort_batch(self, tmp_path, export_tree):
        client = make_client(export_tree, failing_downloads={_url("2:2", "png", 2.0)})
        result = await AssetResolver(client).resolve("file", "1:1", str(tmp_path))

        assert [d.success for d in result.downloads] == [False, True, True, True]
        assert "unavailable" in result.downloads[0].error
        assert not any(name.endswith(".part") for name in os.listdir(tmp_path))

    @pytest.mark.asyncio
    async def test_reference_uses_first_page_for_whole_document(self, tmp_path):
        document = {"id": "0:0", "name": "Document", "type": "DOCUMENT", "children": [
            {"id": "0:1", "name": "Cover", "type": "CANVAS", "children": []},
            {"id": "0:2", "name": "Screens", "type": "CANVAS", "children": []},
        ]}
        client = make_client(document)
        result = await AssetResolver(client).resolve("file", None, str(tmp_path))

        assert result.reference.node_id == "0:1"
        assert client.fetch_subtree.call_args.args == ("file", None)

    @pytest.mark.asyncio
    async def test_reference_failure_is_reported(self, tmp_path):
        client = make_client(frame("1:1", "Screen", 0, 0, 10, 10), missing={"1:1"})
        result = await AssetResolver(client).resolve("file", "1:1", str(tmp_path))

        assert result.reference is not None
        assert result.reference.success is False
        assert result.reference.error
        assert result.status == "failed"

    @pytest.mark.asyncio
    async def test_reference_falls_back_through_chain(self, tmp_path):
        def no_rename(source, target):
            raise OSError("rename not permitted")

        client = make_client(frame("1:1", "Screen", 0, 0, 10, 10))
        resolver = AssetResolver(
            client, strategies=(no_rename, copy_strategy, hardlink_strategy, keep_original_strategy),
        )
        result = await resolver.resolve("file", "1:1", str(tmp_path))

        assert result.reference.strategy_used == "copy"
        assert sorted(os.listdir(tmp_path)) == ["reference.png"]

    @pytest.mark.asyncio
    async def test_reference_kept_under_download_name_with_warning(self, tmp_path):
        def refuse(source, target):
            raise OSError("read-only")

        client = make_client(frame("1:1", "Screen", 0, 0, 10, 10))
        resolver = AssetResolver(client, strategies=(refuse, keep_original_strategy))
        result = await resolver.resolve("file", "1:1", str(tmp_path))

        assert result.reference.success is True
        assert result.reference.strategy_used == "keep-original"
        assert result.reference.warning
        assert os.path.basename(result.reference.final_file_path) == "Screen-x1.png"
        assert check_reference(str(tmp_path)).exists is False

    @pytest.mark.asyncio
    async def test_reference_runs_after_all_downloads(self, tmp_path, export_tree):
        client = make_client(export_tree)
        await AssetResolver(client).resolve("file", "1:1", str(tmp_path))

        last_export_call = client.fetch_export_urls.call_args_list[-1]
        last_download = client.download.call_args_list[-1]
        assert last_export_call.args[1] == ["1:1"]
        assert last_download.args[0] == _url("1:1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"target_dir": ""},
        {"fallback_format": "gif"},
        {"fallback_scale": 10},
    ])
    async def test_invalid_input(self, tmp_path, kwargs):
        client = make_client(frame("1:1", "Screen", 0, 0, 10, 10))
        args = {"target_dir": str(tmp_path), **kwargs}
        with pytest.raises(InvalidInputError):
            await AssetResolver(client).resolve("file", "1:1", **args)
        client.fetch_subtree.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancelled_before_downloads(self, tmp_path, export_tree):
        event = threading.Event()
        event.set()
        client = make_client(export_tree)
        with pytest.raises(OperationCancelledError):
            await AssetResolver(client, cancel_event=event).resolve("file", "1:1", str(tmp_path))
        client.download.assert_not_called()


class TestCheckReference:

    def test_missing(self, tmp_path):
        check = check_reference(str(tmp_path))
        assert check.exists is False
        assert check.size_bytes == 0

    def test_present(self, tmp_path):
        (tmp_path / "reference.png").write_bytes(b"12345")
        check = check_reference(str(tmp_path))
        assert check.exists is True
        assert check.size_bytes == 5
