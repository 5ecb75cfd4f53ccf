"""Tests for the bounds index, spatial comment matching, and intent classification."""

import pytest

from conftest import frame
from design_context.errors import InvalidInputError
from design_context.integrations.figma_client import parse_comments
from design_context.models import Annotation, Point
from design_context.processing.bounds_index import BoundsIndex
from design_context.processing.comment_matcher import CommentMatcher, classify_intent


def _at(x, y, message="", annotation_id="c1", node_id=None):
    return Annotation(
        id=annotation_id, message=message, anchor_point=Point(x=x, y=y), anchor_node_id=node_id,
    )


# ---------------------------------------------------------------------------
# BoundsIndex
# ---------------------------------------------------------------------------


class TestBoundsIndex:

    def test_pre_order_with_parent_links(self, sample_tree):
        index = BoundsIndex.from_tree(sample_tree)

        assert [e.id for e in index] == ["1:1", "1:2", "1:3"]
        button = index.get("1:2")
        assert button.path == ("F", "Primary Button")
        assert button.depth == 1
        assert index.parent_of(button).id == "1:1"
        assert [c.id for c in index.children_of(index.root)] == ["1:2", "1:3"]

    def test_nodes_without_bounds_are_indexed_but_not_spatial(self):
        tree = frame("1", "Root", 0, 0, 100, 100, children=[
            {"id": "2", "name": "Floating", "type": "GROUP"},
        ])
        index = BoundsIndex.from_tree(tree)
        assert "2" in index
        assert [e.id for e in index.with_bounds()] == ["1"]

    def test_reads_reduced_bounds_too(self):
        index = BoundsIndex.from_tree({"id": "r", "name": "R", "type": "FRAME",
                                       "bounds": {"x": 1, "y": 2, "width": 3, "height": 4}})
        assert index.root.bounds.area == 12

    def test_empty_tree(self):
        index = BoundsIndex.from_tree(None)
        assert len(index) == 0
        assert index.root is None


# ---------------------------------------------------------------------------
# CommentMatcher
# ---------------------------------------------------------------------------


class TestCommentMatcher:

    def test_bounce_on_hover_scenario(self, sample_tree):
        matcher = CommentMatcher(BoundsIndex.from_tree(sample_tree))
        match = matcher.match(_at(180, 130, "make this bounce on hover"))

        assert match.match_method == "exact-by-containment"
        assert match.target_element.id == "1:2"
        assert match.target_element.path == ["F", "Primary Button"]
        assert match.intent.type == "animation"
        assert match.intent.actionable is True

    def test_anchor_node_id_binds_exactly(self, sample_tree):
        matcher = CommentMatcher(BoundsIndex.from_tree(sample_tree))
        match = matcher.match(_at(5, 5, node_id="1:3"))
        assert match.match_method == "exact"
        assert match.target_element.id == "1:3"
        assert match.distance is None

    def test_unknown_anchor_node_falls_back_to_point(self, sample_tree):
        matcher = CommentMatcher(BoundsIndex.from_tree(sample_tree))
        match = matcher.match(_at(180, 130, node_id="404:404"))
        assert match.match_method == "exact-by-containment"
        assert match.target_element.id == "1:2"

    def test_offset_on_node_outside_tree_is_unmatched(self, sample_tree):
        comments = parse_comments({"comments": [{
            "id": "c7",
            "message": "make this bounce",
            "client_meta": {"node_id": "9:9", "node_offset": {"x": 175, "y": 125}},
        }]})
        match = CommentMatcher(BoundsIndex.from_tree(sample_tree)).match(comments[0])
        assert match.match_method == "none"
        assert match.target_element is None
        assert match.distance is None
        assert match.intent.type == "animation"

    def test_offset_on_indexed_node_binds_to_that_node(self, sample_tree):
        comments = parse_comments({"comments": [{
            "id": "c8",
            "client_meta": {"node_id": "1:3", "node_offset": {"x": 175, "y": 125}},
        }]})
        match = CommentMatcher(BoundsIndex.from_tree(sample_tree)).match(comments[0])
        assert match.match_method == "exact"
        assert match.target_element.id == "1:3"

    def test_containment_outranks_nearer_centroid(self):
        tree = frame("L", "Large", 0, 0, 1000, 1000, children=[
            frame("S", "Small", 10, 10, 20, 20),
        ])
        matcher = CommentMatcher(BoundsIndex.from_tree(tree))
        match = matcher.match(_at(35, 20))
        assert match.match_method == "exact-by-containment"
        assert match.target_element.id == "L"

    def test_proximity_when_nothing_contains_point(self):
        tree = {"id": "doc", "name": "Page", "type": "CANVAS", "children": [
            frame("a", "Badge", 0, 0, 10, 10),
        ]}
        matcher = CommentMatcher(BoundsIndex.from_tree(tree))
        match = matcher.match(_at(60, 5))
        assert match.match_method == "proximity"
        assert match.target_element.id == "a"
        assert match.distance == 55.0

    def test_radius_is_configurable(self):
        tree = frame("a", "Badge", 0, 0, 10, 10)
        index = BoundsIndex.from_tree(tree)
        assert CommentMatcher(index, radius=50).match(_at(60, 5)).match_method == "none"
        assert CommentMatcher(index, radius=60).match(_at(60, 5)).match_method == "proximity"

    def test_equidistant_prefers_smaller_area(self):
        tree = frame("big", "Big", 0, 0, 100, 100, children=[
            frame("small", "Small", 25, 25, 50, 50),
        ])
        match = CommentMatcher(BoundsIndex.from_tree(tree)).match(_at(50, 50))
        assert match.target_element.id == "small"
        assert match.distance == 0.0

    def test_identical_candidates_resolved_by_index_order(self):
        tree = frame("root", "Root", 0, 0, 500, 500, children=[
            frame("first", "Twin", 100, 100, 40, 40),
            frame("second", "Twin", 100, 100, 40, 40),
        ])
        matcher = CommentMatcher(BoundsIndex.from_tree(tree))
        picks = {matcher.match(_at(120, 120)).target_element.id for _ in range(5)}
        assert picks == {"first"}

    def test_no_anchor_still_classified(self, sample_tree):
        matcher = CommentMatcher(BoundsIndex.from_tree(sample_tree))
        match = matcher.match(Annotation(id="c9", message="This should fade in"))
        assert match.match_method == "none"
        assert match.target_element is None
        assert match.intent.type == "animation"

    def test_far_point_is_unmatched(self, sample_tree):
        matcher = CommentMatcher(BoundsIndex.from_tree(sample_tree))
        match = matcher.match(_at(5000, 5000, "nice"))
        assert match.match_method == "none"
        assert match.intent.type == "general"

    def test_malformed_coordinates_rejected(self, sample_tree):
        matcher = CommentMatcher(BoundsIndex.from_tree(sample_tree))
        with pytest.raises(InvalidInputError):
            matcher.match(_at(float("nan"), 10))

    def test_match_all_preserves_order(self, sample_tree):
        matcher = CommentMatcher(BoundsIndex.from_tree(sample_tree))
        annotations = [_at(180, 130, annotation_id="a"), Annotation(id="b"), _at(30, 30, annotation_id="c")]
        assert [m.annotation.id for m in matcher.match_all(annotations)] == ["a", "b", "c"]


# ---------------------------------------------------------------------------
# Intent classification
# ---------------------------------------------------------------------------


class TestClassifyIntent:

    def test_effect_word_outweighs_trigger(self):
        intent = classify_intent("make this bounce on hover")
        assert intent.type == "animation"
        assert intent.keywords == ["bounce"]
        assert intent.confidence == 0.5

    def test_style(self):
        intent = classify_intent("Please change the color and padding")
        assert intent.type == "style"
        assert intent.keywords == ["color", "padding"]
        assert intent.actionable is True

    def test_imperative_bonus(self):
        plain = classify_intent("fade in when clicked")
        urgent = classify_intent("it should fade in when clicked")
        assert urgent.confidence == pytest.approx(plain.confidence + 0.2)

    def test_tie_resolves_to_general(self):
        intent = classify_intent("hover to show")
        assert intent.type == "general"
        assert set(intent.keywords) == {"hover", "show"}
        assert intent.actionable is False

    def test_no_keywords(self):
        intent = classify_intent("Looks great!")
        assert intent.type == "general"
        assert intent.confidence == 0.1
        assert intent.actionable is False

    def test_imperative_alone_reaches_threshold(self):
        intent = classify_intent("This must be fixed")
        assert intent.type == "general"
        assert intent.confidence == 0.3
        assert intent.actionable is True

    def test_inflected_keywords(self):
        assert classify_intent("the panel fades and slides").type == "animation"
        intent = classify_intent("bouncing when tapped")
        assert intent.type == "animation"
        assert intent.keywords == ["bounce"]

    def test_longer_words_sharing_a_prefix_do_not_match(self):
        intent = classify_intent("the slider showcase needs less pressure")
        assert intent.keywords == []
        assert intent.type == "general"

    def test_confidence_is_clamped(self):
        intent = classify_intent("animate bounce fade slide spin pulse shake zoom, it must")
        assert intent.confidence == 1.0

    def test_threshold_is_configurable(self):
        assert classify_intent("hover", actionable_threshold=0.5).actionable is False
        assert classify_intent("hover", actionable_threshold=0.3).actionable is True
