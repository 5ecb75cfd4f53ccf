"""Comment matcher: bind reviewer annotations to nodes and classify intent.

Binding order per annotation:
    1. anchor node id present in the index       -> "exact"
    2. anchor point inside one or more nodes      -> "exact-by-containment"
    3. anchor point near a node centroid (radius) -> "proximity"
    4. otherwise                                  -> "none"

Within a tier the winner has the smallest point-to-centroid distance, then
the smallest area, then the lowest index (pre-order position).
"""

from __future__ import annotations

import logging
import math
import re
from typing import Dict, List, Optional, Tuple

from .. import settings
from ..errors import InvalidInputError
from ..models import Annotation, AnnotationMatch, Intent, Point
from .bounds_index import BoundsIndex, IndexedNode

logger = logging.getLogger("design_context.processing.comments")

# =====================================================================
# Intent taxonomy
# =====================================================================

# Effect words weigh 2, trigger/qualifier words weigh 1
INTENT_KEYWORDS: Dict[str, Dict[str, float]] = {
    "animation": {
        "animate": 2, "animation": 2, "bounce": 2, "fade": 2, "fading": 2,
        "slide": 2, "spin": 2, "rotate": 2, "pulse": 2, "shake": 2,
        "wiggle": 2, "flip": 2, "zoom": 2, "motion": 2, "transition": 2,
        "ease": 1, "easing": 1, "duration": 1, "scale": 1, "smooth": 1,
    },
    "interaction": {
        "hover": 1, "click": 1, "tap": 1, "press": 1, "focus": 1, "drag": 1,
        "swipe": 1, "scroll": 1, "touch": 1, "select": 1, "gesture": 1,
    },
    "behavior": {
        "show": 1, "hide": 1, "toggle": 1, "open": 1, "close": 1, "expand": 1,
        "collapse": 1, "navigate": 1, "redirect": 1, "submit": 1, "validate": 1,
        "load": 1, "disable": 1, "enable": 1, "sticky": 1, "autoplay": 1,
    },
    "style": {
        "color": 1, "colour": 1, "font": 1, "padding": 1, "margin": 1,
        "border": 1, "radius": 1, "shadow": 1, "spacing": 1, "align": 1,
        "bold": 1, "background": 1, "opacity": 1, "size": 1, "bigger": 1,
        "smaller": 1, "larger": 1,
    },
}

IMPERATIVE_WORDS = frozenset({"should", "must", "need", "needs"})

_TOKEN_RE = re.compile(r"[a-z]+")


_INFLECTIONS = ("ing", "es", "ed", "s", "d")


def _keyword_for(token: str, keywords: Dict[str, float]) -> Optional[str]:
    """Exact match, or a keyword plus an inflection ending ("fades", "clicked", "bouncing")."""
    if token in keywords:
        return token
    for suffix in _INFLECTIONS:
        if not token.endswith(suffix) or len(token) <= len(suffix) + 1:
            continue
        stem = token[:-len(suffix)]
        candidates = [stem]
        if suffix in ("ing", "ed", "es"):
            candidates.append(stem + "e")
        # tapped -> tap, spinning -> spin
        if len(stem) > 2 and stem[-1] == stem[-2]:
            candidates.append(stem[:-1])
        for candidate in candidates:
            if candidate in keywords:
                return candidate
    return None


def classify_intent(
    message: str,
    actionable_threshold: float = settings.INTENT_ACTIONABLE_THRESHOLD,
    imperative_bonus: float = settings.INTENT_IMPERATIVE_BONUS,
) -> Intent:
    """Score ``message`` against the keyword taxonomy.

    The highest-scoring category wins; ties (or no hits) give ``general``.
    """
    tokens = _TOKEN_RE.findall(message.lower())
    scores: Dict[str, float] = {category: 0.0 for category in INTENT_KEYWORDS}
    hits: Dict[str, List[str]] = {category: [] for category in INTENT_KEYWORDS}

    for token in tokens:
        for category, keywords in INTENT_KEYWORDS.items():
            keyword = _keyword_for(token, keywords)
            if keyword is None:
                continue
            scores[category] += keywords[keyword]
            if keyword not in hits[category]:
                hits[category].append(keyword)

    top = max(scores.values())
    leaders = [c for c, s in scores.items() if s == top]
    if top == 0:
        intent_type, keywords, confidence = "general", [], 0.1
    elif len(leaders) > 1:
        intent_type = "general"
        keywords = [k for c in leaders for k in hits[c]]
        confidence = 0.2 + 0.05 * top
    else:
        intent_type = leaders[0]
        keywords = hits[intent_type]
        confidence = 0.2 + 0.15 * top

    if any(token in IMPERATIVE_WORDS for token in tokens):
        confidence += imperative_bonus
    confidence = round(min(1.0, max(0.0, confidence)), 2)

    return Intent(
        type=intent_type,
        keywords=keywords,
        confidence=confidence,
        actionable=confidence >= actionable_threshold,
    )


# =====================================================================
# Spatial matching
# =====================================================================


class CommentMatcher:
    """Args:
        index: Bounds index of the enhanced tree.
        radius: Max point-to-centroid distance for proximity candidates.
    """

    def __init__(
        self,
        index: BoundsIndex,
        radius: float = settings.COMMENT_PROXIMITY_RADIUS,
        actionable_threshold: float = settings.INTENT_ACTIONABLE_THRESHOLD,
        imperative_bonus: float = settings.INTENT_IMPERATIVE_BONUS,
    ):
        self.index = index
        self.radius = radius
        self.actionable_threshold = actionable_threshold
        self.imperative_bonus = imperative_bonus

    def _nearest(self, point: Point) -> Tuple[Optional[IndexedNode], Optional[float], bool]:
        containing: List[Tuple[float, float, int, IndexedNode]] = []
        nearby: List[Tuple[float, float, int, IndexedNode]] = []
        for entry in self.index.with_bounds():
            distance = entry.bounds.distance_to_centroid(point)
            key = (distance, entry.bounds.area, entry.index, entry)
            if entry.bounds.contains(point):
                containing.append(key)
            elif distance <= self.radius:
                nearby.append(key)

        tier = containing or nearby
        if not tier:
            return None, None, False
        distance, _, _, best = min(tier, key=lambda k: k[:3])
        return best, distance, bool(containing)

    def match(self, annotation: Annotation) -> AnnotationMatch:
        intent = classify_intent(
            annotation.message, self.actionable_threshold, self.imperative_bonus,
        )

        if annotation.anchor_node_id:
            entry = self.index.get(annotation.anchor_node_id)
            if entry is not None:
                return AnnotationMatch(
                    annotation=annotation,
                    target_element=entry.to_target(),
                    match_method="exact",
                    intent=intent,
                )

        point = annotation.anchor_point
        if point is not None:
            if not (math.isfinite(point.x) and math.isfinite(point.y)):
                raise InvalidInputError(
                    f"Annotation {annotation.id} has malformed coordinates",
                    annotation_id=annotation.id,
                )
            entry, distance, contained = self._nearest(point)
            if entry is not None:
                return AnnotationMatch(
                    annotation=annotation,
                    target_element=entry.to_target(),
                    match_method="exact-by-containment" if contained else "proximity",
                    distance=round(distance, 2),
                    intent=intent,
                )

        return AnnotationMatch(annotation=annotation, match_method="none", intent=intent)

    def match_all(self, annotations: List[Annotation]) -> List[AnnotationMatch]:
        matches = [self.match(a) for a in annotations]
        bound = sum(1 for m in matches if m.target_element is not None)
        logger.info(
            f"match_all: annotations={len(annotations)}, bound={bound}, "
            f"actionable={sum(1 for m in matches if m.intent.actionable)}"
        )
        return matches
