"""Tree processor: enhance and reduce passes over a Figma node subtree.

Enhance (depth-first, pre-order, on a deep working copy):
    1. Drop excluded types and hidden nodes together with their subtrees
    2. Enforce the depth ceiling (prioritized types get one extra level)
    3. Attach role / accessibility / interactions from rules + built-in heuristics
    4. Attach css / tokens / variants when the toggles ask for them

Reduce (pure, idempotent) turns an enhanced (or raw) tree into the compact
AI-facing artifact: whitelisted keys only, framework defaults stripped,
pass-through groups collapsed, long text truncated, identical sibling runs
folded into one representative.

Counters live on a ProcessingStats owned by the caller of each run.
"""

from __future__ import annotations

import copy
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from ..errors import OperationCancelledError
from ..models import Bounds, ProcessingStats
from .rules import (
    BUILTIN_HEURISTICS,
    CustomRule,
    RuleConfiguration,
    evaluate_condition,
)
from .style_utils import (
    detect_component_variants,
    detect_text_hierarchy,
    extract_design_tokens,
    generate_css,
)

logger = logging.getLogger("design_context.processing.tree")

NodeDict = Dict[str, Any]

TRUNCATION_MARKER = "…[truncated]"

# Types the enhance pass knows how to annotate; anything else passes through untouched
KNOWN_NODE_TYPES = frozenset({
    "DOCUMENT", "CANVAS", "FRAME", "GROUP", "SECTION", "TEXT", "RECTANGLE",
    "ELLIPSE", "VECTOR", "LINE", "STAR", "POLYGON", "REGULAR_POLYGON",
    "BOOLEAN_OPERATION", "COMPONENT", "COMPONENT_SET", "INSTANCE", "SLICE",
    "STICKY", "CONNECTOR", "SHAPE_WITH_TEXT", "TABLE", "WASHI_TAPE",
})

# CSS values that equal the browser/framework default for their property
FRAMEWORK_DEFAULTS: Dict[str, frozenset] = {
    "opacity": frozenset({"1", "1.0"}),
    "display": frozenset({"block"}),
    "flexDirection": frozenset({"row"}),
    "justifyContent": frozenset({"flex-start"}),
    "alignItems": frozenset({"flex-start"}),
    "gap": frozenset({"0px"}),
    "padding": frozenset({"0px", "0px 0px 0px 0px"}),
    "borderRadius": frozenset({"0px"}),
    "letterSpacing": frozenset({"0px"}),
    "textAlign": frozenset({"left"}),
    "fontWeight": frozenset({"400"}),
    "filter": frozenset({"none"}),
    "background": frozenset({"none", "transparent"}),
    "boxShadow": frozenset({"none"}),
}

# Keys the reduce pass copies through unchanged when non-empty
_PASS_THROUGH_KEYS = (
    "role", "accessibility", "interactions", "tokens", "variants",
    "image", "truncatedChildren", "textLength", "repeat", "repeatedIds",
)

_AUTO_NAME_RE = re.compile(
    r"^(Rectangle|Ellipse|Vector|Line|Group|Frame|Polygon|Star|Union|Subtract)\s*\d*$",
    re.IGNORECASE,
)


class TreeProcessor:
    """Runs the enhance and reduce passes for one request.

    Args:
        rules: Validated rule configuration.
        stats: Counter object to accumulate into; a fresh one when omitted.
        cancel_event: Checked between nodes; set() aborts the traversal.
    """

    def __init__(
        self,
        rules: RuleConfiguration,
        stats: Optional[ProcessingStats] = None,
        cancel_event: Optional[Any] = None,
    ):
        self.rules = rules
        self.stats = stats if stats is not None else ProcessingStats()
        self._cancel_event = cancel_event
        self._custom_rules = rules.ordered_rules()

    # ------------------------------------------------------------------
    # Enhance pass
    # ------------------------------------------------------------------

    def enhance(self, root: NodeDict) -> Optional[NodeDict]:
        """Return an enhanced deep copy of ``root``, or None if the root itself is dropped."""
        working = copy.deepcopy(root)
        return self._enhance_node(working, depth=0)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise OperationCancelledError(
                "Tree processing cancelled", nodes_visited=self.stats.nodes_visited,
            )

    def _within_depth(self, node: Any, depth: int) -> bool:
        if depth < self.rules.max_depth:
            return True
        # One extra level for prioritized types, never past max_depth
        return (
            depth == self.rules.max_depth
            and isinstance(node, dict)
            and node.get("type") in self.rules.prioritize_types
        )

    def _enhance_node(self, node: Any, depth: int) -> Optional[NodeDict]:
        self._check_cancelled()
        self.stats.nodes_visited += 1

        if not isinstance(node, dict):
            self.stats.warnings.append(f"Skipped malformed node at depth {depth}")
            return None
        node_type = node.get("type")
        if node_type in self.rules.exclude_types:
            return None
        # The requested root is kept whatever its type
        if depth > 0 and self.rules.include_types and node_type not in self.rules.include_types:
            return None
        if not self.rules.include_hidden and node.get("visible") is False:
            return None
        if not self.rules.include_locked and node.get("locked") is True:
            return None

        self.stats.nodes_kept += 1
        if "absoluteBoundingBox" in node and Bounds.from_node(node) is None:
            self.stats.warnings.append(f"Node {node.get('id')} has malformed bounds")
            node.pop("absoluteBoundingBox")

        if node_type in KNOWN_NODE_TYPES:
            if self._annotate(node):
                self.stats.nodes_enhanced += 1

        children = node.get("children")
        if isinstance(children, list):
            kept: List[NodeDict] = []
            truncated = 0
            for child in children:
                if not self._within_depth(child, depth + 1):
                    truncated += 1
                    continue
                enhanced = self._enhance_node(child, depth + 1)
                if enhanced is not None:
                    kept.append(enhanced)
            node["children"] = kept
            if truncated:
                node["truncatedChildren"] = truncated
        elif children is not None:
            self.stats.warnings.append(f"Node {node.get('id')} has non-list children")
            node.pop("children")
        return node

    def _matches(self, rule: CustomRule, node: NodeDict) -> bool:
        # Caller rules may wrap arbitrary predicates; a failing one only skips this node
        try:
            return evaluate_condition(rule.condition, node)
        except Exception as e:
            message = f"Rule {rule.name!r} predicate failed on node {node.get('id')}: {e}"
            logger.warning(message)
            self.stats.warnings.append(message)
            return False

    def _matching_rules(self, node: NodeDict) -> List[CustomRule]:
        matched = [r for r in self._custom_rules if self._matches(r, node)]
        if matched:
            return matched
        # Built-in heuristics only when no caller rule fired; first match wins
        for rule in BUILTIN_HEURISTICS:
            if evaluate_condition(rule.condition, node):
                return [rule]
        return []

    def _annotate(self, node: NodeDict) -> bool:
        rules = self.rules
        role: Optional[Dict[str, Any]] = None
        accessibility: Dict[str, Any] = {}
        interactions: List[Dict[str, Any]] = []
        rule_css: Dict[str, str] = {}

        if rules.enable_semantic_analysis or rules.enable_accessibility_info or rules.enable_interaction_states:
            for rule in self._matching_rules(node):
                self.stats.rules_applied += 1
                action = rule.action
                if role is None and action.semantic_role is not None:
                    role = {**action.semantic_role.model_dump(exclude_none=True), "rule": rule.name}
                for key, value in action.accessibility.items():
                    accessibility.setdefault(key, value)
                seen = {s["trigger"] for s in interactions}
                for state in action.interaction_states:
                    if state.trigger not in seen:
                        interactions.append(state.model_dump(exclude_none=True))
                        seen.add(state.trigger)
                for key, value in action.css.items():
                    rule_css.setdefault(key, value)

        if role is None and node.get("type") == "TEXT":
            role = {"type": "text", "hierarchy": detect_text_hierarchy(node)}

        attached = False
        if rules.enable_semantic_analysis and role is not None:
            node["role"] = role
            attached = True
        if rules.enable_accessibility_info:
            name = str(node.get("name", ""))
            if name and not _AUTO_NAME_RE.match(name):
                accessibility.setdefault("ariaLabel", name)
            if accessibility.get("ariaRole") == "img":
                accessibility.setdefault("altText", name)
            if accessibility:
                node["accessibility"] = accessibility
                attached = True
        if rules.enable_interaction_states and interactions:
            node["interactions"] = interactions
            attached = True
        if rules.enable_css_generation:
            css = generate_css(node)
            css.update(rule_css)
            if css:
                node["css"] = css
                attached = True
        if rules.enable_design_tokens:
            tokens = extract_design_tokens(node)
            if tokens:
                node["tokens"] = tokens
                attached = True
        if rules.enable_component_variants:
            variants = detect_component_variants(node)
            if variants:
                node["variants"] = variants
                attached = True
        return attached

    # ------------------------------------------------------------------
    # Reduce pass
    # ------------------------------------------------------------------

    def reduce(self, root: NodeDict) -> NodeDict:
        return reduce_tree(root, self.rules)

    def process(self, root: NodeDict) -> Tuple[Optional[NodeDict], NodeDict]:
        """Enhance then reduce. Returns ``(enhanced, reduced)``; reduced is {} if the root was dropped."""
        enhanced = self.enhance(root)
        if enhanced is None:
            return None, {}
        reduced = self.reduce(enhanced)
        logger.info(
            f"process: root={root.get('id')}, visited={self.stats.nodes_visited}, "
            f"kept={self.stats.nodes_kept}, enhanced={self.stats.nodes_enhanced}"
        )
        return enhanced, reduced


# ---------------------------------------------------------------------------
# Reduce helpers (pure functions)
# ---------------------------------------------------------------------------


def strip_defaults(css: Dict[str, str]) -> Dict[str, str]:
    return {
        k: v for k, v in css.items()
        if v not in FRAMEWORK_DEFAULTS.get(k, ()) and v not in ("", None)
    }


def truncate_text(text: str, limit: int) -> str:
    """Cut ``text`` so the result, marker included, is at most ``limit`` chars.

    A limit of 0 disables truncation. Already-truncated text is returned as is.
    """
    if limit <= 0 or len(text) <= limit:
        return text
    if text.endswith(TRUNCATION_MARKER) and len(text) <= max(limit, len(TRUNCATION_MARKER)):
        return text
    return text[:max(0, limit - len(TRUNCATION_MARKER))] + TRUNCATION_MARKER


def _compact_exports(node: NodeDict) -> List[Dict[str, Any]]:
    if isinstance(node.get("exports"), list):
        return node["exports"]
    exports = []
    for setting in node.get("exportSettings") or []:
        if not isinstance(setting, dict):
            continue
        constraint = setting.get("constraint") or {}
        entry: Dict[str, Any] = {"format": str(setting.get("format", "PNG")).lower()}
        if constraint.get("type") == "SCALE" and constraint.get("value") not in (None, 1):
            entry["scale"] = constraint["value"]
        if setting.get("suffix"):
            entry["suffix"] = setting["suffix"]
        exports.append(entry)
    return exports


def detect_exportable_image(node: NodeDict, exports: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Hint that a node should be shipped as an image asset rather than rebuilt in code."""
    if exports:
        return {"kind": "export", "format": exports[0].get("format", "png")}
    role = (node.get("role") or {}).get("type")
    if role == "icon" or (
        node.get("type") != "TEXT" and "icon" in str(node.get("name", "")).lower()
    ):
        return {"kind": "icon", "format": "svg"}
    fills = node.get("fills")
    if isinstance(fills, list) and any(isinstance(f, dict) and f.get("type") == "IMAGE" for f in fills):
        return {"kind": "image", "format": "png"}
    if role == "image":
        return {"kind": "image", "format": "png"}
    return None


def _structural_signature(node: NodeDict) -> Tuple:
    bounds = node.get("bounds") or {}
    return (
        node.get("type"),
        (node.get("role") or {}).get("type"),
        round(bounds.get("width", -1)),
        round(bounds.get("height", -1)),
        "text" in node,
        tuple(_structural_signature(c) for c in node.get("children", [])),
    )


def _is_pass_through_group(node: NodeDict) -> bool:
    if node.get("type") != "GROUP" or len(node.get("children", [])) != 1:
        return False
    css_keys = set(node.get("css", {})) - {"width", "height"}
    return not css_keys and not any(
        node.get(k) for k in ("role", "accessibility", "interactions", "exports", "image")
    )


def _collapse_repeats(children: List[NodeDict], threshold: int) -> List[NodeDict]:
    result: List[NodeDict] = []
    i = 0
    while i < len(children):
        sig = _structural_signature(children[i])
        j = i + 1
        while j < len(children) and _structural_signature(children[j]) == sig:
            j += 1
        run = children[i:j]
        if len(run) >= threshold:
            representative = dict(run[0])
            representative["repeat"] = sum(c.get("repeat", 1) for c in run)
            representative["repeatedIds"] = [
                *run[0].get("repeatedIds", []),
                *[rid for c in run[1:] for rid in (c.get("id"), *c.get("repeatedIds", [])) if rid],
            ]
            result.append(representative)
        else:
            result.extend(run)
        i = j
    return result


def _reduce_node(
    node: NodeDict,
    rules: RuleConfiguration,
    allow_drop: bool = True,
) -> Optional[NodeDict]:
    out: NodeDict = {}
    for key in ("id", "name", "type"):
        if node.get(key) is not None:
            out[key] = node[key]
    if node.get("visible") is False:
        out["visible"] = False

    bounds = Bounds.from_node(node)
    if bounds is not None:
        out["bounds"] = {k: round(v, 2) for k, v in bounds.model_dump().items()}

    text = node.get("text", node.get("characters"))
    if isinstance(text, str) and text:
        truncated = truncate_text(text, rules.text_limit)
        out["text"] = truncated
        if truncated != text and "textLength" not in node:
            out["textLength"] = len(text)

    css = node.get("css")
    if isinstance(css, dict):
        css = strip_defaults(css) if rules.strip_defaults else dict(css)
        if css:
            out["css"] = css

    exports = _compact_exports(node)
    if exports:
        out["exports"] = exports

    for key in _PASS_THROUGH_KEYS:
        value = node.get(key)
        if value not in (None, [], {}, ""):
            out[key] = value

    if "image" not in out:
        image = detect_exportable_image(node, exports)
        if image:
            out["image"] = image

    raw_children = node.get("children")
    if isinstance(raw_children, list):
        children: List[NodeDict] = []
        for child in raw_children:
            if not isinstance(child, dict):
                continue
            reduced = _reduce_node(child, rules)
            if reduced is None:
                continue
            if rules.collapse_pass_through and _is_pass_through_group(reduced):
                reduced = reduced["children"][0]
            children.append(reduced)
        if rules.collapse_repeats:
            children = _collapse_repeats(children, rules.repeat_threshold)
        if children:
            out["children"] = children
        elif allow_drop and rules.remove_empty_groups and node.get("type") == "GROUP":
            return None
    return out


def reduce_tree(root: NodeDict, rules: RuleConfiguration) -> NodeDict:
    """AI-facing reduction of an enhanced tree. ``reduce_tree(reduce_tree(t)) == reduce_tree(t)``."""
    reduced = _reduce_node(root, rules, allow_drop=False)
    if rules.collapse_pass_through:
        while _is_pass_through_group(reduced):
            reduced = reduced["children"][0]
    return reduced
