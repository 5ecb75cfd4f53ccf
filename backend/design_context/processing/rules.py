"""Rule configuration for the tree processor.

Rule conditions are a closed set of tagged variants (``kind`` discriminator)
so rule sets can be loaded from JSON and evaluated by ``evaluate_condition``
without running caller code. ``Predicate`` is the one escape hatch: it wraps
a Python callable and is only constructible in code.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, Callable, Dict, FrozenSet, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .. import config, settings
from ..errors import InvalidInputError

logger = logging.getLogger("design_context.processing.rules")

NodeDict = Dict[str, Any]


# =====================================================================
# Conditions
# =====================================================================


class _Condition(BaseModel):
    model_config = ConfigDict(frozen=True)


class NameContains(_Condition):
    """Node name contains any of the substrings (case-insensitive)."""
    kind: Literal["name_contains"] = "name_contains"
    substrings: Tuple[str, ...]


class TypeIn(_Condition):
    kind: Literal["type_in"] = "type_in"
    types: FrozenSet[str]


class HasChildren(_Condition):
    kind: Literal["has_children"] = "has_children"
    expected: bool = True


class HasTextChild(_Condition):
    """Node is TEXT or has a direct TEXT child."""
    kind: Literal["has_text_child"] = "has_text_child"


class HasStyle(_Condition):
    kind: Literal["has_style"] = "has_style"
    feature: Literal["fill", "corner_radius", "drop_shadow", "auto_layout", "image_fill"]


class MaxSize(_Condition):
    """Bounding box fits within width x height. False when bounds are missing."""
    kind: Literal["max_size"] = "max_size"
    width: float
    height: float


class AllOf(_Condition):
    kind: Literal["all_of"] = "all_of"
    conditions: Tuple["RuleCondition", ...]


class AnyOf(_Condition):
    kind: Literal["any_of"] = "any_of"
    conditions: Tuple["RuleCondition", ...]


class Predicate(_Condition):
    kind: Literal["predicate"] = "predicate"
    fn: Callable[[NodeDict], bool]
    label: str = "predicate"


RuleCondition = Annotated[
    Union[NameContains, TypeIn, HasChildren, HasTextChild, HasStyle, MaxSize, AllOf, AnyOf, Predicate],
    Field(discriminator="kind"),
]

AllOf.model_rebuild()
AnyOf.model_rebuild()


def _visible(items: Any) -> List[Dict[str, Any]]:
    if not isinstance(items, list):
        return []
    return [i for i in items if isinstance(i, dict) and i.get("visible", True)]


def _has_style(node: NodeDict, feature: str) -> bool:
    if feature == "fill":
        return bool(_visible(node.get("fills")))
    if feature == "image_fill":
        return any(f.get("type") == "IMAGE" for f in _visible(node.get("fills")))
    if feature == "corner_radius":
        radius = node.get("cornerRadius")
        radii = node.get("rectangleCornerRadii")
        if isinstance(radius, (int, float)) and radius > 0:
            return True
        return isinstance(radii, list) and any(
            isinstance(r, (int, float)) and r > 0 for r in radii
        )
    if feature == "drop_shadow":
        return any(e.get("type") == "DROP_SHADOW" for e in _visible(node.get("effects")))
    if feature == "auto_layout":
        return node.get("layoutMode") not in (None, "NONE")
    return False


def evaluate_condition(condition: Any, node: NodeDict) -> bool:
    """Interpret a rule condition against a raw node dict."""
    if isinstance(condition, NameContains):
        name = str(node.get("name", "")).lower()
        return any(s.lower() in name for s in condition.substrings)
    if isinstance(condition, TypeIn):
        return node.get("type") in condition.types
    if isinstance(condition, HasChildren):
        return bool(node.get("children")) == condition.expected
    if isinstance(condition, HasTextChild):
        if node.get("type") == "TEXT":
            return True
        return any(
            isinstance(c, dict) and c.get("type") == "TEXT"
            for c in node.get("children") or []
        )
    if isinstance(condition, HasStyle):
        return _has_style(node, condition.feature)
    if isinstance(condition, MaxSize):
        box = node.get("absoluteBoundingBox")
        if not isinstance(box, dict):
            return False
        try:
            return (
                float(box["width"]) <= condition.width
                and float(box["height"]) <= condition.height
            )
        except (KeyError, TypeError, ValueError):
            return False
    if isinstance(condition, AllOf):
        return all(evaluate_condition(c, node) for c in condition.conditions)
    if isinstance(condition, AnyOf):
        return any(evaluate_condition(c, node) for c in condition.conditions)
    if isinstance(condition, Predicate):
        return bool(condition.fn(node))
    raise InvalidInputError(f"Unknown rule condition: {type(condition).__name__}")


# =====================================================================
# Actions and rules
# =====================================================================


class SemanticRole(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    purpose: Optional[str] = None


class InteractionState(BaseModel):
    model_config = ConfigDict(frozen=True)

    trigger: Literal["hover", "active", "focus", "disabled", "click"]
    changes: Dict[str, str] = Field(default_factory=dict)
    duration: Optional[str] = None
    easing: Optional[str] = None


class RuleAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    semantic_role: Optional[SemanticRole] = None
    accessibility: Dict[str, Any] = Field(default_factory=dict)
    interaction_states: Tuple[InteractionState, ...] = ()
    css: Dict[str, str] = Field(default_factory=dict)


class CustomRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    condition: RuleCondition
    action: RuleAction
    priority: int = Field(default=0, ge=0, le=100)
    enabled: bool = True


_BUTTON_STATES = (
    InteractionState(trigger="hover", changes={"opacity": "0.8"}, duration="0.2s", easing="ease-in-out"),
    InteractionState(trigger="active", changes={"transform": "scale(0.95)"}, duration="0.1s", easing="ease-in-out"),
)
_INPUT_STATES = (
    InteractionState(
        trigger="focus",
        changes={"borderColor": "#007AFF", "boxShadow": "0 0 0 2px rgba(0, 122, 255, 0.2)"},
        duration="0.2s",
        easing="ease-in-out",
    ),
)

# Fallback heuristics, evaluated after caller rules and in this order
BUILTIN_HEURISTICS: Tuple[CustomRule, ...] = (
    CustomRule(
        name="button-name",
        condition=NameContains(substrings=("button", "btn")),
        action=RuleAction(
            semantic_role=SemanticRole(type="button", purpose="interactive"),
            accessibility={"ariaRole": "button", "focusable": True, "tabIndex": 0},
            interaction_states=_BUTTON_STATES,
        ),
    ),
    CustomRule(
        name="input-name",
        condition=NameContains(substrings=("input", "field", "textbox", "search")),
        action=RuleAction(
            semantic_role=SemanticRole(type="input", purpose="data-entry"),
            accessibility={"ariaRole": "textbox", "focusable": True, "tabIndex": 0},
            interaction_states=_INPUT_STATES,
        ),
    ),
    CustomRule(
        name="navigation-name",
        condition=NameContains(substrings=("nav", "menu", "header", "sidebar")),
        action=RuleAction(
            semantic_role=SemanticRole(type="navigation", purpose="navigation"),
            accessibility={"ariaRole": "navigation"},
        ),
    ),
    CustomRule(
        name="card-name",
        condition=NameContains(substrings=("card",)),
        action=RuleAction(
            semantic_role=SemanticRole(type="article", purpose="card"),
            accessibility={"ariaRole": "article"},
        ),
    ),
    CustomRule(
        name="card-structure",
        condition=AllOf(conditions=(
            HasStyle(feature="fill"),
            HasStyle(feature="corner_radius"),
            HasStyle(feature="drop_shadow"),
        )),
        action=RuleAction(
            semantic_role=SemanticRole(type="article", purpose="card"),
            accessibility={"ariaRole": "article"},
        ),
    ),
    CustomRule(
        name="icon-size",
        condition=AllOf(conditions=(
            MaxSize(width=settings.ICON_MAX_SIZE, height=settings.ICON_MAX_SIZE),
            TypeIn(types=frozenset({
                "VECTOR", "GROUP", "BOOLEAN_OPERATION", "FRAME", "INSTANCE",
                "COMPONENT", "STAR", "POLYGON", "REGULAR_POLYGON", "ELLIPSE",
            })),
        )),
        action=RuleAction(
            semantic_role=SemanticRole(type="icon", purpose="decorative"),
            accessibility={"ariaRole": "img"},
        ),
    ),
    CustomRule(
        name="image-fill",
        condition=HasStyle(feature="image_fill"),
        action=RuleAction(
            semantic_role=SemanticRole(type="image", purpose="content"),
            accessibility={"ariaRole": "img"},
        ),
    ),
    CustomRule(
        name="layout-container",
        condition=AllOf(conditions=(TypeIn(types=frozenset({"FRAME"})), HasChildren())),
        action=RuleAction(semantic_role=SemanticRole(type="container", purpose="layout")),
    ),
)


# =====================================================================
# Rule configuration
# =====================================================================

DEFAULT_EXCLUDE_TYPES = frozenset({"SLICE", "STICKY"})
DEFAULT_PRIORITIZE_TYPES = frozenset({"DOCUMENT", "CANVAS", "FRAME", "COMPONENT", "INSTANCE", "TEXT"})

_ENVIRONMENT_PROFILES: Dict[str, Dict[str, Any]] = {
    "production": {
        "max_depth": 8,
        "text_limit": 500,
        "strip_defaults": True,
        "collapse_pass_through": True,
        "collapse_repeats": True,
        "remove_empty_groups": True,
    },
    "development": {
        "max_depth": 15,
        "include_hidden": True,
        "include_locked": True,
        "text_limit": 2000,
        "strip_defaults": False,
        "collapse_pass_through": False,
        "collapse_repeats": False,
        "remove_empty_groups": False,
    },
}


class RuleConfiguration(BaseModel):
    """Immutable per-request bundle of filters, toggles and custom rules."""
    model_config = ConfigDict(frozen=True)

    include_types: FrozenSet[str] = frozenset()
    exclude_types: FrozenSet[str] = DEFAULT_EXCLUDE_TYPES
    prioritize_types: FrozenSet[str] = DEFAULT_PRIORITIZE_TYPES
    max_depth: int = Field(default=settings.TREE_MAX_DEPTH, ge=1, le=50)
    include_hidden: bool = False
    include_locked: bool = False

    # Enhance pass toggles
    enable_semantic_analysis: bool = True
    enable_accessibility_info: bool = True
    enable_interaction_states: bool = True
    enable_design_tokens: bool = True
    enable_css_generation: bool = True
    enable_component_variants: bool = True

    # Reduce pass toggles
    text_limit: int = Field(default=settings.TREE_TEXT_LIMIT, ge=0)
    strip_defaults: bool = True
    collapse_pass_through: bool = True
    collapse_repeats: bool = True
    repeat_threshold: int = Field(default=settings.TREE_REPEAT_THRESHOLD, ge=2)
    remove_empty_groups: bool = True

    custom_rules: Tuple[CustomRule, ...] = ()

    def ordered_rules(self) -> List[CustomRule]:
        """Enabled caller rules by descending priority; declaration order breaks ties."""
        enabled = [r for r in self.custom_rules if r.enabled]
        return sorted(enabled, key=lambda r: -r.priority)

    @classmethod
    def for_environment(cls, env: Optional[str] = None, **overrides: Any) -> "RuleConfiguration":
        name = env or config.DESIGN_CONTEXT_ENV
        profile = _ENVIRONMENT_PROFILES.get(name)
        if profile is None:
            logger.warning(f"for_environment: unknown profile {name!r}, using defaults")
            profile = {}
        return load_rule_config({**profile, **overrides})


def load_rule_config(
    data: Union[RuleConfiguration, Dict[str, Any], None],
) -> RuleConfiguration:
    """Validate a rule configuration, mapping validation failures to InvalidInputError."""
    if isinstance(data, RuleConfiguration):
        return data
    try:
        return RuleConfiguration(**(data or {}))
    except ValidationError as e:
        raise InvalidInputError(
            f"Invalid rule configuration: {e.error_count()} error(s)",
            errors=[
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ],
        ) from e
