"""Figma style helpers: color conversion, CSS properties, design tokens.

Deterministic mapping from raw Figma node properties to the ``css`` and
``tokens`` blocks the enhance pass attaches per node. All helpers tolerate
missing or malformed properties and return empty results instead of raising.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

# ---------------------------------------------------------------------------
# Color utilities
# ---------------------------------------------------------------------------


def _num(value: Any, default: float = 0.0) -> float:
    return float(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else default


def _px(value: float) -> str:
    value = round(value, 2)
    return f"{int(value)}px" if value == int(value) else f"{value}px"


def figma_color_to_hex(color: Dict, opacity: float = 1.0) -> str:
    """Convert Figma RGBA float dict {r,g,b,a} to hex string (alpha only when < 1)."""
    r = round(_num(color.get("r")) * 255)
    g = round(_num(color.get("g")) * 255)
    b = round(_num(color.get("b")) * 255)
    a = _num(color.get("a"), 1.0) * opacity
    hex_rgb = f"#{r:02X}{g:02X}{b:02X}"
    if a < 1.0:
        hex_rgb += f"{round(a * 255):02X}"
    return hex_rgb


def figma_color_to_rgba(color: Dict) -> str:
    r = round(_num(color.get("r")) * 255)
    g = round(_num(color.get("g")) * 255)
    b = round(_num(color.get("b")) * 255)
    a = round(_num(color.get("a"), 1.0), 2)
    return f"rgba({r}, {g}, {b}, {a})"


def _visible(items: Any) -> List[Dict[str, Any]]:
    if not isinstance(items, list):
        return []
    return [i for i in items if isinstance(i, dict) and i.get("visible", True)]


# ---------------------------------------------------------------------------
# CSS property mapping
# ---------------------------------------------------------------------------


def fills_to_css(fills: Any) -> Dict[str, str]:
    """Topmost visible fill -> background (or color for TEXT, handled by caller)."""
    visible = _visible(fills)
    if not visible:
        return {}
    # Figma renders bottom-up, last = topmost
    fill = visible[-1]
    fill_type = fill.get("type", "")
    opacity = _num(fill.get("opacity"), 1.0)

    if fill_type == "SOLID" and isinstance(fill.get("color"), dict):
        return {"background": figma_color_to_hex(fill["color"], opacity)}
    if fill_type in ("GRADIENT_LINEAR", "GRADIENT_RADIAL"):
        stops = [
            f"{figma_color_to_hex(s.get('color', {}))} {round(_num(s.get('position')) * 100)}%"
            for s in fill.get("gradientStops", []) if isinstance(s, dict)
        ]
        kind = "linear-gradient(180deg, " if fill_type == "GRADIENT_LINEAR" else "radial-gradient("
        return {"background": f"{kind}{', '.join(stops)})"} if stops else {}
    if fill_type == "IMAGE":
        fit_map = {"FILL": "cover", "FIT": "contain", "CROP": "cover", "TILE": "auto"}
        return {"backgroundSize": fit_map.get(fill.get("scaleMode", "FILL"), "cover")}
    return {}


def corner_radius_to_css(node: Dict) -> Optional[str]:
    radii = node.get("rectangleCornerRadii")
    if isinstance(radii, list) and len(radii) == 4:
        values = [_num(r) for r in radii]
        if len(set(values)) == 1:
            return _px(values[0]) if values[0] > 0 else None
        return " ".join(_px(v) for v in values)
    radius = _num(node.get("cornerRadius"))
    return _px(radius) if radius > 0 else None


def effects_to_css(effects: Any) -> Dict[str, str]:
    """Extract box-shadow, filter and backdrop-filter from Figma effects[]."""
    css: Dict[str, str] = {}
    shadows = []
    for effect in _visible(effects):
        etype = effect.get("type", "")
        if etype in ("DROP_SHADOW", "INNER_SHADOW"):
            offset = effect.get("offset") or {}
            color = figma_color_to_rgba(effect.get("color") or {"a": 0.25})
            inset = "inset " if etype == "INNER_SHADOW" else ""
            shadows.append(
                f"{inset}{_px(_num(offset.get('x')))} {_px(_num(offset.get('y')))} "
                f"{_px(_num(effect.get('radius')))} {_px(_num(effect.get('spread')))} {color}"
            )
        elif etype == "LAYER_BLUR":
            css["filter"] = f"blur({_px(_num(effect.get('radius')))})"
        elif etype == "BACKGROUND_BLUR":
            css["backdropFilter"] = f"blur({_px(_num(effect.get('radius')))})"
    if shadows:
        css["boxShadow"] = ", ".join(shadows)
    return css


def layout_to_css(node: Dict) -> Dict[str, str]:
    """Auto-layout -> flex properties."""
    mode = node.get("layoutMode")
    if mode not in ("HORIZONTAL", "VERTICAL"):
        return {}
    justify_map = {
        "MIN": "flex-start", "CENTER": "center", "MAX": "flex-end",
        "SPACE_BETWEEN": "space-between",
    }
    align_map = {
        "MIN": "flex-start", "CENTER": "center", "MAX": "flex-end",
        "STRETCH": "stretch", "BASELINE": "baseline",
    }
    css = {
        "display": "flex",
        "flexDirection": "row" if mode == "HORIZONTAL" else "column",
        "justifyContent": justify_map.get(node.get("primaryAxisAlignItems", "MIN"), "flex-start"),
        "alignItems": align_map.get(node.get("counterAxisAlignItems", "MIN"), "flex-start"),
        "gap": _px(_num(node.get("itemSpacing"))),
    }
    padding = [_num(node.get(k)) for k in ("paddingTop", "paddingRight", "paddingBottom", "paddingLeft")]
    css["padding"] = " ".join(_px(p) for p in padding)
    if node.get("layoutWrap") == "WRAP":
        css["flexWrap"] = "wrap"
    return css


def typography_to_css(node: Dict) -> Dict[str, str]:
    if node.get("type") != "TEXT":
        return {}
    style = node.get("style") or {}
    align_map = {"LEFT": "left", "CENTER": "center", "RIGHT": "right", "JUSTIFIED": "justify"}
    css: Dict[str, str] = {}
    if style.get("fontFamily"):
        css["fontFamily"] = str(style["fontFamily"])
    if style.get("fontSize"):
        css["fontSize"] = _px(_num(style["fontSize"]))
    if style.get("fontWeight"):
        css["fontWeight"] = str(int(_num(style["fontWeight"], 400)))
    if style.get("lineHeightPx"):
        css["lineHeight"] = _px(_num(style["lineHeightPx"]))
    if _num(style.get("letterSpacing")):
        css["letterSpacing"] = _px(_num(style["letterSpacing"]))
    if style.get("textAlignHorizontal"):
        css["textAlign"] = align_map.get(style["textAlignHorizontal"], "left")
    solid = [f for f in _visible(node.get("fills")) if f.get("type") == "SOLID"]
    if solid and isinstance(solid[0].get("color"), dict):
        css["color"] = figma_color_to_hex(solid[0]["color"])
    return css


def generate_css(node: Dict) -> Dict[str, str]:
    """Combine every mapping above into one CSS property dict."""
    css: Dict[str, str] = {}
    box = node.get("absoluteBoundingBox")
    if isinstance(box, dict) and "width" in box and "height" in box:
        css["width"] = _px(_num(box.get("width")))
        css["height"] = _px(_num(box.get("height")))
    if node.get("type") == "TEXT":
        css.update(typography_to_css(node))
    else:
        css.update(fills_to_css(node.get("fills")))
    radius = corner_radius_to_css(node)
    if radius:
        css["borderRadius"] = radius
    strokes = [s for s in _visible(node.get("strokes")) if isinstance(s.get("color"), dict)]
    weight = _num(node.get("strokeWeight"))
    if strokes and weight > 0:
        css["border"] = f"{_px(weight)} solid {figma_color_to_hex(strokes[0]['color'])}"
    css.update(effects_to_css(node.get("effects")))
    css.update(layout_to_css(node))
    if "opacity" in node:
        css["opacity"] = str(round(_num(node.get("opacity"), 1.0), 2))
    return css


# ---------------------------------------------------------------------------
# Design tokens
# ---------------------------------------------------------------------------


def extract_design_tokens(node: Dict) -> List[Dict[str, str]]:
    """Color, typography, spacing, radius and shadow tokens named after the node."""
    name = str(node.get("name", "node"))
    tokens: List[Dict[str, str]] = []

    for index, fill in enumerate(_visible(node.get("fills"))):
        if fill.get("type") == "SOLID" and isinstance(fill.get("color"), dict):
            tokens.append({
                "name": f"{name}-fill-{index}",
                "value": figma_color_to_hex(fill["color"], _num(fill.get("opacity"), 1.0)),
                "type": "color",
            })

    style = node.get("style") or {}
    if node.get("type") == "TEXT" and style:
        if style.get("fontSize"):
            tokens.append({"name": f"{name}-font-size", "value": _px(_num(style["fontSize"])), "type": "typography"})
        if style.get("lineHeightPx"):
            tokens.append({"name": f"{name}-line-height", "value": _px(_num(style["lineHeightPx"])), "type": "typography"})

    padding = [_num(node.get(k)) for k in ("paddingTop", "paddingRight", "paddingBottom", "paddingLeft")]
    if any(padding):
        tokens.append({"name": f"{name}-padding", "value": " ".join(_px(p) for p in padding), "type": "spacing"})

    radius = corner_radius_to_css(node)
    if radius:
        tokens.append({"name": f"{name}-border-radius", "value": radius, "type": "radius"})

    shadow = effects_to_css(node.get("effects")).get("boxShadow")
    if shadow:
        tokens.append({"name": f"{name}-shadow", "value": shadow, "type": "shadow"})

    return tokens


# ---------------------------------------------------------------------------
# Text hierarchy + component variants
# ---------------------------------------------------------------------------


def detect_text_hierarchy(node: Dict) -> Optional[str]:
    """Map font size/weight to h1/h2/h3/body/caption."""
    if node.get("type") != "TEXT":
        return None
    style = node.get("style") or {}
    size = _num(style.get("fontSize"), 14.0)
    weight = _num(style.get("fontWeight"), 400.0)
    if size >= 32:
        return "h1"
    if size >= 24:
        return "h2"
    if size >= 18 and weight >= 600:
        return "h3"
    if size < 12:
        return "caption"
    return "body"


def detect_component_variants(node: Dict) -> List[Dict[str, str]]:
    """Variant properties of COMPONENT/INSTANCE nodes.

    Prefers explicit ``componentProperties`` of type VARIANT; falls back to
    ``Prop=Value, Prop=Value`` component names.
    """
    if node.get("type") not in ("COMPONENT", "INSTANCE"):
        return []
    variants: List[Dict[str, str]] = []
    props = node.get("componentProperties")
    if isinstance(props, dict):
        for prop_name, prop in props.items():
            if isinstance(prop, dict) and prop.get("type") == "VARIANT":
                variants.append({"property": prop_name.split("#")[0], "value": str(prop.get("value", ""))})
    if not variants:
        for part in str(node.get("name", "")).split(","):
            if "=" in part:
                key, _, value = part.partition("=")
                variants.append({"property": key.strip(), "value": value.strip()})
    return variants
