"""Serialize md2tree AST nodes back into HTML."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from bs4 import BeautifulSoup
from bs4.element import NavigableString, PageElement

from .core import SUBSTITUTE_TAG, TAG_SUBSTITUTIONS, parse_html_fragment, serialize_html

ElementPropsHook = Callable[[str, Optional[Dict[str, Any]]], Optional[Dict[str, Any]]]


def format_style(style: Dict[str, str]) -> str:
    return "; ".join(f"{prop}: {value}" for prop, value in style.items())


def filter_props(props: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not props:
        return props
    return {
        key: value
        for key, value in props.items()
        if not key.lower().startswith("on") and key.lower() != "innerhtml"
    }


def _html_attrs(props: Optional[Dict[str, Any]]) -> Dict[str, str]:
    attrs: Dict[str, str] = {}
    for key, value in (props or {}).items():
        if value is None or value is False:
            continue
        if isinstance(value, dict):
            value = format_style(value)
            if not value:
                continue
        attrs[key] = "" if value is True else str(value)
    return attrs


def _build_node(soup: BeautifulSoup, node: Any, element_props: Optional[ElementPropsHook]) -> Optional[PageElement]:
    if isinstance(node, str):
        return NavigableString(node) if node else None
    if not isinstance(node, (list, tuple)) or len(node) < 2 or not isinstance(node[0], str):
        return None

    tag = node[0].strip().lower()
    if tag in TAG_SUBSTITUTIONS:
        tag = SUBSTITUTE_TAG

    props = filter_props(node[1])
    if element_props is not None:
        props = element_props(tag, props)

    elm = soup.new_tag(tag, attrs=_html_attrs(props))
    for child in node[2:]:
        built = _build_node(soup, child, element_props)
        if built is not None:
            elm.append(built)
    return elm


def ast_to_soup(ast: List[Any], element_props: Optional[ElementPropsHook] = None) -> BeautifulSoup:
    soup = parse_html_fragment("")
    for node in ast or []:
        built = _build_node(soup, node, element_props)
        if built is not None:
            soup.append(built)
    return soup


def ast_to_html(ast: List[Any], element_props: Optional[ElementPropsHook] = None) -> str:
    """Render an AST produced by ``node_to_ast`` back to an HTML string.

    ``element_props(tag, attrs)`` may return replacement attributes for each
    element before it is serialized.
    """
    return serialize_html(ast_to_soup(ast, element_props))
