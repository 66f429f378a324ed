"""XML payload -> nested mapping, plus schema-tolerant lookups.

The tree keeps the namespace prefixes used in the document (`aixm:hasMember`)
rather than resolved URIs, because upstream producers are inconsistent about
which prefix (if any) they put on a given element. Lookups therefore try an
ordered list of candidate keys instead of relying on one fixed shape.

Shape rules:
- leaf element without attributes -> stripped text ("" when empty)
- element with children/attributes -> dict; attributes as "@name", text as "#text"
- repeated child elements -> list, in document order
"""

from __future__ import annotations

import io
import xml.etree.ElementTree as ET
from typing import Any, Iterable, Optional, Sequence


XmlNode = Any

DEFAULT_PREFIXES: tuple[str, ...] = ("aixm", "event")


def parse_xml_tree(text: str) -> dict[str, XmlNode]:
    """Parse XML text into `{root_key: root_node}`; raises ET.ParseError."""
    prefixes: dict[str, str] = {}
    events = ET.iterparse(io.StringIO(text), events=("start-ns",))
    for _, (prefix, uri) in events:
        prefixes.setdefault(uri, prefix)
    root = events.root  # type: ignore[attr-defined]
    return {_qualified(root.tag, prefixes): _convert(root, prefixes)}


def _qualified(tag: str, prefixes: dict[str, str]) -> str:
    if not tag.startswith("{"):
        return tag
    uri, _, local = tag[1:].partition("}")
    prefix = prefixes.get(uri)
    return f"{prefix}:{local}" if prefix else local


def _convert(elem: ET.Element, prefixes: dict[str, str]) -> XmlNode:
    attrs = {f"@{_qualified(k, prefixes)}": v for k, v in elem.attrib.items()}
    text = (elem.text or "").strip()
    children = list(elem)
    if not children and not attrs:
        return text

    node: dict[str, XmlNode] = dict(attrs)
    for child in children:
        key = _qualified(child.tag, prefixes)
        value = _convert(child, prefixes)
        if key not in node:
            node[key] = value
        elif isinstance(node[key], list):
            node[key].append(value)
        else:
            node[key] = [node[key], value]
    if text:
        node["#text"] = text
    return node


def candidate_keys(names: Iterable[str], prefixes: Sequence[str] = DEFAULT_PREFIXES) -> list[str]:
    """Expand unprefixed names with the known prefixes, keeping order."""
    keys: list[str] = []
    for name in names:
        expanded = [name] if ":" in name else [name, *(f"{p}:{name}" for p in prefixes)]
        for key in expanded:
            if key not in keys:
                keys.append(key)
    return keys


def _is_empty(value: XmlNode) -> bool:
    return value is None or value == "" or value == [] or value == {}


def first(value: XmlNode) -> XmlNode:
    """Collapse a repeated element to its first non-empty occurrence."""
    if isinstance(value, list):
        for item in value:
            if not _is_empty(item):
                return item
        return None
    return value


def child(node: XmlNode, names: Iterable[str]) -> Optional[dict[str, XmlNode]]:
    """First candidate child that is a section (dict); None if absent."""
    node = first(node)
    if not isinstance(node, dict):
        return None
    for key in candidate_keys(names):
        value = first(node.get(key))
        if isinstance(value, dict) and value:
            return value
    return None


def text_of(value: XmlNode) -> Optional[str]:
    value = first(value)
    if isinstance(value, dict):
        value = value.get("#text")
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def find_text(node: XmlNode, names: Iterable[str]) -> Optional[str]:
    """First candidate field with a non-empty text value."""
    node = first(node)
    if not isinstance(node, dict):
        return None
    for key in candidate_keys(names):
        value = text_of(node.get(key))
        if value is not None:
            return value
    return None
