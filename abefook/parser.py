"""
AbeFook Response Parser

Decodes a raw response body into a generic tree value. JSON becomes nested
dicts/lists/scalars; XML becomes an XMLNode tree with child-by-name access.
"""

import json
import xml.etree.ElementTree as ET
from typing import Any, Dict, Iterator, List, Optional, Union

from .errors import ParseError
from .types import ResponseFormat


def _local_name(tag: str) -> str:
    """Strip the ``{namespace}`` prefix ElementTree puts on tags."""
    if tag.startswith("{"):
        return tag.split("}", 1)[1]
    return tag


class XMLNode:
    """
    Convenience wrapper around an ElementTree element.

    Facebook responses are namespaced; lookups here ignore the namespace so
    callers can ask for ``node.child("first_name")`` directly. The wrapped
    element stays available through ``element`` for callers that prefer the
    raw document.
    """

    def __init__(self, element: ET.Element) -> None:
        self.element = element

    @property
    def name(self) -> str:
        return _local_name(self.element.tag)

    @property
    def text(self) -> str:
        return (self.element.text or "").strip()

    @property
    def attributes(self) -> Dict[str, str]:
        return {_local_name(k): v for k, v in self.element.attrib.items()}

    def __iter__(self) -> Iterator["XMLNode"]:
        for child in self.element:
            yield XMLNode(child)

    def __len__(self) -> int:
        return len(self.element)

    def child(self, name: str) -> Optional["XMLNode"]:
        """First direct child with the given name, or None."""
        for child in self.element:
            if _local_name(child.tag) == name:
                return XMLNode(child)
        return None

    def children(self, name: str) -> List["XMLNode"]:
        """All direct children with the given name."""
        return [XMLNode(c) for c in self.element if _local_name(c.tag) == name]

    def is_list(self) -> bool:
        return self.attributes.get("list") == "true"

    def to_value(self) -> Any:
        """
        Convert to plain Python values.

        Elements marked ``list="true"`` become lists, elements with children
        become dicts, leaves become their text.
        """
        if self.is_list():
            return [c.to_value() for c in self]
        if len(self) == 0:
            return self.text
        result: Dict[str, Any] = {}
        for c in self:
            result[c.name] = c.to_value()
        return result

    def __getitem__(self, name: str) -> "XMLNode":
        node = self.child(name)
        if node is None:
            raise KeyError(name)
        return node

    def __repr__(self) -> str:
        return f"XMLNode({self.name!r}, children={len(self)})"


GenericValue = Union[XMLNode, Dict[str, Any], List[Any], str, int, float, bool, None]


def parse_json(raw_body: str) -> Any:
    try:
        return json.loads(raw_body)
    except ValueError as e:
        raise ParseError(f"Malformed JSON response: {e}", raw_body)


def parse_xml(raw_body: str) -> XMLNode:
    try:
        root = ET.fromstring(raw_body.encode("utf-8"))
    except ET.ParseError as e:
        raise ParseError(f"Malformed XML response: {e}", raw_body)
    return XMLNode(root)


def parse(raw_body: Optional[Union[str, bytes]], format: ResponseFormat) -> GenericValue:
    """
    Parse a response body.

    Args:
        raw_body: Body as received from the server
        format: Format requested for the call

    Returns:
        XMLNode for XML, decoded JSON value otherwise

    Raises:
        ParseError: body is empty or not well formed
    """
    if isinstance(raw_body, bytes):
        try:
            raw_body = raw_body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Response is not valid UTF-8: {e}")
    if raw_body is None or not raw_body.strip():
        raise ParseError("Empty response body", raw_body)

    if format == ResponseFormat.JSON:
        return parse_json(raw_body)
    return parse_xml(raw_body)
