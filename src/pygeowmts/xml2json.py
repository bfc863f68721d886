"""Convert a capabilities XML document into a nested dictionary.

The output mirrors the XML structure the way OGC clients usually consume it:

* namespace prefixes are dropped from element tags,
* attributes are folded into the element's dictionary, ``xlink:href``
  keeps its prefix since WMTS uses it for legend and metadata links,
* an element that occurs once becomes a single value while repeated
  siblings become a list in document order,
* a leaf element without attributes collapses to its stripped text and
  the text of an element that carries attributes is stored under ``#text``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import cytoolz.curried as tlz
import defusedxml.ElementTree as ETree

if TYPE_CHECKING:
    from xml.etree.ElementTree import Element

    RawTree = dict[str, Any]

TEXT_KEY = "#text"
NAMESPACE_PREFIXES = {
    "http://www.w3.org/1999/xlink": "xlink",
}
__all__ = ["TEXT_KEY", "xml2json"]


def _split_name(name: str) -> tuple[str | None, str]:
    """Split a Clark-notation name, ``{uri}local``, into its parts."""
    if name.startswith("{"):
        uri, local = name[1:].split("}", 1)
        return uri, local
    return None, name


def _tag(elem: Element) -> str:
    return _split_name(elem.tag)[1]


def _attr_name(name: str) -> str:
    uri, local = _split_name(name)
    prefix = NAMESPACE_PREFIXES.get(uri) if uri else None
    return f"{prefix}:{local}" if prefix else local


def _convert(elem: Element) -> str | dict[str, Any]:
    children = [c for c in elem if isinstance(c.tag, str)]
    attrs = {_attr_name(k): v for k, v in elem.attrib.items()}
    text = (elem.text or "").strip()
    if not children and not attrs:
        return text

    node: dict[str, Any] = attrs
    for tag, group in tlz.groupby(_tag, children).items():
        values = [_convert(c) for c in group]
        node[tag] = values[0] if len(values) == 1 else values
    if text:
        node[TEXT_KEY] = text
    return node


def xml2json(xml: str | bytes | Element) -> RawTree:
    """Convert an XML document to a nested dictionary.

    Parameters
    ----------
    xml : str, bytes, or xml.etree.ElementTree.Element
        The XML document as text or an already parsed root element.

    Returns
    -------
    dict
        The content of the root element. Attributes of the root element,
        e.g., ``version``, are included as keys.

    Raises
    ------
    defusedxml.ElementTree.ParseError
        If the input is not well-formed XML.

    Examples
    --------
    >>> xml = '<Root version="1.0.0"><Item>a</Item><Item>b</Item><Single/></Root>'
    >>> xml2json(xml)
    {'version': '1.0.0', 'Item': ['a', 'b'], 'Single': ''}
    """
    root = ETree.fromstring(xml) if isinstance(xml, (str, bytes)) else xml
    tree = _convert(root)
    if isinstance(tree, str):
        return {TEXT_KEY: tree} if tree else {}
    return tree
