# persona_context/utils/xml.py
"""Escaping helpers for the XML-tagged prompt format."""

from __future__ import annotations

_ATTR_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
}


def escape_xml(value: str | None) -> str:
    """Escape a value for use inside an attribute or a short element."""
    if not value:
        return ""
    return "".join(_ATTR_ESCAPES.get(ch, ch) for ch in value)


def escape_xml_content(value: str | None) -> str:
    """
    Escape free text placed between tags.

    Quotes are left alone so prose stays readable; only the characters that
    could open or close a tag are escaped.
    """
    if not value:
        return ""
    return value.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def wrap_cdata(value: str | None) -> str:
    """Wrap user-authored text in CDATA, splitting any embedded terminator."""
    if not value:
        return "<![CDATA[]]>"
    return "<![CDATA[" + value.replace("]]>", "]]]]><![CDATA[>") + "]]>"
