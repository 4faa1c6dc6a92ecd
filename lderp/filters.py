"""LDAP filter construction

Values are inserted verbatim. Wildcards such as ``*`` keep their LDAP meaning,
so callers passing untrusted input should run it through ``escape`` first.
"""

from typing import Dict

from ldap3.utils.conv import escape_filter_chars


def escape(value) -> str:
    """Escape LDAP filter metacharacters in value"""
    return escape_filter_chars(str(value))


def equals(key: str, value) -> str:
    """(key=value)"""
    return f"({key}={value})"


def starts_with(key: str, prefix) -> str:
    """(key=prefix*)"""
    return f"({key}={prefix}*)"


def contains(key: str, value) -> str:
    """(key=*value*)"""
    return f"({key}=*{value}*)"


def negate(search_filter: str) -> str:
    """(!filter)"""
    return f"(!{search_filter})"


def conjunction(*search_filters: str) -> str:
    """AND the filters together. A single filter is returned as it is."""
    if len(search_filters) > 1:
        return f"(&{''.join(search_filters)})"
    return "".join(search_filters)


def from_where(where: Dict) -> str:
    """Build an equality filter for every key/value pair, ANDed when more than one"""
    return conjunction(*(equals(key, value) for key, value in where.items()))
