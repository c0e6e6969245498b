"""
Cache key codec.

Keys follow the convention ``{prefix}:{namespace}:{k=v}:{k=v}...``:

    watchtower:sales_overview:brand=aer:end_date=2025-10-06:platform=zepto:start_date=2025-10-01

- filter fields are sorted by name, absent fields never appear
- matched dimensions are lower-cased and their value lists sorted
- dates are rendered as YYYY-MM-DD
- ``%``, ``:``, ``=`` and ``,`` inside values are percent-encoded, so a
  value can never imitate another segment or list item
- keys longer than the limit keep their ``prefix:namespace:`` head so
  ``watchtower:sales_overview*`` still invalidates them
"""
import hashlib
from datetime import date
from typing import Any, List, Mapping, Optional, Union

from watchtower.filters import FilterSet

DEFAULT_PREFIX = "watchtower"
MAX_KEY_LENGTH = 200

# Percent-encoding for characters that delimit key segments; "%" goes first
_ESCAPES = (("%", "%25"), (":", "%3A"), ("=", "%3D"), (",", "%2C"))


def _escape(text: str) -> str:
    for char, code in _ESCAPES:
        text = text.replace(char, code)
    return text


def _render(value: Any) -> str:
    if isinstance(value, (list, tuple, set, frozenset)):
        return ",".join(sorted(_render(v) for v in value))
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    return _escape(str(value).strip().lower())


def _key_parts(filters: FilterSet, extras: Mapping[str, Any]) -> List[str]:
    items = {k: v for k, v in filters.to_dict().items()}
    for k, v in extras.items():
        if v is None or v == "":
            continue
        items[k] = v
    return [f"{k}={_render(items[k])}" for k in sorted(items)]


def encode(
    namespace: str,
    filters: Union[FilterSet, Mapping[str, Any], None] = None,
    prefix: str = DEFAULT_PREFIX,
    max_length: int = MAX_KEY_LENGTH,
    **extras: Any,
) -> str:
    """
    Deterministically encode ``(namespace, filters)`` into a cache key.

    Args:
        namespace: Operation name (e.g. "sales_overview")
        filters: FilterSet or raw query mapping
        prefix: Key prefix shared by every engine key
        max_length: Keys above this length get a hashed tail
        **extras: Non-filter discriminators (level, limit, ...)

    Returns:
        Stable cache key string
    """
    filter_set = FilterSet.coerce(filters)
    head = f"{prefix}:{_render(namespace)}"
    parts = _key_parts(filter_set, extras)
    key = ":".join([head, *parts]) if parts else head

    if len(key) > max_length:
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:16]
        key = f"{head}:h={digest}"

    return key


def namespace_pattern(namespace: Optional[str] = None, prefix: str = DEFAULT_PREFIX) -> str:
    """Glob pattern matching every key of a namespace (or of the whole engine)."""
    if not namespace:
        return f"{prefix}:*"
    return f"{prefix}:{_render(namespace)}*"
