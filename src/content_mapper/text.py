"""String helpers shared by the schema, mapper and revision modules."""

import html
import math
import re
from typing import Any
from urllib.parse import unquote_plus

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_SEPARATORS = re.compile(r"[_\-\s]+")


def human(value: str) -> str:
    """Turn a machine key into a display string.

    ``hot_sauces`` and ``hot-sauces`` both become ``Hot Sauces``. Only the
    first letter of each word is changed.
    """
    words = _SEPARATORS.sub(" ", str(value)).strip().split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words if word)


def machine(value: str, separator: str = "_") -> str:
    """Lower-case ``value`` and join its alphanumeric runs with ``separator``."""
    return _NON_ALNUM.sub(separator, str(value).lower()).strip(separator)


def is_numeric(value: Any) -> bool:
    """True for numbers and for strings that parse as a finite number."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if not isinstance(value, str) or not value.strip():
        return False
    try:
        number = float(value.strip())
    except ValueError:
        return False
    return math.isfinite(number)


def normalize_whitespace(value: Any) -> str:
    """Trim, fold carriage returns into newlines and collapse runs of blanks."""
    text = "" if value is None else str(value)
    text = text.strip().replace("\r", "\n")
    text = re.sub(r"\n+", "\n", text)
    return re.sub(r"[ \t]+", " ", text)


def decode_title(title: str | None) -> str | None:
    """Undo the entity escaping the store applies to titles containing ``&``."""
    if title and "&" in title:
        return html.unescape(title)
    return title


def url_decode(value: Any) -> Any:
    """URL-decode string values captured encoded upstream."""
    if isinstance(value, str):
        return unquote_plus(value)
    return value
