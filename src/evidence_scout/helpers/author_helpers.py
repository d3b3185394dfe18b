"""Author normalization.

Upstream payloads carry authors as a bare string, a list of strings, a list
of dicts, a single dict or a dict wrapping an ``authors`` key. Everything is
coerced here into an ordered list of ``{"name": ...}`` dicts; callers never
see the other shapes.
"""

import re
import unicodedata
from typing import Any

_SPLIT_RE = re.compile(r"\s*[;,]\s*")
_INITIALS_RE = re.compile(r"^[A-Z]{1,3}\.?$")


def _name_from_mapping(author: dict[str, Any]) -> str | None:
    name = author.get("name") or author.get("Name") or author.get("fullName")
    if name:
        return str(name).strip()

    collective = author.get("CollectiveName") or author.get("collectiveName")
    if collective:
        return str(collective).strip()

    last = author.get("LastName") or author.get("lastname") or author.get("lastName")
    if not last:
        return None
    initials = author.get("Initials") or author.get("initials")
    if not initials:
        first = (
            author.get("ForeName")
            or author.get("firstname")
            or author.get("firstName")
            or ""
        )
        initials = "".join(part[0] for part in str(first).split() if part)
    return f"{last} {initials}".strip()


def normalize_authors(raw: Any) -> list[dict[str, str]]:
    """Coerce any upstream author shape into ``[{"name": ..., "authtype": ...}]``."""
    if raw is None:
        return []

    if isinstance(raw, dict):
        if "authors" in raw:
            return normalize_authors(raw["authors"])
        raw = [raw]
    elif isinstance(raw, str):
        raw = _SPLIT_RE.split(raw)
    elif not isinstance(raw, (list, tuple)):
        return []

    authors: list[dict[str, str]] = []
    for item in raw:
        if isinstance(item, str):
            name = item.strip()
            authtype = "author"
        elif isinstance(item, dict):
            name = _name_from_mapping(item)
            authtype = str(item.get("authtype") or "author")
        else:
            # pydantic Author instances and anything else with a name
            name = getattr(item, "name", None)
            authtype = getattr(item, "authtype", "author")
        if name:
            authors.append({"name": name, "authtype": authtype})
    return authors


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def author_last_name(name: str) -> str:
    """Best guess at the family name for citation matching.

    Handles ``"Smith JA"`` (PubMed summary form), ``"Smith, John"`` and
    ``"John Smith"``.
    """
    name = name.strip()
    if not name:
        return ""
    if "," in name:
        return name.split(",", 1)[0].strip()

    parts = name.split()
    if len(parts) > 1 and _INITIALS_RE.match(parts[-1]):
        return " ".join(parts[:-1])
    return parts[-1]


def citation_key(name: str) -> str:
    """Case- and accent-insensitive key for comparing last names."""
    return strip_accents(author_last_name(name)).casefold()
