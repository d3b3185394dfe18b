import html
import re
from datetime import date

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_YEAR_RE = re.compile(r"\b(1[89]\d{2}|20\d{2})\b")

MONTHS: dict[str, int] = {
    "jan": 1,
    "feb": 2,
    "mar": 3,
    "apr": 4,
    "may": 5,
    "jun": 6,
    "jul": 7,
    "aug": 8,
    "sep": 9,
    "oct": 10,
    "nov": 11,
    "dec": 12,
}


def sanitize_text(text: str | None) -> str:
    """Strip markup, unescape entities and collapse whitespace."""
    if not text:
        return ""
    text = _TAG_RE.sub("", text)
    text = html.unescape(text)
    return _WS_RE.sub(" ", text).strip()


def truncate(text: str | None, limit: int) -> str:
    text = text or ""
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def extract_year(text: str | None) -> int | None:
    if not text:
        return None
    match = _YEAR_RE.search(text)
    return int(match.group(1)) if match else None


def month_number(value: str | None) -> int | None:
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        number = int(value)
        return number if 1 <= number <= 12 else None
    return MONTHS.get(value[:3].lower())


def parse_publication_date(text: str | None) -> date | None:
    """Parse PubMed dates such as '2021-03-25', '2021 Mar 25', '2021 Mar-Apr' or '2021'.

    Missing month/day default to January / the first.
    """
    year = extract_year(text)
    if year is None:
        return None

    rest = _YEAR_RE.sub(" ", text, count=1)
    tokens = [t for t in re.split(r"[\s/\-,]+", rest) if t]
    month = month_number(tokens[0]) if tokens else None
    day = None
    if month and len(tokens) > 1 and tokens[1].isdigit():
        day = int(tokens[1])

    try:
        return date(year, month or 1, day or 1)
    except ValueError:
        return date(year, month or 1, 1)
