"""
Card envelope: the HTML contract for per-article appraisals.

    <div class="card-analysis">
      <div class="card-header">
        <h3>ANÁLISIS DE EVIDENCIA</h3>
        <div class="badges">
          <span class="badge quality">★★★☆☆</span>
          <span class="badge type">Meta-análisis</span>
        </div>
      </div>
      <div class="card-section"><h4>RESUMEN CLÍNICO</h4><p>...</p></div>
      ...
    </div>

The quality badge holds 1..5 filled stars padded with empty ones, no spaces.
"""

import html
import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup, Tag

from evidence_scout.errors import CardSchemaError

STAR_FILLED = "★"
STAR_EMPTY = "☆"
MAX_STARS = 5

CARD_TITLE = "ANÁLISIS DE EVIDENCIA"
FALLBACK_SECTION_TITLE = "ANÁLISIS"

_FENCE_RE = re.compile(r"^\s*```(?:html)?\s*|\s*```\s*$", re.IGNORECASE)
_STAR_RUN_RE = re.compile(r"[★☆]{1,5}")


@dataclass
class CardSection:
    title: str
    text: str


@dataclass
class Card:
    stars: int
    study_type: str | None = None
    sections: list[CardSection] = field(default_factory=list)


def star_badge(stars: int) -> str:
    stars = max(1, min(MAX_STARS, stars))
    return STAR_FILLED * stars + STAR_EMPTY * (MAX_STARS - stars)


def count_stars(badge: str) -> int:
    """Number of filled stars in a quality badge; raises on anything malformed."""
    badge = badge.strip()
    if not badge or len(badge) > MAX_STARS or set(badge) - {STAR_FILLED, STAR_EMPTY}:
        raise CardSchemaError(f"Invalid quality badge: {badge!r}")
    filled = badge.count(STAR_FILLED)
    if not 1 <= filled <= MAX_STARS:
        raise CardSchemaError(f"Quality badge must have 1-5 filled stars: {badge!r}")
    return filled


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def _checked_root(card_html: str) -> tuple[Tag, int]:
    soup = BeautifulSoup(card_html or "", "html.parser")
    root = soup.select_one("div.card-analysis")
    if root is None:
        raise CardSchemaError("Missing <div class=\"card-analysis\"> root")

    badge = root.select_one("span.badge.quality")
    if badge is None:
        raise CardSchemaError("Missing quality badge")
    return root, count_stars(badge.get_text())


def validate_card(card_html: str) -> int:
    """Check a card against the envelope contract and return its star count.

    Raises CardSchemaError when the root element or the quality badge is
    missing or malformed.
    """
    _, stars = _checked_root(card_html)
    return stars


def parse_card(card_html: str) -> Card:
    """Parse a card envelope; same failure modes as validate_card."""
    root, stars = _checked_root(card_html)

    type_badge = root.select_one("span.badge.type")
    study_type = type_badge.get_text(strip=True) if type_badge is not None else None

    sections = []
    for section in root.select("div.card-section"):
        heading = section.find(["h4", "h3"])
        title = heading.get_text(strip=True) if heading is not None else ""
        if heading is not None:
            heading.extract()
        sections.append(CardSection(title=title, text=section.get_text(" ", strip=True)))

    return Card(stars=stars, study_type=study_type, sections=sections)


def card_stars(card_html: str | None) -> int | None:
    """Star count of a card, or None when the card has no parseable badge."""
    if not card_html:
        return None
    try:
        return validate_card(card_html)
    except CardSchemaError:
        return None


def has_envelope(card_html: str) -> bool:
    soup = BeautifulSoup(card_html or "", "html.parser")
    return soup.select_one("div.card-analysis") is not None


def render_card(
    sections: list[tuple[str, str]],
    *,
    stars: int | None = None,
    study_type: str | None = None,
) -> str:
    """Build a card envelope. Section bodies are inserted as-is (already HTML)."""
    badges = []
    if stars is not None:
        badges.append(f'<span class="badge quality">{star_badge(stars)}</span>')
    if study_type:
        badges.append(f'<span class="badge type">{html.escape(study_type)}</span>')

    parts = [
        '<div class="card-analysis">',
        '  <div class="card-header">',
        f"    <h3>{CARD_TITLE}</h3>",
        f'    <div class="badges">{"".join(badges)}</div>',
        "  </div>",
    ]
    for title, body in sections:
        parts.append(
            f'  <div class="card-section">\n    <h4>{html.escape(title)}</h4>\n'
            f"    {body}\n  </div>"
        )
    parts.append("</div>")
    return "\n".join(parts)


def ensure_envelope(raw: str) -> str:
    """Return the LLM output as a card, wrapping it when the root is missing.

    All original text is kept inside a single section. A star run found in
    the text is promoted to the quality badge.
    """
    text = strip_code_fences(raw or "")
    if has_envelope(text):
        return text

    stars = None
    match = _STAR_RUN_RE.search(text)
    if match:
        try:
            stars = count_stars(match.group(0))
        except CardSchemaError:
            stars = None

    soup = BeautifulSoup(text, "html.parser")
    body = text if soup.find() is not None else f"<p>{html.escape(text)}</p>"
    return render_card([(FALLBACK_SECTION_TITLE, body)], stars=stars)
