"""Unit tests for the card envelope parser and builder."""

import pytest
from bs4 import BeautifulSoup

from evidence_scout.errors import CardSchemaError
from evidence_scout.services.card import (
    CARD_TITLE,
    FALLBACK_SECTION_TITLE,
    card_stars,
    count_stars,
    ensure_envelope,
    has_envelope,
    parse_card,
    render_card,
    star_badge,
    strip_code_fences,
    validate_card,
)

LLM_CARD = """
<div class="card-analysis">
  <div class="card-header">
    <h3>ANÁLISIS DE EVIDENCIA</h3>
    <div class="badges">
      <span class="badge quality">★★★☆☆</span>
      <span class="badge type">Meta-análisis</span>
    </div>
  </div>
  <div class="card-section">
    <h4>RESUMEN CLÍNICO</h4>
    <p>La metformina mejora la ovulación.</p>
  </div>
  <div class="card-section">
    <h4>LIMITACIONES</h4>
    <p>Heterogeneidad alta.</p>
  </div>
</div>
"""


class TestStarBadge:
    """Tests for building and reading the quality badge."""

    @pytest.mark.parametrize(
        "stars, expected",
        [(1, "★☆☆☆☆"), (4, "★★★★☆"), (5, "★★★★★"), (0, "★☆☆☆☆"), (9, "★★★★★")],
    )
    def test_star_badge(self, stars, expected):
        assert star_badge(stars) == expected

    def test_count_stars_counts_filled_stars(self):
        assert count_stars("★★★☆☆") == 3
        assert count_stars(" ★★★★★ ") == 5

    @pytest.mark.parametrize("badge", ["", "☆☆☆☆☆", "★★ ★☆☆", "★★★☆☆☆", "***", "4/5"])
    def test_count_stars_rejects_malformed_badges(self, badge):
        with pytest.raises(CardSchemaError):
            count_stars(badge)


class TestValidateCard:
    """validate_card enforces the envelope contract and returns the stars."""

    def test_returns_star_count_of_a_valid_card(self):
        assert validate_card(LLM_CARD) == 3

    def test_requires_root(self):
        with pytest.raises(CardSchemaError, match="card-analysis"):
            validate_card("<div><span class='badge quality'>★★★☆☆</span></div>")

    def test_requires_quality_badge(self):
        html = '<div class="card-analysis"><div class="card-section"><h4>X</h4></div></div>'
        with pytest.raises(CardSchemaError, match="quality badge"):
            validate_card(html)

    def test_rejects_a_drifted_badge(self):
        """A badge with a score instead of stars is schema drift."""
        html = LLM_CARD.replace("★★★☆☆", "3/5")
        with pytest.raises(CardSchemaError, match="Invalid quality badge"):
            validate_card(html)

    def test_wrapped_plain_text_without_stars_fails_validation(self):
        """ensure_envelope keeps the text but cannot invent a badge."""
        wrapped = ensure_envelope("Sin información de calidad.")

        assert has_envelope(wrapped)
        with pytest.raises(CardSchemaError):
            validate_card(wrapped)


class TestParseCard:
    """Tests for parse_card and card_stars."""

    def test_reads_badges_and_sections(self):
        card = parse_card(LLM_CARD)

        assert card.stars == 3
        assert card.study_type == "Meta-análisis"
        assert [s.title for s in card.sections] == ["RESUMEN CLÍNICO", "LIMITACIONES"]
        assert card.sections[0].text == "La metformina mejora la ovulación."

    def test_requires_root(self):
        with pytest.raises(CardSchemaError, match="card-analysis"):
            parse_card("<div><span class='badge quality'>★★★☆☆</span></div>")

    def test_requires_quality_badge(self):
        html = '<div class="card-analysis"><div class="card-section"><h4>X</h4></div></div>'
        with pytest.raises(CardSchemaError, match="quality badge"):
            parse_card(html)

    def test_card_stars_returns_none_on_schema_drift(self):
        assert card_stars(None) is None
        assert card_stars("<p>free text</p>") is None
        assert card_stars(LLM_CARD) == 3

    def test_rendered_card_parses_back_to_same_stars(self):
        html = render_card(
            [("RESUMEN CLÍNICO", "<p>Texto</p>")], stars=4, study_type="Estudio de cohorte"
        )

        card = parse_card(html)
        assert CARD_TITLE in html
        assert card.stars == 4
        assert card.study_type == "Estudio de cohorte"
        assert card.sections[0].title == "RESUMEN CLÍNICO"


class TestEnsureEnvelope:
    """Tests for wrapping LLM output that drifted from the envelope."""

    def test_strip_code_fences(self):
        assert strip_code_fences("```html\n<div>x</div>\n```") == "<div>x</div>"
        assert strip_code_fences("<div>x</div>") == "<div>x</div>"

    def test_keeps_a_valid_card(self):
        assert ensure_envelope(LLM_CARD) == LLM_CARD.strip()

    def test_unwraps_fenced_card(self):
        fenced = f"```html\n{LLM_CARD}\n```"
        assert parse_card(ensure_envelope(fenced)).stars == 3

    def test_wraps_plain_text_preserving_it(self):
        wrapped = ensure_envelope("Calidad moderada, estudio pequeño & sin cegamiento.")

        assert has_envelope(wrapped)
        section = BeautifulSoup(wrapped, "html.parser").select_one("div.card-section")
        assert section.find("h4").get_text(strip=True) == FALLBACK_SECTION_TITLE
        assert "Calidad moderada, estudio pequeño & sin cegamiento." in section.get_text()

    def test_promotes_star_run_to_badge(self):
        wrapped = ensure_envelope("<p>Calidad: ★★★★☆</p><p>Ensayo aleatorizado.</p>")

        assert parse_card(wrapped).stars == 4
        assert "Ensayo aleatorizado." in wrapped
