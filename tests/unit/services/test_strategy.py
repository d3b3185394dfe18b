"""Unit tests for strategy extraction from LLM prose."""

from evidence_scout.models.model_query import StrategyMetrics
from evidence_scout.services.strategy import (
    extract_metrics,
    extract_strategy,
    normalize_strategy,
    render_enhanced,
)

STRATEGY_RESPONSE = """## ANÁLISIS PICO
P: mujeres con síndrome de ovario poliquístico
I: metformina

ESTRATEGIA PRINCIPAL:
("Polycystic Ovary Syndrome"[Mesh] OR PCOS[tiab]) AND ("Metformin"[Mesh] OR metformin[tiab])

ESTRATEGIA ALTERNATIVA:
(PCOS[tiab]) AND (metformin[tiab])

VALIDACIÓN
Sensibilidad estimada: 85%
Precisión estimada: 40%
Especificidad: 70%
NNR estimado: 2,5
"""


class TestExtractStrategy:
    """Pulling the PubMed query out of LLM prose."""

    def test_extract_strategy_from_main_heading(self):
        assert extract_strategy(STRATEGY_RESPONSE) == (
            '("Polycystic Ovary Syndrome"[Mesh] OR PCOS[tiab]) AND '
            '("Metformin"[Mesh] OR metformin[tiab])'
        )

    def test_extract_strategy_english_heading(self):
        response = (
            "Here is my proposal.\n\nFINAL STRATEGY:\n"
            '("Diabetes Mellitus, Type 2"[Mesh]) AND ("Exercise"[Mesh])\n\n'
            "Sensitivity: 80%"
        )
        assert extract_strategy(response) == (
            '("Diabetes Mellitus, Type 2"[Mesh]) AND ("Exercise"[Mesh])'
        )

    def test_extract_strategy_falls_back_to_longest_mesh_boolean(self):
        response = (
            "Sugiero buscar así:\n"
            '("Hypertension"[Mesh] OR hypertension[tiab]) AND ("Sodium, Dietary"[Mesh])\n'
            "y revisar los resultados."
        )
        assert extract_strategy(response).startswith('("Hypertension"[Mesh]')

    def test_extract_strategy_returns_empty_when_nothing_looks_like_a_query(self):
        assert extract_strategy("") == ""
        assert extract_strategy("No puedo ayudar con esa pregunta.") == ""


class TestNormalizeStrategy:
    """Balancing parentheses and quotes, uppercasing boolean operators."""

    def test_normalize_strategy_balances_and_uppercases_operators(self):
        assert normalize_strategy('(asthma[tiab] or wheeze[tiab] and (child*[tiab]') == (
            "(asthma[tiab] OR wheeze[tiab] AND (child*[tiab]))"
        )

    def test_normalize_strategy_keeps_quoted_phrases_as_written(self):
        assert normalize_strategy('"salt and pepper"[tiab] and diet[tiab]') == (
            '"salt and pepper"[tiab] AND diet[tiab]'
        )

    def test_normalize_strategy_drops_unmatched_quote_and_closing_paren(self):
        assert normalize_strategy('asthma[tiab]) AND "child') == "asthma[tiab] AND child"


class TestStrategyMetrics:
    """Sensitivity, precision, specificity and NNR from the response."""

    def test_extract_metrics_spanish_labels(self):
        metrics = extract_metrics(STRATEGY_RESPONSE)

        assert metrics == StrategyMetrics(sensitivity=85, precision=40, specificity=70, nnr=2.5)

    def test_extract_metrics_none_when_absent(self):
        assert extract_metrics("Sin métricas") is None
        assert extract_metrics("") is None

    def test_render_enhanced_lists_available_metrics(self):
        html = render_enhanced("a AND b", StrategyMetrics(sensitivity=85, precision=40))

        assert "a AND b" in html
        assert "Sensibilidad: 85%" in html
        assert "Precisión: 40%" in html
        assert "NNR" not in html
