"""Parsing of the strategy LLM response: the bare PubMed query and its metrics."""

import html
import logging
import re

from evidence_scout.models.model_query import StrategyMetrics

logger = logging.getLogger(__name__)

# Heading-anchored patterns, tried in order. Group 1 is the query.
_HEADING_PATTERNS = [
    re.compile(
        r"ESTRATEGIA PRINCIPAL[^\n:]*:?\s*\n?\s*(.+?)(?=\n\s*\n|ESTRATEGIA ALTERNATIVA|VALIDACI[ÓO]N|Sensibilidad|Precisi[óo]n|$)",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(
        r"(?:MAIN|FINAL) (?:SEARCH )?STRATEGY[^\n:]*:?\s*\n?\s*(.+?)(?=\n\s*\n|ALTERNATIVE|Sensitivity|Precision|$)",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(
        r"ESTRATEGIA DE B[ÚU]SQUEDA[^\n:]*:\s*\n?\s*(\(.+?\)(?:\s+(?:AND|OR|NOT)\s+\(.+?\))*)",
        re.IGNORECASE | re.DOTALL,
    ),
]

_MESH_BOOLEAN_RE = re.compile(
    r'\(\s*"[^"]+"\s*\[[^\]]+\](?:\s+OR\s+[^()]+?)*\)(?:\s+(?:AND|OR|NOT)\s+\(.+?\))*'
)

_MIN_STRATEGY_LENGTH = 10

_METRIC_PATTERNS: dict[str, list[re.Pattern]] = {
    "sensitivity": [
        re.compile(r"(?:sensibilidad|sensitivity)(?:\s+estimada|\s+estimated)?[^\n\d]{0,20}?(\d{1,3})\s*%", re.IGNORECASE),
        re.compile(r"(\d{1,3})\s*%\s+(?:de\s+)?(?:sensibilidad|sensitivity)", re.IGNORECASE),
    ],
    "precision": [
        re.compile(r"(?:precisi[óo]n|precision)(?:\s+estimada|\s+estimated)?[^\n\d]{0,20}?(\d{1,3})\s*%", re.IGNORECASE),
        re.compile(r"(\d{1,3})\s*%\s+(?:de\s+)?(?:precisi[óo]n|precision)", re.IGNORECASE),
    ],
    "specificity": [
        re.compile(r"(?:especificidad|specificity)(?:\s+estimada|\s+estimated)?[^\n\d]{0,20}?(\d{1,3})\s*%", re.IGNORECASE),
        re.compile(r"(\d{1,3})\s*%\s+(?:de\s+)?(?:especificidad|specificity)", re.IGNORECASE),
    ],
}
_NNR_RE = re.compile(r"\bNNR(?:\s+estimado|\s+estimated)?\s*:?\s*(\d+(?:[.,]\d+)?)", re.IGNORECASE)

_QUOTED_RE = re.compile(r'("[^"]*")')
_OPERATOR_RE = re.compile(r"\b(and|or|not)\b", re.IGNORECASE)


def extract_strategy(response: str) -> str:
    """Pull the PubMed query out of the LLM prose; empty string when none is found."""
    if not response:
        return ""

    for pattern in _HEADING_PATTERNS:
        match = pattern.search(response)
        if match:
            candidate = _clean_candidate(match.group(1))
            if len(candidate) >= _MIN_STRATEGY_LENGTH and "(" in candidate:
                return candidate

    matches = [m.group(0) for m in _MESH_BOOLEAN_RE.finditer(response)]
    if matches:
        longest = max(matches, key=len)
        if len(longest) > 40:
            return _clean_candidate(longest)

    for line in response.splitlines():
        if (
            re.search(r"\[(?:mesh|majr|tiab|ti)[^\]]*\]", line, re.IGNORECASE)
            and re.search(r"\b(?:AND|OR)\b", line)
            and "(" in line
            and ")" in line
            and len(line) > 50
        ):
            return _clean_candidate(line)

    logger.info("No search strategy found in LLM response")
    return ""


def _clean_candidate(text: str) -> str:
    lines = [line.strip().lstrip("-*•").strip() for line in text.strip().splitlines()]
    text = " ".join(line for line in lines if line)
    text = text.strip("`").strip()
    return re.sub(r"\s+", " ", text)


def normalize_strategy(strategy: str) -> str:
    """Make a query PubMed-safe: balanced quotes and parentheses, upper-case operators."""
    strategy = re.sub(r"\s+", " ", strategy or "").strip()
    if not strategy:
        return ""

    if strategy.count('"') % 2:
        last = strategy.rfind('"')
        strategy = strategy[:last] + strategy[last + 1 :]

    # Operators inside quoted phrases stay as written.
    parts = _QUOTED_RE.split(strategy)
    for i, part in enumerate(parts):
        if not part.startswith('"'):
            parts[i] = _OPERATOR_RE.sub(lambda m: m.group(1).upper(), part)
    strategy = "".join(parts)

    depth = 0
    balanced = []
    for char in strategy:
        if char == "(":
            depth += 1
        elif char == ")":
            if depth == 0:
                continue
            depth -= 1
        balanced.append(char)
    strategy = "".join(balanced) + ")" * depth

    strategy = re.sub(r"\(\s+", "(", strategy)
    strategy = re.sub(r"\s+\)", ")", strategy)
    return strategy.strip()


def extract_metrics(response: str) -> StrategyMetrics | None:
    if not response:
        return None

    values: dict[str, int | float] = {}
    for name, patterns in _METRIC_PATTERNS.items():
        for pattern in patterns:
            match = pattern.search(response)
            if match:
                value = int(match.group(1))
                if 0 <= value <= 100:
                    values[name] = value
                    break

    nnr = _NNR_RE.search(response)
    if nnr:
        values["nnr"] = float(nnr.group(1).replace(",", "."))

    return StrategyMetrics(**values) if values else None


def render_enhanced(strategy: str, metrics: StrategyMetrics | None) -> str:
    """Small HTML block with the query and metric badges for display."""
    parts = [
        '<div class="enhanced-strategy">',
        f'  <pre class="search-strategy">{html.escape(strategy)}</pre>',
    ]
    if metrics is not None:
        labels = [
            ("Sensibilidad", metrics.sensitivity, "%"),
            ("Precisión", metrics.precision, "%"),
            ("Especificidad", metrics.specificity, "%"),
            ("NNR", metrics.nnr, ""),
        ]
        badges = "".join(
            f'<span class="badge metric">{label}: {value}{suffix}</span>'
            for label, value, suffix in labels
            if value is not None
        )
        parts.append(f'  <div class="metrics">{badges}</div>')
    parts.append("</div>")
    return "\n".join(parts)
