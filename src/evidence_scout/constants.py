"""Project-wide constants."""

# -- Base client defaults ---------------------------------------------------
DEFAULT_TIMEOUT: float = 30.0
DEFAULT_MAX_RETRIES: int = 3

# -- Server -----------------------------------------------------------------
DEFAULT_PORT: int = 3001
DEFAULT_HEARTBEAT_INTERVAL: float = 15.0
PROGRESS_STREAM_TTL: float = 300.0
PROGRESS_HISTORY_LIMIT: int = 500
SESSION_REGISTRY_LIMIT: int = 100

# -- Question ---------------------------------------------------------------
DEFAULT_MAX_RESULTS: int = 10
MAX_RESULTS_LIMIT: int = 50

# -- LLM --------------------------------------------------------------------
DEFAULT_LLM_MODEL: str = "claude-3-haiku-20240307"
DEFAULT_LLM_TIMEOUT: float = 120.0
SYNTHESIS_ABSTRACT_CHARS: int = 300
SYNTHESIS_ANALYSIS_CHARS: int = 500

# -- PubMed / NCBI ----------------------------------------------------------
NCBI_BASE_URL: str = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"
PUBMED_FETCH_BATCH_SIZE: int = 200

# -- iCite ------------------------------------------------------------------
ICITE_BASE_URL: str = "https://icite.od.nih.gov/api"

# -- Study-type weights (evidence rating fallback) --------------------------
# Ordered by descending strength; the first keyword hit wins. Matched against
# lower-cased, accent-stripped text, so the Spanish card labels are listed
# without accents.
STUDY_TYPE_WEIGHTS: list[tuple[tuple[str, ...], float]] = [
    (("meta-analysis", "metaanalysis", "meta-analisis", "metaanalisis"), 5.0),
    (("systematic review", "revision sistematica"), 4.5),
    (("randomized", "controlled trial", "rct", "aleatorizado", "ensayo clinico"), 4.0),
    (("cohort", "longitudinal", "cohorte"), 3.5),
    (("case-control", "casos y controles"), 3.0),
    (("case series", "case report", "serie de casos", "reporte de caso"), 2.5),
    (("review", "overview", "revision"), 2.0),
    (("expert opinion", "opinion de expertos"), 1.5),
]
DEFAULT_EVIDENCE_RATING: int = 3

# -- Priority scoring -------------------------------------------------------
PRIORITY_WEIGHT_STUDY_TYPE: float = 35.0
PRIORITY_WEIGHT_RECENCY: float = 20.0
PRIORITY_WEIGHT_JOURNAL: float = 15.0
PRIORITY_WEIGHT_OVERLAP: float = 20.0
PRIORITY_WEIGHT_IMPACT: float = 10.0

# Study-type tier → fraction of PRIORITY_WEIGHT_STUDY_TYPE.
PRIORITY_STUDY_TIERS: list[tuple[tuple[str, ...], float]] = [
    (("meta-analysis", "metaanalysis"), 1.0),
    (("systematic review",), 0.85),
    (("randomized controlled trial", "randomised", "randomized"), 0.7),
    (("cohort", "longitudinal"), 0.45),
    (("case-control",), 0.35),
    (("case report", "case series"), 0.2),
    (("review",), 0.3),
]

# (max age in years, fraction of PRIORITY_WEIGHT_RECENCY)
PRIORITY_RECENCY_TIERS: list[tuple[int, float]] = [
    (2, 1.0),
    (5, 0.7),
    (10, 0.3),
]

TOP_TIER_JOURNALS: set[str] = {
    "n engl j med",
    "new england journal of medicine",
    "lancet",
    "the lancet",
    "jama",
    "bmj",
    "nat med",
    "nature medicine",
    "cochrane database syst rev",
    "cochrane database of systematic reviews",
}
HIGH_IMPACT_JOURNALS: set[str] = {
    "ann intern med",
    "annals of internal medicine",
    "jama intern med",
    "lancet oncol",
    "lancet diabetes endocrinol",
    "circulation",
    "j clin oncol",
    "plos med",
    "diabetes care",
    "eur heart j",
    "gastroenterology",
    "hum reprod update",
}

# MeSH headings that signal a well-designed study.
QUALITY_MESH_TERMS: set[str] = {
    "randomized controlled trials as topic",
    "double-blind method",
    "single-blind method",
    "treatment outcome",
    "meta-analysis as topic",
    "systematic reviews as topic",
    "prospective studies",
    "cohort studies",
}

QUESTION_STOPWORDS: set[str] = {
    "what",
    "which",
    "does",
    "with",
    "that",
    "this",
    "from",
    "have",
    "than",
    "into",
    "patients",
    "effective",
    "effect",
    "effects",
    "there",
    "their",
    "about",
    "should",
}
