"""EvidenceScout: evidence retrieval and appraisal for clinical questions."""

__version__ = "0.1.0"
