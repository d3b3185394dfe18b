"""NIH iCite client: citation metrics (RCR, NIH percentile, APT) per PMID."""

import logging

from pydantic import ValidationError

from evidence_scout.constants import ICITE_BASE_URL
from evidence_scout.data_sources.base_client import (
    BaseClient,
    ClientConfig,
    DataSourceError,
    RateLimitConfig,
)
from evidence_scout.models.model_article import ICiteMetrics

logger = logging.getLogger("evidence_scout.data_sources")

# iCite accepts up to 1000 PMIDs per call
_ICITE_BATCH_SIZE = 1000


class ICiteClient(BaseClient):
    """Client for the iCite /pubs endpoint."""

    def __init__(
        self,
        base_url: str = ICITE_BASE_URL,
        *,
        max_retries: int | None = None,
        timeout: float | None = None,
    ) -> None:
        config = ClientConfig(rate_limit=RateLimitConfig(requests_per_second=5.0, burst=5))
        super().__init__(config, max_retries=max_retries, timeout=timeout)
        self.base_url = base_url.rstrip("/")

    @property
    def _source_name(self) -> str:
        return "icite"

    async def get_metrics(self, pmids: list[str]) -> dict[str, ICiteMetrics]:
        """Return metrics keyed by PMID; PMIDs iCite does not know are absent."""
        metrics: dict[str, ICiteMetrics] = {}
        for i in range(0, len(pmids), _ICITE_BATCH_SIZE):
            batch = pmids[i : i + _ICITE_BATCH_SIZE]
            data = await self._rest_get(
                f"{self.base_url}/pubs",
                {"pmids": ",".join(batch)},
                operation="pubs",
            )
            if not isinstance(data, dict) or not isinstance(data.get("data"), list):
                raise DataSourceError(self._source_name, "Malformed iCite response")

            for record in data["data"]:
                pmid = record.get("pmid")
                if pmid is None:
                    continue
                try:
                    metrics[str(pmid)] = ICiteMetrics.model_validate(record)
                except ValidationError as e:
                    logger.warning("Skipping iCite record for %s: %s", pmid, e)
        return metrics
