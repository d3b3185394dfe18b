"""Client for a remote ``analyze-batch`` endpoint (another EvidenceScout node)."""

from typing import Any

from evidence_scout.data_sources.base_client import BaseClient, DataSourceError

# 405 means the route exists but HEAD is not allowed on it
_SUPPORTED_HEAD_STATUSES = {200, 405}


class BatchAnalysisClient(BaseClient):
    """POSTs ``{articles, clinicalQuestion}`` and returns the aligned results list."""

    def __init__(self, url: str, *, max_retries: int | None = 0, timeout: float | None = None):
        super().__init__(max_retries=max_retries, timeout=timeout)
        self.url = url
        self._supported: bool | None = None

    @property
    def _source_name(self) -> str:
        return "analyze_batch"

    async def supports_batch(self) -> bool:
        """Check the endpoint once with HEAD and remember the answer."""
        if self._supported is None:
            try:
                status = await self._head(self.url, operation="head")
            except DataSourceError:
                status = None
            self._supported = status in _SUPPORTED_HEAD_STATUSES
        return self._supported

    async def analyze_batch(
        self, articles: list[dict[str, Any]], clinical_question: str
    ) -> list[dict[str, Any]]:
        data = await self._rest_post(
            self.url,
            {"articles": articles, "clinicalQuestion": clinical_question},
            operation="analyze_batch",
        )
        if not isinstance(data, dict) or not data.get("success"):
            raise DataSourceError(self._source_name, "Batch analysis was not successful")
        results = data.get("results")
        if not isinstance(results, list):
            raise DataSourceError(self._source_name, "Batch response has no results list")
        return results
