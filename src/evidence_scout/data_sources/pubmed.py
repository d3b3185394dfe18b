"""
PubMed E-utilities client.

Methods:
  1. search          - ESearch, PMIDs matching a query, relevance order
  2. fetch_articles  - EFetch, batched XML records parsed into Articles
  3. fetch_summaries - ESummary, JSON summaries (fallback for sparse records)
  4. get_article     - one record by PMID
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from typing import Any

from evidence_scout.constants import NCBI_BASE_URL, PUBMED_FETCH_BATCH_SIZE
from evidence_scout.data_sources.base_client import (
    BaseClient,
    ClientConfig,
    DataSourceError,
    RateLimitConfig,
)
from evidence_scout.helpers.text_helpers import month_number, sanitize_text
from evidence_scout.models.model_article import Article


class PubMedClient(BaseClient):
    """Client for querying PubMed/NCBI APIs."""

    def __init__(
        self,
        base_url: str = NCBI_BASE_URL,
        api_key: str = "",
        *,
        max_retries: int | None = None,
        timeout: float | None = None,
    ) -> None:
        # NCBI raises the allowance from 3 to 10 requests/second with a key
        rate = 10.0 if api_key else 3.0
        config = ClientConfig(
            rate_limit=RateLimitConfig(requests_per_second=rate, burst=int(rate))
        )
        super().__init__(config, max_retries=max_retries, timeout=timeout)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key

    @property
    def _source_name(self) -> str:
        return "pubmed"

    @property
    def search_url(self) -> str:
        return f"{self.base_url}/esearch.fcgi"

    @property
    def summary_url(self) -> str:
        return f"{self.base_url}/esummary.fcgi"

    @property
    def fetch_url(self) -> str:
        return f"{self.base_url}/efetch.fcgi"

    def _with_key(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.api_key:
            return {**params, "api_key": self.api_key}
        return params

    async def search(self, query: str, max_results: int = 10) -> list[str]:
        """Search PubMed and return list of PMIDs in relevance order."""
        params = self._with_key(
            {
                "db": "pubmed",
                "term": query,
                "retmax": max_results,
                "retmode": "json",
                "sort": "relevance",
            }
        )
        data = await self._rest_get(self.search_url, params, operation="esearch")
        if not isinstance(data, dict) or "esearchresult" not in data:
            raise DataSourceError(self._source_name, "Malformed ESearch response")

        result = data["esearchresult"]
        if "ERROR" in result:
            raise DataSourceError(self._source_name, f"ESearch error: {result['ERROR']}")
        pmids: list[str] = [str(p) for p in result.get("idlist", [])]
        return pmids[:max_results]

    async def fetch_articles(
        self, pmids: list[str], batch_size: int = PUBMED_FETCH_BATCH_SIZE
    ) -> list[Article]:
        """Fetch full records for the given PMIDs, preserving the input order.

        PMIDs that EFetch does not return are filled in from ESummary when
        possible and dropped otherwise.
        """
        if not pmids:
            return []

        by_pmid: dict[str, Article] = {}
        for i in range(0, len(pmids), batch_size):
            batch = pmids[i : i + batch_size]
            params = self._with_key(
                {
                    "db": "pubmed",
                    "id": ",".join(batch),
                    "retmode": "xml",
                    "rettype": "abstract",
                }
            )
            xml_text = await self._rest_get_xml(self.fetch_url, params, operation="efetch")
            for article in self._parse_pubmed_xml(xml_text):
                by_pmid[article.pmid] = article

        missing = [p for p in pmids if p not in by_pmid]
        if missing:
            for article in await self.fetch_summaries(missing):
                by_pmid[article.pmid] = article

        return [by_pmid[p] for p in pmids if p in by_pmid]

    async def fetch_summaries(self, pmids: list[str]) -> list[Article]:
        """ESummary records as Articles (no abstract or MeSH)."""
        if not pmids:
            return []
        params = self._with_key(
            {"db": "pubmed", "id": ",".join(pmids), "retmode": "json"}
        )
        data = await self._rest_get(self.summary_url, params, operation="esummary")
        result = data.get("result", {}) if isinstance(data, dict) else {}

        articles = []
        for pmid in result.get("uids", pmids):
            record = result.get(str(pmid))
            if not isinstance(record, dict) or "error" in record:
                continue
            articles.append(self._summary_to_article(str(pmid), record))
        return articles

    async def get_article(self, pmid: str) -> Article | None:
        articles = await self.fetch_articles([pmid])
        return articles[0] if articles else None

    # -- Parsing ---------------------------------------------------------------

    def _summary_to_article(self, pmid: str, record: dict[str, Any]) -> Article:
        doi = None
        for article_id in record.get("articleids", []):
            if article_id.get("idtype") == "doi":
                doi = article_id.get("value")
                break
        return Article(
            pmid=pmid,
            title=sanitize_text(record.get("title")),
            authors=record.get("authors"),
            publication_date=record.get("pubdate") or record.get("epubdate") or "",
            source=record.get("fulljournalname") or record.get("source"),
            doi=doi,
            publication_types=record.get("pubtype") or [],
        )

    def _parse_pubmed_xml(self, xml_text: str) -> list[Article]:
        """Parse EFetch XML into Article objects."""
        articles = []

        try:
            root = ET.fromstring(xml_text)
        except ET.ParseError as e:
            raise DataSourceError(self._source_name, f"Failed to parse XML: {e}")

        for article_elem in root.findall(".//PubmedArticle"):
            pmid = self._xml_text(article_elem, ".//MedlineCitation/PMID") or self._xml_text(
                article_elem, ".//PMID"
            )
            if not pmid:
                continue

            title_elem = article_elem.find(".//ArticleTitle")
            title = sanitize_text("".join(title_elem.itertext())) if title_elem is not None else ""

            # Abstract - may have multiple labelled sections
            abstract_parts = []
            for abs_elem in article_elem.findall(".//Abstract/AbstractText"):
                label = abs_elem.get("Label", "")
                text = sanitize_text("".join(abs_elem.itertext()))
                if label and text:
                    abstract_parts.append(f"{label}: {text}")
                elif text:
                    abstract_parts.append(text)

            authors = []
            for author in article_elem.findall(".//AuthorList/Author"):
                authors.append(
                    {
                        "LastName": self._xml_text(author, "LastName"),
                        "Initials": self._xml_text(author, "Initials"),
                        "ForeName": self._xml_text(author, "ForeName"),
                        "CollectiveName": self._xml_text(author, "CollectiveName"),
                    }
                )

            journal = self._xml_text(article_elem, ".//Journal/Title") or self._xml_text(
                article_elem, ".//Journal/ISOAbbreviation"
            )

            doi = None
            for id_elem in article_elem.findall(".//PubmedData/ArticleIdList/ArticleId"):
                if id_elem.get("IdType") == "doi" and id_elem.text:
                    doi = id_elem.text.strip()
                    break
            if doi is None:
                for loc in article_elem.findall(".//ELocationID"):
                    if loc.get("EIdType") == "doi" and loc.text:
                        doi = loc.text.strip()
                        break

            mesh_terms = [
                self._xml_text(mesh, "DescriptorName")
                for mesh in article_elem.findall(".//MeshHeading")
                if self._xml_text(mesh, "DescriptorName")
            ]
            publication_types = [
                pt.text.strip()
                for pt in article_elem.findall(".//PublicationTypeList/PublicationType")
                if pt.text
            ]

            articles.append(
                Article(
                    pmid=pmid.strip(),
                    title=title,
                    abstract=" ".join(abstract_parts),
                    authors=authors,
                    source=journal,
                    publication_date=self._publication_date(article_elem),
                    doi=doi,
                    mesh_terms=mesh_terms,
                    publication_types=publication_types,
                )
            )

        return articles

    def _publication_date(self, article_elem: ET.Element) -> str:
        """ISO date when Year/Month/Day are present, else PubMed's free text."""
        pub_date = article_elem.find(".//JournalIssue/PubDate")
        if pub_date is None:
            pub_date = article_elem.find(".//ArticleDate")
        if pub_date is None:
            pub_date = article_elem.find(".//PubMedPubDate[@PubStatus='pubmed']")
        if pub_date is None:
            return ""

        year = self._xml_text(pub_date, "Year")
        if not year:
            return self._xml_text(pub_date, "MedlineDate") or ""

        month = month_number(self._xml_text(pub_date, "Month"))
        if not month:
            return year
        day = self._xml_text(pub_date, "Day")
        if not day or not day.isdigit():
            return f"{year}-{month:02d}"
        return f"{year}-{month:02d}-{int(day):02d}"

    @staticmethod
    def _xml_text(elem: ET.Element, path: str) -> str | None:
        """Safely extract text from an XML element."""
        found = elem.find(path)
        return found.text if found is not None and found.text else None
