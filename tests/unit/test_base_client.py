"""Unit tests for base_client module."""

import json
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from evidence_scout.data_sources.base_client import (
    BaseClient,
    DataSourceError,
    RateLimitError,
)


class ConcreteTestClient(BaseClient):
    """Concrete implementation of BaseClient for testing."""

    @property
    def _source_name(self) -> str:
        return "test_client"


def _response(status: int, text: str = "", json_data=None, headers=None) -> AsyncMock:
    resp = AsyncMock()
    resp.status = status
    resp.text = AsyncMock(return_value=text)
    resp.json = AsyncMock(return_value=json_data)
    resp.headers = headers or {}
    return resp


@pytest.mark.asyncio
class TestBaseClient:
    """Unit tests for BaseClient session lifecycle (no network calls)."""

    async def test_client_context_manager(self):
        """Test that client can be used as async context manager."""
        async with ConcreteTestClient() as client:
            assert client._session is None  # Session created lazily
            session = await client._get_session()

            assert session is not None
            assert not session.closed

        # Session should be closed after exiting context
        assert client._session.closed

    async def test_session_reuse(self):
        """Test that session is reused across requests."""
        client = ConcreteTestClient()

        session1 = await client._get_session()
        session2 = await client._get_session()

        assert session1 is session2
        await client.close()

    async def test_constructor_overrides_do_not_leak_into_default_config(self):
        """max_retries/timeout kwargs apply to this client only."""
        tuned = ConcreteTestClient(max_retries=0, timeout=5.0)
        default = ConcreteTestClient()

        assert tuned.config.retry.max_retries == 0
        assert tuned.config.timeout_seconds == 5.0
        assert default.config.retry.max_retries == 3
        assert default.config.timeout_seconds == 30.0


@pytest.mark.asyncio
class TestRestGet:
    """Unit tests for _rest_get JSON handling."""

    async def test_returns_decoded_json(self):
        mock_session = AsyncMock()
        mock_session.get = AsyncMock(return_value=_response(200, json_data={"ok": 1}))

        client = ConcreteTestClient()
        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=mock_session
        ):
            result = await client._rest_get("https://example.com/api", {"q": "x"})

        assert result == {"ok": 1}
        mock_session.get.assert_awaited_once_with(
            "https://example.com/api", params={"q": "x"}, headers=None
        )

    async def test_429_honours_retry_after(self):
        """Test a 429 sleeps for Retry-After seconds before the next attempt."""
        throttled = _response(429, "slow down", headers={"Retry-After": "2"})
        ok = _response(200, json_data={"ok": True})

        mock_session = AsyncMock()
        mock_session.get = AsyncMock(side_effect=[throttled, ok])

        client = ConcreteTestClient(max_retries=1)
        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=mock_session
        ):
            with patch(
                "evidence_scout.data_sources.base_client.asyncio.sleep",
                new_callable=AsyncMock,
            ) as mock_sleep:
                result = await client._rest_get("https://example.com/api", {})

        assert result == {"ok": True}
        mock_sleep.assert_any_await(2.0)

    async def test_exhausted_429_raises_rate_limit_error(self):
        mock_session = AsyncMock()
        mock_session.get = AsyncMock(return_value=_response(429, "slow down"))

        client = ConcreteTestClient(max_retries=1)
        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=mock_session
        ):
            with patch(
                "evidence_scout.data_sources.base_client.asyncio.sleep",
                new_callable=AsyncMock,
            ):
                with pytest.raises(RateLimitError) as exc_info:
                    await client._rest_get("https://example.com/api", {})

        assert exc_info.value.status_code == 429
        assert mock_session.get.await_count == 2

    async def test_connection_error_is_retried(self):
        mock_session = AsyncMock()
        mock_session.get = AsyncMock(
            side_effect=[aiohttp.ClientConnectionError("reset"), _response(200, json_data=[])]
        )

        client = ConcreteTestClient(max_retries=1)
        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=mock_session
        ):
            with patch(
                "evidence_scout.data_sources.base_client.asyncio.sleep",
                new_callable=AsyncMock,
            ):
                result = await client._rest_get("https://example.com/api", {})

        assert result == []

    async def test_non_json_body_raises_datasource_error(self):
        """A 200 with an HTML body surfaces as DataSourceError and is not retried."""
        page = _response(200, text="<html>Maintenance</html>")
        page.json = AsyncMock(
            side_effect=json.JSONDecodeError("Expecting value", "<html>", 0)
        )
        mock_session = AsyncMock()
        mock_session.get = AsyncMock(return_value=page)

        client = ConcreteTestClient(max_retries=2)
        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=mock_session
        ):
            with pytest.raises(DataSourceError, match="Malformed response") as exc_info:
                await client._rest_get("https://example.com/api", {})

        assert exc_info.value.status_code == 200
        assert exc_info.value.source == "test_client"
        assert mock_session.get.await_count == 1


@pytest.mark.asyncio
class TestRestGetXml:
    """Unit tests for _rest_get_xml."""

    async def test_returns_xml_text_on_success(self):
        """Test _rest_get_xml returns raw text for a 200 response."""
        xml_body = (
            "<PubmedArticleSet><PubmedArticle></PubmedArticle></PubmedArticleSet>"
        )
        mock_session = AsyncMock()
        mock_session.get = AsyncMock(return_value=_response(200, xml_body))

        client = ConcreteTestClient()
        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=mock_session
        ):
            result = await client._rest_get_xml(
                "https://example.com/xml", params={"id": "1"}
            )

        assert result == xml_body

    async def test_raises_datasource_error_on_4xx(self):
        """Test _rest_get_xml raises DataSourceError for non-retryable 4xx."""
        mock_session = AsyncMock()
        mock_session.get = AsyncMock(return_value=_response(404, "Not Found"))

        client = ConcreteTestClient(max_retries=0)
        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=mock_session
        ):
            with pytest.raises(DataSourceError, match="HTTP 404") as exc_info:
                await client._rest_get_xml("https://example.com/xml", params={})

        assert exc_info.value.status_code == 404
        assert exc_info.value.source == "test_client"

    async def test_retries_on_5xx_then_succeeds(self):
        """Test _rest_get_xml retries on 500 and succeeds on next attempt."""
        xml_body = "<root>OK</root>"

        mock_session = AsyncMock()
        mock_session.get = AsyncMock(
            side_effect=[_response(500, "boom"), _response(200, xml_body)]
        )

        client = ConcreteTestClient(max_retries=1)
        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=mock_session
        ):
            with patch(
                "evidence_scout.data_sources.base_client.asyncio.sleep",
                new_callable=AsyncMock,
            ):
                result = await client._rest_get_xml(
                    "https://example.com/xml", params={}
                )

        assert result == xml_body
        assert mock_session.get.call_count == 2

    async def test_raises_after_exhausting_retries_on_5xx(self):
        """Test _rest_get_xml raises DataSourceError after all retries fail with 5xx."""
        mock_session = AsyncMock()
        mock_session.get = AsyncMock(return_value=_response(503, "unavailable"))

        client = ConcreteTestClient(max_retries=2)
        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=mock_session
        ):
            with patch(
                "evidence_scout.data_sources.base_client.asyncio.sleep",
                new_callable=AsyncMock,
            ):
                with pytest.raises(DataSourceError, match="HTTP 503") as exc_info:
                    await client._rest_get_xml("https://example.com/xml", params={})

        assert exc_info.value.status_code == 503
        assert mock_session.get.call_count == 3


@pytest.mark.asyncio
class TestHead:
    async def test_head_returns_status_without_raising_on_405(self):
        mock_session = AsyncMock()
        mock_session.head = AsyncMock(return_value=_response(405))

        client = ConcreteTestClient(max_retries=0)
        with patch.object(
            client, "_get_session", new_callable=AsyncMock, return_value=mock_session
        ):
            status = await client._head("https://example.com/batch")

        assert status == 405


class TestDataSourceError:
    """Tests for DataSourceError."""

    def test_error_message_format(self):
        """Test error message includes source."""
        error = DataSourceError("pubmed", "Connection failed")
        assert "[pubmed]" in str(error)
        assert "Connection failed" in str(error)

    def test_error_with_status_code(self):
        """Test error can include status code."""
        error = DataSourceError("api", "Not found", status_code=404)
        assert error.source == "api"
        assert error.status_code == 404
