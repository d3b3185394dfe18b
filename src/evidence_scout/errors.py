"""Error taxonomy shared by the services and the HTTP layer."""


class EvidenceScoutError(Exception):
    """Base exception; subclasses pin an error code and HTTP status."""

    code: str = "internal_error"
    http_status: int = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


# -- Validation --------------------------------------------------------------


class ValidationError(EvidenceScoutError):
    code = "validation_error"
    http_status = 400


class EmptyQuestion(ValidationError):
    code = "empty_question"

    def __init__(self, message: str = "Question must not be empty"):
        super().__init__(message)


class InvalidMaxResults(ValidationError):
    code = "invalid_max_results"


class ArticleNotFound(EvidenceScoutError):
    code = "article_not_found"
    http_status = 404

    def __init__(self, pmid: str):
        self.pmid = pmid
        super().__init__(f"Article {pmid} not found")


class QueryNotFound(EvidenceScoutError):
    code = "query_not_found"
    http_status = 404

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"No query session {request_id}")


# -- Upstream ----------------------------------------------------------------


class UpstreamRateLimited(EvidenceScoutError):
    """Upstream answered 429; the executor keys its pacing on `status_code`."""

    code = "upstream_rate_limited"
    http_status = 429
    status_code = 429


class GatewayError(EvidenceScoutError):
    """Upstream failure that could not be recovered within the retry limit."""

    code = "gateway_error"
    http_status = 502

    def __init__(self, message: str, status: int | None = None):
        self.status = status
        super().__init__(message)


class LiteratureGatewayError(GatewayError):
    code = "literature_gateway_error"


class LLMGatewayError(GatewayError):
    code = "llm_gateway_error"


class CardSchemaError(EvidenceScoutError):
    """Analysis HTML does not follow the card envelope."""

    code = "card_schema_error"
    http_status = 502


# -- Control flow ------------------------------------------------------------


class RequestCancelled(EvidenceScoutError):
    code = "cancelled"
    http_status = 499

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message)


class InvalidTransition(EvidenceScoutError):
    code = "invalid_transition"
    http_status = 409


class DuplicateRequest(EvidenceScoutError):
    """A request id that already names a query session or a finished stream."""

    code = "duplicate_request"
    http_status = 409

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request id {request_id} is already in use")
