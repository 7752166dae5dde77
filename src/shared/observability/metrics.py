# Prometheus metrics for the realty chat retrieval service

from typing import Callable

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from ..config import Settings
from .logging import get_logger

logger = get_logger(__name__)

# ===== Request metrics =====
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ===== Chat pipeline metrics =====
chat_requests_total = Counter(
    "chat_requests_total",
    "Total chat pipeline invocations",
    ["client_id", "status"],  # status: success, rejected, error
)

# ===== Embedding provider metrics =====
embedding_request_total = Counter(
    "embedding_request_total",
    "Total embedding requests",
    ["model_id"],
)

embedding_error_total = Counter(
    "embedding_error_total",
    "Total embedding errors",
    ["model_id", "error_type"],
)

embedding_latency_ms = Histogram(
    "embedding_latency_ms",
    "Embedding generation latency in milliseconds",
    ["model_id"],
    buckets=(10, 25, 50, 100, 250, 500, 1000, 2500, 5000),
)

# ===== Vector search metrics =====
vector_search_total = Counter(
    "vector_search_total",
    "Total vector index queries grouped by hybrid slot",
    ["slot", "status"],  # slot: listing, development, broad
)

vector_search_latency_ms = Histogram(
    "vector_search_latency_ms",
    "Vector index query latency in milliseconds",
    ["slot"],
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500),
)

vector_search_matches = Histogram(
    "vector_search_matches",
    "Number of matches returned per vector index query",
    ["slot"],
    buckets=(0, 1, 5, 10, 20, 50),
)

# ===== Ranking metrics =====
ranking_candidates_total = Histogram(
    "ranking_candidates_total",
    "Number of deduplicated candidates entering the re-ranker",
    buckets=(0, 1, 5, 10, 20, 50, 70),
)

# ===== Context budget metrics =====
context_tokens = Histogram(
    "context_tokens",
    "Tokens spent on the retrieved context block",
    buckets=(0, 100, 250, 500, 1000, 2000, 3000, 4096),
)

history_lines_dropped_total = Counter(
    "history_lines_dropped_total",
    "Chat history lines dropped to fit the context budget",
)

# ===== Aggregate lookups =====
aggregate_lookup_total = Counter(
    "aggregate_lookup_total",
    "Superlative price lookups against the listing store",
    ["kind", "status"],  # status: found, not_found, error
)

# ===== Chat completion metrics =====
chat_completion_total = Counter(
    "chat_completion_total",
    "Total chat completion calls",
    ["model_id", "status"],
)

chat_completion_retries_total = Counter(
    "chat_completion_retries_total",
    "Chat completion retries after an overload signal",
    ["model_id"],
)

chat_completion_latency_ms = Histogram(
    "chat_completion_latency_ms",
    "Chat completion latency in milliseconds",
    ["model_id"],
    buckets=(100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)

# ===== Service info =====
service_info = Info(
    "realty_rag",
    "Realty RAG chat service information",
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP request metrics for Prometheus.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        endpoint = request.url.path

        with http_request_duration_seconds.labels(
            method=method, endpoint=endpoint
        ).time():
            response = await call_next(request)

        http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status=response.status_code,
        ).inc()

        return response


def setup_metrics(settings: Settings, version: str = "0.1.0") -> None:
    """
    Setup Prometheus metrics collection.

    Args:
        settings: Application settings
        version: Service version reported in the info metric
    """
    logger.info("Setting up Prometheus metrics")

    service_info.info(
        {
            "version": version,
            "environment": settings.env,
            "service_name": settings.otel_service_name,
        }
    )


def get_metrics() -> bytes:
    """
    Get current metrics in Prometheus exposition format.

    Returns:
        Metrics as bytes
    """
    return generate_latest()
