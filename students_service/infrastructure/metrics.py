from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Метрики для HTTP запросов
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)

# Отказы на этапах конвейера запроса
auth_rejections_total = Counter(
    'auth_rejections_total',
    'Requests rejected by authentication or authorization',
    ['kind']
)
request_timeouts_total = Counter('request_timeouts_total', 'Requests that hit the request deadline')
rate_limited_requests_total = Counter('rate_limited_requests_total', 'Requests rejected by the rate limiter')

# Метрики для БД
db_queries_total = Counter('db_queries_total', 'Total repository operations', ['operation'])


def metrics_endpoint():
    """Endpoint для Prometheus метрик"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
