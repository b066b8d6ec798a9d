"""HTTP client infrastructure."""
from infrastructure.http.client import ReportClient, make_http_session

__all__ = [
    'ReportClient',
    'make_http_session',
]
