"""
app/connectors package marker.
"""

from app.connectors.analytics_connector import AnalyticsConnector
from app.connectors.base import BaseConnector
from app.connectors.sql_view_connector import QueryPreview, QueryResult, SqlViewExecutor, SqlViewParams

__all__ = [
    "AnalyticsConnector",
    "BaseConnector",
    "QueryPreview",
    "QueryResult",
    "SqlViewExecutor",
    "SqlViewParams",
]
