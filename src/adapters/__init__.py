from .meta_insights_client import InsightsFetch, MetaInsightsClient

__all__ = ["InsightsFetch", "MetaInsightsClient"]
