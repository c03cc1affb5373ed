"""
Pipeline services.

Collector -> validator -> transformer -> normalized store -> aggregation engine
-> analytics cache, plus report redistribution and batch orchestration.
"""
