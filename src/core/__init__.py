"""
Core components for the ads insights pipeline.

- Configuration (config.py)
- Dimension definitions and value parsing (dimensions.py, insight_values.py)
- Pipeline data shapes and analytics models (schemas.py, analytics_models.py)
- Error taxonomy (errors.py)
- Structured logging and Prometheus metrics (logging_config.py, metrics.py)
"""
