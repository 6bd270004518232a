"""
Registration API package.

Modules:
- config: environment-sourced settings and credential decoding
- db: bounded PostgreSQL connection pool, schema bootstrap and query helpers
- schemas: Pydantic models for the REST API
- exceptions: service errors and the JSON exception handlers
- main: FastAPI application factory and routes
"""

__version__ = "1.0.0"
