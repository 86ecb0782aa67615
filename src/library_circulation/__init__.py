"""
Library Circulation MCP Server Package.

Key Components:
- models: Pydantic models for data validation and serialization
- database: SQLAlchemy schema, repositories and the audit recorder
- config: Configuration management with pydantic-settings
- observability: Logfire spans and metrics
- tools: MCP tools for circulation and fines
"""

__version__ = "0.1.0"

from . import database

__all__ = [
    "__version__",
    "database",
]
