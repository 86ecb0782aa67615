"""Decorators and context managers for tracing library operations."""

import functools
from collections.abc import Callable
from contextlib import contextmanager
from datetime import datetime

import logfire


def trace_tool(tool_name: str):
    """Decorator to trace MCP tool execution."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(arguments: dict, *args, **kwargs):
            with logfire.span(f"tool.execution.{tool_name}", tool_name=tool_name) as span:
                start_time = datetime.now()
                _add_attributes(span, "input", arguments)

                result = await func(arguments, *args, **kwargs)

                span.set_attribute("tool.success", not result.get("isError", False))
                span.set_attribute(
                    "tool.duration_ms", (datetime.now() - start_time).total_seconds() * 1000
                )
                return result

        return wrapper

    return decorator


def trace_operation(operation: str):
    """Decorator to trace a repository operation; the error class is recorded on failure."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with logfire.span(f"circulation.{operation}", operation=operation) as span:
                _add_attributes(span, "input", kwargs)
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    span.set_attribute("operation.error", type(e).__name__)
                    raise

        return wrapper

    return decorator


@contextmanager
def trace_repository_operation(repository: str, operation: str, table: str | None = None):
    """Context manager for tracing repository operations."""
    with logfire.span(
        f"db.{repository}.{operation}",
        db_repository=repository,
        db_operation=operation,
        db_table=table or repository,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("db.error", str(e))
            raise


def _add_attributes(span, prefix: str, data: dict) -> None:
    for key, value in data.items():
        if isinstance(value, str | int | float | bool):
            span.set_attribute(f"{prefix}.{key}", value)
