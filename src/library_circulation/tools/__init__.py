"""
MCP tools for the library circulation server.

Each tool is a dictionary with its name, description, JSON input schema and
async handler. Handlers validate their arguments with pydantic, run one
repository operation in one session, and report business refusals as
``isError`` results instead of raising.
"""

from .circulation import (
    cancel_reservation,
    check_out_copy,
    expire_stale_reservations,
    fulfill_available_copies,
    renew_loan,
    reserve_book,
    return_copy,
)
from .fines import pay_fine, waive_fine

all_tools = [
    check_out_copy,
    return_copy,
    renew_loan,
    reserve_book,
    cancel_reservation,
    expire_stale_reservations,
    fulfill_available_copies,
    pay_fine,
    waive_fine,
]

__all__ = [
    "all_tools",
    "cancel_reservation",
    "check_out_copy",
    "expire_stale_reservations",
    "fulfill_available_copies",
    "pay_fine",
    "renew_loan",
    "reserve_book",
    "return_copy",
    "waive_fine",
]
