"""
Fine settlement tools.

Fines are assessed automatically on late returns; these tools settle them.
Payment is all-or-nothing: a tendered amount must match the fine exactly.
"""

import logging
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as InputValidationError

from ..database.fine_repository import FineRepository
from ..database.session import get_session
from ..errors import LibraryError
from ..observability.decorators import trace_tool
from .responses import error_response, text_response

logger = logging.getLogger(__name__)


class PayFineInput(BaseModel):
    """Input schema for the pay_fine tool."""

    fine_id: int = Field(..., description="Outstanding fine to pay", ge=1)

    staff_id: int = Field(..., description="Staff member taking the payment", ge=1)

    amount: Decimal | None = Field(
        default=None,
        description="Amount tendered; must equal the fine amount when given",
        gt=0,
        decimal_places=2,
        examples=["1.50"],
    )


class WaiveFineInput(BaseModel):
    """Input schema for the waive_fine tool."""

    fine_id: int = Field(..., description="Outstanding fine to waive", ge=1)

    staff_id: int = Field(..., description="Staff member authorizing the waiver", ge=1)


@trace_tool("pay_fine")
async def pay_fine_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the pay_fine tool.

    Args:
        arguments: Raw arguments from MCP tools/call request

    Returns:
        The settled fine, or an error result
    """
    try:
        params = PayFineInput.model_validate(arguments)
    except InputValidationError as e:
        logger.warning("Invalid pay_fine parameters: %s", e)
        return error_response(f"Invalid payment parameters: {e}")

    with get_session() as session:
        try:
            repo = FineRepository(session, params.staff_id)
            fine = repo.pay(params.fine_id, params.amount)
            remaining = repo.outstanding_total(fine.member_id)
        except LibraryError as e:
            logger.info("Payment refused: %s", e)
            return error_response(str(e), e)
        except Exception as e:
            logger.exception("Unexpected error in pay_fine tool")
            return error_response(f"Payment failed: {e!s}")

    return text_response(
        f"Fine {fine.fine_id} of {fine.amount} paid. Member {fine.member_id} "
        f"still owes {remaining}.",
        {"fine": fine.model_dump(mode="json"), "outstanding_total": str(remaining)},
    )


@trace_tool("waive_fine")
async def waive_fine_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the waive_fine tool."""
    try:
        params = WaiveFineInput.model_validate(arguments)
    except InputValidationError as e:
        logger.warning("Invalid waive_fine parameters: %s", e)
        return error_response(f"Invalid waiver parameters: {e}")

    with get_session() as session:
        try:
            fine = FineRepository(session).waive(params.fine_id, params.staff_id)
        except LibraryError as e:
            logger.info("Waiver refused: %s", e)
            return error_response(str(e), e)
        except Exception as e:
            logger.exception("Unexpected error in waive_fine tool")
            return error_response(f"Waiver failed: {e!s}")

    return text_response(
        f"Fine {fine.fine_id} of {fine.amount} waived by staff {params.staff_id}.",
        {"fine": fine.model_dump(mode="json")},
    )


pay_fine = {
    "name": "pay_fine",
    "description": "Pay an outstanding fine in full.",
    "inputSchema": PayFineInput.model_json_schema(),
    "handler": pay_fine_handler,
}

waive_fine = {
    "name": "waive_fine",
    "description": "Waive an outstanding fine. The authorizing staff member is audited.",
    "inputSchema": WaiveFineInput.model_json_schema(),
    "handler": waive_fine_handler,
}
