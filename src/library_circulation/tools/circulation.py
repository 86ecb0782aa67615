"""
Circulation tools for the library circulation server.

One tool per circulation operation:
1. check_out_copy: lend a copy to a member
2. return_copy: close a loan, route the copy, assess late fees
3. reserve_book / cancel_reservation: the per-book reservation queue
4. renew_loan: extend an open loan
5. expire_stale_reservations / fulfill_available_copies: periodic sweeps

Every tool takes the acting ``staff_id``, which is recorded on the audit
entries the operation produces. Business refusals (copy unavailable, member
ineligible, ...) come back as ``isError`` results naming the error class.
"""

import logging
from datetime import datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, Field
from pydantic import ValidationError as InputValidationError

from ..database.book_repository import BookRepository
from ..database.circulation_repository import CirculationRepository
from ..database.session import get_session
from ..errors import LibraryError
from ..observability.decorators import trace_tool
from .responses import error_response, text_response

logger = logging.getLogger(__name__)


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware timestamp to naive local time, as stored in the database."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


LocalTimestamp = Annotated[datetime, AfterValidator(to_local_naive)]


class StaffAction(BaseModel):
    """Fields shared by every circulation tool."""

    staff_id: int = Field(
        ...,
        description="Staff member performing the action; recorded in the audit log",
        ge=1,
        examples=[1],
    )


# =============================================================================
# CHECK OUT
# =============================================================================


class CheckOutCopyInput(StaffAction):
    """Input schema for the check_out_copy tool."""

    copy_id: int = Field(..., description="Physical copy to lend", ge=1, examples=[7])

    member_id: int = Field(..., description="Borrowing member", ge=1, examples=[3])

    loan_period_days: int | None = Field(
        default=None,
        description="Days until due; the library's standard period when omitted",
        ge=1,
        le=365,
    )


@trace_tool("check_out_copy")
async def check_out_copy_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the check_out_copy tool.

    Args:
        arguments: Raw arguments from MCP tools/call request

    Returns:
        The new loan, or an error result
    """
    try:
        params = CheckOutCopyInput.model_validate(arguments)
    except InputValidationError as e:
        logger.warning("Invalid check_out_copy parameters: %s", e)
        return error_response(f"Invalid checkout parameters: {e}")

    with get_session() as session:
        try:
            repo = CirculationRepository(session, params.staff_id)
            loan = repo.check_out(
                params.copy_id, params.member_id, loan_period_days=params.loan_period_days
            )
        except LibraryError as e:
            logger.info("Checkout refused: %s", e)
            return error_response(str(e), e)
        except Exception as e:
            logger.exception("Unexpected error in check_out_copy tool")
            return error_response(f"Checkout failed: {e!s}")

    message = (
        f"Copy {loan.copy_id} checked out to member {loan.member_id}. "
        f"Due {loan.due_date.strftime('%B %d, %Y')} ({loan.loan_period_days}-day loan)."
    )
    return text_response(message, {"loan": loan.model_dump(mode="json")})


# =============================================================================
# RETURN
# =============================================================================


class ReturnCopyInput(StaffAction):
    """Input schema for the return_copy tool."""

    loan_id: int = Field(..., description="Open loan to close", ge=1, examples=[12])

    return_timestamp: LocalTimestamp | None = Field(
        default=None,
        description="When the copy came back; now when omitted",
        examples=["2024-03-20T16:45:00"],
    )


@trace_tool("return_copy")
async def return_copy_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the return_copy tool.

    The response reports where the copy went (shelf or a waiting
    reservation) and any late fee charged.
    """
    try:
        params = ReturnCopyInput.model_validate(arguments)
    except InputValidationError as e:
        logger.warning("Invalid return_copy parameters: %s", e)
        return error_response(f"Invalid return parameters: {e}")

    with get_session() as session:
        try:
            repo = CirculationRepository(session, params.staff_id)
            loan = repo.return_copy(params.loan_id, params.return_timestamp)
            copy = BookRepository(session).get_copy(loan.copy_id)
            claim = repo.get_claim(loan.copy_id)
            fine = repo.fines.get_late_fee(loan.loan_id)
        except LibraryError as e:
            logger.info("Return refused: %s", e)
            return error_response(str(e), e)
        except Exception as e:
            logger.exception("Unexpected error in return_copy tool")
            return error_response(f"Return failed: {e!s}")

    message = f"Loan {loan.loan_id} closed. Copy {copy.copy_id} is now {copy.status.value}"
    if claim is not None:
        message += f", held for reservation {claim.reservation_id}"
    message += "."
    if fine is not None:
        message += f" Late fee: {fine.amount} ({loan.days_late()} days late)."

    return text_response(
        message,
        {
            "loan": loan.model_dump(mode="json"),
            "copy_status": copy.status.value,
            "reservation": claim.model_dump(mode="json") if claim else None,
            "fine": fine.model_dump(mode="json") if fine else None,
        },
    )


# =============================================================================
# RENEW
# =============================================================================


class RenewLoanInput(StaffAction):
    """Input schema for the renew_loan tool."""

    loan_id: int = Field(..., description="Open loan to extend", ge=1)

    extension_days: int | None = Field(
        default=None,
        description="Days to add to the due date; the standard renewal when omitted",
        ge=1,
        le=365,
    )


@trace_tool("renew_loan")
async def renew_loan_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the renew_loan tool."""
    try:
        params = RenewLoanInput.model_validate(arguments)
    except InputValidationError as e:
        logger.warning("Invalid renew_loan parameters: %s", e)
        return error_response(f"Invalid renewal parameters: {e}")

    with get_session() as session:
        try:
            repo = CirculationRepository(session, params.staff_id)
            loan = repo.renew_loan(params.loan_id, extension_days=params.extension_days)
        except LibraryError as e:
            logger.info("Renewal refused: %s", e)
            return error_response(str(e), e)
        except Exception as e:
            logger.exception("Unexpected error in renew_loan tool")
            return error_response(f"Renewal failed: {e!s}")

    message = (
        f"Loan {loan.loan_id} renewed; now due {loan.due_date.strftime('%B %d, %Y')} "
        f"(renewal {loan.renewal_count})."
    )
    return text_response(message, {"loan": loan.model_dump(mode="json")})


# =============================================================================
# RESERVATIONS
# =============================================================================


class ReserveBookInput(StaffAction):
    """Input schema for the reserve_book tool."""

    book_id: int = Field(..., description="Book (not copy) to reserve", ge=1)

    member_id: int = Field(..., description="Reserving member", ge=1)

    reservation_window_days: int | None = Field(
        default=None,
        description="Days the reservation stays valid while pending",
        ge=1,
        le=365,
    )


@trace_tool("reserve_book")
async def reserve_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """
    Handler for the reserve_book tool.

    The member joins the book's queue; the response gives their position.
    """
    try:
        params = ReserveBookInput.model_validate(arguments)
    except InputValidationError as e:
        logger.warning("Invalid reserve_book parameters: %s", e)
        return error_response(f"Invalid reservation parameters: {e}")

    with get_session() as session:
        try:
            repo = CirculationRepository(session, params.staff_id)
            reservation = repo.reserve(
                params.book_id,
                params.member_id,
                reservation_window_days=params.reservation_window_days,
            )
            queue = repo.get_reservation_queue(params.book_id)
        except LibraryError as e:
            logger.info("Reservation refused: %s", e)
            return error_response(str(e), e)
        except Exception as e:
            logger.exception("Unexpected error in reserve_book tool")
            return error_response(f"Reservation failed: {e!s}")

    position = next(
        (i for i, r in enumerate(queue, start=1) if r.reservation_id == reservation.reservation_id),
        None,
    )
    message = f"Reservation {reservation.reservation_id} placed for book {reservation.book_id}. "
    if position is None:
        # Fulfilled by a concurrent sweep before the queue was read
        message += "It is no longer queued; "
    else:
        message += f"Queue position {position} of {len(queue)}; "
    message += f"expires {reservation.expiration_date.strftime('%B %d, %Y')}."
    return text_response(
        message,
        {"reservation": reservation.model_dump(mode="json"), "queue_position": position},
    )


class CancelReservationInput(StaffAction):
    """Input schema for the cancel_reservation tool."""

    reservation_id: int = Field(..., description="Pending reservation to cancel", ge=1)


@trace_tool("cancel_reservation")
async def cancel_reservation_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the cancel_reservation tool."""
    try:
        params = CancelReservationInput.model_validate(arguments)
    except InputValidationError as e:
        logger.warning("Invalid cancel_reservation parameters: %s", e)
        return error_response(f"Invalid cancellation parameters: {e}")

    with get_session() as session:
        try:
            repo = CirculationRepository(session, params.staff_id)
            reservation = repo.cancel_reservation(params.reservation_id)
        except LibraryError as e:
            logger.info("Cancellation refused: %s", e)
            return error_response(str(e), e)
        except Exception as e:
            logger.exception("Unexpected error in cancel_reservation tool")
            return error_response(f"Cancellation failed: {e!s}")

    return text_response(
        f"Reservation {reservation.reservation_id} cancelled.",
        {"reservation": reservation.model_dump(mode="json")},
    )


# =============================================================================
# SWEEPS
# =============================================================================


class ExpireStaleReservationsInput(StaffAction):
    """Input schema for the expire_stale_reservations tool."""

    now: LocalTimestamp | None = Field(
        default=None, description="Reference time for the sweep; now when omitted"
    )


@trace_tool("expire_stale_reservations")
async def expire_stale_reservations_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the expire_stale_reservations tool."""
    try:
        params = ExpireStaleReservationsInput.model_validate(arguments)
    except InputValidationError as e:
        logger.warning("Invalid expire_stale_reservations parameters: %s", e)
        return error_response(f"Invalid sweep parameters: {e}")

    with get_session() as session:
        try:
            repo = CirculationRepository(session, params.staff_id)
            result = repo.expire_stale_pending(params.now)
        except LibraryError as e:
            logger.info("Expiry sweep failed: %s", e)
            return error_response(str(e), e)
        except Exception as e:
            logger.exception("Unexpected error in expire_stale_reservations tool")
            return error_response(f"Expiry sweep failed: {e!s}")

    message = (
        f"Expired {result.count} reservations; released {len(result.released_copies)} copies."
    )
    if result.skipped:
        message += f" Skipped {len(result.skipped)} changed concurrently."
    return text_response(message, {"sweep": result.model_dump(mode="json")})


class FulfillAvailableCopiesInput(StaffAction):
    """Input schema for the fulfill_available_copies tool."""


@trace_tool("fulfill_available_copies")
async def fulfill_available_copies_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Handler for the fulfill_available_copies tool."""
    try:
        params = FulfillAvailableCopiesInput.model_validate(arguments)
    except InputValidationError as e:
        logger.warning("Invalid fulfill_available_copies parameters: %s", e)
        return error_response(f"Invalid sweep parameters: {e}")

    with get_session() as session:
        try:
            repo = CirculationRepository(session, params.staff_id)
            result = repo.fulfill_available_copies()
        except LibraryError as e:
            logger.info("Fulfillment sweep failed: %s", e)
            return error_response(str(e), e)
        except Exception as e:
            logger.exception("Unexpected error in fulfill_available_copies tool")
            return error_response(f"Fulfillment sweep failed: {e!s}")

    return text_response(
        f"Fulfilled {result.count} reservations with available copies.",
        {"sweep": result.model_dump(mode="json")},
    )


# =============================================================================
# TOOL REGISTRATION
# =============================================================================

check_out_copy = {
    "name": "check_out_copy",
    "description": (
        "Check out a physical copy to a member. The copy must be Available, or Reserved "
        "for this member. The member must be Active and within the fine limit."
    ),
    "inputSchema": CheckOutCopyInput.model_json_schema(),
    "handler": check_out_copy_handler,
}

return_copy = {
    "name": "return_copy",
    "description": (
        "Return a loaned copy. The copy goes to the oldest pending reservation for its "
        "book, or back to Available. Late returns are fined per day late."
    ),
    "inputSchema": ReturnCopyInput.model_json_schema(),
    "handler": return_copy_handler,
}

renew_loan = {
    "name": "renew_loan",
    "description": (
        "Extend the due date of an open loan. Overdue loans, loans at the renewal limit "
        "and loans of reserved books cannot be renewed."
    ),
    "inputSchema": RenewLoanInput.model_json_schema(),
    "handler": renew_loan_handler,
}

reserve_book = {
    "name": "reserve_book",
    "description": (
        "Reserve a book for a member. Reservations are fulfilled first come, first "
        "served when a copy is returned or found idle on the shelf."
    ),
    "inputSchema": ReserveBookInput.model_json_schema(),
    "handler": reserve_book_handler,
}

cancel_reservation = {
    "name": "cancel_reservation",
    "description": "Cancel a reservation that is still pending.",
    "inputSchema": CancelReservationInput.model_json_schema(),
    "handler": cancel_reservation_handler,
}

expire_stale_reservations = {
    "name": "expire_stale_reservations",
    "description": (
        "Expire pending reservations past their expiration date and fulfilled "
        "reservations not picked up in time, releasing their copies."
    ),
    "inputSchema": ExpireStaleReservationsInput.model_json_schema(),
    "handler": expire_stale_reservations_handler,
}

fulfill_available_copies = {
    "name": "fulfill_available_copies",
    "description": "Hold every idle copy for the oldest pending reservation of its book.",
    "inputSchema": FulfillAvailableCopiesInput.model_json_schema(),
    "handler": fulfill_available_copies_handler,
}
