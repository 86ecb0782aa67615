"""Circulation metrics."""

import logfire

circulation_events = logfire.metric_counter(
    "library.circulation.events", description="Circulation events by type"
)

fines_assessed = logfire.metric_counter(
    "library.fines.assessed", unit="cents", description="Late fees assessed on return"
)

sweep_records = logfire.metric_counter(
    "library.sweeps.records", description="Records processed by periodic sweeps"
)


def record_circulation_event(event_type: str) -> None:
    """Record a checkout, return, reservation or renewal."""
    circulation_events.add(1, {"event_type": event_type})


def record_fine_assessed(amount_cents: int) -> None:
    fines_assessed.add(amount_cents)


def record_sweep(sweep: str, processed: int, skipped: int) -> None:
    if processed:
        sweep_records.add(processed, {"sweep": sweep, "outcome": "processed"})
    if skipped:
        sweep_records.add(skipped, {"sweep": sweep, "outcome": "skipped"})
