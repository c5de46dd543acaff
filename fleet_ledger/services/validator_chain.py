"""
Ordered write-path validator chain.

Each validator is a function ``(old, new, ctx)`` that either returns an
optional outcome (warnings plus annotations) or raises a ``LedgerError``.
Validators run inside the caller's transaction after the vehicle row has been
locked, so the first rejection aborts the whole write.
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence

from .odometer import odometer_validator
from .scheduling import detect_scheduling_conflicts
from .vehicle_binding import enforce_vehicle_binding
from .write_context import TripCandidate, ValidationContext, ValidationOutcome

Validator = Callable[[Optional[TripCandidate], TripCandidate, ValidationContext], Optional[ValidationOutcome]]

DEFAULT_CHAIN: tuple[Validator, ...] = (
    enforce_vehicle_binding,
    odometer_validator,
    detect_scheduling_conflicts,
)


def run_validator_chain(
    old: Optional[TripCandidate],
    new: TripCandidate,
    ctx: ValidationContext,
    validators: Sequence[Validator] = DEFAULT_CHAIN,
) -> ValidationOutcome:
    outcome = ValidationOutcome()
    for validator in validators:
        outcome.merge(validator(old, new, ctx))
    return outcome
