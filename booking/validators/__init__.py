"""
Transaction validators.

Business rules checked inside the booking transaction before anything is
written.

Validators:
- validate_service_selection: services exist, are active and offered by the staff member
- validate_start_in_future: no bookings in the past
- validate_within_working_hours: [start, end) inside one working window
- validate_slot_availability: no overlap with appointments or absences
"""

from booking.validators.transaction_validators import (
    ServiceSelection,
    validate_service_selection,
    validate_slot_availability,
    validate_start_in_future,
    validate_within_working_hours,
)

__all__ = [
    "ServiceSelection",
    "validate_service_selection",
    "validate_slot_availability",
    "validate_start_in_future",
    "validate_within_working_hours",
]
