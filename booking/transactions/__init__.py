"""
Atomic transaction handlers.

Transaction handlers encapsulate multi-step writes that must execute
atomically (all succeed or all rollback):

1. SERIALIZABLE isolation level for DB transactions
2. SELECT FOR UPDATE on the staff row to serialize bookings per staff member
3. Complete rollback on any validation or storage failure
4. Side effects (calendar, push) only after commit
5. Exhaustive logging with trace_id for debugging

Transaction handlers:
- BookingTransaction: create, staff-side create and reschedule appointments
"""

from booking.transactions.booking_transaction import BookingTransaction

__all__ = ["BookingTransaction"]
