"""
Booking services.

Services:
- catalog_service: bookable services and capable staff
- availability_service: DB-first availability engine
- appointment_state_machine: status transitions and their side effects
- notification_dispatcher: in-app + push lifecycle messages
- gcal_push_service: fire-and-forget Google Calendar mirror
- push_service: Firebase Cloud Messaging delivery
- appointment_query_service, payment_service, staff_schedule_service,
  notification_service: read side and back-office operations
"""

from booking.services.appointment_state_machine import AppointmentStateMachine
from booking.services.availability_service import AvailabilityService
from booking.services.catalog_service import CatalogService
from booking.services.notification_dispatcher import NotificationDispatcher

__all__ = [
    "AppointmentStateMachine",
    "AvailabilityService",
    "CatalogService",
    "NotificationDispatcher",
]
