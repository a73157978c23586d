# Services
from frontdesk.services.event_bus import Event, EventBus, event_bus
from frontdesk.services.history_service import HistoryService
from frontdesk.services.reconciliation import (
    GuestSnapshot, ReconciliationEngine, derive_keep_open, derive_room_status,
)
from frontdesk.services.reservation_service import ReservationService, derive_reservation_status
from frontdesk.services.room_service import RoomService
from frontdesk.services.guest_service import GuestService

__all__ = [
    'Event', 'EventBus', 'event_bus',
    'HistoryService',
    'GuestSnapshot', 'ReconciliationEngine', 'derive_keep_open', 'derive_room_status',
    'ReservationService', 'derive_reservation_status',
    'RoomService',
    'GuestService',
]
