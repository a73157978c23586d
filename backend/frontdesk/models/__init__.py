# Ontology Models
from frontdesk.models.ontology import (
    RoomType, Room, Guest, Reservation, ReservationStatusHistory, HistoryEntry
)

__all__ = [
    'RoomType', 'Room', 'Guest', 'Reservation', 'ReservationStatusHistory', 'HistoryEntry'
]
