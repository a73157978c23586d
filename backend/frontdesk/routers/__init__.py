# API Routers
from frontdesk.routers import rooms, guests, reservations, history

__all__ = ['rooms', 'guests', 'reservations', 'history']
