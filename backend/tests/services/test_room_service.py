"""
Tests for frontdesk/services/room_service.py
Covers: get_room, get_rooms, update_room, get_room_status_summary,
        request_maintenance, request_cleaning, clear_override, terminate
"""
import pytest

from frontdesk.exceptions import FrontDeskError, InvalidTransition, NotFound
from frontdesk.models.events import EventType
from frontdesk.models.ontology import (
    Guest, GuestStatus, HistoryAction, HistoryEntry, Room, RoomStatus, RoomType,
)
from frontdesk.models.schemas import GuestCreate, RoomUpdate
from frontdesk.services.guest_service import GuestService
from frontdesk.services.room_service import CLEANING_SOURCES, MAINTENANCE_SOURCES, RoomService


def _set_status(db, room, status):
    room.status = status
    db.commit()


def _entries(db, room_id):
    return db.query(HistoryEntry).filter(HistoryEntry.room_id == room_id).order_by(HistoryEntry.id).all()


class TestQueries:

    def test_get_room_not_found(self, db_session, publisher):
        with pytest.raises(NotFound):
            RoomService(db_session, event_publisher=publisher).get_room(9999)

    def test_get_rooms_scoped_by_hotel(self, db_session, sample_room, second_room, other_hotel_room, publisher):
        svc = RoomService(db_session, event_publisher=publisher)
        rooms = svc.get_rooms(sample_room.hotel_id)
        assert [r.number for r in rooms] == ["101", "102"]
        assert [r.id for r in svc.get_rooms(other_hotel_room.hotel_id)] == [other_hotel_room.id]

    def test_get_rooms_filter_status(self, db_session, sample_room, second_room, publisher):
        _set_status(db_session, second_room, RoomStatus.CLEANING)
        rooms = RoomService(db_session, event_publisher=publisher).get_rooms(
            sample_room.hotel_id, status=RoomStatus.CLEANING
        )
        assert [r.id for r in rooms] == [second_room.id]

    def test_status_summary(self, db_session, sample_room, second_room, publisher):
        _set_status(db_session, sample_room, RoomStatus.OCCUPIED)
        summary = RoomService(db_session, event_publisher=publisher).get_room_status_summary(sample_room.hotel_id)
        assert summary["total"] == 2
        assert summary["by_status"]["occupied"] == 1
        assert summary["by_status"]["available"] == 1
        assert summary["occupancy_rate"] == 0.5

    def test_status_summary_empty_hotel(self, db_session, publisher):
        summary = RoomService(db_session, event_publisher=publisher).get_room_status_summary(42)
        assert summary["total"] == 0
        assert summary["occupancy_rate"] == 0.0


class TestUpdateRoom:

    def test_update_descriptive_fields(self, db_session, sample_room, publisher):
        room = RoomService(db_session, event_publisher=publisher).update_room(
            sample_room.id, RoomUpdate(notes="靠近电梯", capacity=3)
        )
        assert room.notes == "靠近电梯"
        assert room.capacity == 3
        assert room.status == RoomStatus.AVAILABLE

    def test_status_is_not_updatable(self):
        with pytest.raises(ValueError):
            RoomUpdate(status="occupied")

    def test_room_type_from_other_hotel(self, db_session, sample_room, publisher):
        foreign = RoomType(hotel_id=99, name="套房")
        db_session.add(foreign)
        db_session.commit()
        with pytest.raises(NotFound):
            RoomService(db_session, event_publisher=publisher).update_room(
                sample_room.id, RoomUpdate(room_type_id=foreign.id)
            )

    @pytest.mark.parametrize("field", ["floor", "capacity"])
    def test_explicit_null_rejected(self, db_session, sample_room, publisher, field):
        with pytest.raises(FrontDeskError):
            RoomService(db_session, event_publisher=publisher).update_room(
                sample_room.id, RoomUpdate(**{field: None})
            )
        db_session.refresh(sample_room)
        assert sample_room.floor == 1
        assert sample_room.capacity == 2

    def test_number_is_not_updatable(self):
        with pytest.raises(ValueError):
            RoomUpdate(number="102")


class TestOverrides:

    @pytest.mark.parametrize("source", sorted(MAINTENANCE_SOURCES - {RoomStatus.MAINTENANCE}))
    def test_maintenance_allowed(self, db_session, sample_room, publisher, source):
        _set_status(db_session, sample_room, source)
        room = RoomService(db_session, event_publisher=publisher).request_maintenance(
            sample_room.id, actor="housekeeping", reason="空调故障"
        )
        assert room.status == RoomStatus.MAINTENANCE
        assert room.last_maintenance is not None
        entry = _entries(db_session, sample_room.id)[-1]
        assert entry.action == HistoryAction.STATUS_CHANGE
        assert entry.previous_state == {"room_status": source.value}
        assert entry.new_state == {"room_status": "maintenance"}
        assert entry.performed_by == "housekeeping"

        event = publisher.of_type(EventType.ROOM_STATUS_CHANGED)[-1]
        assert event.data["is_override"] is True

    @pytest.mark.parametrize("source", sorted(set(RoomStatus) - MAINTENANCE_SOURCES))
    def test_maintenance_rejected(self, db_session, sample_room, publisher, source):
        _set_status(db_session, sample_room, source)
        with pytest.raises(InvalidTransition) as exc_info:
            RoomService(db_session, event_publisher=publisher).request_maintenance(sample_room.id)
        assert exc_info.value.current_status == source.value
        db_session.refresh(sample_room)
        assert sample_room.status == source
        assert _entries(db_session, sample_room.id) == []
        assert publisher.events == []

    @pytest.mark.parametrize("source", sorted(CLEANING_SOURCES - {RoomStatus.CLEANING}))
    def test_cleaning_allowed(self, db_session, sample_room, publisher, source):
        _set_status(db_session, sample_room, source)
        room = RoomService(db_session, event_publisher=publisher).request_cleaning(sample_room.id)
        assert room.status == RoomStatus.CLEANING

    @pytest.mark.parametrize("source", [RoomStatus.DEOCCUPIED, RoomStatus.PARTIALLY_DEOCCUPIED])
    def test_cleaning_rejected(self, db_session, sample_room, publisher, source):
        _set_status(db_session, sample_room, source)
        with pytest.raises(InvalidTransition):
            RoomService(db_session, event_publisher=publisher).request_cleaning(sample_room.id)

    def test_repeat_request_is_noop(self, db_session, sample_room, publisher):
        svc = RoomService(db_session, event_publisher=publisher)
        svc.request_maintenance(sample_room.id)
        svc.request_maintenance(sample_room.id)
        assert len(_entries(db_session, sample_room.id)) == 1
        assert len(publisher.events) == 1

    def test_clear_cleaning_stamps_last_cleaned(self, db_session, sample_room, publisher):
        svc = RoomService(db_session, event_publisher=publisher)
        svc.request_cleaning(sample_room.id)
        room = svc.clear_override(sample_room.id, actor="housekeeping")
        assert room.status == RoomStatus.AVAILABLE
        assert room.last_cleaned is not None
        entry = _entries(db_session, sample_room.id)[-1]
        assert entry.previous_state == {"room_status": "cleaning"}
        assert entry.new_state == {"room_status": "available"}

    def test_clear_when_available_is_noop(self, db_session, sample_room, publisher):
        room = RoomService(db_session, event_publisher=publisher).clear_override(sample_room.id)
        assert room.status == RoomStatus.AVAILABLE
        assert _entries(db_session, sample_room.id) == []

    def test_clear_derived_status_rejected(self, db_session, sample_room, publisher):
        _set_status(db_session, sample_room, RoomStatus.OCCUPIED)
        with pytest.raises(InvalidTransition):
            RoomService(db_session, event_publisher=publisher).clear_override(sample_room.id)

    def test_override_does_not_touch_guests(self, db_session, sample_room, make_guest, publisher):
        guest = make_guest("A", sample_room, GuestStatus.BOOKED)
        RoomService(db_session, event_publisher=publisher).request_cleaning(sample_room.id)
        db_session.refresh(guest)
        assert guest.status == GuestStatus.BOOKED
        assert db_session.get(Room, sample_room.id).assigned_guests == [guest.id]


class TestTerminate:

    def _check_in_party(self, db, room, publisher, names=("A", "B")):
        svc = GuestService(db, event_publisher=publisher)
        return [
            svc.create_guest(GuestCreate(
                hotel_id=room.hotel_id, name=name, room_id=room.id,
                status=GuestStatus.CHECKED_IN, keep_open=True,
            ))
            for name in names
        ]

    def test_removes_guests_and_resets_room(self, db_session, sample_room, publisher):
        party = self._check_in_party(db_session, sample_room, publisher)
        db_session.refresh(sample_room)
        assert sample_room.status == RoomStatus.OCCUPIED
        assert sample_room.keep_open is True

        room = RoomService(db_session, event_publisher=publisher).terminate(
            sample_room.id, actor="front-desk", reason="提前离店"
        )
        assert room.status == RoomStatus.AVAILABLE
        assert room.keep_open is False
        assert room.assigned_guests == []
        assert db_session.query(Guest).filter(Guest.id.in_([g.id for g in party])).count() == 0

        entries = _entries(db_session, sample_room.id)
        removed = [e for e in entries if e.action == HistoryAction.GUEST_REMOVED]
        assert sorted(e.previous_state["guest_id"] for e in removed) == sorted(g.id for g in party)
        assert all(e.performed_by == "front-desk" for e in removed)
        last_change = [e for e in entries if e.action == HistoryAction.STATUS_CHANGE][-1]
        assert last_change.new_state["room_status"] == "available"
        assert last_change.new_state["keep_open"] is False
        assert len(publisher.of_type(EventType.GUEST_DELETED)) == 2

    def test_resets_sticky_room(self, db_session, sample_room, publisher):
        party = self._check_in_party(db_session, sample_room, publisher, names=("A",))
        svc = RoomService(db_session, event_publisher=publisher)
        svc.request_cleaning(sample_room.id)

        room = svc.terminate(sample_room.id, actor="housekeeping")
        assert room.status == RoomStatus.AVAILABLE
        assert room.keep_open is False
        assert room.assigned_guests == []
        assert db_session.get(Guest, party[0].id) is None

        last = _entries(db_session, sample_room.id)[-1]
        assert last.action == HistoryAction.STATUS_CHANGE
        assert last.previous_state == {"room_status": "cleaning", "keep_open": True}
        assert last.new_state == {"room_status": "available", "keep_open": False}
        event = publisher.of_type(EventType.ROOM_STATUS_CHANGED)[-1]
        assert event.data["old_status"] == "cleaning"
        assert event.data["old_keep_open"] is True
        assert event.data["new_keep_open"] is False

    def test_empty_available_room_is_noop(self, db_session, sample_room, publisher):
        room = RoomService(db_session, event_publisher=publisher).terminate(sample_room.id)
        assert room.status == RoomStatus.AVAILABLE
        assert _entries(db_session, sample_room.id) == []
        assert publisher.events == []

    def test_leaves_other_rooms_alone(self, db_session, sample_room, second_room, publisher):
        kept = self._check_in_party(db_session, second_room, publisher, names=("C",))
        self._check_in_party(db_session, sample_room, publisher, names=("A",))
        RoomService(db_session, event_publisher=publisher).terminate(sample_room.id)

        db_session.refresh(second_room)
        assert second_room.status == RoomStatus.OCCUPIED
        assert second_room.assigned_guests == [kept[0].id]

    def test_not_found(self, db_session, publisher):
        with pytest.raises(NotFound):
            RoomService(db_session, event_publisher=publisher).terminate(9999)
