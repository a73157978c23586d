"""
Tests for frontdesk/services/reservation_service.py
Covers: derive_reservation_status, recalculate, recalculate_for_room,
        recalculate_for_guest, create_reservation, update_reservation,
        delete_reservation, get_reservations
"""
from datetime import date

import pytest

from frontdesk.exceptions import FrontDeskError, NotFound
from frontdesk.models.events import EventType
from frontdesk.models.ontology import (
    GuestStatus, HistoryAction, HistoryEntry, Reservation, ReservationLifecycle,
    ReservationStatus, ReservationStatusHistory, Room, RoomStatus,
)
from frontdesk.models.schemas import GuestCreate, ReservationCreate, ReservationUpdate
from frontdesk.services.guest_service import GuestService
from frontdesk.services.reservation_service import ReservationService, derive_reservation_status


@pytest.fixture
def guests(db_session, publisher):
    svc = GuestService(db_session, event_publisher=publisher)
    return svc, [svc.create_guest(GuestCreate(hotel_id=1, name=n)) for n in ("A", "B")]


@pytest.fixture
def reservation(db_session, sample_room, guests, publisher):
    _, party = guests
    return ReservationService(db_session, event_publisher=publisher).create_reservation(
        ReservationCreate(
            hotel_id=1, room_id=sample_room.id, guest_ids=[g.id for g in party],
            check_in_date=date(2024, 5, 1), check_out_date=date(2024, 5, 3),
            notes="蜜月",
        )
    )


class TestDeriveReservationStatus:

    def test_all_checked_out(self):
        statuses = [GuestStatus.CHECKED_OUT, GuestStatus.CHECKED_OUT]
        assert derive_reservation_status(statuses) == ReservationStatus.COMPLETED

    def test_mixed_is_active(self):
        statuses = [GuestStatus.CHECKED_OUT, GuestStatus.CHECKED_IN]
        assert derive_reservation_status(statuses) == ReservationStatus.ACTIVE

    def test_empty_party_keeps_status(self):
        assert derive_reservation_status([]) is None


class TestCreateReservation:

    def test_assigns_party_and_reconciles(self, db_session, sample_room, guests, reservation, publisher):
        _, party = guests
        room = db_session.get(Room, sample_room.id)
        assert room.status == RoomStatus.RESERVED
        assert sorted(room.assigned_guests) == sorted(g.id for g in party)
        for guest in party:
            db_session.refresh(guest)
            assert guest.room_id == sample_room.id
            assert guest.reservation_start.date() == date(2024, 5, 1)

        assert reservation.confirmation_number.startswith("CONF-")
        assert reservation.status == ReservationStatus.ACTIVE
        assert [h.reason for h in reservation.status_history] == ["Reservation created"]

        created = db_session.query(HistoryEntry).filter(
            HistoryEntry.action == HistoryAction.RESERVATION_CREATED
        ).one()
        assert created.reservation_id == reservation.id
        assert created.new_state["guest_ids"] == [g.id for g in party]
        assert len(publisher.of_type(EventType.RESERVATION_CREATED)) == 1

    def test_unknown_guest(self, db_session, sample_room, publisher):
        with pytest.raises(NotFound):
            ReservationService(db_session, event_publisher=publisher).create_reservation(
                ReservationCreate(hotel_id=1, room_id=sample_room.id, guest_ids=[9999])
            )
        assert db_session.query(Reservation).count() == 0

    def test_room_in_other_hotel(self, db_session, other_hotel_room, guests, publisher):
        _, party = guests
        with pytest.raises(NotFound):
            ReservationService(db_session, event_publisher=publisher).create_reservation(
                ReservationCreate(hotel_id=1, room_id=other_hotel_room.id, guest_ids=[party[0].id])
            )

    def test_empty_party_rejected(self):
        with pytest.raises(ValueError):
            ReservationCreate(hotel_id=1, room_id=1, guest_ids=[])


class TestRecalculate:

    def test_completes_when_all_checked_out(self, db_session, guests, reservation, publisher):
        svc, party = guests
        for guest in party:
            svc.check_in(guest.id)
        svc.check_out(party[0].id)
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.ACTIVE

        svc.check_out(party[1].id)
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.COMPLETED
        assert reservation.reservation_status == ReservationLifecycle.COMPLETED
        assert [h.status for h in reservation.status_history] == ["active", "completed"]

        events = publisher.of_type(EventType.RESERVATION_STATUS_CHANGED)
        assert events[-1].data["new_status"] == "completed"

    def test_never_reverts_to_active(self, db_session, guests, reservation, publisher):
        svc, party = guests
        for guest in party:
            svc.check_in(guest.id)
            svc.check_out(guest.id)
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.COMPLETED

        from frontdesk.models.schemas import GuestUpdate
        svc.update_guest(party[0].id, GuestUpdate(status=GuestStatus.CHECKED_IN))
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.COMPLETED
        assert len(reservation.status_history) == 2

    def test_idempotent(self, db_session, reservation, publisher):
        svc = ReservationService(db_session, event_publisher=publisher)
        svc.recalculate(reservation.id)
        svc.recalculate(reservation.id)
        assert db_session.query(ReservationStatusHistory).count() == 1

    def test_missing_guests_excluded(self, db_session, guests, reservation, publisher):
        svc, party = guests
        svc.check_in(party[0].id)
        svc.check_out(party[0].id)
        reservation.guest_ids = [party[0].id, 9999]
        db_session.commit()

        result = ReservationService(db_session, event_publisher=publisher).recalculate(reservation.id)
        assert result.status == ReservationStatus.COMPLETED

    def test_staff_terminal_status_preserved(self, db_session, guests, reservation, publisher):
        svc, party = guests
        ReservationService(db_session, event_publisher=publisher).update_reservation(
            reservation.id, ReservationUpdate(reservation_status=ReservationLifecycle.TERMINATED)
        )
        for guest in party:
            svc.check_in(guest.id)
            svc.check_out(guest.id)
        db_session.refresh(reservation)
        assert reservation.status == ReservationStatus.COMPLETED
        assert reservation.reservation_status == ReservationLifecycle.TERMINATED

    def test_not_found(self, db_session, publisher):
        with pytest.raises(NotFound):
            ReservationService(db_session, event_publisher=publisher).recalculate(9999)

    def test_recalculate_for_room(self, db_session, sample_room, reservation, publisher):
        results = ReservationService(db_session, event_publisher=publisher).recalculate_for_room(sample_room.id)
        assert [r.id for r in results] == [reservation.id]


class TestUpdateReservation:

    def test_edit_records_changed_fields(self, db_session, reservation, publisher):
        ReservationService(db_session, event_publisher=publisher).update_reservation(
            reservation.id, ReservationUpdate(notes="蜜月", special_requests="高楼层", performed_by="front-desk")
        )
        edited = db_session.query(HistoryEntry).filter(
            HistoryEntry.action == HistoryAction.RESERVATION_EDITED
        ).one()
        assert edited.new_state == {"special_requests": "高楼层"}
        assert edited.previous_state == {"special_requests": ""}
        assert edited.performed_by == "front-desk"

    def test_cancel(self, db_session, reservation, publisher):
        result = ReservationService(db_session, event_publisher=publisher).update_reservation(
            reservation.id,
            ReservationUpdate(
                reservation_status=ReservationLifecycle.CANCELLED,
                cancellation_reason="行程变更",
                performed_by="front-desk",
            ),
        )
        assert result.reservation_status == ReservationLifecycle.CANCELLED
        assert result.status == ReservationStatus.ACTIVE
        assert result.cancelled_at is not None
        assert result.cancelled_by == "front-desk"
        assert result.cancellation_reason == "行程变更"
        assert result.status_history[-1].status == "cancelled"

        entry = db_session.query(HistoryEntry).filter(
            HistoryEntry.action == HistoryAction.CANCELLATION
        ).one()
        assert entry.new_state == {"reservation_status": "cancelled"}
        event = publisher.of_type(EventType.RESERVATION_STATUS_CHANGED)[-1]
        assert event.data["field_name"] == "reservation_status"

    def test_inverted_dates_rejected(self):
        with pytest.raises(ValueError):
            ReservationUpdate(check_in_date=date(2024, 5, 3), check_out_date=date(2024, 5, 1))

    def test_check_out_before_stored_check_in_rejected(self, db_session, reservation, publisher):
        svc = ReservationService(db_session, event_publisher=publisher)
        with pytest.raises(FrontDeskError):
            svc.update_reservation(reservation.id, ReservationUpdate(check_out_date=date(2024, 4, 30)))
        db_session.refresh(reservation)
        assert reservation.check_out_date == date(2024, 5, 3)
        assert db_session.query(HistoryEntry).filter(
            HistoryEntry.action == HistoryAction.RESERVATION_EDITED
        ).count() == 0

    def test_no_show(self, db_session, reservation, publisher):
        result = ReservationService(db_session, event_publisher=publisher).update_reservation(
            reservation.id, ReservationUpdate(reservation_status=ReservationLifecycle.NO_SHOW)
        )
        assert result.no_show_marked_at is not None
        assert db_session.query(HistoryEntry).filter(
            HistoryEntry.action == HistoryAction.NO_SHOW
        ).count() == 1


class TestDeleteReservation:

    def test_releases_party(self, db_session, sample_room, guests, reservation, publisher):
        _, party = guests
        ReservationService(db_session, event_publisher=publisher).delete_reservation(
            reservation.id, reason="重复预订", actor="front-desk"
        )
        assert db_session.query(Reservation).count() == 0
        room = db_session.get(Room, sample_room.id)
        assert room.status == RoomStatus.AVAILABLE
        assert room.assigned_guests == []
        for guest in party:
            db_session.refresh(guest)
            assert guest.room_id is None
            assert guest.keep_open is False

        deleted = db_session.query(HistoryEntry).filter(
            HistoryEntry.action == HistoryAction.RESERVATION_DELETED
        ).one()
        assert deleted.previous_state["guest_ids"] == [g.id for g in party]
        assert deleted.notes == "重复预订"
        assert len(publisher.of_type(EventType.RESERVATION_DELETED)) == 1


class TestListing:

    def test_active_and_inactive(self, db_session, sample_room, second_room, guests, publisher):
        _, party = guests
        svc = ReservationService(db_session, event_publisher=publisher)
        first = svc.create_reservation(
            ReservationCreate(hotel_id=1, room_id=sample_room.id, guest_ids=[party[0].id])
        )
        second = svc.create_reservation(
            ReservationCreate(hotel_id=1, room_id=second_room.id, guest_ids=[party[1].id])
        )
        svc.update_reservation(second.id, ReservationUpdate(reservation_status=ReservationLifecycle.CANCELLED))

        assert {r.id for r in svc.get_reservations(1)} == {first.id, second.id}
        assert {r.id for r in svc.get_reservations(1, "inactive")} == {second.id}
        assert {r.id for r in svc.get_reservations(1, "cancelled")} == {second.id}
        assert svc.get_reservations(2) == []
