"""
预订服务 - 本体操作层
预订是客人分组的投影：推导状态只由成员客人的状态决定，
员工操作（取消 / 未到店 / 终止）只写 reservation_status
"""
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional
import logging
import uuid

from sqlalchemy.orm import Session

from frontdesk.config import settings
from frontdesk.exceptions import FrontDeskError, NotFound
from frontdesk.models.events import (
    EventType, ReservationChangedData, ReservationStatusChangedData,
)
from frontdesk.models.ontology import (
    Guest, GuestStatus, HistoryAction, Reservation, ReservationLifecycle,
    ReservationStatus, ReservationStatusHistory, Room, STAFF_TERMINAL_LIFECYCLES,
)
from frontdesk.models.schemas import ReservationCreate, ReservationUpdate
from frontdesk.services.event_bus import Event, event_bus
from frontdesk.services.history_service import HistoryService
from frontdesk.services.locks import reservation_locks

logger = logging.getLogger(__name__)


def derive_reservation_status(statuses: Iterable[GuestStatus]) -> Optional[ReservationStatus]:
    """
    预订推导状态：全部成员已退房为 completed，否则 active

    没有任何可用成员时返回 None，保留原状态
    """
    statuses = [GuestStatus(s) for s in statuses]
    if not statuses:
        return None
    if all(s == GuestStatus.CHECKED_OUT for s in statuses):
        return ReservationStatus.COMPLETED
    return ReservationStatus.ACTIVE


# 员工状态操作对应的审计动作
_LIFECYCLE_ACTIONS = {
    ReservationLifecycle.CANCELLED: HistoryAction.CANCELLATION,
    ReservationLifecycle.NO_SHOW: HistoryAction.NO_SHOW,
}


class ReservationService:
    """预订服务"""

    def __init__(self, db: Session, event_publisher: Callable[[Event], None] = None):
        self.db = db
        # 支持依赖注入事件发布器，便于测试
        self._publish_event = event_publisher or event_bus.publish
        self.history = HistoryService(db)

    # ============== 查询 ==============

    def get_reservation(self, reservation_id: int) -> Reservation:
        """获取单个预订"""
        reservation = self.db.query(Reservation).filter(Reservation.id == reservation_id).first()
        if not reservation:
            raise NotFound("Reservation", reservation_id)
        return reservation

    def get_reservations(self, hotel_id: int, status: Optional[str] = None) -> List[Reservation]:
        """
        获取预订列表

        Args:
            status: active（推导或业务状态为 active）/ inactive（任意终态）/ 具体业务状态
        """
        query = self.db.query(Reservation).filter(Reservation.hotel_id == hotel_id)

        if status == "active":
            query = query.filter(
                (Reservation.status == ReservationStatus.ACTIVE)
                | (Reservation.reservation_status == ReservationLifecycle.ACTIVE)
            )
        elif status == "inactive":
            query = query.filter(Reservation.reservation_status.in_([
                ReservationLifecycle.CANCELLED, ReservationLifecycle.NO_SHOW,
                ReservationLifecycle.TERMINATED, ReservationLifecycle.COMPLETED,
            ]))
        elif status:
            query = query.filter(Reservation.reservation_status == ReservationLifecycle(status))

        return query.order_by(Reservation.created_at.desc(), Reservation.id.desc()).all()

    def _reservations_with_guest(self, guest_id: int) -> List[Reservation]:
        # guest_ids 以 JSON 文本保存，按成员过滤在内存中进行
        candidates = self.db.query(Reservation).filter(
            Reservation._guest_ids.like(f"%{guest_id}%")
        ).all()
        return [r for r in candidates if guest_id in r.guest_ids]

    # ============== 状态重算 ==============

    def recalculate(self, reservation_id: int, reason: str = "Guest status change",
                    actor: Optional[str] = None) -> Reservation:
        """
        按成员客人当前状态重算推导状态

        只有推导值与存储值不同才写入并追加 status_history；
        completed 不会被自动退回 active
        """
        actor = actor or settings.DEFAULT_ACTOR
        with reservation_locks.hold(reservation_id):
            reservation = self.db.query(Reservation).populate_existing().filter(
                Reservation.id == reservation_id
            ).first()
            if not reservation:
                raise NotFound("Reservation", reservation_id)

            party = reservation.guest_ids
            guests = (
                self.db.query(Guest).populate_existing().filter(Guest.id.in_(party)).all() if party else []
            )
            if len(guests) != len(party):
                missing = set(party) - {g.id for g in guests}
                logger.warning(
                    f"Reservation {reservation_id} party references missing guests {sorted(missing)}"
                )

            derived = derive_reservation_status(g.status for g in guests)
            old_status = reservation.status
            if derived is None or derived == old_status:
                return reservation
            if old_status == ReservationStatus.COMPLETED:
                logger.debug(f"Reservation {reservation_id} stays completed")
                return reservation

            now = datetime.now()
            reservation.status = derived
            reservation.last_status_change = now
            if reservation.reservation_status not in STAFF_TERMINAL_LIFECYCLES:
                reservation.reservation_status = ReservationLifecycle(derived.value)
            reservation.status_history.append(ReservationStatusHistory(
                status=derived.value,
                timestamp=now,
                performed_by=actor,
                reason=reason,
            ))
            self.db.commit()
            self.db.refresh(reservation)

        logger.info(f"Reservation {reservation_id}: {old_status.value} -> {derived.value} | {reason}")
        self._publish_status_changed(reservation, old_status.value, derived.value, "status", actor, reason)
        return reservation

    def recalculate_for_room(self, room_id: int, reason: str = "Room status change",
                             actor: Optional[str] = None) -> List[Reservation]:
        """重算某房间的全部预订"""
        ids = [
            r.id for r in
            self.db.query(Reservation.id).filter(Reservation.room_id == room_id).order_by(Reservation.id)
        ]
        results = [self.recalculate(rid, reason, actor) for rid in ids]
        logger.debug(f"Recalculated {len(results)} reservations for room {room_id}")
        return results

    def recalculate_for_guest(self, guest_id: int, reason: str = "Guest status change",
                              actor: Optional[str] = None) -> List[Reservation]:
        """重算包含某客人的全部预订"""
        ids = sorted(r.id for r in self._reservations_with_guest(guest_id))
        results = [self.recalculate(rid, reason, actor) for rid in ids]
        logger.debug(f"Recalculated {len(results)} reservations for guest {guest_id}")
        return results

    # ============== 预订维护 ==============

    def create_reservation(self, data: ReservationCreate) -> Reservation:
        """
        由客人分组创建预订

        1. 校验房间与客人属于同一酒店
        2. 写入预订及初始状态历史
        3. 通过客人服务把成员分配到房间（触发房态协调）
        4. 追加 reservation_created 审计记录
        """
        from frontdesk.services.guest_service import GuestService

        actor = data.performed_by or settings.DEFAULT_ACTOR
        if not data.guest_ids:
            raise FrontDeskError("预订至少需要一位客人")

        room = self.db.query(Room).filter(Room.id == data.room_id).first()
        if not room or room.hotel_id != data.hotel_id:
            raise NotFound("Room", data.room_id)

        guests = {g.id: g for g in self.db.query(Guest).filter(Guest.id.in_(data.guest_ids)).all()}
        for gid in data.guest_ids:
            guest = guests.get(gid)
            if not guest or guest.hotel_id != data.hotel_id:
                raise NotFound("Guest", gid)

        now = datetime.now()
        party = list(dict.fromkeys(data.guest_ids))
        reservation = Reservation(
            hotel_id=data.hotel_id,
            room_id=room.id,
            guest_ids=party,
            confirmation_number=self._generate_confirmation_number(),
            check_in_date=data.check_in_date,
            check_out_date=data.check_out_date,
            status=ReservationStatus.ACTIVE,
            reservation_status=ReservationLifecycle.ACTIVE,
            last_status_change=now,
            notes=data.notes or "",
            special_requests=data.special_requests or "",
        )
        reservation.status_history.append(ReservationStatusHistory(
            status=ReservationStatus.ACTIVE.value,
            timestamp=now,
            performed_by=actor,
            reason="Reservation created",
        ))
        self.db.add(reservation)
        self.db.flush()

        self.history.append(
            hotel_id=data.hotel_id,
            room_id=room.id,
            reservation_id=reservation.id,
            action=HistoryAction.RESERVATION_CREATED,
            previous_state={},
            new_state={"guest_ids": party},
            performed_by=actor,
            notes=data.notes or "Reservation created",
        )
        self.db.commit()
        reservation_id = reservation.id

        guest_service = GuestService(self.db, event_publisher=self._publish_event)
        window = {}
        if data.check_in_date:
            window["reservation_start"] = datetime.combine(data.check_in_date, datetime.min.time())
        if data.check_out_date:
            window["reservation_end"] = datetime.combine(data.check_out_date, datetime.min.time())
        for gid in party:
            guest_service.assign_to_room(
                gid, room.id, actor=actor, reason="Guest assigned by reservation", **window
            )

        # 成员状态可能已是退房，创建后立即重算一次
        reservation = self.recalculate(reservation_id, "Reservation created", actor)

        self._publish_event(Event(
            event_type=EventType.RESERVATION_CREATED,
            timestamp=datetime.now(),
            data=ReservationChangedData(
                reservation_id=reservation.id,
                hotel_id=reservation.hotel_id,
                room_id=reservation.room_id,
                confirmation_number=reservation.confirmation_number,
                guest_ids=party,
                performed_by=actor,
                reason="Reservation created",
            ).to_dict(),
            source="reservation_service"
        ))
        return reservation

    def update_reservation(self, reservation_id: int, data: ReservationUpdate) -> Reservation:
        """
        修改预订

        - 备注 / 特殊要求 / 日期：reservation_edited
        - reservation_status：员工状态操作，写 status_history 及对应审计动作
        推导状态不受影响
        """
        actor = data.performed_by or settings.DEFAULT_ACTOR
        reservation = self.get_reservation(reservation_id)
        update_data = data.model_dump(
            exclude_unset=True, exclude={"performed_by", "reason", "reservation_status", "cancellation_reason"}
        )
        check_in_date = update_data.get("check_in_date", reservation.check_in_date)
        check_out_date = update_data.get("check_out_date", reservation.check_out_date)
        if check_in_date and check_out_date and check_out_date < check_in_date:
            raise FrontDeskError("离店日期不能早于入住日期")

        before: Dict[str, object] = {}
        after: Dict[str, object] = {}
        for key, value in update_data.items():
            old = getattr(reservation, key)
            if old != value:
                before[key] = old
                after[key] = value
                setattr(reservation, key, value)
        if after:
            reservation.updated_at = datetime.now()
            self.history.append(
                hotel_id=reservation.hotel_id,
                room_id=reservation.room_id,
                reservation_id=reservation.id,
                action=HistoryAction.RESERVATION_EDITED,
                previous_state=before,
                new_state=after,
                performed_by=actor,
                notes=data.reason or "Reservation edited",
            )

        old_lifecycle = reservation.reservation_status
        new_lifecycle = data.reservation_status
        if new_lifecycle is not None and new_lifecycle != old_lifecycle:
            self._apply_lifecycle(reservation, new_lifecycle, actor, data.reason, data.cancellation_reason)

        self.db.commit()
        self.db.refresh(reservation)

        if new_lifecycle is not None and new_lifecycle != old_lifecycle:
            logger.info(
                f"Reservation {reservation_id} reservation_status: "
                f"{old_lifecycle.value} -> {new_lifecycle.value} by {actor}"
            )
            self._publish_status_changed(
                reservation, old_lifecycle.value, new_lifecycle.value,
                "reservation_status", actor, data.reason or ""
            )
        return reservation

    def _apply_lifecycle(self, reservation: Reservation, lifecycle: ReservationLifecycle,
                         actor: str, reason: Optional[str], cancellation_reason: Optional[str]) -> None:
        now = datetime.now()
        previous = reservation.reservation_status
        reservation.reservation_status = lifecycle
        reservation.updated_at = now

        if lifecycle == ReservationLifecycle.CANCELLED:
            reservation.cancelled_at = now
            reservation.cancelled_by = actor
            reservation.cancellation_reason = cancellation_reason or reason
        elif lifecycle == ReservationLifecycle.NO_SHOW:
            reservation.no_show_marked_at = now
        elif lifecycle == ReservationLifecycle.TERMINATED:
            reservation.terminated_at = now

        reservation.status_history.append(ReservationStatusHistory(
            status=lifecycle.value,
            timestamp=now,
            performed_by=actor,
            reason=reason or "Status updated",
        ))
        self.history.append(
            hotel_id=reservation.hotel_id,
            room_id=reservation.room_id,
            reservation_id=reservation.id,
            action=_LIFECYCLE_ACTIONS.get(lifecycle, HistoryAction.RESERVATION_EDITED),
            previous_state={"reservation_status": previous.value},
            new_state={"reservation_status": lifecycle.value},
            performed_by=actor,
            notes=reason,
        )

    def delete_reservation(self, reservation_id: int, reason: str = "Deleted by user",
                           actor: Optional[str] = None) -> None:
        """
        删除预订

        成员客人解除房间分配并清除 keep_open（触发房态协调），
        删除前追加 reservation_deleted 审计记录
        """
        from frontdesk.services.guest_service import GuestService

        actor = actor or settings.DEFAULT_ACTOR
        reservation = self.get_reservation(reservation_id)
        hotel_id = reservation.hotel_id
        room_id = reservation.room_id
        party = reservation.guest_ids
        confirmation_number = reservation.confirmation_number

        self.history.append(
            hotel_id=hotel_id,
            room_id=room_id,
            reservation_id=reservation.id,
            action=HistoryAction.RESERVATION_DELETED,
            previous_state={
                "guest_ids": party,
                "status": reservation.status.value,
                "reservation_status": reservation.reservation_status.value,
            },
            new_state={},
            performed_by=actor,
            notes=reason,
        )
        self.db.delete(reservation)
        self.db.commit()
        logger.info(f"Reservation {reservation_id} deleted by {actor}: {reason}")

        guest_service = GuestService(self.db, event_publisher=self._publish_event)
        for gid in party:
            guest = self.db.query(Guest).filter(Guest.id == gid).first()
            if guest is None or guest.room_id != room_id:
                continue
            guest_service.release_from_room(gid, actor=actor, reason=reason)

        self._publish_event(Event(
            event_type=EventType.RESERVATION_DELETED,
            timestamp=datetime.now(),
            data=ReservationChangedData(
                reservation_id=reservation_id,
                hotel_id=hotel_id,
                room_id=room_id,
                confirmation_number=confirmation_number,
                guest_ids=party,
                performed_by=actor,
                reason=reason,
            ).to_dict(),
            source="reservation_service"
        ))

    # ============== 内部工具 ==============

    def _generate_confirmation_number(self) -> str:
        """生成确认号：CONF-日期-随机串"""
        return f"CONF-{datetime.now().strftime('%Y%m%d')}-{uuid.uuid4().hex[:6].upper()}"

    def _publish_status_changed(self, reservation: Reservation, old: str, new: str,
                                field_name: str, actor: str, reason: str) -> None:
        self._publish_event(Event(
            event_type=EventType.RESERVATION_STATUS_CHANGED,
            timestamp=datetime.now(),
            data=ReservationStatusChangedData(
                reservation_id=reservation.id,
                hotel_id=reservation.hotel_id,
                room_id=reservation.room_id,
                old_status=old,
                new_status=new,
                field_name=field_name,
                performed_by=actor,
                reason=reason,
            ).to_dict(),
            source="reservation_service"
        ))
