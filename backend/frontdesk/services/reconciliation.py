"""
房态协调引擎

房间状态、房间 keep_open 以及预订推导状态都由房间内客人的状态计算得出。
维修 / 清洁是员工设置的人工状态，期间暂停推导，直到 clear_override。

入口：
- reconcile_room: 重新推导单个房间
- reconcile_guest_change: 客人新增 / 修改后的联动（房间 + 预订 + 审计）
- reconcile_guest_removal: 客人删除后的联动
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging

from sqlalchemy.orm import Session

from frontdesk.config import settings
from frontdesk.exceptions import InconsistentGuestSet, NotFound
from frontdesk.models.events import EventType, RoomStatusChangedData
from frontdesk.models.ontology import (
    Guest, GuestStatus, HistoryAction, Room, RoomStatus, STICKY_ROOM_STATUSES,
)
from frontdesk.services.event_bus import Event, event_bus
from frontdesk.services.history_service import HistoryService
from frontdesk.services.locks import room_locks

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuestSnapshot:
    """客人变更前 / 后的关键字段"""
    id: int
    hotel_id: int
    room_id: Optional[int]
    status: GuestStatus
    keep_open: bool
    name: str = ""

    @classmethod
    def from_guest(cls, guest: Guest) -> "GuestSnapshot":
        return cls(
            id=guest.id,
            hotel_id=guest.hotel_id,
            room_id=guest.room_id,
            status=GuestStatus(guest.status),
            keep_open=bool(guest.keep_open),
            name=guest.name or "",
        )


# ============== 推导规则（纯函数） ==============

def derive_room_status(statuses: Iterable[GuestStatus]) -> RoomStatus:
    """
    按顺序匹配的决策表，第一条命中即返回

    | booked | checked-in | checked-out | 房间状态              |
    |--------|------------|-------------|-----------------------|
    |   -    |     -      |      -      | available             |
    |   -    |     -      |      +      | deoccupied            |
    |   -    |     +      |      +      | partially-deoccupied  |
    |   -    |     +      |      -      | occupied              |
    |   +    |     +      |      -      | partially-occupied    |
    |   +    |     -      |      -      | reserved              |
    |   +    |     -      |      +      | partially-reserved    |
    |   +    |     +      |      +      | partially-occupied    |
    """
    present = {GuestStatus(s) for s in statuses}
    booked = GuestStatus.BOOKED in present
    checked_in = GuestStatus.CHECKED_IN in present
    checked_out = GuestStatus.CHECKED_OUT in present

    if not present:
        return RoomStatus.AVAILABLE
    if checked_out and not checked_in and not booked:
        return RoomStatus.DEOCCUPIED
    if checked_out and checked_in and not booked:
        return RoomStatus.PARTIALLY_DEOCCUPIED
    if checked_in and not booked and not checked_out:
        return RoomStatus.OCCUPIED
    if checked_in and booked and not checked_out:
        return RoomStatus.PARTIALLY_OCCUPIED
    if booked and not checked_in and not checked_out:
        return RoomStatus.RESERVED
    if booked and checked_out and not checked_in:
        return RoomStatus.PARTIALLY_RESERVED
    # 三种状态同时存在，按更紧急的部分入住处理
    return RoomStatus.PARTIALLY_OCCUPIED


def derive_keep_open(flags: Iterable[bool]) -> bool:
    """房间 keep_open：至少一位客人且所有客人都要求保持可售"""
    flags = list(flags)
    return bool(flags) and all(flags)


# ============== 协调引擎 ==============

class ReconciliationEngine:
    """
    房态协调引擎

    支持依赖注入以便于测试：
    - event_publisher: 事件发布器
    - reservation_service: 预订服务（负责预订状态重算）
    """

    def __init__(
        self,
        db: Session,
        event_publisher: Callable[[Event], None] = None,
        reservation_service=None,
    ):
        self.db = db
        self._publish_event = event_publisher or event_bus.publish
        self.history = HistoryService(db)
        if reservation_service is None:
            from frontdesk.services.reservation_service import ReservationService
            reservation_service = ReservationService(db, event_publisher=self._publish_event)
        self.reservations = reservation_service

    # ---------- 房间 ----------

    def _load_room(self, room_id: int) -> Room:
        room = self.db.query(Room).populate_existing().filter(Room.id == room_id).first()
        if not room:
            raise NotFound("Room", room_id)
        return room

    def _collect_guests(self, room: Room) -> Tuple[List[Guest], List[int]]:
        """
        读取房间的完整客人集合

        assigned_guests 中已不存在或已指向其他房间的ID被剔除；
        room_id 指向本房间但不在集合中的客人被补入

        Returns:
            (客人列表, 同步后的 assigned_guests)
        """
        assigned = room.assigned_guests
        by_id: Dict[int, Guest] = {}
        if assigned:
            by_id = {
                g.id: g for g in self.db.query(Guest).populate_existing().filter(Guest.id.in_(assigned)).all()
            }

        missing = [gid for gid in assigned if gid not in by_id]
        if missing:
            error = InconsistentGuestSet(room.id, missing)
            logger.warning(f"{error}; excluded from reconciliation")

        moved = [gid for gid, g in by_id.items() if g.room_id != room.id]
        if moved:
            logger.warning(f"Room {room.id} back-reference lists guests assigned elsewhere: {moved}")

        synced = [gid for gid in assigned if gid in by_id and gid not in moved]
        query = self.db.query(Guest).populate_existing().filter(Guest.room_id == room.id)
        if synced:
            query = query.filter(~Guest.id.in_(synced))
        for guest in query.order_by(Guest.id).all():
            by_id[guest.id] = guest
            synced.append(guest.id)

        return [by_id[gid] for gid in synced], synced

    def reconcile_room(self, room_id: int, actor: Optional[str] = None, reason: str = "") -> Room:
        """
        重新推导房间状态与 keep_open

        1. 维修 / 清洁状态直接返回，不推导
        2. 按客人状态分组并查决策表
        3. 状态或 keep_open 变化时写入并追加 status_change 记录；
           未变化时不写审计记录（幂等）
        """
        actor = actor or settings.DEFAULT_ACTOR
        with room_locks.hold(room_id):
            room = self._load_room(room_id)

            if room.status in STICKY_ROOM_STATUSES:
                logger.debug(f"Room {room.number} is {room.status.value}, derivation suspended")
                return room

            guests, synced_ids = self._collect_guests(room)
            new_status = derive_room_status(g.status for g in guests)
            new_keep_open = derive_keep_open(bool(g.keep_open) for g in guests)

            old_status = room.status
            old_keep_open = bool(room.keep_open)
            changed = new_status != old_status or new_keep_open != old_keep_open

            resynced = synced_ids != room.assigned_guests
            if resynced:
                room.assigned_guests = synced_ids

            if changed:
                room.status = new_status
                room.keep_open = new_keep_open
                self.history.append(
                    hotel_id=room.hotel_id,
                    room_id=room.id,
                    action=HistoryAction.STATUS_CHANGE,
                    previous_state={"room_status": old_status.value, "keep_open": old_keep_open},
                    new_state={
                        "room_status": new_status.value,
                        "keep_open": new_keep_open,
                        "guest_ids": synced_ids,
                    },
                    performed_by=actor,
                    notes=reason,
                )

            if changed or resynced:
                self.db.commit()
                self.db.refresh(room)

        if not changed:
            logger.debug(f"Room {room.number} unchanged ({room.status.value})")
            return room

        logger.info(
            f"Room {room.number}: {old_status.value} -> {new_status.value} "
            f"keep_open={new_keep_open} | {reason}"
        )
        self._publish_event(Event(
            event_type=EventType.ROOM_STATUS_CHANGED,
            timestamp=datetime.now(),
            data=RoomStatusChangedData(
                room_id=room.id,
                hotel_id=room.hotel_id,
                room_number=room.number,
                old_status=old_status.value,
                new_status=new_status.value,
                old_keep_open=old_keep_open,
                new_keep_open=new_keep_open,
                performed_by=actor,
                reason=reason,
            ).to_dict(),
            source="reconciliation_engine"
        ))
        return room

    # ---------- 客人联动 ----------

    def reconcile_guest_change(
        self,
        guest_id: int,
        previous: Optional[GuestSnapshot],
        actor: Optional[str] = None,
        reason: str = "",
        action: Optional[HistoryAction] = None,
    ) -> Guest:
        """
        客人新增 / 修改后的联动

        1. 协调客人当前房间
        2. 换房时同时协调原房间
        3. 重算客人所在的预订
        4. 换房时重算原房间与新房间的预订
        5. 追加客人级审计记录（与房间级记录独立）

        Args:
            guest_id: 客人ID
            previous: 变更前快照，新建客人时为 None
            action: 指定客人级审计动作（如 check_in / check_out）
        """
        actor = actor or settings.DEFAULT_ACTOR
        guest = self.db.query(Guest).populate_existing().filter(Guest.id == guest_id).first()
        if not guest:
            raise NotFound("Guest", guest_id)
        current = GuestSnapshot.from_guest(guest)

        old_room_id = previous.room_id if previous else None
        new_room_id = current.room_id
        room_changed = old_room_id != new_room_id

        if new_room_id is not None:
            self.reconcile_room(new_room_id, actor, reason)
        if room_changed and old_room_id is not None:
            self.reconcile_room(old_room_id, actor, reason)

        self.reservations.recalculate_for_guest(guest_id, reason, actor=actor)
        if room_changed:
            for room_id in (old_room_id, new_room_id):
                if room_id is not None:
                    self.reservations.recalculate_for_room(room_id, reason, actor=actor)

        for recorder in self._CHANGE_RECORDERS:
            recorder(self, previous, current, actor, reason, action)
        self.db.commit()
        return guest

    def reconcile_guest_removal(
        self,
        previous: GuestSnapshot,
        actor: Optional[str] = None,
        reason: str = "",
    ) -> Optional[Room]:
        """
        客人删除后的联动

        调用前客人已从房间 assigned_guests 中移除并删除
        """
        actor = actor or settings.DEFAULT_ACTOR
        room = None
        if previous.room_id is not None:
            room = self.reconcile_room(previous.room_id, actor, reason)
            self.reservations.recalculate_for_room(previous.room_id, reason, actor=actor)
        self.reservations.recalculate_for_guest(previous.id, reason, actor=actor)

        self.history.append(
            hotel_id=previous.hotel_id,
            room_id=previous.room_id,
            action=HistoryAction.GUEST_REMOVED,
            previous_state={"guest_id": previous.id, "guest_status": previous.status.value},
            new_state={},
            performed_by=actor,
            notes=reason,
        )
        self.db.commit()
        return room

    # ---------- 客人级审计（按变更字段分派） ----------

    def _record_assignment(self, previous, current, actor, reason, action) -> None:
        """房间分配变化：原房间记 guest_removed，新房间记 guest_assigned"""
        old_room_id = previous.room_id if previous else None
        if old_room_id == current.room_id:
            return
        if old_room_id is not None:
            self.history.append(
                hotel_id=current.hotel_id,
                room_id=old_room_id,
                action=HistoryAction.GUEST_REMOVED,
                previous_state={"guest_id": current.id, "guest_status": previous.status.value},
                new_state={},
                performed_by=actor,
                notes=reason,
            )
        if current.room_id is not None:
            self.history.append(
                hotel_id=current.hotel_id,
                room_id=current.room_id,
                action=HistoryAction.GUEST_ASSIGNED,
                previous_state={},
                new_state={
                    "guest_id": current.id,
                    "guest_status": current.status.value,
                    "keep_open": current.keep_open,
                },
                performed_by=actor,
                notes=reason,
            )

    def _record_status(self, previous, current, actor, reason, action) -> None:
        """客人状态或 keep_open 变化：guest_status_change（或指定动作）"""
        if previous is None:
            return
        status_changed = previous.status != current.status
        keep_open_changed = previous.keep_open != current.keep_open
        if not status_changed and not keep_open_changed:
            return

        before = {"guest_id": current.id}
        after = {"guest_id": current.id}
        if status_changed:
            before["guest_status"] = previous.status.value
            after["guest_status"] = current.status.value
        if keep_open_changed:
            before["keep_open"] = previous.keep_open
            after["keep_open"] = current.keep_open

        self.history.append(
            hotel_id=current.hotel_id,
            room_id=current.room_id if current.room_id is not None else previous.room_id,
            action=action or HistoryAction.GUEST_STATUS_CHANGE,
            previous_state=before,
            new_state=after,
            performed_by=actor,
            notes=reason,
        )

    _CHANGE_RECORDERS = (_record_assignment, _record_status)
