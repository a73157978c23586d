"""
审计日志服务
每次状态迁移追加一条 HistoryEntry，写入后不可修改
房间 / 预订只保存当前状态，变更原因只能从这里追溯
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import logging

from sqlalchemy.orm import Session

from frontdesk.config import settings
from frontdesk.models.ontology import Guest, HistoryAction, HistoryEntry

logger = logging.getLogger(__name__)


class HistoryService:
    """审计日志服务"""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        hotel_id: int,
        action: Union[HistoryAction, str],
        performed_by: str,
        room_id: Optional[int] = None,
        reservation_id: Optional[int] = None,
        previous_state: Optional[Dict[str, Any]] = None,
        new_state: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> HistoryEntry:
        """
        追加审计记录

        只 flush 不 commit，与触发它的状态变更在同一事务内提交

        Args:
            hotel_id: 酒店ID
            action: 动作类型
            performed_by: 操作人（system / front-desk / housekeeping / 员工ID）
            room_id: 房间ID
            reservation_id: 预订ID
            previous_state: 变更前的相关字段
            new_state: 变更后的相关字段
            notes: 原因说明
        """
        entry = HistoryEntry(
            hotel_id=hotel_id,
            room_id=room_id,
            reservation_id=reservation_id,
            action=HistoryAction(action),
            previous_state=previous_state or {},
            new_state=new_state or {},
            performed_by=performed_by or settings.DEFAULT_ACTOR,
            notes=notes,
            timestamp=timestamp or datetime.now(),
        )
        self.db.add(entry)
        self.db.flush()

        logger.debug(
            f"History {entry.action.value} room={room_id} reservation={reservation_id} "
            f"by {entry.performed_by}"
        )
        return entry

    def query(
        self,
        hotel_id: Optional[int] = None,
        room_id: Optional[int] = None,
        reservation_id: Optional[int] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        action: Optional[Union[HistoryAction, str]] = None,
        limit: Optional[int] = None,
    ) -> List[HistoryEntry]:
        """查询审计记录（最新的在前）"""
        query = self.db.query(HistoryEntry)

        if hotel_id is not None:
            query = query.filter(HistoryEntry.hotel_id == hotel_id)
        if room_id is not None:
            query = query.filter(HistoryEntry.room_id == room_id)
        if reservation_id is not None:
            query = query.filter(HistoryEntry.reservation_id == reservation_id)
        if start is not None:
            query = query.filter(HistoryEntry.timestamp >= start)
        if end is not None:
            query = query.filter(HistoryEntry.timestamp <= end)
        if action is not None:
            query = query.filter(HistoryEntry.action == HistoryAction(action))

        return query.order_by(
            HistoryEntry.timestamp.desc(), HistoryEntry.id.desc()
        ).limit(limit or settings.HISTORY_QUERY_LIMIT).all()

    def get_room_history(self, room_id: int) -> List[HistoryEntry]:
        """获取房间历史（最新的在前）"""
        return self.query(room_id=room_id)

    def describe(self, entries: List[HistoryEntry]) -> List[Dict[str, Any]]:
        """
        转换为列表展示用的字典，附带快照中涉及的客人姓名
        已删除的客人以ID显示
        """
        guest_ids = set()
        for entry in entries:
            for state in (entry.previous_state, entry.new_state):
                guest_ids.update(_guest_ids_in(state))

        names = {}
        if guest_ids:
            names = {
                g.id: g.name
                for g in self.db.query(Guest).filter(Guest.id.in_(guest_ids)).all()
            }

        result = []
        for entry in entries:
            ids = _guest_ids_in(entry.new_state) + _guest_ids_in(entry.previous_state)
            result.append({
                "id": entry.id,
                "hotel_id": entry.hotel_id,
                "room_id": entry.room_id,
                "reservation_id": entry.reservation_id,
                "timestamp": entry.timestamp,
                "action": entry.action.value,
                "previous_state": entry.previous_state,
                "new_state": entry.new_state,
                "performed_by": entry.performed_by,
                "notes": entry.notes,
                "guest_names": ", ".join(str(names.get(gid, gid)) for gid in dict.fromkeys(ids)),
            })
        return result


def _guest_ids_in(state: Dict[str, Any]) -> List[int]:
    ids = list(state.get("guest_ids") or [])
    if state.get("guest_id") is not None:
        ids.append(state["guest_id"])
    return ids
