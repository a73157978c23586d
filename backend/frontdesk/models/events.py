"""
领域事件定义 (Domain Events)
协调引擎和各服务在状态提交后发布的事件
"""
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Dict, Any, List


class EventType(str, Enum):
    """事件类型枚举"""
    # 房间相关
    ROOM_STATUS_CHANGED = "room.status_changed"

    # 客人相关
    GUEST_CREATED = "guest.created"
    GUEST_UPDATED = "guest.updated"
    GUEST_DELETED = "guest.deleted"

    # 预订相关
    RESERVATION_CREATED = "reservation.created"
    RESERVATION_STATUS_CHANGED = "reservation.status_changed"
    RESERVATION_DELETED = "reservation.deleted"


@dataclass
class BaseEventData:
    """事件数据基类"""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        result = asdict(self)
        # 处理 datetime 序列化
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result


@dataclass
class RoomStatusChangedData(BaseEventData):
    """房间状态变更事件数据"""
    room_id: int = 0
    hotel_id: int = 0
    room_number: str = ""
    old_status: str = ""
    new_status: str = ""
    old_keep_open: bool = False
    new_keep_open: bool = False
    performed_by: str = ""
    reason: str = ""
    is_override: bool = False


@dataclass
class GuestChangedData(BaseEventData):
    """客人创建 / 更新 / 删除事件数据"""
    guest_id: int = 0
    hotel_id: int = 0
    guest_name: str = ""
    old_room_id: Optional[int] = None
    new_room_id: Optional[int] = None
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    performed_by: str = ""
    reason: str = ""


@dataclass
class ReservationStatusChangedData(BaseEventData):
    """预订状态变更事件数据"""
    reservation_id: int = 0
    hotel_id: int = 0
    room_id: Optional[int] = None
    old_status: str = ""
    new_status: str = ""
    field_name: str = "status"   # status / reservation_status
    performed_by: str = ""
    reason: str = ""


@dataclass
class ReservationChangedData(BaseEventData):
    """预订创建 / 删除事件数据"""
    reservation_id: int = 0
    hotel_id: int = 0
    room_id: Optional[int] = None
    confirmation_number: str = ""
    guest_ids: List[int] = field(default_factory=list)
    performed_by: str = ""
    reason: str = ""
