"""
Pydantic 模式定义
用于 API 请求/响应验证
"""
from datetime import datetime, date
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict, model_validator
from frontdesk.models.ontology import (
    GuestStatus, RoomStatus, ReservationStatus, ReservationLifecycle, HistoryAction
)


class ActorMixin(BaseModel):
    """操作人与原因，仅用于审计展示"""
    performed_by: Optional[str] = Field(None, max_length=50)
    reason: Optional[str] = None


# ============== 房间 Schemas ==============

class RoomUpdate(BaseModel):
    """房间描述性字段，状态不可直接修改"""
    model_config = ConfigDict(extra="forbid")

    floor: Optional[int] = None
    room_type_id: Optional[int] = None
    capacity: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = None


class RoomActionRequest(ActorMixin):
    """维修 / 清洁 / 解除人工状态"""
    pass


class RoomResponse(BaseModel):
    id: int
    hotel_id: int
    number: str
    floor: int
    room_type_id: Optional[int] = None
    capacity: int
    status: RoomStatus
    keep_open: bool
    assigned_guests: List[int] = []
    notes: Optional[str] = None
    last_cleaned: Optional[datetime] = None
    last_maintenance: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class RoomStatusSummary(BaseModel):
    hotel_id: int
    total: int
    by_status: Dict[str, int]
    keep_open: int
    occupancy_rate: float


# ============== 客人 Schemas ==============

class GuestBase(BaseModel):
    name: str = Field(..., max_length=100)
    email: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)


class GuestCreate(GuestBase, ActorMixin):
    hotel_id: int
    room_id: Optional[int] = None
    status: GuestStatus = GuestStatus.BOOKED
    keep_open: bool = False
    reservation_start: Optional[datetime] = None
    reservation_end: Optional[datetime] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.reservation_start and self.reservation_end and self.reservation_end < self.reservation_start:
            raise ValueError("离店时间不能早于入住时间")
        return self


class GuestUpdate(ActorMixin):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=100)
    phone: Optional[str] = Field(None, max_length=20)
    room_id: Optional[int] = None
    status: Optional[GuestStatus] = None
    keep_open: Optional[bool] = None
    reservation_start: Optional[datetime] = None
    reservation_end: Optional[datetime] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.reservation_start and self.reservation_end and self.reservation_end < self.reservation_start:
            raise ValueError("离店时间不能早于入住时间")
        return self


class GuestActionRequest(ActorMixin):
    """入住 / 退房"""
    pass


class GuestResponse(GuestBase):
    id: int
    hotel_id: int
    room_id: Optional[int] = None
    status: GuestStatus
    keep_open: bool
    reservation_start: Optional[datetime] = None
    reservation_end: Optional[datetime] = None
    check_in: Optional[datetime] = None
    check_out: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


# ============== 预订 Schemas ==============

class ReservationCreate(BaseModel):
    hotel_id: int
    room_id: int
    guest_ids: List[int] = Field(..., min_length=1)
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    notes: Optional[str] = None
    special_requests: Optional[str] = None
    performed_by: Optional[str] = Field(None, max_length=50)

    @model_validator(mode="after")
    def check_dates(self):
        if self.check_in_date and self.check_out_date and self.check_out_date < self.check_in_date:
            raise ValueError("离店日期不能早于入住日期")
        return self


class ReservationUpdate(ActorMixin):
    """编辑预订或执行员工状态操作"""
    model_config = ConfigDict(extra="forbid")

    notes: Optional[str] = None
    special_requests: Optional[str] = None
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    reservation_status: Optional[ReservationLifecycle] = None
    cancellation_reason: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.check_in_date and self.check_out_date and self.check_out_date < self.check_in_date:
            raise ValueError("离店日期不能早于入住日期")
        return self


class StatusHistoryResponse(BaseModel):
    status: str
    timestamp: datetime
    performed_by: str
    reason: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ReservationResponse(BaseModel):
    id: int
    hotel_id: int
    room_id: Optional[int] = None
    guest_ids: List[int]
    confirmation_number: str
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    status: ReservationStatus
    reservation_status: ReservationLifecycle
    last_status_change: Optional[datetime] = None
    notes: Optional[str] = None
    special_requests: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    no_show_marked_at: Optional[datetime] = None
    terminated_at: Optional[datetime] = None
    created_at: datetime
    status_history: List[StatusHistoryResponse] = []
    model_config = ConfigDict(from_attributes=True)


# ============== 审计 Schemas ==============

class HistoryEntryResponse(BaseModel):
    id: int
    hotel_id: int
    room_id: Optional[int] = None
    reservation_id: Optional[int] = None
    timestamp: datetime
    action: HistoryAction
    previous_state: Dict[str, Any] = {}
    new_state: Dict[str, Any] = {}
    performed_by: str
    notes: Optional[str] = None
    guest_names: str = ""
