"""
前台服务异常定义

所有异常继承 ValueError，路由层统一捕获并转换为 HTTP 错误
"""
from typing import Iterable, Optional


class FrontDeskError(ValueError):
    """业务异常基类"""


class NotFound(FrontDeskError):
    """引用的客人 / 房间 / 预订不存在"""

    def __init__(self, entity_type: str, entity_id, message: Optional[str] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(message or f"{entity_type} {entity_id} 不存在")


class InvalidTransition(FrontDeskError):
    """房间人工状态（维修 / 清洁）不允许从当前状态发起"""

    def __init__(self, room_id: int, current_status: str, target_status: str,
                 allowed: Iterable[str] = ()):
        self.room_id = room_id
        self.current_status = current_status
        self.target_status = target_status
        self.allowed = sorted(allowed)
        super().__init__(
            f"房间 {room_id} 当前状态为 {current_status}，不能设置为 {target_status}"
            f"（允许的来源状态: {', '.join(self.allowed)}）"
        )


class InconsistentGuestSet(FrontDeskError):
    """
    房间的 assigned_guests 引用了已不存在的客人

    协调引擎只记录日志并跳过缺失的客人，不向调用方抛出
    """

    def __init__(self, room_id: int, missing_guest_ids: Iterable[int]):
        self.room_id = room_id
        self.missing_guest_ids = list(missing_guest_ids)
        super().__init__(
            f"房间 {room_id} 的已分配客人不存在: {self.missing_guest_ids}"
        )
