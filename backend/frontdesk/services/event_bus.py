"""
事件总线 - 内存级发布/订阅模式
状态提交后发布领域事件，订阅者异常不影响发布方事务
"""
from typing import Callable, Dict, List, Any, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import logging
import threading
import uuid

logger = logging.getLogger(__name__)

# 订阅所有事件类型
WILDCARD = "*"


def _event_key(event_type: Union[str, Enum]) -> str:
    return event_type.value if isinstance(event_type, Enum) else str(event_type)


@dataclass
class Event:
    """事件基类"""
    event_type: str
    timestamp: datetime
    data: Dict[str, Any]
    source: str  # 触发来源（服务名）
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        self.event_type = _event_key(self.event_type)


class EventBus:
    """
    内存级事件总线（线程安全单例模式）

    使用方式：
    1. 订阅事件：event_bus.subscribe(EventType.ROOM_STATUS_CHANGED, handler)
    2. 订阅全部：event_bus.subscribe("*", handler)
    3. 发布事件：event_bus.publish(Event(...))
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._subscribers: Dict[str, List[Callable]] = {}
        self._subscriber_lock = threading.Lock()
        self._initialized = True
        logger.info("EventBus initialized")

    def subscribe(self, event_type: Union[str, Enum], handler: Callable) -> None:
        """
        订阅事件

        Args:
            event_type: 事件类型（EventType 或字符串，"*" 表示全部）
            handler: 处理函数，接收 Event 对象作为参数
        """
        key = _event_key(event_type)
        with self._subscriber_lock:
            handlers = self._subscribers.setdefault(key, [])
            if handler not in handlers:
                handlers.append(handler)
                logger.debug(f"Handler {getattr(handler, '__name__', handler)} subscribed to {key}")

    def publish(self, event: Event) -> int:
        """
        发布事件（同步执行所有处理器）

        处理器异常只记录日志，不会影响其他处理器或调用方

        Returns:
            被调用的处理器数量
        """
        with self._subscriber_lock:
            handlers = (
                self._subscribers.get(event.event_type, [])
                + self._subscribers.get(WILDCARD, [])
            )

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Event handler {getattr(handler, '__name__', handler)} "
                    f"error for {event.event_type}: {e}",
                    exc_info=True
                )
        return len(handlers)

    def clear_subscribers(self) -> None:
        """清空所有订阅（用于测试）"""
        with self._subscriber_lock:
            self._subscribers.clear()


# 全局事件总线实例
event_bus = EventBus()
