"""
Pytest 配置和共享 fixtures
"""
import os

# 应用启动时的 init_db 不落盘
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from frontdesk.database import Base, get_db
from frontdesk.models import ontology  # noqa
from frontdesk.models.ontology import Guest, GuestStatus, Room, RoomType
from frontdesk.main import app

HOTEL_ID = 1
OTHER_HOTEL_ID = 2


class RecordingPublisher:
    """记录发布的事件，替代全局事件总线"""

    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of_type(self, event_type):
        key = event_type.value if hasattr(event_type, "value") else event_type
        return [e for e in self.events if e.event_type == key]


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """创建数据库会话"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db_session):
    """创建测试客户端"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def publisher():
    """记录事件的发布器"""
    return RecordingPublisher()


# ============== 数据 Fixtures ==============

@pytest.fixture
def sample_room_type(db_session):
    """创建示例房型"""
    room_type = RoomType(hotel_id=HOTEL_ID, name="标准间", description="Standard Room", max_occupancy=2)
    db_session.add(room_type)
    db_session.commit()
    db_session.refresh(room_type)
    return room_type


@pytest.fixture
def sample_room(db_session, sample_room_type):
    """创建示例房间"""
    room = Room(hotel_id=HOTEL_ID, number="101", floor=1, room_type_id=sample_room_type.id, capacity=2)
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture
def second_room(db_session, sample_room_type):
    """同酒店的第二个房间"""
    room = Room(hotel_id=HOTEL_ID, number="102", floor=1, room_type_id=sample_room_type.id, capacity=2)
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture
def other_hotel_room(db_session):
    """其他酒店的房间"""
    room = Room(hotel_id=OTHER_HOTEL_ID, number="101", floor=1, capacity=2)
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture
def make_guest(db_session):
    """
    直接写库创建客人（不经过服务，不触发协调）
    用于构造协调引擎的输入
    """
    def _make(name="张三", room=None, status=GuestStatus.BOOKED, keep_open=False, hotel_id=HOTEL_ID):
        guest = Guest(
            hotel_id=hotel_id,
            room_id=room.id if room is not None else None,
            name=name,
            status=status,
            keep_open=keep_open,
        )
        db_session.add(guest)
        db_session.flush()
        if room is not None:
            room.assigned_guests = room.assigned_guests + [guest.id]
        db_session.commit()
        db_session.refresh(guest)
        return guest
    return _make
