# tests/conftest.py
"""
Pytest configuration and shared fixtures for commission engine tests.

Every test gets a fresh in-memory SQLite database, a fixed virtual time
and a small compensation plan (matrix 3 wide, 3 deep, two paying levels).

Run:
    pytest tests -v
"""
import copy
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import core.db
import mlm_system.config.rule_set as rule_set_module
from config import Config
from models import Base, User, MatrixPosition, Order, OrderItem
from models.listeners import register_all_listeners
from mlm_system.config.rule_set import load_rule_set
from mlm_system.utils.time_machine import timeMachine

# =============================================================================
# CONSTANTS
# =============================================================================

NOW = datetime(2026, 3, 15, 12, 0, 0)

TEST_PLAN = {
    "version": "test-1",
    "matrixWidth": 3,
    "matrixDepth": 3,
    "retailRate": "0.25",
    "matrixRates": ["0.10", "0.05"],
    "matchingRate": "0.10",
    "matchingDepth": 1,
    "autoshipMinimum": "0",
    "ranks": [
        {"id": "distributor", "level": 0, "unlockedDepth": 2},
        {
            "id": "bronze", "level": 1,
            "personalSales": "500", "teamVolume": "0", "activeLegs": 1,
            "unlockedDepth": 3, "bonus": "100",
        },
        {
            "id": "silver", "level": 2,
            "personalSales": "1000", "teamVolume": "2000", "activeLegs": 2,
            "unlockedDepth": 3, "bonus": "250",
        },
    ],
}


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture(scope="session", autouse=True)
def setup_listeners():
    """Register listeners once at test session start."""
    register_all_listeners()


@pytest.fixture
def engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine, monkeypatch):
    """Session factory, also installed as the application's factory."""
    factory = sessionmaker(bind=engine)
    monkeypatch.setattr(core.db, "_SessionFactory", factory)
    return factory


@pytest.fixture
def session(session_factory):
    """Create database session for each test."""
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# TIME & PLAN FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def fixed_time():
    timeMachine.setTime(NOW)
    yield NOW
    timeMachine.resetTime()


@pytest.fixture
def raw_plan():
    """Mutable copy of the test plan."""
    return copy.deepcopy(TEST_PLAN)


@pytest.fixture
def rule_set(monkeypatch):
    """Test plan, also installed as the active plan."""
    loaded = load_rule_set(TEST_PLAN)
    monkeypatch.setattr(rule_set_module, "_RULE_SET_CACHE", loaded)
    return loaded


@pytest.fixture
def config_values(monkeypatch):
    """Isolated Config store."""
    monkeypatch.setattr(Config, "_config", {
        Config.DATABASE_URL: "sqlite://",
        Config.COMPENSATION_PLAN_PATH: None,
        Config.DOWNLINE_TREE_DEPTH: 3,
        Config.RECONCILE_INTERVAL_MINUTES: 10,
        Config.RANK_CHECK_HOUR: 0,
        Config.LOG_LEVEL: "INFO",
    })
    return Config


# =============================================================================
# BUILDER FIXTURES
# =============================================================================

@pytest.fixture
def make_distributor(session):
    """
    Create a distributor and place it in the matrix under parent.

    Returns the User. Level and leg position are derived from the parent.
    """

    def _make(parent=None, userId=None, rank="distributor", status="active",
              role="distributor", autoshipActive=False, autoshipAmount="0.00",
              place=True, legPosition=None, name=None):
        user = User(
            userID=userId,
            email=None,
            firstname=name or "Dist",
            surname="Test",
            role=role,
            sponsorID=parent.userID if parent else None,
            rank=rank,
            status=status,
            autoshipActive=autoshipActive,
            autoshipAmount=Decimal(autoshipAmount),
        )
        session.add(user)
        session.flush()

        if place:
            if parent is not None:
                parentPosition = session.query(MatrixPosition).filter_by(userID=parent.userID).first()
                level = parentPosition.level + 1
                siblings = session.query(MatrixPosition).filter_by(parentID=parent.userID).count()
            else:
                level = 1
                siblings = 0

            session.add(MatrixPosition(
                userID=user.userID,
                sponsorID=parent.userID if parent else None,
                parentID=parent.userID if parent else None,
                level=level,
                position=siblings + 1,
                legPosition=legPosition if legPosition is not None else (siblings + 1 if parent else None),
            ))
            session.flush()

        return user

    return _make


@pytest.fixture
def make_chain(make_distributor, session):
    """Linear chain root → ... → last; returns the users root first."""

    def _make(length, **kwargs):
        users = []
        parent = None
        for i in range(length):
            parent = make_distributor(parent, name=f"Level{i}", **kwargs)
            users.append(parent)
        session.commit()
        return users

    return _make


_order_counter = {"n": 0}


@pytest.fixture
def make_order(session):
    """
    Create an order with one line item per (unit CV, quantity) pair.
    Paid orders get paidAt = virtual now unless given.
    """

    def _make(buyer, items=((Decimal("100.00"), 1),), paid=True, distributor=None, paidAt=None):
        _order_counter["n"] += 1
        subtotal = sum((Decimal(str(cv)) * qty for cv, qty in items), Decimal("0"))

        order = Order(
            orderNumber=f"ORD-{_order_counter['n']:06d}",
            userID=buyer.userID,
            distributorID=distributor.userID if distributor else None,
            subtotal=subtotal,
            total=subtotal,
            status="completed" if paid else "pending",
            paymentStatus="paid" if paid else "pending",
            paidAt=(paidAt or timeMachine.now) if paid else None,
        )
        for cv, qty in items:
            order.items.append(OrderItem(
                quantity=qty,
                price=Decimal(str(cv)),
                commissionableValue=Decimal(str(cv)),
            ))

        session.add(order)
        session.commit()
        return order

    return _make
