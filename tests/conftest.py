import os
import tempfile

os.environ.setdefault("EXPENSES_BCRYPT_ROUNDS", "4")
os.environ.setdefault("EXPENSES_DATA_DIR", tempfile.mkdtemp(prefix="expenses-tests-"))

from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app
from models import ExpenseCategory, PaymentMethod
from schemas import ExpenseIn, SignupIn
from services import ExpenseService, UserService

TODAY = date(2025, 3, 15)
PASSWORD = "Secret123"


@pytest.fixture
def session():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


def make_user(session, username="alice", email="alice@example.com"):
    return UserService(session).register(
        SignupIn(username=username, email=email, password=PASSWORD)
    )


@pytest.fixture
def user(session):
    return make_user(session)


def add_expense(
    session,
    user_id,
    amount,
    on,
    category=ExpenseCategory.food_dining,
    method=PaymentMethod.cash,
    description="Lunch",
    tags=None,
    today=TODAY,
):
    expense, _ = ExpenseService(session, user_id, today=today).create(
        ExpenseIn(
            amount=Decimal(str(amount)),
            category=category,
            date=on,
            payment_method=method,
            description=description,
            tags=tags or [],
        )
    )
    return expense


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    testing_session = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = testing_session()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def signup(client, username="alice", email="alice@example.com"):
    response = client.post(
        "/auth/signup",
        json={"username": username, "email": email, "password": PASSWORD},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def auth_headers(tokens):
    return {"Authorization": f"Bearer {tokens['accessToken']}"}
