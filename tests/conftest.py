# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator
from contextlib import contextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite://")
# Keep scrypt cheap so key wrapping and password hashing stay fast under test.
os.environ.setdefault("KDF_SCRYPT_N", str(2**10))

from parley_stage.api.v1.dependencies import get_chat_channel
from parley_stage.core.security import create_access_token, hash_password
from parley_stage.db.session import Base
from parley_stage.db.session import get_db as app_get_session
from parley_stage.main import app as fastapi_app
from parley_stage.models import Follow, User
from parley_stage.services.chat import ChatService
from parley_stage.services.chat_channel import ChatChannel
from parley_stage.services.cipher import KeyPair, MessageCipher
from parley_stage.services.connections import ConnectionRegistry
from parley_stage.services.keys import KeyManager

TEST_DB_URL = "sqlite://"

ALICE_PASSWORD = "alice-password"
BOB_PASSWORD = "bob-password"


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture(scope="session")
def cipher() -> MessageCipher:
    """Return a cipher with the test scrypt cost."""
    return MessageCipher()


@pytest.fixture(scope="session")
def key_pair(cipher: MessageCipher) -> KeyPair:
    """Return one RSA keypair shared by tests that only need any valid key."""
    return cipher.generate_key_pair()


def _create_user(db_session: Session, username: str, password: str) -> User:
    user = User(username=username, password_hash=hash_password(password))
    db_session.add(user)
    db_session.flush()
    db_session.refresh(user)
    return user


@pytest.fixture()
def alice(db_session: Session) -> User:
    """Create and return the primary test user."""
    return _create_user(db_session, "alice", ALICE_PASSWORD)


@pytest.fixture()
def bob(db_session: Session) -> User:
    """Create and return the secondary test user."""
    return _create_user(db_session, "bob", BOB_PASSWORD)


@pytest.fixture()
def carol(db_session: Session) -> User:
    """Create a third user with no follow edges."""
    return _create_user(db_session, "carol", "carol-password")


@pytest.fixture()
def mutual_follow(db_session: Session, alice: User, bob: User) -> None:
    """Make alice and bob follow each other."""
    db_session.add_all(
        [
            Follow(follower_id=alice.id, followed_id=bob.id),
            Follow(follower_id=bob.id, followed_id=alice.id),
        ]
    )
    db_session.flush()


@pytest.fixture()
def bob_keys(db_session: Session, bob: User, cipher: MessageCipher) -> KeyPair:
    """Issue bob's chat keypair."""
    return KeyManager(ChatService(db_session), cipher).generate_keys(bob.id, BOB_PASSWORD)


@pytest.fixture()
def alice_keys(db_session: Session, alice: User, cipher: MessageCipher) -> KeyPair:
    """Issue alice's chat keypair."""
    return KeyManager(ChatService(db_session), cipher).generate_keys(alice.id, ALICE_PASSWORD)


@pytest.fixture()
def alice_headers(alice: User) -> dict[str, str]:
    """Return authorization headers for alice."""
    return {"Authorization": f"Bearer {create_access_token(alice.id)}"}


@pytest.fixture()
def bob_headers(bob: User) -> dict[str, str]:
    """Return authorization headers for bob."""
    return {"Authorization": f"Bearer {create_access_token(bob.id)}"}


@pytest.fixture()
def chat_registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture()
def chat_channel(
    app: FastAPI,
    db_session: Session,
    chat_registry: ConnectionRegistry,
    cipher: MessageCipher,
) -> Iterator[ChatChannel]:
    """Chat channel bound to the test session and installed on the app."""

    @contextmanager
    def session_scope() -> Iterator[Session]:
        yield db_session

    channel = ChatChannel(
        chat_registry,
        session_scope=session_scope,
        cipher=cipher,
        handshake_timeout=2.0,
    )
    app.dependency_overrides[get_chat_channel] = lambda: channel
    try:
        yield channel
    finally:
        app.dependency_overrides.pop(get_chat_channel, None)
