import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Generator, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base
from starlette.concurrency import run_in_threadpool

from groupchat.config import settings
from groupchat.errors import PersistenceFailure, ValidationFailure

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite because blocking calls run in
# the thread pool while the event loop keeps serving sockets
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args,
    echo=False,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
_clock_lock = threading.Lock()
_last_created_at: Optional[str] = None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def next_created_at() -> str:
    """
    Server-assigned creation time for a new message.

    Never goes backwards within the process, even if the wall clock does.
    """
    global _last_created_at
    with _clock_lock:
        now = utc_now_iso()
        if _last_created_at is not None and now < _last_created_at:
            now = _last_created_at
        _last_created_at = now
        return now


@dataclass(frozen=True)
class UserDisplay:
    username: str
    avatar_ref: Optional[str]


@dataclass(frozen=True)
class StoredMessage:
    id: int
    content: str
    sender_id: int
    room_id: str
    created_at: str


@dataclass(frozen=True)
class HistoryRow:
    id: int
    content: str
    sender_id: int
    username: str
    avatar_ref: Optional[str]
    created_at: str


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {settings.DATABASE_URL}")
    try:
        # Import models to register them with Base.metadata
        from groupchat import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and the schema is applied.

    Returns:
        True if DB is healthy and both tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        inspector = inspect(engine)
        for table in ("users", "messages"):
            if not inspector.has_table(table):
                logger.error(f"Database schema not applied: '{table}' table not found")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# User Repository Functions
# =============================================================================

def create_user(
    db: Session,
    username: str,
    email: str,
    password_hash: str,
    profile_picture: Optional[str] = None,
):
    """
    Create a new account.

    Raises:
        ValidationFailure: username or email already taken
        PersistenceFailure: any other database error
    """
    from groupchat.models import User

    logger.info(f"Creating user: username={username}")
    user = User(
        username=username,
        email=email,
        password_hash=password_hash,
        profile_picture=profile_picture,
        created_at=utc_now_iso(),
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError:
        db.rollback()
        logger.info(f"Duplicate user detected: {username}")
        raise ValidationFailure("The username or email is already taken.")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create user {username}: {e}")
        raise PersistenceFailure("Failed to create user") from e

    logger.info(f"User created successfully: id={user.id}")
    return user


def get_user(db: Session, user_id: int):
    from groupchat.models import User

    return db.get(User, user_id)


def get_user_by_login(db: Session, email: Optional[str] = None, username: Optional[str] = None):
    """
    Look up an account by email, falling back to username.

    Returns:
        User object if found, None otherwise
    """
    from groupchat.models import User

    if email:
        query = db.query(User).filter(User.email == email)
    elif username:
        query = db.query(User).filter(User.username == username)
    else:
        return None
    return query.first()


def touch_last_login(db: Session, user) -> None:
    user.last_login = utc_now_iso()
    db.commit()


def update_user_profile(
    db: Session,
    user_id: int,
    username: Optional[str] = None,
    profile_picture: Optional[str] = None,
):
    """
    Update the display attributes of an account.

    Returns:
        The updated User, or None if it does not exist

    Raises:
        ValidationFailure: new username already taken
    """
    user = get_user(db, user_id)
    if user is None:
        return None

    if username is not None:
        user.username = username
    if profile_picture is not None:
        user.profile_picture = profile_picture

    try:
        db.commit()
        db.refresh(user)
    except IntegrityError:
        db.rollback()
        raise ValidationFailure("The username is already taken.")
    logger.info(f"Profile updated: id={user_id}")
    return user


def get_user_display(db: Session, user_id: int) -> Optional[UserDisplay]:
    """Resolve the display data (username, avatar) shown next to a message."""
    user = get_user(db, user_id)
    if user is None:
        return None
    return UserDisplay(username=user.username, avatar_ref=user.profile_picture)


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(db: Session, content: str, sender_id: int, room_id: str) -> StoredMessage:
    """
    Persist a chat message.

    Args:
        db: Database session
        content: Message text or image reference
        sender_id: Verified identity of the sending session
        room_id: Owning room key

    Returns:
        StoredMessage with the assigned id and creation time

    Raises:
        PersistenceFailure: the write failed
    """
    from groupchat.models import Message

    logger.info(f"Creating message: sender={sender_id}, room={room_id}")

    try:
        message = Message(
            content=content,
            user_id=sender_id,
            server_id=room_id,
            created_at=next_created_at(),
        )
        db.add(message)
        db.commit()
        db.refresh(message)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create message in room {room_id}: {e}")
        raise PersistenceFailure("Failed to store message") from e

    logger.info(f"Message created successfully: id={message.id}")
    return StoredMessage(
        id=message.id,
        content=message.content,
        sender_id=message.user_id,
        room_id=message.server_id,
        created_at=message.created_at,
    )


def list_messages(db: Session, room_id: str) -> list[HistoryRow]:
    """
    Return the full history of a room with sender display data.

    Ordering: created_at ASC, id ASC (deterministic, matches insertion order).
    """
    from groupchat.models import Message, User

    logger.info(f"Querying history for room: {room_id}")

    rows = (
        db.query(Message, User)
        .join(User, Message.user_id == User.id)
        .filter(Message.server_id == room_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )
    logger.info(f"Retrieved {len(rows)} messages for room {room_id}")

    return [
        HistoryRow(
            id=message.id,
            content=message.content,
            sender_id=message.user_id,
            username=user.username,
            avatar_ref=user.profile_picture,
            created_at=message.created_at,
        )
        for message, user in rows
    ]


# =============================================================================
# Async gateway used by the realtime core
# =============================================================================

class PersistenceGateway:
    """
    The store as seen from the event loop.

    Each call opens its own session and runs the blocking repository function
    in the thread pool, so a handler suspends here while others proceed.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory or SessionLocal

    def _run(self, fn, *args):
        with self._session_factory() as db:
            return fn(db, *args)

    async def create_message(self, content: str, sender_id: int, room_id: str) -> StoredMessage:
        return await run_in_threadpool(self._run, create_message, content, sender_id, room_id)

    async def get_user_display(self, user_id: int) -> Optional[UserDisplay]:
        try:
            return await run_in_threadpool(self._run, get_user_display, user_id)
        except SQLAlchemyError as e:
            raise PersistenceFailure("Failed to load user") from e

    async def list_messages(self, room_id: str) -> list[HistoryRow]:
        try:
            return await run_in_threadpool(self._run, list_messages, room_id)
        except SQLAlchemyError as e:
            raise PersistenceFailure("Failed to load history") from e
