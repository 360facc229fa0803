"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response and realtime payload schemas, see schemas.py.
"""

from sqlalchemy import Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from groupchat.storage import Base


class User(Base):
    """
    Account row. Only the fields the chat core and the login flow need.

    Table: users
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, nullable=False, unique=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    profile_picture = Column(String, nullable=True)
    created_at = Column(String, nullable=False)  # Server time ISO-8601
    last_login = Column(String, nullable=True)

    messages = relationship("Message", back_populates="sender", cascade="all, delete-orphan")


class Message(Base):
    """
    A chat message posted to a room.

    Table: messages
    content holds either text or an image reference; the two are not
    distinguished at write time.
    created_at is the sole ordering key (ties broken by id).
    """
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    content = Column(Text, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    server_id = Column(String, nullable=False, index=True)  # room key
    created_at = Column(String, nullable=False, index=True)  # ISO-8601 UTC, microseconds

    sender = relationship("User", back_populates="messages")
