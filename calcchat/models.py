"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic document and request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, String, Text
from sqlalchemy.orm import declarative_base

# Base class for SQLAlchemy models
Base = declarative_base()


class ChatDocumentRow(Base):
    """
    SQLAlchemy model holding a whole chat document as one JSON blob.

    Table: chat_documents
    Primary Key: key (one row per collection, e.g. "chat:messages")
    """
    __tablename__ = "chat_documents"

    key = Column(String, primary_key=True)
    payload = Column(Text, nullable=False)  # {"messages": [...]} as JSON
    updated_at = Column(String, nullable=False)  # Server time ISO-8601
