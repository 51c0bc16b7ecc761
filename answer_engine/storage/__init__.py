"""
Storage Module.

Repository protocol plus in-memory and SQL implementations.
"""

from answer_engine.storage.memory import InMemoryRepository
from answer_engine.storage.repository import (
    AnswerNotFound,
    AttemptNotFound,
    QuestionNotFound,
    Repository,
)
from answer_engine.storage.sql import SqlRepository, create_db_and_tables, create_db_engine

__all__ = [
    "AnswerNotFound",
    "AttemptNotFound",
    "InMemoryRepository",
    "QuestionNotFound",
    "Repository",
    "SqlRepository",
    "create_db_and_tables",
    "create_db_engine",
]
