"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from typing import Iterable, Set

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db


def _get_column_names(table_name: str) -> Set[str]:
    inspector = inspect(db.engine)
    return {column["name"] for column in inspector.get_columns(table_name)}


def ensure_database_schema() -> None:
    """Ensure that essential schema updates are applied.

    The function runs on every application start. It creates the schema on a
    fresh database, creates any table added after the initial deployment and
    back-fills the word count / last edited columns on databases created
    before those fields existed.
    """

    try:
        inspector = inspect(db.engine)
        table_names: Iterable[str] = inspector.get_table_names()

        if "projects" not in table_names:
            db.create_all()
            inspector = inspect(db.engine)
            table_names = inspector.get_table_names()

        # Import locally to avoid circular import issues during application setup.
        from .models import Chapter, Character, CharacterRelationship, Location, TimelineEvent

        required_tables = {
            "chapters": Chapter.__table__,
            "characters": Character.__table__,
            "character_relationships": CharacterRelationship.__table__,
            "locations": Location.__table__,
            "timeline_events": TimelineEvent.__table__,
        }

        for table_name, table in required_tables.items():
            if table_name not in table_names:
                table.create(bind=db.engine)

        alter_statements = []

        project_columns = _get_column_names("projects")
        if "word_count" not in project_columns:
            alter_statements.append(
                "ALTER TABLE projects ADD COLUMN word_count INTEGER NOT NULL DEFAULT 0"
            )
        if "last_edited" not in project_columns:
            alter_statements.append("ALTER TABLE projects ADD COLUMN last_edited TIMESTAMP")

        chapter_columns = _get_column_names("chapters")
        if "word_count" not in chapter_columns:
            alter_statements.append(
                "ALTER TABLE chapters ADD COLUMN word_count INTEGER NOT NULL DEFAULT 0"
            )

        for statement in alter_statements:
            with db.engine.begin() as connection:
                connection.execute(text(statement))
    except SQLAlchemyError:
        # Re-raise so the application does not continue in a partially
        # configured state.
        raise
