from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from .extensions import db, login_manager


CHARACTER_ROLES = ("protagonist", "antagonist", "supporting", "minor")


def _new_id() -> str:
    return str(uuid.uuid4())


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)
    profile_picture_url = db.Column(db.String(500), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    projects = db.relationship("Project", backref="owner", lazy=True, cascade="all, delete-orphan")

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    @property
    def display_name(self) -> str:
        name = (self.first_name or self.last_name or "").strip()
        if name:
            return name
        return (self.email or "").split("@")[0] or "Author"

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<User {self.email}>"


@login_manager.user_loader
def load_user(user_id: str) -> Optional["User"]:
    return db.session.get(User, user_id)


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    title = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=False, index=True)
    word_count = db.Column(db.Integer, nullable=False, default=0)
    last_edited = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    chapters = db.relationship(
        "Chapter",
        backref="project",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Chapter.order_index",
    )
    characters = db.relationship(
        "Character",
        backref="project",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Character.created_at.desc()",
    )
    locations = db.relationship(
        "Location",
        backref="project",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="Location.created_at.desc()",
    )
    timeline_events = db.relationship(
        "TimelineEvent",
        backref="project",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="TimelineEvent.order_index",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Project {self.title}>"


class Chapter(db.Model):
    __tablename__ = "chapters"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    project_id = db.Column(db.String(36), db.ForeignKey("projects.id"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False, default="")
    order_index = db.Column(db.Integer, nullable=False, default=0)
    word_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Chapter {self.order_index}: {self.title}>"


class Character(db.Model):
    __tablename__ = "characters"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    project_id = db.Column(db.String(36), db.ForeignKey("projects.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    role = db.Column(db.String(20), nullable=False, default="supporting")
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    relationships_as_a = db.relationship(
        "CharacterRelationship",
        foreign_keys="CharacterRelationship.character_a_id",
        backref="character_a",
        lazy=True,
        cascade="all, delete-orphan",
    )
    relationships_as_b = db.relationship(
        "CharacterRelationship",
        foreign_keys="CharacterRelationship.character_b_id",
        backref="character_b",
        lazy=True,
        cascade="all, delete-orphan",
    )

    @property
    def relationships(self) -> list["CharacterRelationship"]:
        return list(self.relationships_as_a) + list(self.relationships_as_b)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Character {self.name} ({self.role})>"


class CharacterRelationship(db.Model):
    __tablename__ = "character_relationships"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    character_a_id = db.Column(db.String(36), db.ForeignKey("characters.id"), nullable=False, index=True)
    character_b_id = db.Column(db.String(36), db.ForeignKey("characters.id"), nullable=False, index=True)
    relationship_type = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.CheckConstraint("character_a_id != character_b_id", name="ck_relationship_distinct"),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<CharacterRelationship {self.relationship_type}>"


class Location(db.Model):
    __tablename__ = "locations"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    project_id = db.Column(db.String(36), db.ForeignKey("projects.id"), nullable=False, index=True)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Location {self.name}>"


class TimelineEvent(db.Model):
    __tablename__ = "timeline_events"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    project_id = db.Column(db.String(36), db.ForeignKey("projects.id"), nullable=False, index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    event_date = db.Column(db.String(120), nullable=True)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<TimelineEvent {self.order_index}: {self.title}>"
