"""
Guild: a named, slug-addressed community with exactly one owner.
Pure schema.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import JSON, CheckConstraint, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from guildhall.core.database.base import Base, IdMixin, TimestampMixin

# JSONB on PostgreSQL (indexable, typed ->> access); plain JSON elsewhere.
SettingsDocument = JSON().with_variant(JSONB(), "postgresql")

# Column widths; configured length limits never exceed these.
SLUG_COLUMN_LENGTH = 100
NAME_COLUMN_LENGTH = 100
DESCRIPTION_COLUMN_LENGTH = 500


class Guild(Base, IdMixin, TimestampMixin):
    """
    Guild row.

    Schema-only:
    - slug: unique forever, immutable after creation
    - owner_id: opaque user reference of the single owner
    - settings: versioned settings document (see modules.guild.settings)
    - member_count: derived counter, equal to the number of APPROVED memberships
    """

    __tablename__ = "guilds"
    __table_args__ = (
        CheckConstraint("member_count >= 0", name="member_count_non_negative"),
    )

    slug: Mapped[str] = mapped_column(String(SLUG_COLUMN_LENGTH), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(NAME_COLUMN_LENGTH), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(
        String(DESCRIPTION_COLUMN_LENGTH), nullable=True
    )

    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    settings: Mapped[Dict[str, Any]] = mapped_column(
        SettingsDocument,
        nullable=False,
        default=dict,
    )

    member_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"Guild(id={self.id!r}, slug={self.slug!r}, owner_id={self.owner_id!r})"
