"""
Identity Reconciliation - Database Models

SQLAlchemy model for the contacts table plus the plain snapshots the
engine passes around once a row has been read.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum

from sqlalchemy import (
    BigInteger, Column, String, DateTime, ForeignKey, Index,
    CheckConstraint, Enum as SQLEnum, text
)

from database import Base


class LinkPrecedence(str, Enum):
    """Position of a contact inside its cluster"""
    PRIMARY = "primary"
    SECONDARY = "secondary"


class ContactDB(Base):
    """
    Contact - the sole identity entity.

    A primary row owns a cluster; secondaries point at it through
    linked_id. Rows are soft-deleted only.
    """
    __tablename__ = "contacts"
    __table_args__ = (
        CheckConstraint(
            "email IS NOT NULL OR phone_number IS NOT NULL",
            name="contacts_has_fragment"
        ),
        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="contacts_precedence_link"
        ),
        Index("ix_contacts_email", "email", postgresql_where=text("deleted_at IS NULL")),
        Index("ix_contacts_phone_number", "phone_number", postgresql_where=text("deleted_at IS NULL")),
        Index("ix_contacts_linked_id", "linked_id", postgresql_where=text("deleted_at IS NULL")),
    )

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    email = Column(String(255))
    phone_number = Column(String(50))
    linked_id = Column(BigInteger, ForeignKey("contacts.id"))
    link_precedence = Column(
        SQLEnum(
            LinkPrecedence,
            name="link_precedence",
            values_callable=lambda e: [m.value for m in e]
        ),
        nullable=False
    )
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=text("clock_timestamp()"))
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=text("clock_timestamp()"))
    deleted_at = Column(DateTime(timezone=True))


CONTACT_COLUMNS = (
    ContactDB.id,
    ContactDB.email,
    ContactDB.phone_number,
    ContactDB.linked_id,
    ContactDB.link_precedence,
    ContactDB.created_at,
    ContactDB.updated_at,
    ContactDB.deleted_at,
)


@dataclass(frozen=True)
class Contact:
    """Read-only snapshot of a contacts row."""
    id: int
    email: Optional[str]
    phone_number: Optional[str]
    linked_id: Optional[int]
    link_precedence: LinkPrecedence
    created_at: datetime
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row) -> "Contact":
        """Build a snapshot from a result row mapping."""
        return cls(
            id=row["id"],
            email=row["email"],
            phone_number=row["phone_number"],
            linked_id=row["linked_id"],
            link_precedence=LinkPrecedence(row["link_precedence"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            deleted_at=row["deleted_at"],
        )

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def primary_id(self) -> int:
        """Id of the primary this row belongs to (itself when primary)."""
        return self.id if self.linked_id is None else self.linked_id


@dataclass
class IdentifyResult:
    """Consolidated view of one identity cluster."""
    primary_contact_id: int
    emails: List[str] = field(default_factory=list)
    phone_numbers: List[str] = field(default_factory=list)
    secondary_contact_ids: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact": {
                "primaryContactId": self.primary_contact_id,
                "emails": self.emails,
                "phoneNumbers": self.phone_numbers,
                "secondaryContactIds": self.secondary_contact_ids,
            }
        }
