"""
SQLAlchemy ORM models for RFP Gate.

Everything hangs off an RFP and is cascade-deleted with it. NDA audit entries
hang off the NDA they document and are otherwise append-only.
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime,
    ForeignKey, JSON, UniqueConstraint, CheckConstraint, Index, event
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from rfpgate.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============= ENUMS =============
# Stored as plain strings guarded by CHECK constraints.

class UserRole(str, enum.Enum):
    ADMIN = "admin"
    CLIENT_REVIEWER = "client_reviewer"
    BIDDER = "bidder"


class CompanyRole(str, enum.Enum):
    ADMIN = "admin"
    MEMBER = "member"
    PENDING = "pending"


class RFPVisibility(str, enum.Enum):
    PUBLIC = "public"
    CONFIDENTIAL = "confidential"


class RFPStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    CLOSED = "closed"


class NDAStatus(str, enum.Enum):
    # PENDING is part of the vocabulary but no operation produces it.
    PENDING = "pending"
    SIGNED = "signed"
    APPROVED = "approved"
    REJECTED = "rejected"


NDA_TERMINAL_STATUSES = frozenset({NDAStatus.APPROVED.value, NDAStatus.REJECTED.value})


class AccessRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


def enum_values(enum_cls):
    return [e.value for e in enum_cls]


def _in_check(column: str, enum_cls, name: str, nullable: bool = False) -> CheckConstraint:
    values = ", ".join(f"'{v}'" for v in enum_values(enum_cls))
    clause = f"{column} IN ({values})"
    if nullable:
        clause = f"{column} IS NULL OR {clause}"
    return CheckConstraint(clause, name=name)


# ============= COMPANIES & USERS =============

class Company(Base):
    """Bidding company. Members inherit its approved NDAs."""
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, index=True)
    website = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    members = relationship("User", back_populates="company")
    ndas = relationship("CompanyNDA", back_populates="company")


class User(Base):
    """Portal user profile."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255))
    title = Column(String(255))
    role = Column(String(32), nullable=False, default=UserRole.BIDDER.value)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True, index=True)
    company_role = Column(String(32), nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    company = relationship("Company", back_populates="members")

    __table_args__ = (
        _in_check("role", UserRole, "ck_users_role"),
        _in_check("company_role", CompanyRole, "ck_users_company_role", nullable=True),
    )


# ============= RFPS & DOCUMENTS =============

class RFP(Base):
    """Request for Proposal issued by a client."""
    __tablename__ = "rfps"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    client_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    visibility = Column(String(20), nullable=False, default=RFPVisibility.PUBLIC.value)
    status = Column(String(20), nullable=False, default=RFPStatus.DRAFT.value)
    closing_date = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    client = relationship("User")
    documents = relationship(
        "Document", back_populates="rfp", cascade="all, delete-orphan", passive_deletes=True
    )
    individual_ndas = relationship(
        "IndividualNDA", back_populates="rfp", cascade="all, delete-orphan", passive_deletes=True
    )
    company_ndas = relationship(
        "CompanyNDA", back_populates="rfp", cascade="all, delete-orphan", passive_deletes=True
    )
    access_requests = relationship(
        "RFPAccessRequest", back_populates="rfp", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        _in_check("visibility", RFPVisibility, "ck_rfps_visibility"),
        _in_check("status", RFPStatus, "ck_rfps_status"),
    )


class Document(Base):
    """File attached to an RFP."""
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, index=True)
    rfp_id = Column(Integer, ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    file_path = Column(String(1000), nullable=False)
    file_type = Column(String(100))
    requires_nda = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rfp = relationship("RFP", back_populates="documents")


# ============= NDAS =============

class IndividualNDA(Base):
    """NDA signed by one user for one RFP."""
    __tablename__ = "rfp_nda_access"

    id = Column(Integer, primary_key=True, index=True)
    rfp_id = Column(Integer, ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=NDAStatus.SIGNED.value, index=True)

    # Signer
    full_name = Column(String(255), nullable=False)
    title = Column(String(255))
    company = Column(String(255))
    signature_data = Column(JSON, default=dict)
    signed_at = Column(DateTime(timezone=True), default=utcnow)
    ip_address = Column(String(50))
    user_agent = Column(Text)

    # Countersignature
    countersigned_by = Column(Integer, ForeignKey("users.id"))
    countersigned_at = Column(DateTime(timezone=True))
    countersigner_name = Column(String(255))
    countersigner_title = Column(String(255))
    countersignature_data = Column(JSON, default=dict)

    # Rejection
    rejection_reason = Column(Text)
    rejection_date = Column(DateTime(timezone=True))
    rejected_by = Column(Integer, ForeignKey("users.id"))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rfp = relationship("RFP", back_populates="individual_ndas")
    user = relationship("User", foreign_keys=[user_id])
    # The database cascades audit rows; the ORM never deletes them itself.
    audit_entries = relationship(
        "NDAAuditEntry", viewonly=True, order_by="NDAAuditEntry.id",
        primaryjoin="IndividualNDA.id == NDAAuditEntry.nda_id",
    )

    __table_args__ = (
        UniqueConstraint('rfp_id', 'user_id', name='uq_rfp_nda_access_rfp_user'),
        _in_check("status", NDAStatus, "ck_rfp_nda_access_status"),
    )


class CompanyNDA(Base):
    """NDA signed by a company admin on behalf of every company member."""
    __tablename__ = "company_ndas"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    rfp_id = Column(Integer, ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False, index=True)
    signed_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(String(20), nullable=False, default=NDAStatus.SIGNED.value, index=True)

    full_name = Column(String(255), nullable=False)
    title = Column(String(255))
    signature_data = Column(JSON, default=dict)
    signed_at = Column(DateTime(timezone=True), default=utcnow)
    ip_address = Column(String(50))
    user_agent = Column(Text)

    countersigned_by = Column(Integer, ForeignKey("users.id"))
    countersigned_at = Column(DateTime(timezone=True))
    countersigner_name = Column(String(255))
    countersigner_title = Column(String(255))
    countersignature_data = Column(JSON, default=dict)

    rejection_reason = Column(Text)
    rejection_date = Column(DateTime(timezone=True))
    rejected_by = Column(Integer, ForeignKey("users.id"))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rfp = relationship("RFP", back_populates="company_ndas")
    company = relationship("Company", back_populates="ndas")
    signer = relationship("User", foreign_keys=[signed_by])
    audit_entries = relationship(
        "NDAAuditEntry", viewonly=True, order_by="NDAAuditEntry.id",
        primaryjoin="CompanyNDA.id == NDAAuditEntry.company_nda_id",
    )

    __table_args__ = (
        UniqueConstraint('company_id', 'rfp_id', name='uq_company_ndas_company_rfp'),
        _in_check("status", NDAStatus, "ck_company_ndas_status"),
    )


# ============= RFP ACCESS REQUESTS =============

class RFPAccessRequest(Base):
    """Per-user approval to see a confidential RFP."""
    __tablename__ = "rfp_access"

    id = Column(Integer, primary_key=True, index=True)
    rfp_id = Column(Integer, ForeignKey("rfps.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=AccessRequestStatus.PENDING.value)
    decided_by = Column(Integer, ForeignKey("users.id"))
    decided_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    rfp = relationship("RFP", back_populates="access_requests")
    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        UniqueConstraint('rfp_id', 'user_id', name='uq_rfp_access_rfp_user'),
        _in_check("status", AccessRequestStatus, "ck_rfp_access_status"),
    )


# ============= NDA AUDIT TRAIL =============

class AuditTrailImmutableError(RuntimeError):
    """Raised when code tries to update or delete an NDA audit entry."""


class NDAAuditEntry(Base):
    """Append-only record of an NDA lifecycle action."""
    __tablename__ = "nda_audit_trail"

    id = Column(Integer, primary_key=True, index=True)
    nda_id = Column(Integer, ForeignKey("rfp_nda_access.id", ondelete="CASCADE"), nullable=True, index=True)
    company_nda_id = Column(Integer, ForeignKey("company_ndas.id", ondelete="CASCADE"), nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)
    # "metadata" is reserved on declarative classes
    details = Column("metadata", JSON, default=dict)
    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        CheckConstraint(
            "(nda_id IS NULL) <> (company_nda_id IS NULL)",
            name="ck_nda_audit_trail_one_target",
        ),
    )


@event.listens_for(NDAAuditEntry, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise AuditTrailImmutableError(f"nda_audit_trail entry {target.id} is append-only")


@event.listens_for(NDAAuditEntry, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise AuditTrailImmutableError(f"nda_audit_trail entry {target.id} is append-only")


# ============= NOTIFICATIONS =============

class Notification(Base):
    """In-app notification written by the notification worker."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False)
    reference_id = Column(Integer)
    read_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('ix_notifications_user_created', 'user_id', 'created_at'),
    )
