from app.database.database import Base
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Numeric, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from app.common.mixins import TimestampMixin
import enum
import uuid


class MemberRole(str, enum.Enum):
    """Roles de los miembros dentro de una empresa"""
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"
    CASHIER = "CASHIER"
    REPORTER = "REPORTER"


class Company(Base):
    """
    Empresa (organización / tenant).

    `active_expense_workflow_id` es el puntero al flujo de aprobación de gastos
    vigente. Es la única fuente de verdad de "qué flujo aplica ahora"; el campo
    `is_active` de cada flujo solo indica si es elegible para activarse.
    """
    __tablename__ = "companies"

    id = Column(UUID(as_uuid=True), primary_key=True, index=True, default=uuid.uuid4)
    name = Column(String, unique=True, index=True)
    description = Column(String, nullable=True)
    nit = Column(String(50), unique=True, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Política de respaldo cuando no hay flujo activo
    expense_approval_required = Column(Boolean, default=False, nullable=False)
    expense_approval_threshold = Column(Numeric(15, 2), nullable=True)
    # Comprobante exigido por encima del umbral (sin umbral: siempre)
    expense_receipt_required = Column(Boolean, default=False, nullable=False)
    expense_receipt_threshold = Column(Numeric(15, 2), nullable=True)

    active_expense_workflow_id = Column(
        UUID(as_uuid=True),
        ForeignKey("approval_workflows.id", use_alter=True, name="fk_companies_active_expense_workflow"),
        nullable=True,
    )

    members = relationship("CompanyMember", back_populates="company", cascade="all, delete-orphan")
    workflows = relationship(
        "ApprovalWorkflow",
        foreign_keys="ApprovalWorkflow.tenant_id",
        back_populates="company",
    )
    active_expense_workflow = relationship(
        "ApprovalWorkflow",
        foreign_keys=[active_expense_workflow_id],
        post_update=True,
    )


class CompanyMember(Base, TimestampMixin):
    __tablename__ = "company_members"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id = Column(UUID(as_uuid=True), ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    email = Column(String, nullable=False)
    role = Column(Enum(MemberRole), nullable=False, default=MemberRole.EMPLOYEE, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    company = relationship("Company", back_populates="members")

    __table_args__ = (
        UniqueConstraint("company_id", "email", name="uq_company_member_email"),
    )
