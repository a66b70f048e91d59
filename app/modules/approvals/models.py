"""
Modelos SQLAlchemy para el módulo de flujos de aprobación

Un flujo de aprobación es un conjunto ordenado de pasos por empresa:
- ApprovalWorkflow: flujo con nombre, descripción y bandera de elegibilidad
- ApprovalWorkflowStep: paso identificado por step_number (único en el flujo)
- ApprovalStepCondition: predicado sobre el gasto (rango de monto, categoría, ubicación)
- ApprovalStepAction: aprobador requerido cuando el paso aplica (rol o miembro)

Los hijos se eliminan en cascada: actualizar un flujo reemplaza el árbol
completo de pasos dentro de una misma transacción.
"""

from app.database.database import Base
from sqlalchemy import Column, String, Boolean, Integer, ForeignKey, Numeric, Enum, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4
from app.common.mixins import TenantMixin, TimestampMixin
from app.modules.company.models import MemberRole
import enum


# ===== ENUMS =====

class ConditionType(str, enum.Enum):
    """Tipos de condición evaluables contra un gasto"""
    AMOUNT_RANGE = "AMOUNT_RANGE"          # min exclusivo, max inclusivo
    EXPENSE_CATEGORY = "EXPENSE_CATEGORY"
    LOCATION = "LOCATION"


class ApprovalActionType(str, enum.Enum):
    ROLE = "ROLE"
    SPECIFIC_MEMBER = "SPECIFIC_MEMBER"


class ApprovalMode(str, enum.Enum):
    ANY_ONE = "ANY_ONE"   # basta una aprobación del conjunto resuelto
    ALL = "ALL"           # todos los aprobadores resueltos deben aprobar


# ===== MODELOS =====

class ApprovalWorkflow(Base, TenantMixin, TimestampMixin):
    __tablename__ = "approval_workflows"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    # Elegibilidad para ser activado; el flujo vigente lo define Company.active_expense_workflow_id
    is_active = Column(Boolean, default=True, nullable=False)

    company = relationship("Company", foreign_keys="ApprovalWorkflow.tenant_id", back_populates="workflows")
    steps = relationship(
        "ApprovalWorkflowStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="ApprovalWorkflowStep.step_number",
        passive_deletes=True,
    )


class ApprovalWorkflowStep(Base, TimestampMixin):
    __tablename__ = "approval_workflow_steps"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    workflow_id = Column(UUID(as_uuid=True), ForeignKey("approval_workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    step_number = Column(Integer, nullable=False)
    name = Column(String(150), nullable=False)
    description = Column(Text, nullable=True)
    all_conditions_must_match = Column(Boolean, default=True, nullable=False)

    workflow = relationship("ApprovalWorkflow", back_populates="steps")
    conditions = relationship("ApprovalStepCondition", back_populates="step", cascade="all, delete-orphan", passive_deletes=True)
    actions = relationship("ApprovalStepAction", back_populates="step", cascade="all, delete-orphan", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("workflow_id", "step_number", name="uq_workflow_step_number"),
    )


class ApprovalStepCondition(Base, TimestampMixin):
    __tablename__ = "approval_step_conditions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    step_id = Column(UUID(as_uuid=True), ForeignKey("approval_workflow_steps.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Enum(ConditionType), nullable=False)

    # Payload según tipo
    min_amount = Column(Numeric(15, 2), nullable=True)
    max_amount = Column(Numeric(15, 2), nullable=True)
    expense_category_id = Column(UUID(as_uuid=True), ForeignKey("expense_categories.id"), nullable=True)
    location_id = Column(UUID(as_uuid=True), ForeignKey("pdvs.id"), nullable=True)

    step = relationship("ApprovalWorkflowStep", back_populates="conditions")
    expense_category = relationship("ExpenseCategory")
    location = relationship("PDV")


class ApprovalStepAction(Base, TimestampMixin):
    __tablename__ = "approval_step_actions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    step_id = Column(UUID(as_uuid=True), ForeignKey("approval_workflow_steps.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(Enum(ApprovalActionType), nullable=False)
    approver_role = Column(Enum(MemberRole), nullable=True)
    specific_member_id = Column(UUID(as_uuid=True), ForeignKey("company_members.id"), nullable=True)
    approval_mode = Column(Enum(ApprovalMode), nullable=False, default=ApprovalMode.ANY_ONE)

    step = relationship("ApprovalWorkflowStep", back_populates="actions")
    specific_member = relationship("CompanyMember")
