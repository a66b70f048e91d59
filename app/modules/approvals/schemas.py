"""
Esquemas Pydantic para flujos de aprobación

Incluye:
- Esquemas de entrada con validaciones cruzadas (tipo de condición/acción vs payload)
- Esquemas de salida del árbol flujo → pasos → condiciones/acciones
- Esquemas de evaluación: contexto de transacción y requerimientos de aprobación
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_core import PydanticCustomError
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from app.modules.company.models import MemberRole
from app.modules.approvals.models import ConditionType, ApprovalActionType, ApprovalMode


# ===== ENTRADA =====

class ApprovalStepConditionInput(BaseModel):
    """Condición de un paso; el payload requerido depende del tipo"""
    type: ConditionType
    min_amount: Optional[Decimal] = Field(default=None, description="Monto mínimo (exclusivo)")
    max_amount: Optional[Decimal] = Field(default=None, description="Monto máximo (inclusivo)")
    expense_category_id: Optional[UUID] = None
    location_id: Optional[UUID] = None

    @model_validator(mode='after')
    def validate_payload(self):
        if self.type == ConditionType.AMOUNT_RANGE:
            if self.min_amount is None and self.max_amount is None:
                raise PydanticCustomError(
                    'condition_payload',
                    'AMOUNT_RANGE requiere min_amount o max_amount'
                )
            if (
                self.min_amount is not None
                and self.max_amount is not None
                and self.min_amount >= self.max_amount
            ):
                raise PydanticCustomError(
                    'amount_range_order',
                    'min_amount debe ser menor que max_amount'
                )
        elif self.type == ConditionType.EXPENSE_CATEGORY and self.expense_category_id is None:
            raise PydanticCustomError(
                'condition_payload',
                'EXPENSE_CATEGORY requiere expense_category_id'
            )
        elif self.type == ConditionType.LOCATION and self.location_id is None:
            raise PydanticCustomError(
                'condition_payload',
                'LOCATION requiere location_id'
            )
        return self


class ApprovalStepActionInput(BaseModel):
    """Acción de un paso: a quién se le pide aprobación"""
    type: ApprovalActionType
    approver_role: Optional[MemberRole] = None
    specific_member_id: Optional[UUID] = None
    approval_mode: ApprovalMode = ApprovalMode.ANY_ONE

    @field_validator('approval_mode', mode='before')
    @classmethod
    def default_mode(cls, v):
        return ApprovalMode.ANY_ONE if v is None else v

    @model_validator(mode='after')
    def validate_payload(self):
        if self.type == ApprovalActionType.ROLE and self.approver_role is None:
            raise PydanticCustomError('action_payload', 'ROLE requiere approver_role')
        if self.type == ApprovalActionType.SPECIFIC_MEMBER and self.specific_member_id is None:
            raise PydanticCustomError('action_payload', 'SPECIFIC_MEMBER requiere specific_member_id')
        return self


class ApprovalWorkflowStepInput(BaseModel):
    step_number: int = Field(gt=0, description="Posición/identidad del paso, única en el flujo")
    name: str = Field(min_length=1)
    description: Optional[str] = None
    all_conditions_must_match: bool = True
    conditions: List[ApprovalStepConditionInput] = Field(min_length=1)
    actions: List[ApprovalStepActionInput] = Field(min_length=1)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('El nombre del paso no puede estar vacío')
        return v.strip()


class ApprovalWorkflowInput(BaseModel):
    """Definición completa de un flujo (crear o reemplazar)"""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    is_active: bool = True
    steps: List[ApprovalWorkflowStepInput] = Field(min_length=1)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('El nombre del flujo no puede estar vacío')
        return v.strip()

    @field_validator('steps')
    @classmethod
    def validate_unique_step_numbers(cls, steps):
        seen = set()
        duplicated = set()
        for step in steps:
            if step.step_number in seen:
                duplicated.add(step.step_number)
            seen.add(step.step_number)
        if duplicated:
            raise PydanticCustomError(
                'duplicate_step_number',
                'Los números de paso deben ser únicos en el flujo (repetidos: {numbers})',
                {'numbers': ', '.join(str(n) for n in sorted(duplicated))}
            )
        return steps


class ApprovalWorkflowInfoUpdate(BaseModel):
    """Actualización de campos escalares sin tocar los pasos"""
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError('El nombre del flujo no puede estar vacío')
        return v.strip() if v else v

    @model_validator(mode='after')
    def validate_not_empty(self):
        # name e is_active en null no cambian nada; description en null sí la borra
        changes = {
            field for field in self.model_fields_set
            if field == "description" or getattr(self, field) is not None
        }
        if not changes:
            raise PydanticCustomError('empty_update', 'No se enviaron datos para actualizar')
        return self


# ===== SALIDA =====

class ApprovalStepConditionOut(BaseModel):
    id: UUID
    type: ConditionType
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    expense_category_id: Optional[UUID] = None
    location_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


class ApprovalStepActionOut(BaseModel):
    id: UUID
    type: ApprovalActionType
    approver_role: Optional[MemberRole] = None
    specific_member_id: Optional[UUID] = None
    approval_mode: ApprovalMode

    model_config = ConfigDict(from_attributes=True)


class ApprovalWorkflowStepOut(BaseModel):
    id: UUID
    step_number: int
    name: str
    description: Optional[str] = None
    all_conditions_must_match: bool
    conditions: List[ApprovalStepConditionOut]
    actions: List[ApprovalStepActionOut]

    model_config = ConfigDict(from_attributes=True)


class ApprovalWorkflowOut(BaseModel):
    id: UUID
    tenant_id: UUID
    name: str
    description: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime
    steps: List[ApprovalWorkflowStepOut]

    model_config = ConfigDict(from_attributes=True)


class ActiveWorkflowOut(BaseModel):
    company_id: UUID
    active_expense_workflow_id: Optional[UUID] = None
    workflow: Optional[ApprovalWorkflowOut] = None


# ===== EVALUACIÓN =====

class TransactionContext(BaseModel):
    """Datos del gasto/transacción a evaluar"""
    amount: Decimal
    category_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    submitter_id: UUID
    has_receipt: Optional[bool] = Field(default=None, description="El gasto trae comprobante adjunto")


class ApprovalRequirement(BaseModel):
    """Requerimiento emitido por una acción de un paso que aplica"""
    type: ApprovalActionType
    approver_role: Optional[MemberRole] = None
    specific_member_id: Optional[UUID] = None
    approval_mode: ApprovalMode

    model_config = ConfigDict(frozen=True)


class ApplicableStep(BaseModel):
    step_number: int
    step_name: str
    requirements: List[ApprovalRequirement]

    model_config = ConfigDict(frozen=True)


class EvaluationResult(BaseModel):
    workflow_id: Optional[UUID] = None
    applicable_steps: List[ApplicableStep]


class ResolvedRequirement(BaseModel):
    """Requerimiento con los miembros concretos que pueden aprobar"""
    requirement: ApprovalRequirement
    approver_ids: List[UUID]


class ResolvedStep(BaseModel):
    step_number: int
    step_name: str
    requirements: List[ResolvedRequirement]
