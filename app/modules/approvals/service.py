"""
Servicios de negocio para flujos de aprobación

Implementa:
- ApprovalWorkflowService: CRUD de flujos con reemplazo atómico de pasos
- ActiveWorkflowService: puntero de flujo activo por empresa
- ApprovalRoutingService: evaluación del flujo activo y resolución de aprobadores

Convenciones:
- "No encontrado" se devuelve como None, nunca como excepción
- Toda mutación hace commit al final; cualquier error hace rollback completo
- Los errores de base de datos se envuelven en PersistenceError y no se reintentan
"""

import logging
from typing import List, Optional, Any
from uuid import UUID

from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.modules.company.models import Company, CompanyMember, MemberRole
from app.modules.company.service import MembershipDirectory
from app.modules.categories.models import ExpenseCategory
from app.modules.pdv.models import PDV
from app.modules.approvals import engine
from app.modules.approvals.models import (
    ApprovalWorkflow, ApprovalWorkflowStep, ApprovalStepCondition, ApprovalStepAction,
    ApprovalActionType,
)
from app.modules.approvals.schemas import (
    ApprovalWorkflowInput, ApprovalWorkflowStepInput, ApprovalStepConditionInput,
    ApprovalStepActionInput, ApprovalWorkflowInfoUpdate, TransactionContext,
    ApplicableStep, EvaluationResult, ResolvedRequirement, ResolvedStep,
)
from app.modules.approvals.validation import validate_workflow_input, validate_workflow_info_input
from app.modules.approvals.exceptions import (
    WorkflowValidationError, WorkflowForbiddenError, WorkflowInUseError,
    WorkflowInactiveError, PersistenceError,
)

logger = logging.getLogger(__name__)


class ApprovalWorkflowService:
    """Repositorio de definiciones de flujos de aprobación"""

    def __init__(self, db: Session):
        self.db = db

    # ----- consultas -----

    def _query(self):
        return self.db.query(ApprovalWorkflow).options(
            selectinload(ApprovalWorkflow.steps).selectinload(ApprovalWorkflowStep.conditions),
            selectinload(ApprovalWorkflow.steps).selectinload(ApprovalWorkflowStep.actions),
        )

    def get_workflow(self, workflow_id: UUID, company_id: Optional[UUID] = None) -> Optional[ApprovalWorkflow]:
        """Obtener flujo con su árbol de pasos (ordenados por step_number)"""
        query = self._query().filter(ApprovalWorkflow.id == workflow_id)
        if company_id is not None:
            query = query.filter(ApprovalWorkflow.tenant_id == company_id)
        return query.first()

    def list_workflows(self, company_id: UUID) -> List[ApprovalWorkflow]:
        """Listar flujos de la empresa, más recientes primero"""
        return self._query().filter(
            ApprovalWorkflow.tenant_id == company_id
        ).order_by(ApprovalWorkflow.created_at.desc(), ApprovalWorkflow.name).all()

    # ----- mapeo explícito entrada -> modelos -----

    def _build_condition(self, data: ApprovalStepConditionInput) -> ApprovalStepCondition:
        return ApprovalStepCondition(
            type=data.type,
            min_amount=data.min_amount,
            max_amount=data.max_amount,
            expense_category_id=data.expense_category_id,
            location_id=data.location_id,
        )

    def _build_action(self, data: ApprovalStepActionInput) -> ApprovalStepAction:
        return ApprovalStepAction(
            type=data.type,
            approver_role=data.approver_role,
            specific_member_id=data.specific_member_id,
            approval_mode=data.approval_mode,
        )

    def _build_step(self, data: ApprovalWorkflowStepInput) -> ApprovalWorkflowStep:
        return ApprovalWorkflowStep(
            step_number=data.step_number,
            name=data.name,
            description=data.description,
            all_conditions_must_match=data.all_conditions_must_match,
            conditions=[self._build_condition(c) for c in data.conditions],
            actions=[self._build_action(a) for a in data.actions],
        )

    # ----- validaciones -----

    def _validated(self, definition: Any) -> ApprovalWorkflowInput:
        result = validate_workflow_input(definition)
        if not result.success:
            raise WorkflowValidationError(result.errors)
        return result.data

    def _check_references(self, company_id: UUID, data: ApprovalWorkflowInput) -> None:
        """Toda categoría, ubicación o miembro referenciado debe ser de la empresa"""
        category_ids = set()
        location_ids = set()
        member_ids = set()
        for step in data.steps:
            for condition in step.conditions:
                if condition.expense_category_id:
                    category_ids.add(condition.expense_category_id)
                if condition.location_id:
                    location_ids.add(condition.location_id)
            for action in step.actions:
                if action.specific_member_id:
                    member_ids.add(action.specific_member_id)

        checks = [
            (ExpenseCategory, ExpenseCategory.tenant_id, category_ids, "categoría de gasto"),
            (PDV, PDV.tenant_id, location_ids, "ubicación"),
            (CompanyMember, CompanyMember.company_id, member_ids, "miembro"),
        ]
        for model, tenant_column, ids, label in checks:
            if not ids:
                continue
            found = {
                row.id for row in self.db.query(model.id).filter(
                    model.id.in_(ids),
                    tenant_column == company_id
                ).all()
            }
            missing = ids - found
            if missing:
                raise WorkflowForbiddenError(
                    f"Referencia inválida: {label} {sorted(str(m) for m in missing)[0]} no pertenece a esta empresa"
                )

    # ----- mutaciones -----

    def create_workflow(self, company_id: UUID, definition: Any) -> ApprovalWorkflow:
        """
        Crear flujo con todo su árbol en una sola transacción

        Args:
            company_id: ID de la empresa dueña
            definition: datos crudos o ApprovalWorkflowInput

        Returns:
            ApprovalWorkflow: flujo creado con pasos ordenados
        """
        data = self._validated(definition)
        self._check_references(company_id, data)

        try:
            workflow = ApprovalWorkflow(
                tenant_id=company_id,
                name=data.name,
                description=data.description,
                is_active=data.is_active,
                steps=[self._build_step(step) for step in data.steps],
            )
            self.db.add(workflow)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error creating approval workflow for company {company_id}: {e}")
            raise PersistenceError(f"No se pudo crear el flujo de aprobación: {e}") from e
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Approval workflow {workflow.id} '{workflow.name}' created for company {company_id}")
        return self.get_workflow(workflow.id)

    def update_workflow(
        self, workflow_id: UUID, definition: Any, company_id: Optional[UUID] = None
    ) -> Optional[ApprovalWorkflow]:
        """
        Reemplazar el flujo completo: borra todos los pasos y los recrea.

        Todo ocurre en una transacción; si algo falla los pasos anteriores
        quedan intactos. Devuelve None si el flujo no existe.
        """
        data = self._validated(definition)

        workflow = self.get_workflow(workflow_id, company_id)
        if workflow is None:
            return None

        self._check_references(workflow.tenant_id, data)

        try:
            workflow.steps.clear()
            # Los borrados deben llegar a la base antes de insertar step_numbers repetidos
            self.db.flush()

            for step_data in data.steps:
                workflow.steps.append(self._build_step(step_data))

            workflow.name = data.name
            workflow.description = data.description
            workflow.is_active = data.is_active

            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.info(f"Approval workflow {workflow_id} disappeared during update")
            return None
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating approval workflow {workflow_id}: {e}")
            raise PersistenceError(f"No se pudo actualizar el flujo de aprobación: {e}") from e
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Approval workflow {workflow_id} updated with {len(data.steps)} step(s)")
        return self.get_workflow(workflow_id)

    def update_workflow_info(
        self, workflow_id: UUID, update: Any, company_id: Optional[UUID] = None
    ) -> Optional[ApprovalWorkflow]:
        """Actualizar nombre, descripción o elegibilidad sin tocar los pasos"""
        result = validate_workflow_info_input(update)
        if not result.success:
            raise WorkflowValidationError(result.errors)
        data: ApprovalWorkflowInfoUpdate = result.data

        workflow = self.get_workflow(workflow_id, company_id)
        if workflow is None:
            return None

        try:
            fields = data.model_dump(exclude_unset=True)
            if "name" in fields and fields["name"] is None:
                fields.pop("name")
            if "is_active" in fields and fields["is_active"] is None:
                fields.pop("is_active")
            for field, value in fields.items():
                setattr(workflow, field, value)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error updating approval workflow info {workflow_id}: {e}")
            raise PersistenceError(f"No se pudo actualizar el flujo de aprobación: {e}") from e

        self.db.refresh(workflow)
        return workflow

    def delete_workflow(self, workflow_id: UUID, company_id: Optional[UUID] = None) -> bool:
        """
        Eliminar flujo y su árbol. Devuelve False si no existe.

        No se permite eliminar el flujo activo de su empresa: primero hay que
        desactivarlo o activar otro.
        """
        workflow = self.get_workflow(workflow_id, company_id)
        if workflow is None:
            return False

        in_use = self.db.query(Company.id).filter(
            Company.active_expense_workflow_id == workflow.id
        ).first()
        if in_use:
            raise WorkflowInUseError(
                "No se puede eliminar el flujo activo de la empresa. Active otro flujo o desactívelo primero"
            )

        try:
            self.db.delete(workflow)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error deleting approval workflow {workflow_id}: {e}")
            raise PersistenceError(f"No se pudo eliminar el flujo de aprobación: {e}") from e

        logger.info(f"Approval workflow {workflow_id} deleted")
        return True


class ActiveWorkflowService:
    """Puntero al flujo de aprobación de gastos vigente por empresa"""

    def __init__(self, db: Session):
        self.db = db
        self.workflows = ApprovalWorkflowService(db)

    def _get_company(self, company_id: UUID) -> Optional[Company]:
        return self.db.query(Company).filter(Company.id == company_id).first()

    def set_active_workflow(self, company_id: UUID, workflow_id: UUID) -> Optional[Company]:
        """
        Activar un flujo para la empresa (cambio atómico del puntero).

        Devuelve None si el flujo o la empresa no existen. No modifica el campo
        is_active de ningún flujo.
        """
        workflow = self.db.query(ApprovalWorkflow).filter(ApprovalWorkflow.id == workflow_id).first()
        if workflow is None:
            return None
        if workflow.tenant_id != company_id:
            raise WorkflowForbiddenError("El flujo no pertenece a esta empresa")
        if not workflow.is_active:
            raise WorkflowInactiveError("No se puede activar un flujo marcado como inactivo")

        company = self._get_company(company_id)
        if company is None:
            return None

        try:
            company.active_expense_workflow_id = workflow.id
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error setting active workflow for company {company_id}: {e}")
            raise PersistenceError(f"No se pudo activar el flujo: {e}") from e

        logger.info(f"Workflow {workflow_id} set as active for company {company_id}")
        self.db.refresh(company)
        return company

    def clear_active_workflow(self, company_id: UUID) -> Optional[Company]:
        """Dejar la empresa sin flujo activo"""
        company = self._get_company(company_id)
        if company is None:
            return None

        try:
            company.active_expense_workflow_id = None
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Error clearing active workflow for company {company_id}: {e}")
            raise PersistenceError(f"No se pudo desactivar el flujo: {e}") from e

        logger.info(f"Expense approval workflow deactivated for company {company_id}")
        self.db.refresh(company)
        return company

    def get_active_workflow(self, company_id: UUID) -> Optional[ApprovalWorkflow]:
        company = self._get_company(company_id)
        if company is None or company.active_expense_workflow_id is None:
            return None

        workflow = self.workflows.get_workflow(company.active_expense_workflow_id, company_id)
        if workflow is None:
            logger.warning(
                f"Company {company_id} points to missing workflow {company.active_expense_workflow_id}"
            )
        return workflow


class ApprovalRoutingService:
    """
    Une el motor de reglas con el directorio de miembros.

    El ciclo de vida de las solicitudes de aprobación (pendientes, respuestas)
    queda fuera; aquí solo se decide si hace falta aprobación y quién puede darla.
    """

    def __init__(
        self,
        db: Session,
        directory: Optional[MembershipDirectory] = None,
        fallback_roles: Optional[List[str]] = None,
        allow_self_approval: Optional[bool] = None,
    ):
        self.db = db
        self.directory = directory or MembershipDirectory(db)
        self.active = ActiveWorkflowService(db)
        self.fallback_roles = [
            MemberRole(role) for role in (fallback_roles or settings.APPROVAL_FALLBACK_ROLES)
        ]
        self.allow_self_approval = (
            settings.APPROVAL_ALLOW_SELF_APPROVAL if allow_self_approval is None else allow_self_approval
        )

    def evaluate(self, workflow, context: TransactionContext) -> EvaluationResult:
        return EvaluationResult(
            workflow_id=getattr(workflow, "id", None),
            applicable_steps=engine.evaluate_workflow(workflow, context),
        )

    def evaluate_active(self, company_id: UUID, context: TransactionContext) -> EvaluationResult:
        workflow = self.active.get_active_workflow(company_id)
        if workflow is None:
            return EvaluationResult(workflow_id=None, applicable_steps=[])
        return self.evaluate(workflow, context)

    def requires_approval(self, company_id: UUID, context: TransactionContext) -> bool:
        """
        Con flujo activo: requiere aprobación si al menos un paso aplica.
        Sin flujo: política de respaldo de la empresa. Si exige comprobante y el
        gasto supera su umbral sin comprobante, requiere aprobación; luego se
        aplica el umbral de aprobación.
        """
        workflow = self.active.get_active_workflow(company_id)
        if workflow is not None:
            return bool(engine.evaluate_workflow(workflow, context))

        company = self.directory.get_company(company_id)
        if company is None or not company.expense_approval_required:
            return False

        if company.expense_receipt_required and not context.has_receipt:
            receipt_threshold = company.expense_receipt_threshold
            if receipt_threshold is None or context.amount > receipt_threshold:
                logger.info(f"Expense of {context.amount} for company {company_id} needs approval: missing receipt")
                return True

        threshold = company.expense_approval_threshold
        if threshold is None:
            return True
        return context.amount > threshold

    def _approvers_for(self, company_id: UUID, requirement, context: TransactionContext) -> List[UUID]:
        if requirement.type == ApprovalActionType.ROLE:
            approver_ids = self.directory.resolve_approvers_for_role(
                company_id,
                requirement.approver_role,
                context,
                exclude_member_id=None if self.allow_self_approval else context.submitter_id,
            )
        else:
            approver_ids = self.directory.resolve_specific_member(company_id, requirement.specific_member_id)
        if not self.allow_self_approval:
            approver_ids = [member_id for member_id in approver_ids if member_id != context.submitter_id]
        return approver_ids

    def resolve_approvers(self, company_id: UUID, context: TransactionContext) -> List[ResolvedStep]:
        """Pasos que aplican con los ids concretos de quienes pueden aprobar"""
        result = self.evaluate_active(company_id, context)
        resolved = []
        for step in result.applicable_steps:
            resolved.append(ResolvedStep(
                step_number=step.step_number,
                step_name=step.step_name,
                requirements=[
                    ResolvedRequirement(
                        requirement=requirement,
                        approver_ids=self._approvers_for(company_id, requirement, context),
                    )
                    for requirement in step.requirements
                ],
            ))
        return resolved

    def can_member_approve(
        self, company_id: UUID, member_id: UUID, member_role: MemberRole, context: TransactionContext
    ) -> bool:
        """Verifica si un miembro puede aprobar el gasto descrito por el contexto"""
        if member_id == context.submitter_id and not self.allow_self_approval:
            logger.info(f"Member {member_id} cannot approve their own expense")
            return False

        member_role = MemberRole(getattr(member_role, "value", member_role))
        workflow = self.active.get_active_workflow(company_id)

        if workflow is None:
            if not self.requires_approval(company_id, context):
                return False
            return member_role in self.fallback_roles

        # Misma resolución que resolve_approvers: un gerente de otra sucursal no aprueba
        steps: List[ApplicableStep] = engine.evaluate_workflow(workflow, context)
        for step in steps:
            for requirement in step.requirements:
                if requirement.type == ApprovalActionType.ROLE and requirement.approver_role != member_role:
                    continue
                if member_id in self._approvers_for(company_id, requirement, context):
                    return True
        return False
