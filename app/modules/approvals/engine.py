"""
Motor de evaluación de reglas de aprobación.

Funciones puras sin I/O: reciben un flujo (modelo ORM o ApprovalWorkflowOut,
se accede por atributos) y un TransactionContext, y devuelven los pasos que
aplican en orden ascendente de step_number con sus requerimientos.

Reglas:
- AMOUNT_RANGE: (min ausente o monto > min) y (max ausente o monto <= max)
- EXPENSE_CATEGORY / LOCATION: igualdad con el id del contexto
- Un paso combina sus condiciones con AND (all_conditions_must_match) u OR
- No se detiene en el primer paso: devuelve todos los que aplican
- Una condición sin su payload no coincide y solo se registra un warning
"""
import logging
from decimal import Decimal
from typing import List

from app.modules.approvals.models import ConditionType, ApprovalActionType, ApprovalMode
from app.modules.approvals.schemas import TransactionContext, ApprovalRequirement, ApplicableStep

logger = logging.getLogger(__name__)


def _enum_value(value) -> str:
    return getattr(value, "value", value)


def _matches_amount_range(condition, amount: Decimal) -> bool:
    min_amount = condition.min_amount
    max_amount = condition.max_amount
    if min_amount is None and max_amount is None:
        logger.warning(f"AMOUNT_RANGE condition {getattr(condition, 'id', None)} has no bounds, treated as non-matching")
        return False
    min_ok = min_amount is None or amount > Decimal(str(min_amount))
    max_ok = max_amount is None or amount <= Decimal(str(max_amount))
    return min_ok and max_ok


def condition_matches(condition, context: TransactionContext) -> bool:
    """Evalúa una condición individual contra el contexto."""
    condition_type = _enum_value(condition.type)

    if condition_type == ConditionType.AMOUNT_RANGE.value:
        return _matches_amount_range(condition, context.amount)

    if condition_type == ConditionType.EXPENSE_CATEGORY.value:
        if condition.expense_category_id is None:
            logger.warning(f"EXPENSE_CATEGORY condition {getattr(condition, 'id', None)} has no category, treated as non-matching")
            return False
        return context.category_id == condition.expense_category_id

    if condition_type == ConditionType.LOCATION.value:
        if condition.location_id is None:
            logger.warning(f"LOCATION condition {getattr(condition, 'id', None)} has no location, treated as non-matching")
            return False
        return context.location_id == condition.location_id

    logger.warning(f"Unhandled condition type {condition_type!r}, treated as non-matching")
    return False


def step_applies(step, context: TransactionContext) -> bool:
    conditions = list(step.conditions or [])
    if not conditions:
        logger.warning(f"Step {step.step_number} has no conditions, skipped")
        return False

    results = []
    for condition in conditions:
        try:
            results.append(condition_matches(condition, context))
        except Exception as e:
            # Un payload corrupto no debe bloquear la evaluación de los demás pasos
            logger.warning(f"Condition evaluation failed in step {step.step_number}: {e}")
            results.append(False)

    if step.all_conditions_must_match:
        return all(results)
    return any(results)


def _requirement_from_action(action) -> ApprovalRequirement:
    action_type = ApprovalActionType(_enum_value(action.type))
    if action_type == ApprovalActionType.ROLE and action.approver_role is None:
        raise ValueError("ROLE action without approver_role")
    if action_type == ApprovalActionType.SPECIFIC_MEMBER and action.specific_member_id is None:
        raise ValueError("SPECIFIC_MEMBER action without specific_member_id")
    mode = action.approval_mode
    return ApprovalRequirement(
        type=action_type,
        approver_role=action.approver_role if action_type == ApprovalActionType.ROLE else None,
        specific_member_id=action.specific_member_id if action_type == ApprovalActionType.SPECIFIC_MEMBER else None,
        approval_mode=ApprovalMode(_enum_value(mode)) if mode is not None else ApprovalMode.ANY_ONE,
    )


def resolve_requirements(step) -> List[ApprovalRequirement]:
    requirements = []
    for action in step.actions or []:
        try:
            requirements.append(_requirement_from_action(action))
        except Exception as e:
            logger.warning(f"Skipping malformed action in step {step.step_number}: {e}")
    return requirements


def evaluate_workflow(workflow, context: TransactionContext) -> List[ApplicableStep]:
    """
    Recorre los pasos del flujo en orden de step_number y devuelve todos los
    que aplican al contexto. Lista vacía = ningún paso aplica.
    """
    applicable = []
    for step in sorted(workflow.steps or [], key=lambda s: s.step_number):
        if not step_applies(step, context):
            continue
        applicable.append(ApplicableStep(
            step_number=step.step_number,
            step_name=step.name,
            requirements=resolve_requirements(step),
        ))

    logger.debug(
        f"Workflow {getattr(workflow, 'id', None)} evaluated for amount {context.amount}: "
        f"{[s.step_number for s in applicable]} applicable"
    )
    return applicable
