"""
Flujos de aprobación predefinidos.

Se crean por la misma ruta validada que cualquier flujo (ApprovalWorkflowService),
así que una plantilla mal formada falla igual que una petición de la API.
"""
from decimal import Decimal
from typing import Dict, Any
from uuid import UUID

from sqlalchemy.orm import Session

from app.modules.approvals.models import ApprovalWorkflow
from app.modules.approvals.service import ApprovalWorkflowService


def low_value_definition() -> Dict[str, Any]:
    """Gastos hasta $100 requieren aprobación de un gerente"""
    return {
        "name": "Low Value Expense Approval",
        "description": "Requires Manager approval for expenses up to $100.",
        "is_active": True,
        "steps": [
            {
                "step_number": 1,
                "name": "Manager Review",
                "description": "Approval required by a Manager.",
                "all_conditions_must_match": True,
                "conditions": [
                    {"type": "AMOUNT_RANGE", "max_amount": Decimal("100.00")},
                ],
                "actions": [
                    {"type": "ROLE", "approver_role": "MANAGER", "approval_mode": "ANY_ONE"},
                ],
            },
        ],
    }


def tiered_definition() -> Dict[str, Any]:
    """$100-$1000 gerente, más de $1000 administrador"""
    return {
        "name": "Tiered Expense Approval",
        "description": "Manager approval for $100-$1000, Admin approval for >$1000.",
        "is_active": True,
        "steps": [
            {
                "step_number": 1,
                "name": "Manager Approval",
                "description": "Approval for mid-range expenses.",
                "all_conditions_must_match": True,
                "conditions": [
                    {"type": "AMOUNT_RANGE", "min_amount": Decimal("100.00"), "max_amount": Decimal("1000.00")},
                ],
                "actions": [
                    {"type": "ROLE", "approver_role": "MANAGER", "approval_mode": "ANY_ONE"},
                ],
            },
            {
                "step_number": 2,
                "name": "Admin/Director Approval",
                "description": "Approval for high-value expenses.",
                "all_conditions_must_match": True,
                "conditions": [
                    {"type": "AMOUNT_RANGE", "min_amount": Decimal("1000.00")},
                ],
                "actions": [
                    {"type": "ROLE", "approver_role": "ADMIN", "approval_mode": "ANY_ONE"},
                ],
            },
        ],
    }


def branch_office_definition(location_id: UUID) -> Dict[str, Any]:
    """
    Gastos de una sucursal requieren aprobación de un gerente.

    El paso apunta al rol MANAGER; cuál gerente concreto aprueba lo decide el
    directorio de miembros (el encargado de la ubicación, si tiene ese rol).
    """
    return {
        "name": f"Branch Office Approval ({location_id})",
        "description": f"Requires Manager approval for expenses at location ID: {location_id}.",
        "is_active": True,
        "steps": [
            {
                "step_number": 1,
                "name": "Branch Manager Review",
                "all_conditions_must_match": True,
                "conditions": [
                    {"type": "LOCATION", "location_id": location_id},
                ],
                "actions": [
                    {"type": "ROLE", "approver_role": "MANAGER", "approval_mode": "ANY_ONE"},
                ],
            },
        ],
    }


def seed_low_value_workflow(db: Session, company_id: UUID) -> ApprovalWorkflow:
    return ApprovalWorkflowService(db).create_workflow(company_id, low_value_definition())


def seed_tiered_workflow(db: Session, company_id: UUID) -> ApprovalWorkflow:
    return ApprovalWorkflowService(db).create_workflow(company_id, tiered_definition())


def seed_branch_office_workflow(db: Session, company_id: UUID, location_id: UUID) -> ApprovalWorkflow:
    return ApprovalWorkflowService(db).create_workflow(company_id, branch_office_definition(location_id))
