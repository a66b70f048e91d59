from fastapi import APIRouter, HTTPException, status, Depends
from uuid import UUID
from typing import List, NoReturn

from app.dependencies.dbDependecies import db_dependency
from app.modules.auth.dependencies import AuthDependencies
from app.modules.auth.schemas import AuthContext
from app.modules.approvals.service import (
    ApprovalWorkflowService, ActiveWorkflowService, ApprovalRoutingService
)
from app.modules.approvals.schemas import (
    ApprovalWorkflowInput, ApprovalWorkflowInfoUpdate, ApprovalWorkflowOut,
    ActiveWorkflowOut, TransactionContext, EvaluationResult, ResolvedStep,
)
from app.modules.approvals.exceptions import (
    ApprovalWorkflowError, WorkflowValidationError, WorkflowForbiddenError,
    WorkflowInUseError, WorkflowInactiveError, PersistenceError,
)

approvals_router = APIRouter(prefix="/approval-workflows", tags=["Approval Workflows"])

WORKFLOW_NOT_FOUND = "El flujo de aprobación ya no existe"
COMPANY_NOT_FOUND = "Empresa no encontrada"

require_admin = AuthDependencies.require_owner_or_admin()
require_member = AuthDependencies.require_any_role()


def _raise_http(error: ApprovalWorkflowError) -> NoReturn:
    """Traduce errores del dominio a respuestas HTTP"""
    if isinstance(error, WorkflowValidationError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"loc": e.loc, "msg": e.message, "type": e.type} for e in error.errors]
        )
    if isinstance(error, WorkflowForbiddenError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No autorizado para esta operación")
    if isinstance(error, (WorkflowInUseError, WorkflowInactiveError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    if isinstance(error, PersistenceError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No se pudo completar la operación, intente más tarde"
        )
    raise error


@approvals_router.get("/", response_model=List[ApprovalWorkflowOut])
def list_workflows(db: db_dependency, auth_context: AuthContext = Depends(require_member)):
    return ApprovalWorkflowService(db).list_workflows(auth_context.tenant_id)


@approvals_router.post("/", response_model=ApprovalWorkflowOut, status_code=status.HTTP_201_CREATED)
def create_workflow(
    data: ApprovalWorkflowInput,
    db: db_dependency,
    auth_context: AuthContext = Depends(require_admin)
):
    try:
        return ApprovalWorkflowService(db).create_workflow(auth_context.tenant_id, data)
    except ApprovalWorkflowError as e:
        _raise_http(e)


@approvals_router.get("/active", response_model=ActiveWorkflowOut)
def get_active_workflow(db: db_dependency, auth_context: AuthContext = Depends(require_member)):
    workflow = ActiveWorkflowService(db).get_active_workflow(auth_context.tenant_id)
    return ActiveWorkflowOut(
        company_id=auth_context.tenant_id,
        active_expense_workflow_id=workflow.id if workflow else None,
        workflow=ApprovalWorkflowOut.model_validate(workflow) if workflow else None,
    )


@approvals_router.delete("/active", response_model=ActiveWorkflowOut)
def clear_active_workflow(db: db_dependency, auth_context: AuthContext = Depends(require_admin)):
    try:
        company = ActiveWorkflowService(db).clear_active_workflow(auth_context.tenant_id)
    except ApprovalWorkflowError as e:
        _raise_http(e)
    if company is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=COMPANY_NOT_FOUND)
    return ActiveWorkflowOut(company_id=company.id, active_expense_workflow_id=None, workflow=None)


@approvals_router.post("/evaluate", response_model=EvaluationResult)
def evaluate_active_workflow(
    context: TransactionContext,
    db: db_dependency,
    auth_context: AuthContext = Depends(require_member)
):
    return ApprovalRoutingService(db).evaluate_active(auth_context.tenant_id, context)


@approvals_router.post("/approvers", response_model=List[ResolvedStep])
def resolve_approvers(
    context: TransactionContext,
    db: db_dependency,
    auth_context: AuthContext = Depends(require_member)
):
    return ApprovalRoutingService(db).resolve_approvers(auth_context.tenant_id, context)


@approvals_router.get("/{workflow_id}", response_model=ApprovalWorkflowOut)
def get_workflow(workflow_id: UUID, db: db_dependency, auth_context: AuthContext = Depends(require_member)):
    workflow = ApprovalWorkflowService(db).get_workflow(workflow_id, auth_context.tenant_id)
    if workflow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=WORKFLOW_NOT_FOUND)
    return workflow


@approvals_router.put("/{workflow_id}", response_model=ApprovalWorkflowOut)
def replace_workflow(
    workflow_id: UUID,
    data: ApprovalWorkflowInput,
    db: db_dependency,
    auth_context: AuthContext = Depends(require_admin)
):
    try:
        workflow = ApprovalWorkflowService(db).update_workflow(workflow_id, data, auth_context.tenant_id)
    except ApprovalWorkflowError as e:
        _raise_http(e)
    if workflow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=WORKFLOW_NOT_FOUND)
    return workflow


@approvals_router.patch("/{workflow_id}", response_model=ApprovalWorkflowOut)
def update_workflow_info(
    workflow_id: UUID,
    data: ApprovalWorkflowInfoUpdate,
    db: db_dependency,
    auth_context: AuthContext = Depends(require_admin)
):
    try:
        workflow = ApprovalWorkflowService(db).update_workflow_info(workflow_id, data, auth_context.tenant_id)
    except ApprovalWorkflowError as e:
        _raise_http(e)
    if workflow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=WORKFLOW_NOT_FOUND)
    return workflow


@approvals_router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_workflow(workflow_id: UUID, db: db_dependency, auth_context: AuthContext = Depends(require_admin)):
    try:
        deleted = ApprovalWorkflowService(db).delete_workflow(workflow_id, auth_context.tenant_id)
    except ApprovalWorkflowError as e:
        _raise_http(e)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=WORKFLOW_NOT_FOUND)


@approvals_router.post("/{workflow_id}/activate", response_model=ActiveWorkflowOut)
def activate_workflow(workflow_id: UUID, db: db_dependency, auth_context: AuthContext = Depends(require_admin)):
    service = ActiveWorkflowService(db)
    try:
        company = service.set_active_workflow(auth_context.tenant_id, workflow_id)
    except ApprovalWorkflowError as e:
        _raise_http(e)
    if company is None:
        detail = WORKFLOW_NOT_FOUND if service.workflows.get_workflow(workflow_id) is None else COMPANY_NOT_FOUND
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    workflow = service.get_active_workflow(company.id)
    return ActiveWorkflowOut(
        company_id=company.id,
        active_expense_workflow_id=company.active_expense_workflow_id,
        workflow=ApprovalWorkflowOut.model_validate(workflow) if workflow else None,
    )


@approvals_router.post("/{workflow_id}/evaluate", response_model=EvaluationResult)
def evaluate_workflow(
    workflow_id: UUID,
    context: TransactionContext,
    db: db_dependency,
    auth_context: AuthContext = Depends(require_member)
):
    workflow = ApprovalWorkflowService(db).get_workflow(workflow_id, auth_context.tenant_id)
    if workflow is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=WORKFLOW_NOT_FOUND)
    return ApprovalRoutingService(db).evaluate(workflow, context)
