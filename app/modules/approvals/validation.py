"""
Validación estructural de definiciones de flujo.

`validate_workflow_input` nunca lanza: devuelve los datos validados o la
lista de errores por campo para que el llamador decida (formulario, API,
importación por lotes).
"""
import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional, Type

from pydantic import BaseModel, ValidationError

from app.modules.approvals.schemas import ApprovalWorkflowInput, ApprovalWorkflowInfoUpdate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldError:
    loc: str
    message: str
    type: str


@dataclass
class WorkflowValidationResult:
    success: bool
    data: Optional[BaseModel] = None
    errors: List[FieldError] = field(default_factory=list)


def _format_loc(loc) -> str:
    return ".".join(str(part) for part in loc) or "__root__"


def errors_from_pydantic(exc: ValidationError) -> List[FieldError]:
    return [
        FieldError(loc=_format_loc(err["loc"]), message=err["msg"], type=err["type"])
        for err in exc.errors()
    ]


def _validate(schema: Type[BaseModel], raw: Any) -> WorkflowValidationResult:
    if isinstance(raw, schema):
        raw = raw.model_dump(exclude_unset=True)
    try:
        data = schema.model_validate(raw)
    except ValidationError as e:
        errors = errors_from_pydantic(e)
        logger.info(f"Workflow input validation failed with {len(errors)} error(s)")
        return WorkflowValidationResult(success=False, errors=errors)
    return WorkflowValidationResult(success=True, data=data)


def validate_workflow_input(raw: Any) -> WorkflowValidationResult:
    """Valida una definición completa (nombre, pasos, condiciones y acciones)."""
    return _validate(ApprovalWorkflowInput, raw)


def validate_workflow_info_input(raw: Any) -> WorkflowValidationResult:
    """Valida una actualización de campos escalares del flujo."""
    return _validate(ApprovalWorkflowInfoUpdate, raw)
