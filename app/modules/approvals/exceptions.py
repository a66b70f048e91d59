"""
Errores del módulo de flujos de aprobación.

"No encontrado" no es una excepción: los servicios devuelven None y el
router decide la respuesta.
"""
from typing import List


class ApprovalWorkflowError(Exception):
    """Error base del módulo"""


class WorkflowValidationError(ApprovalWorkflowError):
    def __init__(self, errors: List["FieldError"]):
        self.errors = errors
        super().__init__(f"Datos de flujo inválidos ({len(errors)} errores)")


class WorkflowForbiddenError(ApprovalWorkflowError):
    """Referencia a un recurso de otra empresa"""


class WorkflowInUseError(ApprovalWorkflowError):
    """El flujo es el activo de su empresa y no puede eliminarse"""


class WorkflowInactiveError(ApprovalWorkflowError):
    """El flujo no es elegible para activarse (is_active = False)"""


class PersistenceError(ApprovalWorkflowError):
    """Falla inesperada de almacenamiento; no se reintenta"""
