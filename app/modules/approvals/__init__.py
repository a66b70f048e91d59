"""
Módulo de Flujos de Aprobación

Define, valida, persiste y evalúa flujos de aprobación de gastos por empresa.

Características principales:
- Árbol flujo → pasos → condiciones/acciones con validación estructural
- Reemplazo atómico del árbol de pasos en cada actualización
- Un puntero de flujo activo por empresa (Company.active_expense_workflow_id)
- Motor de reglas puro: rango de monto, categoría y ubicación, con modos AND/OR
- Resolución de aprobadores vía directorio de miembros (rol o miembro específico)

Componentes:
- models.py: SQLAlchemy models y enums
- schemas.py: Pydantic schemas de entrada, salida y evaluación
- validation.py: validate_workflow_input (no lanza excepciones)
- engine.py: evaluación pura de reglas
- service.py: repositorio, flujo activo y enrutamiento de aprobaciones
- templates.py: flujos predefinidos
- router.py: Endpoints REST API
- tests.py: Pruebas unitarias y de integración
"""

__version__ = "1.0.0"

from .models import (
    ApprovalWorkflow, ApprovalWorkflowStep, ApprovalStepCondition, ApprovalStepAction,
    ConditionType, ApprovalActionType, ApprovalMode,
)
