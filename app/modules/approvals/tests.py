"""
Tests para el módulo de Flujos de Aprobación

Cubren:
- Validación estructural de definiciones (unicidad, completitud, payload por tipo)
- Motor de reglas: límites de AMOUNT_RANGE, AND/OR, pasos múltiples, fallas cerradas
- Repositorio: creación, reemplazo atómico de pasos, eliminación
- Puntero de flujo activo por empresa
- Enrutamiento: requiere aprobación, resolución de aprobadores, quién puede aprobar
- Endpoints REST con contexto de tenant
"""

import json
import logging
import pytest
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from sqlalchemy.orm import Session

from app.modules.company.models import MemberRole
from app.modules.approvals import engine
from app.modules.approvals.models import (
    ApprovalWorkflowStep, ApprovalStepCondition, ApprovalStepAction,
    ApprovalActionType, ApprovalMode,
)
from app.modules.approvals.schemas import TransactionContext, ApprovalWorkflowInput
from app.modules.approvals.validation import validate_workflow_input, validate_workflow_info_input
from app.modules.approvals.service import (
    ApprovalWorkflowService, ActiveWorkflowService, ApprovalRoutingService
)
from app.modules.approvals.exceptions import (
    WorkflowValidationError, WorkflowForbiddenError, WorkflowInUseError,
    WorkflowInactiveError, PersistenceError,
)
from app.modules.approvals.templates import (
    low_value_definition, seed_low_value_workflow, seed_tiered_workflow, seed_branch_office_workflow,
)


BASE_URL = "/api/v1/approval-workflows"


# ===== HELPERS =====

def _context(amount, submitter_id=None, **kwargs):
    return TransactionContext(amount=Decimal(amount), submitter_id=submitter_id or uuid4(), **kwargs)


def _condition(type_="AMOUNT_RANGE", **payload):
    data = {
        "id": uuid4(), "type": type_, "min_amount": None, "max_amount": None,
        "expense_category_id": None, "location_id": None,
    }
    data.update(payload)
    return SimpleNamespace(**data)


def _action(type_="ROLE", approver_role="MANAGER", specific_member_id=None, approval_mode="ANY_ONE"):
    return SimpleNamespace(
        type=type_, approver_role=approver_role,
        specific_member_id=specific_member_id, approval_mode=approval_mode,
    )


def _step(step_number, conditions, actions=None, all_conditions_must_match=True, name=None):
    return SimpleNamespace(
        step_number=step_number,
        name=name or f"Paso {step_number}",
        all_conditions_must_match=all_conditions_must_match,
        conditions=conditions,
        actions=actions if actions is not None else [_action()],
    )


def _workflow(*steps):
    return SimpleNamespace(id=uuid4(), steps=list(steps))


def _as_json(definition):
    """Los Decimal no son serializables por el cliente HTTP"""
    return json.loads(json.dumps(definition, default=str))


def _error_types(result):
    return {(e.loc, e.type) for e in result.errors}


# ===== TESTS DE VALIDACIÓN =====

class TestWorkflowValidation:
    """Tests de validate_workflow_input"""

    def test_valid_definition(self, boundary_definition):
        """Una definición completa se acepta con sus valores por defecto"""
        result = validate_workflow_input(boundary_definition)

        assert result.success is True
        assert result.errors == []
        assert isinstance(result.data, ApprovalWorkflowInput)
        assert result.data.is_active is True
        assert result.data.steps[0].all_conditions_must_match is True
        assert result.data.steps[0].actions[0].approval_mode == ApprovalMode.ANY_ONE
        assert result.data.steps[1].actions[0].approval_mode == ApprovalMode.ALL

    def test_null_approval_mode_defaults_to_any_one(self, boundary_definition):
        boundary_definition["steps"][0]["actions"][0]["approval_mode"] = None

        result = validate_workflow_input(boundary_definition)

        assert result.success is True
        assert result.data.steps[0].actions[0].approval_mode == ApprovalMode.ANY_ONE

    def test_step_number_gaps_allowed(self, boundary_definition):
        boundary_definition["steps"][1]["step_number"] = 5

        assert validate_workflow_input(boundary_definition).success is True

    def test_duplicate_step_numbers(self, boundary_definition):
        """Dos pasos con el mismo número se rechazan"""
        boundary_definition["steps"][1]["step_number"] = 1

        result = validate_workflow_input(boundary_definition)

        assert result.success is False
        assert ("steps", "duplicate_step_number") in _error_types(result)

    def test_missing_name(self, boundary_definition):
        boundary_definition.pop("name")

        result = validate_workflow_input(boundary_definition)

        assert result.success is False
        assert ("name", "missing") in _error_types(result)

    def test_blank_name(self, boundary_definition):
        boundary_definition["name"] = "   "

        result = validate_workflow_input(boundary_definition)

        assert result.success is False
        assert any(e.loc == "name" for e in result.errors)

    def test_workflow_without_steps(self, boundary_definition):
        boundary_definition["steps"] = []

        result = validate_workflow_input(boundary_definition)

        assert result.success is False
        assert ("steps", "too_short") in _error_types(result)

    def test_step_without_conditions(self, boundary_definition):
        boundary_definition["steps"][0]["conditions"] = []

        result = validate_workflow_input(boundary_definition)

        assert result.success is False
        assert ("steps.0.conditions", "too_short") in _error_types(result)

    def test_step_without_actions(self, boundary_definition):
        boundary_definition["steps"][1]["actions"] = []

        result = validate_workflow_input(boundary_definition)

        assert result.success is False
        assert ("steps.1.actions", "too_short") in _error_types(result)

    def test_amount_range_without_bounds(self, boundary_definition):
        boundary_definition["steps"][0]["conditions"] = [{"type": "AMOUNT_RANGE"}]

        result = validate_workflow_input(boundary_definition)

        assert result.success is False
        assert ("steps.0.conditions.0", "condition_payload") in _error_types(result)

    def test_amount_range_min_not_below_max(self, boundary_definition):
        boundary_definition["steps"][0]["conditions"] = [
            {"type": "AMOUNT_RANGE", "min_amount": "500", "max_amount": "500"}
        ]

        result = validate_workflow_input(boundary_definition)

        assert result.success is False
        assert ("steps.0.conditions.0", "amount_range_order") in _error_types(result)

    @pytest.mark.parametrize("condition_type", ["EXPENSE_CATEGORY", "LOCATION"])
    def test_reference_condition_without_id(self, boundary_definition, condition_type):
        boundary_definition["steps"][0]["conditions"] = [{"type": condition_type}]

        result = validate_workflow_input(boundary_definition)

        assert result.success is False
        assert ("steps.0.conditions.0", "condition_payload") in _error_types(result)

    @pytest.mark.parametrize("action", [
        {"type": "ROLE"},
        {"type": "SPECIFIC_MEMBER", "approver_role": "MANAGER"},
    ])
    def test_action_without_payload(self, boundary_definition, action):
        boundary_definition["steps"][0]["actions"] = [action]

        result = validate_workflow_input(boundary_definition)

        assert result.success is False
        assert ("steps.0.actions.0", "action_payload") in _error_types(result)

    def test_multiple_errors_reported(self, boundary_definition):
        """Se reportan todos los errores, no solo el primero"""
        boundary_definition["name"] = ""
        boundary_definition["steps"][0]["actions"] = []
        boundary_definition["steps"][1]["conditions"] = [{"type": "LOCATION"}]

        result = validate_workflow_input(boundary_definition)

        locs = {e.loc for e in result.errors}
        assert {"name", "steps.0.actions", "steps.1.conditions.0"} <= locs

    @pytest.mark.parametrize("raw", [None, "flujo", 42, []])
    def test_garbage_input_never_raises(self, raw):
        result = validate_workflow_input(raw)

        assert result.success is False
        assert result.errors

    def test_info_update_requires_some_field(self):
        assert validate_workflow_info_input({}).success is False
        assert validate_workflow_info_input({"description": None}).success is True
        assert validate_workflow_info_input({"name": "Nuevo"}).success is True
        assert validate_workflow_info_input({"name": None}).success is False
        assert validate_workflow_info_input({"is_active": None}).success is False
        assert validate_workflow_info_input({"name": None, "description": "Nueva"}).success is True


# ===== TESTS DEL MOTOR DE REGLAS =====

class TestRuleEngine:
    """Tests de evaluación pura (sin base de datos)"""

    @pytest.fixture
    def boundary_workflow(self):
        return _workflow(
            _step(1, [_condition(max_amount=Decimal("100"))], name="Manager Approval"),
            _step(2, [_condition(min_amount=Decimal("100"), max_amount=Decimal("1000"))],
                  actions=[_action(approver_role="ADMIN")], name="Admin Approval"),
        )

    @pytest.mark.parametrize("amount,expected", [
        ("100.00", [1]),
        ("100.01", [2]),
        ("0.00", [1]),
        ("1000.00", [2]),
        ("1000.01", []),
    ])
    def test_amount_range_boundaries(self, boundary_workflow, amount, expected):
        """min es exclusivo y max inclusivo"""
        steps = engine.evaluate_workflow(boundary_workflow, _context(amount))

        assert [s.step_number for s in steps] == expected

    def test_all_applicable_steps_returned_in_order(self):
        """No se detiene en el primer paso que aplica"""
        location_id = uuid4()
        workflow = _workflow(
            _step(7, [_condition("LOCATION", location_id=location_id)], name="Sucursal"),
            _step(2, [_condition(max_amount=Decimal("500"))], name="Monto"),
        )

        steps = engine.evaluate_workflow(workflow, _context("250", location_id=location_id))

        assert [s.step_number for s in steps] == [2, 7]
        assert [s.step_name for s in steps] == ["Monto", "Sucursal"]

    def test_and_versus_or(self):
        category_id = uuid4()
        conditions = [
            _condition(max_amount=Decimal("100")),
            _condition("EXPENSE_CATEGORY", expense_category_id=category_id),
        ]
        context = _context("50", category_id=uuid4())

        and_workflow = _workflow(_step(1, conditions, all_conditions_must_match=True))
        or_workflow = _workflow(_step(1, conditions, all_conditions_must_match=False))

        assert engine.evaluate_workflow(and_workflow, context) == []
        assert [s.step_number for s in engine.evaluate_workflow(or_workflow, context)] == [1]

    def test_category_condition_without_category_in_context(self):
        workflow = _workflow(_step(1, [_condition("EXPENSE_CATEGORY", expense_category_id=uuid4())]))

        assert engine.evaluate_workflow(workflow, _context("10")) == []

    def test_evaluation_is_idempotent(self, boundary_workflow):
        context = _context("100.00")

        assert engine.evaluate_workflow(boundary_workflow, context) == engine.evaluate_workflow(boundary_workflow, context)

    def test_requirements_reflect_actions(self):
        member_id = uuid4()
        workflow = _workflow(_step(1, [_condition(max_amount=Decimal("100"))], actions=[
            _action(approver_role="MANAGER", approval_mode=None),
            _action(type_="SPECIFIC_MEMBER", approver_role=None, specific_member_id=member_id, approval_mode="ALL"),
        ]))

        (step,) = engine.evaluate_workflow(workflow, _context("80"))

        role_requirement, member_requirement = step.requirements
        assert role_requirement.type == ApprovalActionType.ROLE
        assert role_requirement.approver_role == MemberRole.MANAGER
        assert role_requirement.approval_mode == ApprovalMode.ANY_ONE
        assert member_requirement.type == ApprovalActionType.SPECIFIC_MEMBER
        assert member_requirement.specific_member_id == member_id
        assert member_requirement.approval_mode == ApprovalMode.ALL

    def test_malformed_condition_fails_closed(self, caplog):
        """Una condición corrupta no aplica y no bloquea a los demás pasos"""
        workflow = _workflow(
            _step(1, [_condition(min_amount="no-es-un-numero")]),
            _step(2, [_condition(max_amount=Decimal("100"))]),
        )

        with caplog.at_level(logging.WARNING, logger="app.modules.approvals.engine"):
            steps = engine.evaluate_workflow(workflow, _context("50"))

        assert [s.step_number for s in steps] == [2]
        assert "Condition evaluation failed" in caplog.text

    def test_unbounded_amount_range_never_matches(self):
        workflow = _workflow(_step(1, [_condition()]))

        assert engine.evaluate_workflow(workflow, _context("1")) == []

    def test_unknown_condition_type_never_matches(self):
        workflow = _workflow(_step(1, [_condition("HORARIO")]))

        assert engine.evaluate_workflow(workflow, _context("1")) == []

    def test_step_without_conditions_is_skipped(self):
        workflow = _workflow(_step(1, []), _step(2, [_condition(max_amount=Decimal("10"))]))

        assert [s.step_number for s in engine.evaluate_workflow(workflow, _context("5"))] == [2]

    def test_malformed_action_is_skipped(self):
        workflow = _workflow(_step(1, [_condition(max_amount=Decimal("10"))], actions=[
            _action(approver_role=None),
            _action(approver_role="ADMIN"),
        ]))

        (step,) = engine.evaluate_workflow(workflow, _context("5"))

        assert [r.approver_role for r in step.requirements] == [MemberRole.ADMIN]

    def test_low_value_scenario(self, db_session: Session, sample_company):
        """Gasto de $75 pide un gerente; gasto de $150 no pide nada"""
        workflow = seed_low_value_workflow(db_session, sample_company.id)

        (step,) = engine.evaluate_workflow(workflow, _context("75"))
        assert step.step_number == 1
        assert len(step.requirements) == 1
        assert step.requirements[0].type == ApprovalActionType.ROLE
        assert step.requirements[0].approver_role == MemberRole.MANAGER
        assert step.requirements[0].approval_mode == ApprovalMode.ANY_ONE

        assert engine.evaluate_workflow(workflow, _context("150")) == []


# ===== TESTS DEL REPOSITORIO =====

class TestApprovalWorkflowService:
    """Tests de ApprovalWorkflowService contra la base de datos"""

    def test_create_workflow(self, db_session: Session, sample_company, boundary_definition):
        boundary_definition["steps"].reverse()

        workflow = ApprovalWorkflowService(db_session).create_workflow(sample_company.id, boundary_definition)

        assert workflow.id is not None
        assert workflow.tenant_id == sample_company.id
        assert workflow.is_active is True
        assert [s.step_number for s in workflow.steps] == [1, 2]
        assert workflow.steps[1].conditions[0].min_amount == Decimal("100")
        assert workflow.steps[1].actions[0].approval_mode == ApprovalMode.ALL

    def test_create_invalid_workflow(self, db_session: Session, sample_company, boundary_definition):
        boundary_definition["steps"][1]["step_number"] = 1

        with pytest.raises(WorkflowValidationError) as exc_info:
            ApprovalWorkflowService(db_session).create_workflow(sample_company.id, boundary_definition)

        assert exc_info.value.errors[0].type == "duplicate_step_number"
        assert ApprovalWorkflowService(db_session).list_workflows(sample_company.id) == []

    def test_create_for_unknown_company(self, db_session: Session, boundary_definition):
        with pytest.raises(PersistenceError):
            ApprovalWorkflowService(db_session).create_workflow(uuid4(), boundary_definition)

    def test_create_with_foreign_category(self, db_session: Session, sample_company, other_category, boundary_definition):
        """Una categoría de otra empresa no puede usarse en las condiciones"""
        boundary_definition["steps"][0]["conditions"] = [
            {"type": "EXPENSE_CATEGORY", "expense_category_id": other_category.id}
        ]

        with pytest.raises(WorkflowForbiddenError):
            ApprovalWorkflowService(db_session).create_workflow(sample_company.id, boundary_definition)

    def test_create_with_own_references(
        self, db_session: Session, sample_company, members, expense_category, branch_location, boundary_definition
    ):
        boundary_definition["steps"][0]["conditions"] = [
            {"type": "EXPENSE_CATEGORY", "expense_category_id": expense_category.id},
            {"type": "LOCATION", "location_id": branch_location.id},
        ]
        boundary_definition["steps"][0]["actions"] = [
            {"type": "SPECIFIC_MEMBER", "specific_member_id": members["admin"].id}
        ]

        workflow = ApprovalWorkflowService(db_session).create_workflow(sample_company.id, boundary_definition)

        assert branch_location.id in {c.location_id for c in workflow.steps[0].conditions}
        assert workflow.steps[0].actions[0].specific_member_id == members["admin"].id

    def test_get_workflow_scoped_by_company(self, db_session: Session, sample_company, other_company, boundary_definition):
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)

        assert service.get_workflow(workflow.id, sample_company.id).id == workflow.id
        assert service.get_workflow(workflow.id, other_company.id) is None
        assert service.get_workflow(uuid4()) is None

    def test_list_workflows(self, db_session: Session, sample_company, other_company, boundary_definition):
        service = ApprovalWorkflowService(db_session)
        service.create_workflow(sample_company.id, boundary_definition)
        seed_low_value_workflow(db_session, sample_company.id)
        seed_low_value_workflow(db_session, other_company.id)

        workflows = service.list_workflows(sample_company.id)

        assert len(workflows) == 2
        assert all(w.tenant_id == sample_company.id for w in workflows)

    def test_update_replaces_steps(self, db_session: Session, sample_company, boundary_definition):
        """El árbol de pasos se reemplaza completo"""
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)
        old_step_ids = {s.id for s in workflow.steps}

        replacement = low_value_definition()
        replacement["name"] = "Flujo renombrado"
        updated = service.update_workflow(workflow.id, replacement, sample_company.id)

        assert updated.name == "Flujo renombrado"
        assert [s.step_number for s in updated.steps] == [1]
        assert updated.steps[0].name == "Manager Review"
        assert old_step_ids.isdisjoint({s.id for s in updated.steps})
        assert db_session.query(ApprovalWorkflowStep).filter(ApprovalWorkflowStep.workflow_id == workflow.id).count() == 1
        assert db_session.query(ApprovalStepCondition).count() == 1
        assert db_session.query(ApprovalStepAction).count() == 1

    def test_update_reusing_step_numbers(self, db_session: Session, sample_company, boundary_definition):
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)

        boundary_definition["steps"][0]["name"] = "Gerente"
        updated = service.update_workflow(workflow.id, boundary_definition)

        assert [s.step_number for s in updated.steps] == [1, 2]
        assert updated.steps[0].name == "Gerente"

    def test_update_not_found(self, db_session: Session, boundary_definition):
        assert ApprovalWorkflowService(db_session).update_workflow(uuid4(), boundary_definition) is None

    def test_update_other_company(self, db_session: Session, sample_company, other_company, boundary_definition):
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)

        assert service.update_workflow(workflow.id, low_value_definition(), other_company.id) is None

    def test_update_invalid_keeps_steps(self, db_session: Session, sample_company, boundary_definition):
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)

        with pytest.raises(WorkflowValidationError):
            service.update_workflow(workflow.id, {"name": "Sin pasos", "steps": []})

        assert len(service.get_workflow(workflow.id).steps) == 2

    def test_update_is_atomic(self, db_session: Session, sample_company, boundary_definition, monkeypatch):
        """Si falla a mitad del reemplazo, los pasos anteriores quedan intactos"""
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)

        original_build_step = service._build_step
        calls = {"count": 0}

        def failing_build_step(step_data):
            calls["count"] += 1
            if calls["count"] == 2:
                raise RuntimeError("fallo simulado")
            return original_build_step(step_data)

        monkeypatch.setattr(service, "_build_step", failing_build_step)

        replacement = dict(boundary_definition, name="No debe guardarse")
        with pytest.raises(RuntimeError):
            service.update_workflow(workflow.id, replacement)

        reloaded = ApprovalWorkflowService(db_session).get_workflow(workflow.id)
        assert reloaded.name == "Umbrales de monto"
        assert [(s.step_number, s.name) for s in reloaded.steps] == [
            (1, "Manager Approval"), (2, "Admin Approval")
        ]
        assert db_session.query(ApprovalStepCondition).count() == 2

    def test_update_workflow_info(self, db_session: Session, sample_company, boundary_definition):
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)

        updated = service.update_workflow_info(workflow.id, {"name": "  Nuevo nombre  ", "is_active": False})

        assert updated.name == "Nuevo nombre"
        assert updated.is_active is False
        assert updated.description == boundary_definition["description"]
        assert len(updated.steps) == 2

    def test_update_workflow_info_empty(self, db_session: Session, sample_company, boundary_definition):
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)

    @pytest.mark.parametrize("update", [{"name": None}, {"is_active": None}, {"name": None, "is_active": None}])
    def test_update_workflow_info_only_nulls(self, db_session: Session, sample_company, boundary_definition, update):
        """name o is_active en null no cuentan como cambios"""
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)

        with pytest.raises(WorkflowValidationError) as exc_info:
            service.update_workflow_info(workflow.id, update)

        assert exc_info.value.errors[0].type == "empty_update"
        assert service.get_workflow(workflow.id).name == "Umbrales de monto"

        with pytest.raises(WorkflowValidationError):
            service.update_workflow_info(workflow.id, {})

        assert service.update_workflow_info(uuid4(), {"name": "X"}) is None

    def test_delete_workflow(self, db_session: Session, sample_company, boundary_definition):
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)

        assert service.delete_workflow(workflow.id) is True
        assert service.get_workflow(workflow.id) is None
        assert db_session.query(ApprovalWorkflowStep).count() == 0
        assert db_session.query(ApprovalStepCondition).count() == 0
        assert service.delete_workflow(workflow.id) is False

    def test_delete_active_workflow_rejected(self, db_session: Session, sample_company, boundary_definition):
        service = ApprovalWorkflowService(db_session)
        workflow = service.create_workflow(sample_company.id, boundary_definition)
        ActiveWorkflowService(db_session).set_active_workflow(sample_company.id, workflow.id)

        with pytest.raises(WorkflowInUseError):
            service.delete_workflow(workflow.id)

        assert service.get_workflow(workflow.id) is not None


# ===== TESTS DEL FLUJO ACTIVO =====

class TestActiveWorkflowService:
    """Tests del puntero Company.active_expense_workflow_id"""

    def test_no_active_workflow(self, db_session: Session, sample_company):
        assert ActiveWorkflowService(db_session).get_active_workflow(sample_company.id) is None

    def test_activation_switches_pointer(self, db_session: Session, sample_company, boundary_definition):
        """Activar W2 reemplaza a W1 sin modificar el is_active de W1"""
        first = ApprovalWorkflowService(db_session).create_workflow(sample_company.id, boundary_definition)
        second = seed_low_value_workflow(db_session, sample_company.id)
        service = ActiveWorkflowService(db_session)

        service.set_active_workflow(sample_company.id, first.id)
        company = service.set_active_workflow(sample_company.id, second.id)

        assert company.active_expense_workflow_id == second.id
        assert service.get_active_workflow(sample_company.id).id == second.id
        db_session.refresh(first)
        assert first.is_active is True

    def test_activate_unknown_workflow(self, db_session: Session, sample_company):
        assert ActiveWorkflowService(db_session).set_active_workflow(sample_company.id, uuid4()) is None

    def test_activate_other_company_workflow(self, db_session: Session, sample_company, other_company):
        foreign = seed_low_value_workflow(db_session, other_company.id)

        with pytest.raises(WorkflowForbiddenError):
            ActiveWorkflowService(db_session).set_active_workflow(sample_company.id, foreign.id)

        assert ActiveWorkflowService(db_session).get_active_workflow(sample_company.id) is None

    def test_activate_inactive_workflow(self, db_session: Session, sample_company, boundary_definition):
        boundary_definition["is_active"] = False
        workflow = ApprovalWorkflowService(db_session).create_workflow(sample_company.id, boundary_definition)

        with pytest.raises(WorkflowInactiveError):
            ActiveWorkflowService(db_session).set_active_workflow(sample_company.id, workflow.id)

    def test_clear_active_workflow(self, db_session: Session, sample_company):
        workflow = seed_low_value_workflow(db_session, sample_company.id)
        service = ActiveWorkflowService(db_session)
        service.set_active_workflow(sample_company.id, workflow.id)

        company = service.clear_active_workflow(sample_company.id)

        assert company.active_expense_workflow_id is None
        assert service.get_active_workflow(sample_company.id) is None
        assert service.clear_active_workflow(uuid4()) is None


# ===== TESTS DE ENRUTAMIENTO =====

class TestApprovalRouting:
    """Tests de ApprovalRoutingService"""

    def _activate(self, db, company, workflow):
        ActiveWorkflowService(db).set_active_workflow(company.id, workflow.id)

    def test_requires_approval_with_active_workflow(self, db_session: Session, sample_company, boundary_definition):
        workflow = ApprovalWorkflowService(db_session).create_workflow(sample_company.id, boundary_definition)
        self._activate(db_session, sample_company, workflow)
        routing = ApprovalRoutingService(db_session)

        assert routing.requires_approval(sample_company.id, _context("50")) is True
        assert routing.requires_approval(sample_company.id, _context("1500")) is False

    def test_requires_approval_fallback_policy(self, db_session: Session, sample_company):
        """Sin flujo activo se usa la política de la empresa"""
        routing = ApprovalRoutingService(db_session)
        assert routing.requires_approval(sample_company.id, _context("5000")) is False

        sample_company.expense_approval_required = True
        sample_company.expense_approval_threshold = Decimal("200")
        db_session.commit()
        assert routing.requires_approval(sample_company.id, _context("200")) is False
        assert routing.requires_approval(sample_company.id, _context("250")) is True

        sample_company.expense_approval_threshold = None
        db_session.commit()
        assert routing.requires_approval(sample_company.id, _context("1")) is True

        # Sin comprobante por encima del umbral de comprobante requiere aprobación
        sample_company.expense_approval_threshold = Decimal("200")
        sample_company.expense_receipt_required = True
        sample_company.expense_receipt_threshold = Decimal("50")
        db_session.commit()
        assert routing.requires_approval(sample_company.id, _context("100")) is True
        assert routing.requires_approval(sample_company.id, _context("100", has_receipt=True)) is False
        assert routing.requires_approval(sample_company.id, _context("50")) is False
        assert routing.requires_approval(sample_company.id, _context("250", has_receipt=True)) is True

        sample_company.expense_receipt_threshold = None
        db_session.commit()
        assert routing.requires_approval(sample_company.id, _context("10")) is True
        assert routing.requires_approval(sample_company.id, _context("10", has_receipt=True)) is False

        sample_company.expense_approval_required = False
        db_session.commit()
        assert routing.requires_approval(sample_company.id, _context("10")) is False

    def test_evaluate_active_without_workflow(self, db_session: Session, sample_company):
        result = ApprovalRoutingService(db_session).evaluate_active(sample_company.id, _context("10"))

        assert result.workflow_id is None
        assert result.applicable_steps == []

    def test_resolve_approvers_by_role(self, db_session: Session, sample_company, members):
        """Gerentes activos, sin incluir a quien envía el gasto"""
        self._activate(db_session, sample_company, seed_low_value_workflow(db_session, sample_company.id))
        routing = ApprovalRoutingService(db_session)

        (step,) = routing.resolve_approvers(sample_company.id, _context("75", members["employee"].id))
        assert step.requirements[0].approver_ids == [members["manager"].id, members["manager2"].id]

        (step,) = routing.resolve_approvers(sample_company.id, _context("75", members["manager"].id))
        assert step.requirements[0].approver_ids == [members["manager2"].id]

    def test_self_approval_allowed_when_configured(self, db_session: Session, sample_company, members):
        self._activate(db_session, sample_company, seed_low_value_workflow(db_session, sample_company.id))
        routing = ApprovalRoutingService(db_session, allow_self_approval=True)

        (step,) = routing.resolve_approvers(sample_company.id, _context("75", members["manager"].id))

        assert members["manager"].id in step.requirements[0].approver_ids

    def test_resolve_approvers_for_branch(self, db_session: Session, sample_company, members, branch_location):
        """En una sucursal, el rol se resuelve al encargado de la sucursal"""
        workflow = seed_branch_office_workflow(db_session, sample_company.id, branch_location.id)
        self._activate(db_session, sample_company, workflow)
        routing = ApprovalRoutingService(db_session)

        (step,) = routing.resolve_approvers(
            sample_company.id, _context("40", members["employee"].id, location_id=branch_location.id)
        )
        assert step.requirements[0].approver_ids == [members["manager2"].id]

        assert routing.resolve_approvers(sample_company.id, _context("40", members["employee"].id)) == []

    def test_branch_manager_own_expense(self, db_session: Session, sample_company, members, branch_location):
        """Si el encargado envía el gasto de su sucursal, aprueban los demás gerentes"""
        workflow = seed_branch_office_workflow(db_session, sample_company.id, branch_location.id)
        self._activate(db_session, sample_company, workflow)
        routing = ApprovalRoutingService(db_session)
        context = _context("40", members["manager2"].id, location_id=branch_location.id)

        (step,) = routing.resolve_approvers(sample_company.id, context)

        assert step.requirements[0].approver_ids == [members["manager"].id]
        assert routing.can_member_approve(sample_company.id, members["manager"].id, MemberRole.MANAGER, context) is True
        assert routing.can_member_approve(sample_company.id, members["manager2"].id, MemberRole.MANAGER, context) is False

    def test_can_member_approve_matches_resolved_approvers(
        self, db_session: Session, sample_company, members, branch_location
    ):
        """Con el encargado disponible, solo él aprueba los gastos de su sucursal"""
        workflow = seed_branch_office_workflow(db_session, sample_company.id, branch_location.id)
        self._activate(db_session, sample_company, workflow)
        routing = ApprovalRoutingService(db_session)
        context = _context("40", members["employee"].id, location_id=branch_location.id)

        (step,) = routing.resolve_approvers(sample_company.id, context)
        approver_ids = step.requirements[0].approver_ids

        for key in ("manager", "manager2"):
            member = members[key]
            can_approve = routing.can_member_approve(sample_company.id, member.id, MemberRole.MANAGER, context)
            assert can_approve is (member.id in approver_ids)
        assert approver_ids == [members["manager2"].id]

    def test_resolve_specific_member(self, db_session: Session, sample_company, members, boundary_definition):
        boundary_definition["steps"][0]["actions"] = [
            {"type": "SPECIFIC_MEMBER", "specific_member_id": members["admin"].id}
        ]
        workflow = ApprovalWorkflowService(db_session).create_workflow(sample_company.id, boundary_definition)
        self._activate(db_session, sample_company, workflow)
        routing = ApprovalRoutingService(db_session)
        context = _context("20", members["employee"].id)

        (step,) = routing.resolve_approvers(sample_company.id, context)
        assert step.requirements[0].approver_ids == [members["admin"].id]

        members["admin"].is_active = False
        db_session.commit()
        (step,) = routing.resolve_approvers(sample_company.id, context)
        assert step.requirements[0].approver_ids == []

    def test_can_member_approve_with_workflow(self, db_session: Session, sample_company, members):
        self._activate(db_session, sample_company, seed_low_value_workflow(db_session, sample_company.id))
        routing = ApprovalRoutingService(db_session)
        context = _context("75", members["employee"].id)

        assert routing.can_member_approve(sample_company.id, members["manager"].id, MemberRole.MANAGER, context) is True
        assert routing.can_member_approve(sample_company.id, members["admin"].id, MemberRole.ADMIN, context) is False

        own_expense = _context("75", members["manager"].id)
        assert routing.can_member_approve(sample_company.id, members["manager"].id, "MANAGER", own_expense) is False

    def test_can_member_approve_fallback_roles(self, db_session: Session, sample_company, members):
        sample_company.expense_approval_required = True
        db_session.commit()
        routing = ApprovalRoutingService(db_session)
        context = _context("75", members["employee"].id)

        assert routing.can_member_approve(sample_company.id, members["admin"].id, MemberRole.ADMIN, context) is True
        assert routing.can_member_approve(sample_company.id, members["owner"].id, MemberRole.OWNER, context) is True
        assert routing.can_member_approve(sample_company.id, members["manager"].id, MemberRole.MANAGER, context) is False

        custom = ApprovalRoutingService(db_session, fallback_roles=["MANAGER"])
        assert custom.can_member_approve(sample_company.id, members["manager"].id, MemberRole.MANAGER, context) is True


# ===== TESTS DE PLANTILLAS =====

class TestWorkflowTemplates:

    def test_tiered_template(self, db_session: Session, sample_company):
        workflow = seed_tiered_workflow(db_session, sample_company.id)

        assert engine.evaluate_workflow(workflow, _context("100")) == []
        assert [s.step_number for s in engine.evaluate_workflow(workflow, _context("1000"))] == [1]
        (step,) = engine.evaluate_workflow(workflow, _context("1000.01"))
        assert step.step_number == 2
        assert step.requirements[0].approver_role == MemberRole.ADMIN

    def test_branch_template_requires_own_location(self, db_session: Session, other_company, branch_location):
        with pytest.raises(WorkflowForbiddenError):
            seed_branch_office_workflow(db_session, other_company.id, branch_location.id)


# ===== TESTS DE ENDPOINTS =====

class TestApprovalWorkflowRouter:
    """Tests de la API REST"""

    def _create(self, client, headers, definition):
        response = client.post(f"{BASE_URL}/", json=_as_json(definition), headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    def test_create_and_get(self, client, members, auth_headers, boundary_definition):
        headers = auth_headers(members["admin"])

        created = self._create(client, headers, boundary_definition)

        assert [s["step_number"] for s in created["steps"]] == [1, 2]
        response = client.get(f"{BASE_URL}/{created['id']}", headers=auth_headers(members["employee"]))
        assert response.status_code == 200
        assert response.json()["name"] == "Umbrales de monto"
        assert response.headers["X-Tenant-ID"] == str(members["admin"].company_id)

        listing = client.get(f"{BASE_URL}/", headers=headers)
        assert [w["id"] for w in listing.json()] == [created["id"]]

    def test_create_requires_admin(self, client, members, auth_headers, boundary_definition):
        response = client.post(
            f"{BASE_URL}/", json=_as_json(boundary_definition), headers=auth_headers(members["employee"])
        )

        assert response.status_code == 403

    def test_missing_company_header(self, client, members, auth_headers):
        headers = auth_headers(members["admin"])
        headers.pop("X-Company-ID")

        assert client.get(f"{BASE_URL}/", headers=headers).status_code == 400

    def test_token_for_other_company(self, client, members, other_company, auth_headers):
        headers = auth_headers(members["admin"])
        headers["X-Company-ID"] = str(other_company.id)

        assert client.get(f"{BASE_URL}/", headers=headers).status_code == 403

    def test_create_invalid_definition(self, client, members, auth_headers, boundary_definition):
        boundary_definition["steps"][1]["step_number"] = 1

        response = client.post(
            f"{BASE_URL}/", json=_as_json(boundary_definition), headers=auth_headers(members["admin"])
        )

        assert response.status_code == 422
        assert any(error["type"] == "duplicate_step_number" for error in response.json()["detail"])

    def test_create_with_foreign_reference(self, client, members, other_category, auth_headers, boundary_definition):
        boundary_definition["steps"][0]["conditions"] = [
            {"type": "EXPENSE_CATEGORY", "expense_category_id": other_category.id}
        ]

        response = client.post(
            f"{BASE_URL}/", json=_as_json(boundary_definition), headers=auth_headers(members["admin"])
        )

        assert response.status_code == 403

    def test_replace_and_patch(self, client, members, auth_headers, boundary_definition):
        headers = auth_headers(members["admin"])
        created = self._create(client, headers, boundary_definition)

        response = client.put(f"{BASE_URL}/{created['id']}", json=_as_json(low_value_definition()), headers=headers)
        assert response.status_code == 200
        assert [s["name"] for s in response.json()["steps"]] == ["Manager Review"]

        response = client.patch(f"{BASE_URL}/{created['id']}", json={"description": "Actualizado"}, headers=headers)
        assert response.status_code == 200
        assert response.json()["description"] == "Actualizado"
        assert response.json()["name"] == "Low Value Expense Approval"

        response = client.put(f"{BASE_URL}/{uuid4()}", json=_as_json(low_value_definition()), headers=headers)
        assert response.status_code == 404

    def test_workflow_of_other_company_not_visible(self, client, db_session, members, other_company, auth_headers):
        foreign = seed_low_value_workflow(db_session, other_company.id)

        response = client.get(f"{BASE_URL}/{foreign.id}", headers=auth_headers(members["admin"]))

        assert response.status_code == 404

    def test_activation_lifecycle(self, client, members, auth_headers, boundary_definition):
        headers = auth_headers(members["owner"])
        created = self._create(client, headers, boundary_definition)

        response = client.get(f"{BASE_URL}/active", headers=headers)
        assert response.json()["active_expense_workflow_id"] is None

        response = client.post(f"{BASE_URL}/{created['id']}/activate", headers=headers)
        assert response.status_code == 200
        assert response.json()["active_expense_workflow_id"] == created["id"]
        assert response.json()["workflow"]["id"] == created["id"]

        assert client.delete(f"{BASE_URL}/{created['id']}", headers=headers).status_code == 409

        response = client.delete(f"{BASE_URL}/active", headers=headers)
        assert response.status_code == 200
        assert response.json()["workflow"] is None

        assert client.delete(f"{BASE_URL}/{created['id']}", headers=headers).status_code == 204
        assert client.delete(f"{BASE_URL}/{created['id']}", headers=headers).status_code == 404

    def test_activate_foreign_workflow(self, client, db_session, members, other_company, auth_headers):
        foreign = seed_low_value_workflow(db_session, other_company.id)

        response = client.post(f"{BASE_URL}/{foreign.id}/activate", headers=auth_headers(members["admin"]))

        assert response.status_code == 403

    def test_activate_inactive_workflow(self, client, members, auth_headers, boundary_definition):
        boundary_definition["is_active"] = False
        headers = auth_headers(members["admin"])
        created = self._create(client, headers, boundary_definition)

        response = client.post(f"{BASE_URL}/{created['id']}/activate", headers=headers)

        assert response.status_code == 409

    def test_evaluate_and_resolve(self, client, members, auth_headers):
        headers = auth_headers(members["admin"])
        created = self._create(client, headers, low_value_definition())
        client.post(f"{BASE_URL}/{created['id']}/activate", headers=headers)
        context = {"amount": "75.00", "submitter_id": str(members["employee"].id)}

        response = client.post(f"{BASE_URL}/evaluate", json=context, headers=auth_headers(members["employee"]))
        assert response.status_code == 200
        body = response.json()
        assert body["workflow_id"] == created["id"]
        assert [s["step_number"] for s in body["applicable_steps"]] == [1]
        assert body["applicable_steps"][0]["requirements"][0]["approver_role"] == "MANAGER"

        response = client.post(f"{BASE_URL}/approvers", json=context, headers=headers)
        assert response.status_code == 200
        assert response.json()[0]["requirements"][0]["approver_ids"] == [
            str(members["manager"].id), str(members["manager2"].id)
        ]

        response = client.post(
            f"{BASE_URL}/{created['id']}/evaluate",
            json={"amount": "150", "submitter_id": str(members["employee"].id)},
            headers=headers,
        )
        assert response.json()["applicable_steps"] == []

    def test_patch_with_only_nulls(self, client, members, auth_headers, boundary_definition):
        headers = auth_headers(members["admin"])
        created = self._create(client, headers, boundary_definition)

        response = client.patch(f"{BASE_URL}/{created['id']}", json={"is_active": None}, headers=headers)

        assert response.status_code == 422
        assert any(error["type"] == "empty_update" for error in response.json()["detail"])

    def test_activate_not_found_details(self, client, members, auth_headers, boundary_definition, monkeypatch):
        headers = auth_headers(members["admin"])
        created = self._create(client, headers, boundary_definition)

        response = client.post(f"{BASE_URL}/{uuid4()}/activate", headers=headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "El flujo de aprobación ya no existe"

        monkeypatch.setattr(ActiveWorkflowService, "_get_company", lambda self, company_id: None)
        response = client.post(f"{BASE_URL}/{created['id']}/activate", headers=headers)
        assert response.status_code == 404
        assert response.json()["detail"] == "Empresa no encontrada"
