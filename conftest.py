"""
Fixtures compartidas para las pruebas.

Se usa SQLite en memoria (StaticPool) con llaves foráneas activas; cada
prueba obtiene una base limpia.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")

import jwt
import pytest
from decimal import Decimal
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.database.database import Base, get_db
from app.main import app
from app.modules.company.models import Company, CompanyMember, MemberRole
from app.modules.categories.models import ExpenseCategory
from app.modules.pdv.models import PDV


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def _add_member(db, company, name, email, role, is_active=True):
    member = CompanyMember(company_id=company.id, name=name, email=email, role=role, is_active=is_active)
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


@pytest.fixture
def sample_company(db_session):
    company = Company(name="Restaurante Central", nit="900123456")
    db_session.add(company)
    db_session.commit()
    db_session.refresh(company)
    return company


@pytest.fixture
def other_company(db_session):
    company = Company(name="Tienda Norte", nit="830063999")
    db_session.add(company)
    db_session.commit()
    db_session.refresh(company)
    return company


@pytest.fixture
def members(db_session, sample_company):
    """Miembros de la empresa de ejemplo, indexados por clave"""
    return {
        "owner": _add_member(db_session, sample_company, "Olga Owner", "a-owner@central.com", MemberRole.OWNER),
        "admin": _add_member(db_session, sample_company, "Andrés Admin", "b-admin@central.com", MemberRole.ADMIN),
        "manager": _add_member(db_session, sample_company, "Marta Manager", "c-manager@central.com", MemberRole.MANAGER),
        "manager2": _add_member(db_session, sample_company, "Mario Manager", "d-manager@central.com", MemberRole.MANAGER),
        "employee": _add_member(db_session, sample_company, "Elena Employee", "e-employee@central.com", MemberRole.EMPLOYEE),
        "inactive_manager": _add_member(
            db_session, sample_company, "Iván Inactivo", "f-inactive@central.com", MemberRole.MANAGER, is_active=False
        ),
    }


@pytest.fixture
def other_member(db_session, other_company):
    return _add_member(db_session, other_company, "Otro Manager", "manager@norte.com", MemberRole.MANAGER)


@pytest.fixture
def expense_category(db_session, sample_company):
    category = ExpenseCategory(tenant_id=sample_company.id, name="Viáticos")
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def other_category(db_session, other_company):
    category = ExpenseCategory(tenant_id=other_company.id, name="Viáticos")
    db_session.add(category)
    db_session.commit()
    db_session.refresh(category)
    return category


@pytest.fixture
def branch_location(db_session, sample_company, members):
    """Sucursal cuyo encargado es `manager2`"""
    pdv = PDV(tenant_id=sample_company.id, name="Sucursal Norte", manager_member_id=members["manager2"].id)
    db_session.add(pdv)
    db_session.commit()
    db_session.refresh(pdv)
    return pdv


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Genera headers (token de contexto + X-Company-ID) para un miembro"""
    def _headers(member, company=None):
        company_id = company.id if company is not None else member.company_id
        token = jwt.encode(
            {"sub": str(member.id), "tenant_id": str(company_id), "user_role": member.role.value},
            settings.APP_SECRET_STRING,
            algorithm=settings.ALGORITHM,
        )
        return {"Authorization": f"Bearer {token}", "X-Company-ID": str(company_id)}
    return _headers


@pytest.fixture
def boundary_definition():
    return {
        "name": "Umbrales de monto",
        "description": "Gerente hasta $100, administradores entre $100 y $1000",
        "steps": [
            {
                "step_number": 1,
                "name": "Manager Approval",
                "conditions": [{"type": "AMOUNT_RANGE", "max_amount": Decimal("100")}],
                "actions": [{"type": "ROLE", "approver_role": "MANAGER"}],
            },
            {
                "step_number": 2,
                "name": "Admin Approval",
                "conditions": [{"type": "AMOUNT_RANGE", "min_amount": Decimal("100"), "max_amount": Decimal("1000")}],
                "actions": [{"type": "ROLE", "approver_role": "ADMIN", "approval_mode": "ALL"}],
            },
        ],
    }
