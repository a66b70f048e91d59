"""
Tests del directorio de miembros (MembershipDirectory)
"""

import pytest
from types import SimpleNamespace
from uuid import uuid4

from sqlalchemy.orm import Session

from app.modules.company.models import MemberRole
from app.modules.company.service import MembershipDirectory


class TestMembershipDirectory:

    def test_resolve_role(self, db_session: Session, sample_company, members):
        """Solo miembros activos con el rol, en orden estable"""
        directory = MembershipDirectory(db_session)

        assert directory.resolve_approvers_for_role(sample_company.id, MemberRole.MANAGER) == [
            members["manager"].id, members["manager2"].id
        ]
        assert directory.resolve_approvers_for_role(sample_company.id, "ADMIN") == [members["admin"].id]
        assert directory.resolve_approvers_for_role(sample_company.id, MemberRole.CASHIER) == []

    def test_resolve_role_scoped_by_company(self, db_session: Session, sample_company, members, other_member):
        directory = MembershipDirectory(db_session)

        assert other_member.id not in directory.resolve_approvers_for_role(sample_company.id, MemberRole.MANAGER)
        assert directory.resolve_approvers_for_role(other_member.company_id, MemberRole.MANAGER) == [other_member.id]

    def test_location_manager_preferred(self, db_session: Session, sample_company, members, branch_location):
        directory = MembershipDirectory(db_session)
        context = SimpleNamespace(location_id=branch_location.id)

        assert directory.resolve_approvers_for_role(sample_company.id, MemberRole.MANAGER, context) == [
            members["manager2"].id
        ]

    @pytest.mark.parametrize("role", [MemberRole.ADMIN, MemberRole.OWNER])
    def test_location_manager_without_role(self, db_session: Session, sample_company, members, branch_location, role):
        """Si el encargado no tiene el rol pedido se usa la resolución normal"""
        directory = MembershipDirectory(db_session)
        context = SimpleNamespace(location_id=branch_location.id)

        expected = members["admin"].id if role == MemberRole.ADMIN else members["owner"].id
        assert directory.resolve_approvers_for_role(sample_company.id, role, context) == [expected]

    def test_location_manager_excluded(self, db_session: Session, sample_company, members, branch_location):
        """Si el encargado es el excluido se devuelven todos los miembros con el rol"""
        approvers = MembershipDirectory(db_session).resolve_approvers_for_role(
            sample_company.id,
            MemberRole.MANAGER,
            SimpleNamespace(location_id=branch_location.id),
            exclude_member_id=members["manager2"].id,
        )

        assert approvers == [members["manager"].id, members["manager2"].id]

    def test_inactive_location_manager(self, db_session: Session, sample_company, members, branch_location):
        members["manager2"].is_active = False
        db_session.commit()
        directory = MembershipDirectory(db_session)

        approvers = directory.resolve_approvers_for_role(
            sample_company.id, MemberRole.MANAGER, SimpleNamespace(location_id=branch_location.id)
        )

        assert approvers == [members["manager"].id]

    def test_unknown_location(self, db_session: Session, sample_company, members):
        approvers = MembershipDirectory(db_session).resolve_approvers_for_role(
            sample_company.id, MemberRole.MANAGER, SimpleNamespace(location_id=uuid4())
        )

        assert approvers == [members["manager"].id, members["manager2"].id]

    def test_resolve_specific_member(self, db_session: Session, sample_company, members, other_member):
        directory = MembershipDirectory(db_session)

        assert directory.resolve_specific_member(sample_company.id, members["employee"].id) == [members["employee"].id]
        assert directory.resolve_specific_member(sample_company.id, members["inactive_manager"].id) == []
        assert directory.resolve_specific_member(sample_company.id, other_member.id) == []
        assert directory.resolve_specific_member(sample_company.id, uuid4()) == []

    def test_get_member(self, db_session: Session, sample_company, members, other_member):
        directory = MembershipDirectory(db_session)

        assert directory.get_member(sample_company.id, members["owner"].id).email == "a-owner@central.com"
        assert directory.get_member(sample_company.id, other_member.id) is None
        assert directory.get_company(sample_company.id).name == "Restaurante Central"
