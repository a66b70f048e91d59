"""
Directorio de miembros de la empresa.

Resuelve referencias abstractas de aprobadores (un rol, un miembro específico)
a ids concretos de miembros activos. Es el colaborador externo del motor de
reglas: el motor solo emite el rol y este servicio decide quiénes lo tienen.
"""
import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.modules.company.models import Company, CompanyMember, MemberRole
from app.modules.pdv.models import PDV

logger = logging.getLogger(__name__)


class MembershipDirectory:
    """Consultas de membresía por empresa"""

    def __init__(self, db: Session):
        self.db = db

    def get_company(self, company_id: UUID) -> Optional[Company]:
        return self.db.query(Company).filter(Company.id == company_id).first()

    def get_member(self, company_id: UUID, member_id: UUID) -> Optional[CompanyMember]:
        return self.db.query(CompanyMember).filter(
            CompanyMember.id == member_id,
            CompanyMember.company_id == company_id
        ).first()

    def resolve_approvers_for_role(
        self, company_id: UUID, role: MemberRole, context=None, exclude_member_id: Optional[UUID] = None
    ) -> List[UUID]:
        """
        Miembros activos con el rol indicado.

        Si el contexto trae una ubicación cuyo encargado está activo y tiene el
        rol, solo se devuelve ese encargado (gerente de la sucursal). Cuando el
        encargado es `exclude_member_id` (quien envía el gasto) se usa la
        resolución normal para que otro miembro con el rol pueda aprobar.
        """
        role = MemberRole(getattr(role, "value", role))
        location_id = getattr(context, "location_id", None) if context is not None else None

        if location_id is not None:
            location = self.db.query(PDV).filter(
                PDV.id == location_id,
                PDV.tenant_id == company_id
            ).first()
            manager = location.manager if location else None
            if (
                manager is not None
                and manager.is_active
                and manager.role == role
                and manager.id != exclude_member_id
            ):
                logger.debug(f"Role {role.value} resolved to manager {manager.id} of location {location_id}")
                return [manager.id]

        members = self.db.query(CompanyMember).filter(
            CompanyMember.company_id == company_id,
            CompanyMember.role == role,
            CompanyMember.is_active == True
        ).order_by(CompanyMember.created_at, CompanyMember.email).all()

        return [member.id for member in members]

    def resolve_specific_member(self, company_id: UUID, member_id: UUID) -> List[UUID]:
        member = self.get_member(company_id, member_id)
        if member is None or not member.is_active:
            logger.warning(f"Specific approver {member_id} is not an active member of company {company_id}")
            return []
        return [member.id]
