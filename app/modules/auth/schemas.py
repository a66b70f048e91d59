from pydantic import BaseModel
from typing import Optional
from uuid import UUID


class AuthContext(BaseModel):
    """Contexto del miembro autenticado dentro de una empresa"""
    member_id: UUID
    tenant_id: Optional[UUID] = None
    user_role: Optional[str] = None
