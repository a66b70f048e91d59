"""
Dependencias de autenticación para FastAPI.

La emisión de tokens vive en el servicio de identidad; aquí solo se
decodifican tokens de contexto con los claims:
- sub: id del miembro (CompanyMember)
- tenant_id: empresa en la que actúa
- user_role: rol del miembro en esa empresa (MemberRole)
"""
from typing import Iterable
from uuid import UUID
from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import jwt

from app.modules.auth.schemas import AuthContext
from app.modules.company.models import MemberRole
from app.core.config import settings

security = HTTPBearer()


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="No se pudieron validar las credenciales",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_context_token(token: str) -> AuthContext:
    """Decodifica el token de contexto; cualquier claim faltante o inválido es 401"""
    try:
        payload = jwt.decode(token, settings.APP_SECRET_STRING, algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError:
        raise _unauthorized()

    if payload.get("sub") is None or payload.get("tenant_id") is None:
        raise _unauthorized()

    try:
        return AuthContext(
            member_id=UUID(str(payload["sub"])),
            tenant_id=UUID(str(payload["tenant_id"])),
            user_role=payload.get("user_role"),
        )
    except ValueError:
        raise _unauthorized()


class AuthDependencies:
    """Dependencias de autenticación reutilizables."""

    @staticmethod
    def get_auth_context(
        request: Request,
        credentials: HTTPAuthorizationCredentials = Depends(security)
    ) -> AuthContext:
        """
        Contexto del miembro autenticado.
        El tenant del token debe coincidir con el header X-Company-ID.
        """
        auth_context = decode_context_token(credentials.credentials)

        header_tenant = getattr(request.state, "tenant_id", None)
        if header_tenant is not None and header_tenant != auth_context.tenant_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No tienes acceso a esta empresa"
            )
        return auth_context

    @staticmethod
    def require_role(allowed_roles: Iterable[str]):
        """Dependencia que exige que el rol del token esté en allowed_roles"""
        allowed = list(allowed_roles)

        def role_checker(auth_context: AuthContext = Depends(AuthDependencies.get_auth_context)) -> AuthContext:
            if auth_context.user_role not in allowed:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Se requiere uno de estos roles: {', '.join(allowed)}"
                )
            return auth_context

        return role_checker

    @staticmethod
    def require_owner_or_admin():
        """Mutaciones de flujos: solo owner o admin."""
        return AuthDependencies.require_role([MemberRole.OWNER.value, MemberRole.ADMIN.value])

    @staticmethod
    def require_any_role():
        """Lecturas y evaluación: cualquier miembro de la empresa."""
        return AuthDependencies.require_role(role.value for role in MemberRole)
