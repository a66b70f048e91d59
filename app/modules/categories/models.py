from sqlalchemy import Column, String, UniqueConstraint, Boolean
from sqlalchemy.dialects.postgresql import UUID
from uuid import uuid4

from app.database.database import Base
from app.common.mixins import TenantMixin, TimestampMixin

class ExpenseCategory(Base, TenantMixin, TimestampMixin):
    __tablename__ = "expense_categories"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_expense_category_tenant_name"),
    )
