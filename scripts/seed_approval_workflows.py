"""
Seed script: create the reference approval workflows for a company.

What it creates:
- Company (tenant) if it does not exist, with one OWNER, one ADMIN and one MANAGER member.
- "Low Value Expense Approval": expenses <= $100 need a Manager.
- "Tiered Expense Approval": $100-$1000 Manager, > $1000 Admin.
- "Branch Office Approval": expenses at the main PDV need its Manager (only with --branch).
- Optionally marks one of them as the company's active expense workflow.

Run inside the API container to use 'postgres' host and project PYTHONPATH:
    docker compose exec api python scripts/seed_approval_workflows.py \
        --company-name "Super Demo Market" --branch --activate tiered

Note: This is intended for development environments only.
"""

# Add project root (/code) to sys.path so `app.*` imports work even if CWD changes
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import logging

from app.database.database import SessionLocal, Base, engine
from app.modules.company.models import Company, CompanyMember, MemberRole
from app.modules.categories.models import ExpenseCategory  # noqa: F401 (registra la tabla)
from app.modules.pdv.models import PDV
from app.modules.approvals.service import ActiveWorkflowService
from app.modules.approvals.templates import (
    seed_low_value_workflow, seed_tiered_workflow, seed_branch_office_workflow
)

logger = logging.getLogger("seed_approval_workflows")


def get_or_create_company(db, name: str) -> Company:
    company = db.query(Company).filter(Company.name == name).first()
    if company:
        return company
    company = Company(name=name, description="Empresa demo de flujos de aprobación", is_active=True)
    db.add(company)
    db.commit()
    db.refresh(company)

    slug = name.lower().replace(" ", "")
    for role in (MemberRole.OWNER, MemberRole.ADMIN, MemberRole.MANAGER):
        db.add(CompanyMember(
            company_id=company.id,
            name=f"{role.value.title()} Demo",
            email=f"{role.value.lower()}@{slug}.com",
            role=role,
        ))
    db.commit()
    return company


def get_or_create_main_pdv(db, company: Company) -> PDV:
    pdv = db.query(PDV).filter(PDV.tenant_id == company.id, PDV.is_main == True).first()
    if pdv:
        return pdv
    manager = db.query(CompanyMember).filter(
        CompanyMember.company_id == company.id,
        CompanyMember.role == MemberRole.MANAGER
    ).first()
    pdv = PDV(
        tenant_id=company.id,
        name="Principal",
        is_main=True,
        manager_member_id=manager.id if manager else None,
    )
    db.add(pdv)
    db.commit()
    db.refresh(pdv)
    return pdv


def main():
    parser = argparse.ArgumentParser(description="Seed reference approval workflows")
    parser.add_argument("--company-name", default="Super Demo Market")
    parser.add_argument("--branch", action="store_true", help="Also create the branch office workflow")
    parser.add_argument(
        "--activate",
        choices=["low-value", "tiered", "branch"],
        default=None,
        help="Workflow to set as the company's active expense workflow",
    )
    parser.add_argument("--create-tables", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if args.create_tables:
        Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        company = get_or_create_company(db, args.company_name)
        created = {
            "low-value": seed_low_value_workflow(db, company.id),
            "tiered": seed_tiered_workflow(db, company.id),
        }
        if args.branch or args.activate == "branch":
            pdv = get_or_create_main_pdv(db, company)
            created["branch"] = seed_branch_office_workflow(db, company.id, pdv.id)

        for key, workflow in created.items():
            logger.info(f"[{key}] {workflow.name} -> {workflow.id}")

        if args.activate:
            ActiveWorkflowService(db).set_active_workflow(company.id, created[args.activate].id)
            logger.info(f"Active expense workflow: {created[args.activate].name}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
