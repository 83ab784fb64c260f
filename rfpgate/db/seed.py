"""
Demo portal seeding (SEED_DEMO=true, DEBUG only).
"""
from datetime import timedelta
from sqlalchemy.orm import Session

from rfpgate.core.logging import get_logger
from rfpgate.db.models import (
    Company, User, RFP, Document, UserRole, CompanyRole,
    RFPVisibility, RFPStatus, utcnow,
)

logger = get_logger(__name__)


def seed_demo_data(db: Session) -> bool:
    """Create a small demo portal. Returns False when data already exists."""
    if db.query(User).first():
        logger.info("Database already seeded. Skipping...")
        return False

    logger.info("Seeding demo portal...")

    builder = Company(name="Northwind Builders", website="https://northwind.example.com")
    db.add(builder)
    db.flush()

    admin = User(email="admin@rfpgate.example.com", full_name="Platform Administrator",
                 role=UserRole.ADMIN.value, is_active=True)
    reviewer = User(email="procurement@cityworks.example.com", full_name="Dana Reyes",
                    title="Procurement Lead", role=UserRole.CLIENT_REVIEWER.value, is_active=True)
    bidder_admin = User(email="owner@northwind.example.com", full_name="Sam Patel", title="Director",
                        role=UserRole.BIDDER.value, company_id=builder.id,
                        company_role=CompanyRole.ADMIN.value, is_active=True)
    bidder_member = User(email="estimator@northwind.example.com", full_name="Alex Kim", title="Estimator",
                         role=UserRole.BIDDER.value, company_id=builder.id,
                         company_role=CompanyRole.MEMBER.value, is_active=True)
    db.add_all([admin, reviewer, bidder_admin, bidder_member])
    db.flush()

    closing = utcnow() + timedelta(days=30)
    rfps_data = [
        ("Municipal Library Renovation", RFPVisibility.PUBLIC, RFPStatus.ACTIVE),
        ("Water Treatment Plant Expansion", RFPVisibility.CONFIDENTIAL, RFPStatus.ACTIVE),
        ("Transit Depot Feasibility Study", RFPVisibility.PUBLIC, RFPStatus.DRAFT),
    ]
    for title, visibility, status in rfps_data:
        rfp = RFP(
            title=title,
            description=f"Demo RFP: {title}",
            client_id=reviewer.id,
            visibility=visibility.value,
            status=status.value,
            closing_date=closing,
        )
        db.add(rfp)
        db.flush()

        slug = title.lower().replace(" ", "-")
        db.add_all([
            Document(rfp_id=rfp.id, title="Scope of Work", file_path=f"rfps/{slug}/scope.pdf",
                     file_type="application/pdf", requires_nda=False),
            Document(rfp_id=rfp.id, title="Site Drawings", file_path=f"rfps/{slug}/drawings.pdf",
                     file_type="application/pdf", requires_nda=True),
        ])

    db.flush()
    logger.info(f"Seeded {len(rfps_data)} RFPs for demo company {builder.name}")
    return True
