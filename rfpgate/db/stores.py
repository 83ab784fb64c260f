"""
Persistence for NDAs, company NDAs, RFP access requests and the NDA audit trail.

Stores never commit: the calling service owns the transaction. Status
transitions go through ``compare_and_set`` so a concurrent writer can never
overwrite a transition that already happened.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.util import identity_key

from rfpgate.db.models import (
    IndividualNDA, CompanyNDA, RFPAccessRequest, NDAAuditEntry, utcnow,
)


class _StatusStore:
    """Shared lookups and conditional status updates for one keyed table."""

    model = None
    party_column = None  # user_id / company_id

    def __init__(self, db: Session):
        self.db = db

    def get(self, record_id: int):
        return self.db.query(self.model).filter(self.model.id == record_id).first()

    def get_by_key(self, rfp_id: int, party_id: Optional[int]):
        if party_id is None:
            return None
        party = getattr(self.model, self.party_column)
        return self.db.query(self.model).filter(
            self.model.rfp_id == rfp_id,
            party == party_id,
        ).first()

    def list_for_rfp(self, rfp_id: int, status: Optional[str] = None) -> List[Any]:
        query = self.db.query(self.model).filter(self.model.rfp_id == rfp_id)
        if status:
            query = query.filter(self.model.status == status)
        return query.order_by(self.model.created_at, self.model.id).all()

    def insert(self, **values):
        record = self.model(**values)
        self.db.add(record)
        self.db.flush()
        return record

    def compare_and_set(self, record_id: int, expected_status: str, values: Dict[str, Any]) -> bool:
        """
        UPDATE ... WHERE id = :id AND status = :expected.

        Returns True when this call performed the transition. The session's
        copy of the row is expired so the next read sees the committed state.
        """
        values = dict(values)
        values.setdefault("updated_at", utcnow())
        changed = self.db.query(self.model).filter(
            self.model.id == record_id,
            self.model.status == expected_status,
        ).update(values, synchronize_session=False)

        record = self.db.identity_map.get(identity_key(self.model, record_id))
        if record is not None:
            self.db.expire(record)
        return changed == 1


class IndividualNDAStore(_StatusStore):
    model = IndividualNDA
    party_column = "user_id"


class CompanyNDAStore(_StatusStore):
    model = CompanyNDA
    party_column = "company_id"


class AccessRequestStore(_StatusStore):
    model = RFPAccessRequest
    party_column = "user_id"


class AuditTrailStore:
    """Append-only. There is intentionally no update or delete here."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        action: str,
        created_by: Optional[int],
        details: Dict[str, Any],
        nda_id: Optional[int] = None,
        company_nda_id: Optional[int] = None,
    ) -> NDAAuditEntry:
        entry = NDAAuditEntry(
            nda_id=nda_id,
            company_nda_id=company_nda_id,
            action=action,
            details=details,
            created_by=created_by,
            created_at=utcnow(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_for_nda(
        self,
        nda_id: Optional[int] = None,
        company_nda_id: Optional[int] = None,
    ) -> List[NDAAuditEntry]:
        query = self.db.query(NDAAuditEntry)
        if nda_id is not None:
            query = query.filter(NDAAuditEntry.nda_id == nda_id)
        elif company_nda_id is not None:
            query = query.filter(NDAAuditEntry.company_nda_id == company_nda_id)
        else:
            return []
        return query.order_by(NDAAuditEntry.created_at, NDAAuditEntry.id).all()
