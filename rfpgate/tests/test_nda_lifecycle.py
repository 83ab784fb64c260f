"""
Tests for the NDA lifecycle: signing, countersigning, rejection and audit.
"""
import pytest
from unittest.mock import MagicMock
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from rfpgate.db.models import (
    RFP, IndividualNDA, CompanyNDA, NDAAuditEntry, AuditTrailImmutableError, User,
)
from rfpgate.core.rbac import Actor
from rfpgate.db.session import Base
from rfpgate.services.access_engine import AccessDecisionEngine
from rfpgate.services.audit_trail import NDAKind
from rfpgate.services.nda_lifecycle import NDALifecycleManager, SignatureMeta
from rfpgate.services.outcomes import OutcomeKind

from conftest import actor_for, make_document


def signature(name="Riley Solo", **kwargs):
    return SignatureMeta(
        full_name=name,
        title=kwargs.get("title", "Estimator"),
        company=kwargs.get("company"),
        signature_data=kwargs.get("signature_data", {"strokes": [[0, 0], [10, 4]]}),
        ip_address=kwargs.get("ip_address", "203.0.113.7"),
        user_agent=kwargs.get("user_agent", "pytest"),
    )


class TestSignIndividual:
    """Individual NDA signing is an idempotent upsert."""

    def test_sign_creates_signed_record(self, db_session, public_rfp, bidder_user, notifier):
        outcome = NDALifecycleManager(db_session, notifier).sign(actor_for(bidder_user), public_rfp.id, signature())

        assert outcome.ok
        record = outcome.value
        assert record.status == "signed"
        assert record.full_name == "Riley Solo"
        assert record.ip_address == "203.0.113.7"
        assert record.signed_at is not None

    def test_resign_is_idempotent(self, db_session, public_rfp, bidder_user):
        manager = NDALifecycleManager(db_session)
        actor = actor_for(bidder_user)

        first = manager.sign(actor, public_rfp.id, signature(title="Estimator")).value
        first_id = first.id
        second = manager.sign(actor, public_rfp.id, signature(title="Senior Estimator")).value

        assert second.id == first_id
        assert second.status == "signed"
        assert second.title == "Senior Estimator"
        assert db_session.query(IndividualNDA).count() == 1

    def test_sign_after_terminal_state_is_conflict(self, db_session, public_rfp, bidder_user, admin_user):
        manager = NDALifecycleManager(db_session)
        actor = actor_for(bidder_user)
        nda_id = manager.sign(actor, public_rfp.id, signature()).value.id
        manager.countersign(actor_for(admin_user), NDAKind.INDIVIDUAL, nda_id, "Platform Admin")

        outcome = manager.sign(actor, public_rfp.id, signature())
        assert outcome.kind == OutcomeKind.CONFLICT
        assert db_session.query(IndividualNDA).one().status == "approved"

    def test_anonymous_cannot_sign(self, db_session, public_rfp):
        outcome = NDALifecycleManager(db_session).sign(Actor.anonymous(), public_rfp.id, signature())
        assert outcome.kind == OutcomeKind.DENIED
        assert outcome.reason == "authentication_required"

    def test_blank_name_is_invalid(self, db_session, public_rfp, bidder_user):
        outcome = NDALifecycleManager(db_session).sign(actor_for(bidder_user), public_rfp.id, signature(name="   "))
        assert outcome.kind == OutcomeKind.INVALID
        assert outcome.field == "full_name"
        assert db_session.query(IndividualNDA).count() == 0

    def test_draft_rfp_cannot_be_signed(self, db_session, draft_rfp, bidder_user):
        outcome = NDALifecycleManager(db_session).sign(actor_for(bidder_user), draft_rfp.id, signature())
        assert outcome.kind == OutcomeKind.DENIED
        assert outcome.reason == "rfp_not_published"

    def test_unknown_rfp_is_not_found(self, db_session, bidder_user):
        outcome = NDALifecycleManager(db_session).sign(actor_for(bidder_user), 4242, signature())
        assert outcome.kind == OutcomeKind.NOT_FOUND

    def test_initial_signature_not_audited_by_default(self, db_session, public_rfp, bidder_user):
        NDALifecycleManager(db_session).sign(actor_for(bidder_user), public_rfp.id, signature())
        assert db_session.query(NDAAuditEntry).count() == 0

    def test_initial_signature_audited_once_when_enabled(self, db_session, public_rfp, bidder_user):
        manager = NDALifecycleManager(db_session, audit_initial_signature=True)
        actor = actor_for(bidder_user)
        manager.sign(actor, public_rfp.id, signature())
        manager.sign(actor, public_rfp.id, signature())

        entries = db_session.query(NDAAuditEntry).all()
        assert [e.action for e in entries] == ["signed"]
        assert entries[0].details["actor_id"] == bidder_user.id

    def test_signed_nda_grants_document_access(self, db_session, public_rfp, nda_document, bidder_user):
        actor = actor_for(bidder_user)
        NDALifecycleManager(db_session).sign(actor, public_rfp.id, signature())

        decision = AccessDecisionEngine(db_session).can_access_document(actor, nda_document.id)
        assert decision.allowed
        assert decision.rule == "individual_nda"


class TestSignCompany:
    """Company NDAs are signed by company admins and inherited by members."""

    def test_only_company_admin_can_sign(self, db_session, public_rfp, company_member, bidder_user):
        manager = NDALifecycleManager(db_session)
        for user in (company_member, bidder_user):
            outcome = manager.sign_company(actor_for(user), public_rfp.id, signature())
            assert outcome.kind == OutcomeKind.DENIED
            assert outcome.reason == "not_company_admin"
        assert db_session.query(CompanyNDA).count() == 0

    def test_company_sign_notifies_platform_admins(self, db_session, public_rfp, company_admin,
                                                   admin_user, notifier):
        outcome = NDALifecycleManager(db_session, notifier).sign_company(
            actor_for(company_admin), public_rfp.id, signature("Sam Patel"),
        )

        assert outcome.ok
        assert outcome.value.signed_by == company_admin.id
        sent = notifier.of_type("nda_signed")
        assert [n["user_id"] for n in sent] == [admin_user.id]
        assert "Northwind Builders" in sent[0]["message"]

    def test_signed_company_nda_does_not_grant_access(self, db_session, public_rfp, nda_document,
                                                      company_admin, company_member):
        NDALifecycleManager(db_session).sign_company(actor_for(company_admin), public_rfp.id, signature("Sam Patel"))

        decision = AccessDecisionEngine(db_session).can_access_document(actor_for(company_member), nda_document.id)
        assert not decision.allowed

    def test_approved_company_nda_covers_member_who_joins_later(self, db_session, public_rfp, nda_document,
                                                                company, company_admin, admin_user):
        manager = NDALifecycleManager(db_session)
        nda_id = manager.sign_company(actor_for(company_admin), public_rfp.id, signature("Sam Patel")).value.id
        manager.countersign(actor_for(admin_user), NDAKind.COMPANY, nda_id, "Platform Admin")

        newcomer = User(email="late@northwind.test", full_name="Late Joiner", role="bidder",
                        company_id=company.id, company_role="member", is_active=True)
        db_session.add(newcomer)
        db_session.commit()

        decision = AccessDecisionEngine(db_session).can_access_document(actor_for(newcomer), nda_document.id)
        assert decision.allowed
        assert decision.rule == "company_nda"

        status = manager.get_status(actor_for(newcomer), public_rfp.id).value
        assert status.company.is_complete
        assert not status.individual.exists
        assert status.grants_document_access


class TestCountersignAndReject:
    """Review transitions are compare-and-set on signed."""

    @pytest.fixture()
    def signed_nda(self, db_session, public_rfp, bidder_user):
        return NDALifecycleManager(db_session).sign(actor_for(bidder_user), public_rfp.id, signature()).value.id

    def test_countersign_approves_and_audits(self, db_session, signed_nda, client_user, bidder_user, notifier):
        manager = NDALifecycleManager(db_session, notifier)
        outcome = manager.countersign(
            actor_for(client_user), NDAKind.INDIVIDUAL, signed_nda, "Dana Reyes",
            countersigner_title="Procurement Lead",
            signature_data={"strokes": [[1, 1]]},
            client_context={"ip_address": "198.51.100.2", "user_agent": "pytest"},
        )

        assert outcome.ok
        record = outcome.value
        assert record.status == "approved"
        assert record.countersigned_by == client_user.id
        assert record.countersigner_title == "Procurement Lead"

        entries = db_session.query(NDAAuditEntry).filter(NDAAuditEntry.nda_id == signed_nda).all()
        assert len(entries) == 1
        assert entries[0].action == "countersigned"
        assert entries[0].created_by == client_user.id
        assert entries[0].details["countersigner_name"] == "Dana Reyes"
        assert entries[0].details["ip_address"] == "198.51.100.2"
        assert "timestamp" in entries[0].details

        approved = notifier.of_type("nda_approved")
        assert [n["user_id"] for n in approved] == [bidder_user.id]

    def test_bidder_cannot_countersign(self, db_session, signed_nda, bidder_user):
        outcome = NDALifecycleManager(db_session).countersign(
            actor_for(bidder_user), NDAKind.INDIVIDUAL, signed_nda, "Riley Solo",
        )
        assert outcome.kind == OutcomeKind.DENIED
        assert outcome.reason == "insufficient_role"

    def test_reject_requires_reason(self, db_session, signed_nda, admin_user):
        outcome = NDALifecycleManager(db_session).reject(actor_for(admin_user), NDAKind.INDIVIDUAL, signed_nda, "  ")

        assert outcome.kind == OutcomeKind.INVALID
        assert db_session.get(IndividualNDA, signed_nda).status == "signed"
        assert db_session.query(NDAAuditEntry).count() == 0

    def test_reject_records_reason_and_notifies(self, db_session, signed_nda, admin_user, bidder_user, notifier):
        outcome = NDALifecycleManager(db_session, notifier).reject(
            actor_for(admin_user), NDAKind.INDIVIDUAL, signed_nda, "Signature does not match",
        )

        assert outcome.ok
        assert outcome.value.status == "rejected"
        assert outcome.value.rejected_by == admin_user.id
        entry = db_session.query(NDAAuditEntry).one()
        assert entry.action == "rejected"
        assert entry.details["rejection_reason"] == "Signature does not match"

        rejected = notifier.of_type("nda_rejected")
        assert rejected[0]["user_id"] == bidder_user.id
        assert "Signature does not match" in rejected[0]["message"]

    def test_second_reviewer_loses_race(self, db_session, signed_nda, admin_user, client_user):
        manager = NDALifecycleManager(db_session)
        first = manager.countersign(actor_for(client_user), NDAKind.INDIVIDUAL, signed_nda, "Dana Reyes")
        second = manager.reject(actor_for(admin_user), NDAKind.INDIVIDUAL, signed_nda, "Too late")

        assert first.ok
        assert second.kind == OutcomeKind.CONFLICT
        assert db_session.get(IndividualNDA, signed_nda).status == "approved"
        assert [e.action for e in db_session.query(NDAAuditEntry).all()] == ["countersigned"]

    def test_interleaved_sessions_have_one_winner(self, tmp_path):
        """One session commits between the other session's read and its compare-and-set."""
        shared = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
        event.listen(shared, "connect", lambda conn, _: conn.execute("PRAGMA foreign_keys=ON"))
        Base.metadata.create_all(bind=shared)
        Sessions = sessionmaker(bind=shared, autoflush=False)
        first, second = Sessions(), Sessions()
        try:
            owner = User(email="owner@city.test", full_name="Dana Reyes", role="client_reviewer", is_active=True)
            admin = User(email="admin@rfpgate.test", full_name="Platform Admin", role="admin", is_active=True)
            bidder = User(email="solo@bidder.test", full_name="Riley Solo", role="bidder", is_active=True)
            first.add_all([owner, admin, bidder])
            first.commit()
            rfp = RFP(title="Library Renovation", description="", client_id=owner.id,
                      visibility="public", status="active")
            first.add(rfp)
            first.commit()
            nda_id = NDALifecycleManager(first).sign(actor_for(bidder), rfp.id, signature()).value.id

            assert second.get(IndividualNDA, nda_id).status == "signed"

            won = NDALifecycleManager(first).countersign(actor_for(owner), NDAKind.INDIVIDUAL, nda_id, "Dana Reyes")
            lost = NDALifecycleManager(second).reject(actor_for(admin), NDAKind.INDIVIDUAL, nda_id, "Too late")

            assert won.ok
            assert lost.kind == OutcomeKind.CONFLICT
            assert second.get(IndividualNDA, nda_id).status == "approved"
            assert [e.action for e in second.query(NDAAuditEntry).all()] == ["countersigned"]
        finally:
            first.close()
            second.close()
            shared.dispose()

    def test_stale_compare_and_set_is_conflict(self, db_session, signed_nda, admin_user):
        # Another transaction already moved the row; the store reports no change.
        manager = NDALifecycleManager(db_session)
        manager._store = MagicMock(return_value=MagicMock(
            get=MagicMock(return_value=MagicMock(status="approved")),
            compare_and_set=MagicMock(return_value=False),
        ))

        outcome = manager.countersign(actor_for(admin_user), NDAKind.INDIVIDUAL, signed_nda, "Platform Admin")
        assert outcome.kind == OutcomeKind.CONFLICT
        assert db_session.query(NDAAuditEntry).count() == 0

    def test_unknown_nda_is_not_found(self, db_session, admin_user):
        outcome = NDALifecycleManager(db_session).countersign(
            actor_for(admin_user), NDAKind.COMPANY, 999, "Platform Admin",
        )
        assert outcome.kind == OutcomeKind.NOT_FOUND

    def test_company_approval_notifies_every_member(self, db_session, public_rfp, company_admin,
                                                    company_member, admin_user, notifier):
        manager = NDALifecycleManager(db_session, notifier)
        nda_id = manager.sign_company(actor_for(company_admin), public_rfp.id, signature("Sam Patel")).value.id
        manager.countersign(actor_for(admin_user), NDAKind.COMPANY, nda_id, "Platform Admin")

        recipients = sorted(n["user_id"] for n in notifier.of_type("nda_approved"))
        assert recipients == sorted([company_admin.id, company_member.id])

        entry = db_session.query(NDAAuditEntry).one()
        assert entry.company_nda_id == nda_id
        assert entry.nda_id is None

    def test_notification_failure_does_not_undo_transition(self, db_session, signed_nda, admin_user):
        failing = MagicMock()
        failing.notify.side_effect = RuntimeError("redis down")

        outcome = NDALifecycleManager(db_session, failing).countersign(
            actor_for(admin_user), NDAKind.INDIVIDUAL, signed_nda, "Platform Admin",
        )
        assert outcome.ok
        assert db_session.get(IndividualNDA, signed_nda).status == "approved"


class TestStatusAndListing:

    def test_status_when_nothing_signed(self, db_session, public_rfp, bidder_user):
        view = NDALifecycleManager(db_session).get_status(actor_for(bidder_user), public_rfp.id).value

        assert not view.individual.exists
        assert not view.company.exists
        assert not view.grants_document_access

    def test_status_for_anonymous_is_empty(self, db_session, public_rfp):
        view = NDALifecycleManager(db_session).get_status(Actor.anonymous(), public_rfp.id).value
        assert not view.individual.exists

    def test_status_reports_signatures_and_rejection(self, db_session, public_rfp, bidder_user, admin_user):
        manager = NDALifecycleManager(db_session)
        actor = actor_for(bidder_user)
        nda_id = manager.sign(actor, public_rfp.id, signature()).value.id

        view = manager.get_status(actor, public_rfp.id).value
        assert view.individual.has_bidder_signature
        assert not view.individual.has_client_signature
        assert view.grants_document_access

        manager.reject(actor_for(admin_user), NDAKind.INDIVIDUAL, nda_id, "Wrong entity name")
        view = manager.get_status(actor, public_rfp.id).value
        assert view.individual.rejected
        assert view.individual.rejection_reason == "Wrong entity name"
        assert not view.grants_document_access

    def test_listing_is_for_reviewers(self, db_session, public_rfp, bidder_user, client_user):
        manager = NDALifecycleManager(db_session)
        manager.sign(actor_for(bidder_user), public_rfp.id, signature())

        assert manager.list_ndas(actor_for(bidder_user), public_rfp.id).kind == OutcomeKind.DENIED
        listing = manager.list_ndas(actor_for(client_user), public_rfp.id).value
        assert len(listing["individual"]) == 1
        assert listing["company"] == []


class TestAuditTrailIntegrity:

    def test_audit_entries_cannot_be_modified(self, db_session, public_rfp, bidder_user, admin_user):
        manager = NDALifecycleManager(db_session)
        nda_id = manager.sign(actor_for(bidder_user), public_rfp.id, signature()).value.id
        manager.countersign(actor_for(admin_user), NDAKind.INDIVIDUAL, nda_id, "Platform Admin")

        entry = db_session.query(NDAAuditEntry).one()
        entry.action = "rejected"
        with pytest.raises(AuditTrailImmutableError):
            db_session.flush()
        db_session.rollback()

        entry = db_session.query(NDAAuditEntry).one()
        db_session.delete(entry)
        with pytest.raises(AuditTrailImmutableError):
            db_session.flush()
        db_session.rollback()

    def test_deleting_rfp_cascades_to_ndas_and_audit(self, db_session, public_rfp, bidder_user,
                                                     company_admin, admin_user):
        manager = NDALifecycleManager(db_session)
        make_document(db_session, public_rfp, "Specs", requires_nda=True)
        nda_id = manager.sign(actor_for(bidder_user), public_rfp.id, signature()).value.id
        company_nda_id = manager.sign_company(actor_for(company_admin), public_rfp.id, signature("Sam Patel")).value.id
        manager.countersign(actor_for(admin_user), NDAKind.INDIVIDUAL, nda_id, "Platform Admin")
        manager.reject(actor_for(admin_user), NDAKind.COMPANY, company_nda_id, "Unsigned page 2")
        assert db_session.query(NDAAuditEntry).count() == 2

        rfp_id = public_rfp.id
        db_session.expunge_all()
        db_session.query(RFP).filter(RFP.id == rfp_id).delete(synchronize_session=False)
        db_session.commit()

        assert db_session.query(IndividualNDA).count() == 0
        assert db_session.query(CompanyNDA).count() == 0
        assert db_session.query(NDAAuditEntry).count() == 0
