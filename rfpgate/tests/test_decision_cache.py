"""
Tests for the Redis decision cache and signed download URLs.
"""
import json
import pytest
from unittest.mock import MagicMock
from jose import jwt, JWTError

from rfpgate.core.rbac import Actor
from rfpgate.core.security import create_access_token
from rfpgate.services.decision_cache import DecisionCache
from rfpgate.services.outcomes import AccessDecision, DenyReason
from rfpgate.services.storage import issue_signed_url, verify_signed_token


ACTOR = Actor(user_id=4, role="bidder", company_id=10, company_role="member")


class TestDecisionCache:

    def test_disabled_cache_always_evaluates(self):
        redis_client = MagicMock()
        cache = DecisionCache(ttl_seconds=0, client=redis_client)
        evaluate = MagicMock(return_value=AccessDecision.allow("public_rfp"))

        cache.get_or_evaluate("rfp", 1, ACTOR, evaluate)
        cache.get_or_evaluate("rfp", 1, ACTOR, evaluate)

        assert evaluate.call_count == 2
        redis_client.get.assert_not_called()
        redis_client.setex.assert_not_called()

    def test_allow_is_cached_with_ttl(self):
        redis_client = MagicMock()
        redis_client.get.return_value = None
        cache = DecisionCache(ttl_seconds=30, client=redis_client)

        cache.get_or_evaluate("document", 7, ACTOR, lambda: AccessDecision.allow("individual_nda"))

        key, ttl, body = redis_client.setex.call_args[0]
        assert key == "rfpgate:access:document:7:4:bidder:10:member"
        assert ttl == 30
        assert json.loads(body)["rule"] == "individual_nda"

    def test_deny_is_never_cached(self):
        redis_client = MagicMock()
        redis_client.get.return_value = None
        cache = DecisionCache(ttl_seconds=30, client=redis_client)

        decision = cache.get_or_evaluate(
            "document", 7, ACTOR, lambda: AccessDecision.deny(DenyReason.NO_QUALIFYING_NDA),
        )
        assert not decision.allowed
        redis_client.setex.assert_not_called()

    def test_cached_allow_skips_evaluation(self):
        redis_client = MagicMock()
        redis_client.get.return_value = json.dumps(AccessDecision.allow("company_nda").to_dict())
        cache = DecisionCache(ttl_seconds=30, client=redis_client)
        evaluate = MagicMock()

        decision = cache.get_or_evaluate("document", 7, ACTOR, evaluate)
        assert decision.allowed
        assert decision.rule == "company_nda"
        evaluate.assert_not_called()

    def test_redis_errors_fall_through(self):
        redis_client = MagicMock()
        redis_client.get.side_effect = ConnectionError("redis down")
        redis_client.setex.side_effect = ConnectionError("redis down")
        cache = DecisionCache(ttl_seconds=30, client=redis_client)

        decision = cache.get_or_evaluate("rfp", 1, ACTOR, lambda: AccessDecision.allow("owner"))
        assert decision.allowed

    def test_key_separates_company_membership(self):
        moved = Actor(user_id=4, role="bidder", company_id=11, company_role="member")
        assert DecisionCache.cache_key("rfp", 1, ACTOR) != DecisionCache.cache_key("rfp", 1, moved)
        assert DecisionCache.cache_key("rfp", 1, Actor.anonymous()).endswith(":anon")


class TestSignedURLs:

    def test_url_carries_verifiable_token(self, db_session, nda_document):
        signed = issue_signed_url(nda_document, user_id=4, expires_in=60)

        assert signed["url"].startswith("http://localhost:9000/rfp-documents/rfps/")
        token = signed["url"].split("token=", 1)[1]
        claims = verify_signed_token(token)
        assert claims["doc"] == nda_document.id
        assert claims["path"] == nda_document.file_path
        assert claims["sub"] == "4"

    def test_foreign_token_is_rejected(self):
        forged = jwt.encode({"purpose": "document_download", "doc": 1}, "not-the-signing-key", algorithm="HS256")
        with pytest.raises(JWTError):
            verify_signed_token(forged)

    def test_access_token_is_not_a_download_token(self):
        with pytest.raises(JWTError):
            verify_signed_token(create_access_token({"sub": "4"}))
