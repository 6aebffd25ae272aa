from datetime import timedelta

import pytest

from kore.core.exceptions import DuplicateTokenError
from kore.core.security import TokenIssuer, identity_claims
from kore.core.timeutils import utcnow
from kore.models.security import RefreshToken, SecurityEvent
from kore.models.user import User
from kore.services.token_cleanup import TokenCleanupWorker


@pytest.fixture
def user(users, db):
    return users.create_user(db, "a@x.com", "Passw0rd!", "Ann")


def _entry(db, token):
    db.expire_all()
    return db.query(RefreshToken).filter(RefreshToken.token == token).one()


def test_issue_token_pair_records_refresh_token(tokens, db, user):
    pair = tokens.issue_token_pair(db, user)

    entry = _entry(db, pair.refresh_token)
    assert entry.user_id == user.id
    assert entry.family_id == pair.family_id
    assert entry.revoked is False
    assert entry.is_active()
    assert pair.access_expires_in == 15 * 60
    assert pair.refresh_expires_in == 7 * 24 * 3600

    claims = tokens.issuer.verify_access_token(pair.access_token)
    assert claims["sub"] == str(user.id)
    assert claims["email"] == "a@x.com"
    assert claims["role"] == "user"


def test_each_issue_starts_a_new_family(tokens, db, user):
    first = tokens.issue_token_pair(db, user)
    second = tokens.issue_token_pair(db, user)
    assert first.family_id != second.family_id


def test_rotation_returns_new_pair_and_kills_old_token(tokens, db, user):
    pair = tokens.issue_token_pair(db, user)

    rotated = tokens.rotate_refresh_token(db, pair.refresh_token)
    assert rotated is not None
    assert rotated.refresh_token != pair.refresh_token
    assert rotated.family_id == pair.family_id
    assert tokens.issuer.verify_access_token(rotated.access_token)["sub"] == str(user.id)

    old = _entry(db, pair.refresh_token)
    new = _entry(db, rotated.refresh_token)
    assert old.revoked is True
    assert old.replaced_by_jti == new.token_jti
    assert new.revoked is False
    assert new.family_id == pair.family_id

    assert tokens.rotate_refresh_token(db, pair.refresh_token) is None


def test_replaying_old_token_revokes_whole_family(tokens, db, user):
    a = tokens.issue_token_pair(db, user)
    b = tokens.rotate_refresh_token(db, a.refresh_token)
    c = tokens.rotate_refresh_token(db, b.refresh_token)
    assert c is not None

    assert tokens.rotate_refresh_token(db, a.refresh_token) is None

    # C was never replayed but belongs to the compromised lineage
    assert tokens.rotate_refresh_token(db, c.refresh_token) is None
    family = tokens.ledger.list_for_family(db, a.family_id)
    assert len(family) == 3
    assert all(entry.revoked for entry in family)

    event = db.query(SecurityEvent).filter(SecurityEvent.event_type == "refresh_token_reuse").first()
    assert event is not None
    assert event.family_id == a.family_id
    assert event.user_id == user.id


def test_reuse_leaves_other_families_alone(tokens, db, user):
    phone = tokens.issue_token_pair(db, user)
    laptop = tokens.issue_token_pair(db, user)

    tokens.rotate_refresh_token(db, phone.refresh_token)
    assert tokens.rotate_refresh_token(db, phone.refresh_token) is None

    assert tokens.rotate_refresh_token(db, laptop.refresh_token) is not None


def test_unknown_token_returns_none(tokens, db, user):
    assert tokens.rotate_refresh_token(db, "never-issued") is None


def test_expired_entry_is_revoked_and_rejected(tokens, db, user):
    pair = tokens.issue_token_pair(db, user)
    entry = _entry(db, pair.refresh_token)
    entry.expires_at = utcnow() - timedelta(seconds=1)
    db.commit()

    assert tokens.rotate_refresh_token(db, pair.refresh_token) is None
    assert _entry(db, pair.refresh_token).revoked is True
    # Expiry is not a reuse signal
    assert db.query(SecurityEvent).filter(SecurityEvent.event_type == "refresh_token_reuse").count() == 0


def test_revoked_check_wins_over_expiry(tokens, db, user):
    pair = tokens.issue_token_pair(db, user)
    rotated = tokens.rotate_refresh_token(db, pair.refresh_token)

    entry = _entry(db, pair.refresh_token)
    entry.expires_at = utcnow() - timedelta(days=1)
    db.commit()

    assert tokens.rotate_refresh_token(db, pair.refresh_token) is None
    assert _entry(db, rotated.refresh_token).revoked is True


def test_entry_with_bad_signature_is_revoked(tokens, db, user, test_settings):
    forger = TokenIssuer(
        test_settings.model_copy(update={"JWT_REFRESH_SECRET": "forged-refresh-secret-0123456789abcdef0123"})
    )
    family_id = "fam-forged"
    forged = forger.issue_refresh_token(identity_claims(user), family_id)
    tokens.ledger.record(
        db,
        user_id=user.id,
        token=forged,
        token_jti="forged-jti",
        family_id=family_id,
        expires_at=utcnow() + timedelta(days=1),
    )
    db.commit()

    assert tokens.rotate_refresh_token(db, forged) is None
    assert _entry(db, forged).revoked is True


def test_entry_claims_must_match_owner(tokens, users, db, user):
    other = users.create_user(db, "z@x.com", "Passw0rd!", "Zed")
    pair = tokens.issue_token_pair(db, other)
    entry = _entry(db, pair.refresh_token)
    entry.user_id = user.id
    db.commit()

    assert tokens.rotate_refresh_token(db, pair.refresh_token) is None
    assert _entry(db, pair.refresh_token).revoked is True


def test_lost_rotation_race_counts_as_reuse(tokens, db, user, monkeypatch):
    pair = tokens.issue_token_pair(db, user)
    sibling = tokens.issue_token_pair(db, user, family_id=pair.family_id)

    monkeypatch.setattr(tokens.ledger, "mark_rotated", lambda *args, **kwargs: False)
    assert tokens.rotate_refresh_token(db, pair.refresh_token) is None
    assert _entry(db, sibling.refresh_token).revoked is True


def test_revoke_all_for_user_is_idempotent(tokens, db, user):
    first = tokens.issue_token_pair(db, user)
    second = tokens.issue_token_pair(db, user)

    assert tokens.revoke_all_for_user(db, user.id) == 2
    assert tokens.revoke_all_for_user(db, user.id) == 0
    assert tokens.ledger.active_count_for_user(db, user.id) == 0
    assert tokens.rotate_refresh_token(db, first.refresh_token) is None
    assert tokens.rotate_refresh_token(db, second.refresh_token) is None


def test_revoke_single_token(tokens, db, user):
    pair = tokens.issue_token_pair(db, user)
    assert tokens.revoke_refresh_token(db, pair.refresh_token) is True
    assert tokens.revoke_refresh_token(db, "unknown") is False
    assert _entry(db, pair.refresh_token).revoked is True


def test_duplicate_token_string_is_a_conflict(tokens, db, user):
    pair = tokens.issue_token_pair(db, user)
    with pytest.raises(DuplicateTokenError) as excinfo:
        tokens.ledger.record(
            db,
            user_id=user.id,
            token=pair.refresh_token,
            token_jti="another-jti",
            family_id=pair.family_id,
            expires_at=utcnow() + timedelta(days=1),
        )
    assert excinfo.value.status_code == 409


def test_purge_expired_removes_only_expired(tokens, db, user):
    live = tokens.issue_token_pair(db, user)
    stale = tokens.issue_token_pair(db, user)
    entry = _entry(db, stale.refresh_token)
    entry.expires_at = utcnow() - timedelta(hours=1)
    db.commit()

    assert tokens.ledger.purge_expired(db) == 1
    assert tokens.ledger.find_by_token(db, stale.refresh_token) is None
    assert tokens.ledger.find_by_token(db, live.refresh_token) is not None


def test_cleanup_worker_run_once(tokens, test_settings, session_factory, user, db):
    pair = tokens.issue_token_pair(db, user)
    entry = _entry(db, pair.refresh_token)
    entry.expires_at = utcnow() - timedelta(minutes=5)
    db.commit()

    worker = TokenCleanupWorker(test_settings, tokens.ledger, session_factory=session_factory)
    assert worker.run_once() == 1
    assert worker.status()["purged_count"] == 1
    assert worker.status()["running"] is False


def test_rotation_stops_once_owner_is_gone(tokens, db, user):
    pair = tokens.issue_token_pair(db, user)
    # Row removed without the ledger cascade (SQLite leaves foreign keys unenforced)
    db.query(User).filter(User.id == user.id).delete(synchronize_session=False)
    db.commit()

    assert tokens.rotate_refresh_token(db, pair.refresh_token) is None
    assert _entry(db, pair.refresh_token).revoked is True
    assert db.query(RefreshToken).filter(RefreshToken.family_id == pair.family_id).count() == 1


def test_rotated_tokens_carry_current_role(tokens, db, user):
    pair = tokens.issue_token_pair(db, user)
    user.role = "admin"
    db.commit()

    rotated = tokens.rotate_refresh_token(db, pair.refresh_token)
    assert rotated is not None
    assert tokens.issuer.verify_access_token(rotated.access_token)["role"] == "admin"
    assert tokens.issuer.verify_refresh_token(rotated.refresh_token)["role"] == "admin"
