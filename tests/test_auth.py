"""Tests for password verification and failed-attempt lockout."""
import threading

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import sessionmaker

from session_auth import accounts
from session_auth import auth as auth_module
from session_auth.auth import (
    LOCKOUT_DURATION,
    MAX_FAILED_ATTEMPTS,
    AccountAuthenticator,
    active_account_query,
    hash_password,
    verify_password
)
from session_auth.database import Base, build_engine
from session_auth.errors import AccountNotFound, Conflict, InvalidCredentials, LockedOut
from session_auth.models import Account

from conftest import PASSWORD


def reload_account(db, account_id):
    db.expire_all()
    return db.get(Account, account_id)


def fail_login(db, clock, times, email="u@x.com"):
    authenticator = AccountAuthenticator(db, clock)
    for _ in range(times):
        with pytest.raises(InvalidCredentials):
            authenticator.authenticate(email, "wrongpass")


def postgres_sql(query):
    return str(query.statement.compile(dialect=postgresql.dialect()))


@pytest.fixture
def verify_calls(monkeypatch):
    calls = []
    real_verify = auth_module.verify_password

    def counting_verify(plain, hashed):
        calls.append(plain)
        return real_verify(plain, hashed)

    monkeypatch.setattr(auth_module, "verify_password", counting_verify)
    return calls


class TestPasswordHashing:
    def test_hash_is_salted(self):
        assert hash_password(PASSWORD) != hash_password(PASSWORD)

    def test_verify(self):
        hashed = hash_password(PASSWORD)
        assert verify_password(PASSWORD, hashed)
        assert not verify_password("wrongpass", hashed)


class TestRegistration:
    def test_email_is_stored_lower_cased(self, db):
        account = accounts.register(db, "A@B.com", "bob", PASSWORD, "Bob B")
        assert account.email == "a@b.com"

    def test_duplicate_email_in_any_casing_conflicts(self, db):
        accounts.register(db, "A@B.com", "bob", PASSWORD, "Bob B")
        with pytest.raises(Conflict):
            accounts.register(db, "a@B.COM", "robert", PASSWORD, "Robert B")

    def test_duplicate_username_conflicts(self, db, account):
        with pytest.raises(Conflict):
            accounts.register(db, "other@x.com", "alice", PASSWORD, "Other")


class TestAuthenticate:
    def test_case_insensitive_email(self, db, clock):
        accounts.register(db, "A@B.com", "bob", PASSWORD, "Bob B")
        account = AccountAuthenticator(db, clock).authenticate("a@b.com", PASSWORD)
        assert account.username == "bob"

    def test_unknown_email_looks_like_bad_password(self, db, clock, account):
        with pytest.raises(InvalidCredentials) as excinfo:
            AccountAuthenticator(db, clock).authenticate("nobody@x.com", PASSWORD)
        assert isinstance(excinfo.value, AccountNotFound)
        assert excinfo.value.status_code == InvalidCredentials.status_code
        assert excinfo.value.message == InvalidCredentials.message

    def test_inactive_account_is_not_found(self, db, clock, account):
        account.is_active = False
        db.commit()
        with pytest.raises(AccountNotFound):
            AccountAuthenticator(db, clock).authenticate("u@x.com", PASSWORD)

    @pytest.mark.parametrize("failures", [1, 2, 3, 4])
    def test_failures_below_threshold_only_count(self, db, clock, account, failures):
        fail_login(db, clock, failures)

        stored = reload_account(db, account.id)
        assert stored.failed_login_attempts == failures
        assert stored.last_failed_login_at == clock.now

        #Not locked: the correct password still works
        assert AccountAuthenticator(db, clock).authenticate("u@x.com", PASSWORD).id == account.id

    def test_lockout_skips_password_check_and_state(self, db, clock, account, verify_calls):
        fail_login(db, clock, MAX_FAILED_ATTEMPTS)
        verify_calls.clear()
        before = reload_account(db, account.id).last_failed_login_at

        clock.advance(minutes=5)
        with pytest.raises(LockedOut) as excinfo:
            AccountAuthenticator(db, clock).authenticate("u@x.com", PASSWORD)

        assert excinfo.value.retry_after == LOCKOUT_DURATION
        assert verify_calls == []
        stored = reload_account(db, account.id)
        assert stored.failed_login_attempts == MAX_FAILED_ATTEMPTS
        assert stored.last_failed_login_at == before

    def test_failure_after_elapsed_lockout_counts_from_one(self, db, clock, account):
        fail_login(db, clock, MAX_FAILED_ATTEMPTS)
        with pytest.raises(LockedOut):
            AccountAuthenticator(db, clock).authenticate("u@x.com", "wrongpass")

        clock.advance(minutes=16)
        fail_login(db, clock, 1)

        assert reload_account(db, account.id).failed_login_attempts == 1

    def test_elapsed_lockout_is_not_reset_until_next_write(self, db, clock, account):
        fail_login(db, clock, MAX_FAILED_ATTEMPTS)
        clock.advance(minutes=16)

        AccountAuthenticator(db, clock).authenticate("u@x.com", PASSWORD)
        db.rollback()

        assert reload_account(db, account.id).failed_login_attempts == MAX_FAILED_ATTEMPTS

    def test_successful_login_resets_counter(self, db, cache, clock, account):
        fail_login(db, clock, 3)

        token, _ = accounts.login(db, cache, "u@x.com", PASSWORD, clock=clock)

        stored = reload_account(db, account.id)
        assert token
        assert stored.failed_login_attempts == 0
        assert stored.last_failed_login_at is None
        assert stored.last_login_at == clock.now

    def test_reset_is_visible_to_next_lockout_check(self, db, cache, clock, account):
        fail_login(db, clock, MAX_FAILED_ATTEMPTS - 1)
        accounts.login(db, cache, "u@x.com", PASSWORD, clock=clock)

        fail_login(db, clock, MAX_FAILED_ATTEMPTS - 1)

        #Would be locked out had the earlier failures survived the success
        assert AccountAuthenticator(db, clock).authenticate("u@x.com", PASSWORD).id == account.id


class TestAccountRowLock:
    def test_lookup_locks_row_only_when_asked(self, db):
        assert "FOR UPDATE" in postgres_sql(active_account_query(db, "u@x.com", for_update=True))
        assert "FOR UPDATE" not in postgres_sql(active_account_query(db, "u@x.com"))

    @pytest.mark.parametrize("password", [PASSWORD, "wrongpass"])
    def test_authenticate_reads_account_under_row_lock(self, db, clock, account, monkeypatch, password):
        statements = []
        real_query = auth_module.active_account_query

        def recording_query(db, email, **kwargs):
            query = real_query(db, email, **kwargs)
            statements.append(postgres_sql(query))
            return query

        monkeypatch.setattr(auth_module, "active_account_query", recording_query)

        try:
            AccountAuthenticator(db, clock).authenticate("u@x.com", password)
        except InvalidCredentials:
            pass

        assert len(statements) == 1
        assert "FOR UPDATE" in statements[0]

    def test_concurrent_failures_are_all_counted(self, tmp_path, clock):
        engine = build_engine(f"sqlite:///{tmp_path / 'accounts.db'}")
        Base.metadata.create_all(bind=engine)
        factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

        setup = factory()
        account_id = accounts.register(setup, "c@x.com", "carol", PASSWORD, "Carol C").id
        setup.close()

        workers = MAX_FAILED_ATTEMPTS - 1
        barrier = threading.Barrier(workers)
        results = []

        def worker():
            db = factory()
            try:
                barrier.wait()
                AccountAuthenticator(db, clock).authenticate("c@x.com", "wrongpass")
                results.append("accepted")
            except InvalidCredentials:
                results.append("rejected")
            finally:
                db.close()

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == ["rejected"] * workers
        check = factory()
        assert check.get(Account, account_id).failed_login_attempts == workers
        check.close()
        engine.dispose()
