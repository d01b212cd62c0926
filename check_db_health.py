"""Database and cache health check script for the session auth service"""
import sys
from sqlalchemy import inspect, text
from sqlalchemy.orm import sessionmaker
from session_auth.auth import LOCKOUT_DURATION, MAX_FAILED_ATTEMPTS
from session_auth.cache import SESSION_KEY_PREFIX, SessionCache, get_redis_client
from session_auth.database import DATABASE_URL, engine
from session_auth.errors import CacheUnavailable
from session_auth.models import Account, Session, utcnow


def find_stale_cache_entries(db, client, now):
    """Return cached tokens whose durable session is missing, revoked or expired"""
    stale = []
    for key in client.scan_iter(match=f"{SESSION_KEY_PREFIX}*"):
        token = key[len(SESSION_KEY_PREFIX):]
        session = db.query(Session).filter(Session.token == token).first()
        if session is None or not session.is_usable(now):
            stale.append(token)
    return stale


def check_health(db, cache, now=None):
    """Check database and cache health, returning True when both are usable"""
    now = now or utcnow()

    #Test 1: Database connectivity
    print("[1/6] Testing database connectivity...")
    try:
        db.execute(text("SELECT 1"))
        print("✓ Database connection successful")
    except Exception as e:
        print(f"✗ Database connection failed: {e}")
        return False

    #Test 2: Check if tables exist
    print("\n[2/6] Checking if tables exist...")
    existing = set(inspect(db.get_bind()).get_table_names())
    for table in ("accounts", "sessions"):
        if table in existing:
            print(f"✓ Table '{table}' exists")
        else:
            print(f"✗ Table '{table}' does not exist")
            return False

    #Test 3: Account counts
    print("\n[3/6] Checking account count...")
    account_count = db.query(Account).count()
    active_count = db.query(Account).filter(Account.is_active == True).count()
    locked_count = db.query(Account).filter(
        Account.failed_login_attempts >= MAX_FAILED_ATTEMPTS,
        Account.last_failed_login_at > now - LOCKOUT_DURATION
    ).count()
    print(f"  Total accounts: {account_count}")
    print(f"  Active accounts: {active_count}")
    print(f"  Currently locked out: {locked_count}")

    #Test 4: Session counts
    print("\n[4/6] Checking session count...")
    total_sessions = db.query(Session).count()
    usable_sessions = db.query(Session).filter(
        Session.is_active == True,
        Session.expires_at > now
    ).count()
    expired_active = db.query(Session).filter(
        Session.is_active == True,
        Session.expires_at <= now
    ).count()
    print(f"  Total sessions: {total_sessions}")
    print(f"  Usable sessions: {usable_sessions}")
    if expired_active > 0:
        print(f"⚠ {expired_active} expired sessions still flagged active (harmless, expiry wins)")
    else:
        print("✓ No expired sessions flagged active")

    #Test 5: Cache connectivity
    print("\n[5/6] Testing cache connectivity...")
    try:
        cache.ping()
        print("✓ Cache connection successful")
    except CacheUnavailable as e:
        print(f"✗ Cache connection failed: {e.__cause__ or e}")
        return False

    #Test 6: Stale cache entries
    print("\n[6/6] Checking for stale cache entries...")
    stale = find_stale_cache_entries(db, cache.client, now)
    if stale:
        print(f"⚠ Found {len(stale)} cached tokens without a usable session (denied and evicted on next use)")
    else:
        print("✓ Every cached token has a usable session")

    #Summary
    print("\n" + "=" * 60)
    print("Health Summary")
    print("=" * 60)
    print(f"Database URL: {DATABASE_URL.split('@')[1] if '@' in DATABASE_URL else 'localhost'}")
    print("Status: ✓ HEALTHY")
    print(f"Accounts: {account_count} total, {active_count} active, {locked_count} locked out")
    print(f"Sessions: {usable_sessions} usable, {len(stale)} stale cache entries")
    print()
    return True


def main():
    print("=" * 60)
    print("Session Auth Health Check")
    print("=" * 60)
    print()

    db = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        return check_health(db, SessionCache(get_redis_client()))
    except Exception as e:
        print(f"\n✗ Health check failed: {e}")
        import traceback
        traceback.print_exc()
        return False
    finally:
        db.close()


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
