"""Readiness checks: config, packages, storage, optional backend API."""
import logging
import uuid

logger = logging.getLogger(__name__)

# Result: (passed: bool, message: str)
CheckResult = tuple[bool, str]
ChecksDict = dict[str, CheckResult]


def check_config() -> CheckResult:
    """Load settings and read the values every session needs."""
    try:
        from notify_sync.settings import get_settings
        s = get_settings()
        _ = s.app_name
        _ = s.api_base_url
        _ = s.storage_backend
        return True, "ok"
    except Exception as e:
        return False, str(e)


def check_packages() -> CheckResult:
    """Import critical modules: httpx, pydantic, yaml, notify_sync.main (redis only when selected)."""
    missing = []
    try:
        import httpx  # noqa: F401
    except ImportError:
        missing.append("httpx")
    try:
        import pydantic_settings  # noqa: F401
    except ImportError:
        missing.append("pydantic-settings")
    try:
        import yaml  # noqa: F401
    except ImportError:
        missing.append("pyyaml")
    try:
        from notify_sync.settings import get_settings
        if get_settings().storage_backend == "redis":
            import redis  # noqa: F401
    except ImportError:
        missing.append("redis")
    try:
        import notify_sync.main  # noqa: F401
    except ImportError as e:
        missing.append(f"notify_sync.main ({e})")
    if missing:
        return False, f"missing: {', '.join(missing)}"
    return True, "ok"


def check_storage() -> CheckResult:
    """Write, read back and delete a probe key in the configured store."""
    store = None
    try:
        from notify_sync.infra.storage import build_store
        from notify_sync.settings import get_settings
        s = get_settings()
        store = build_store(s.storage_backend, s.storage_dir, s.redis_url)
        key = f"{s.storage_key_prefix}:readiness-{uuid.uuid4().hex[:8]}"
        store.set(key, "probe")
        value = store.get(key)
        store.delete(key)
        if value != "probe":
            return False, f"read back {value!r}"
        return True, "ok"
    except Exception as e:
        return False, str(e)
    finally:
        close = getattr(store, "close", None)
        if close is not None:
            close()


def check_api() -> CheckResult:
    """GET the unread list; needs a session cookie, so an auth failure still proves reachability."""
    try:
        from notify_sync.settings import get_settings
        import httpx
        s = get_settings()
        url = s.api_base_url.rstrip("/") + s.unread_path
        cookies = {s.session_cookie_name: s.session_cookie} if s.session_cookie else None
        r = httpx.get(url, cookies=cookies, timeout=5.0)
        if r.status_code == 200:
            return True, "ok"
        if r.status_code in (401, 403):
            return True, f"reachable (status {r.status_code}, no valid session)"
        return False, f"status {r.status_code}"
    except Exception as e:
        return False, str(e)


def run_all_checks() -> ChecksDict:
    """Run all readiness checks. Returns dict of check_name -> (passed, message)."""
    return {
        "config": check_config(),
        "packages": check_packages(),
        "storage": check_storage(),
        "api": check_api(),
    }


def is_ready(checks: ChecksDict | None = None) -> tuple[bool, dict[str, str]]:
    """
    True if all required checks pass. The backend API is optional (the client retries on its own).
    Returns (ready: bool, checks_summary: dict of name -> "ok" | error message).
    """
    if checks is None:
        checks = run_all_checks()
    required = {"config", "packages", "storage"}
    summary: dict[str, str] = {}
    for name, (passed, msg) in checks.items():
        summary[name] = msg
    all_required = all(checks[n][0] for n in required if n in checks)
    return all_required, summary
