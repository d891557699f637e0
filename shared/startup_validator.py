"""
Startup configuration validation module.

This module provides startup-time validation for critical configuration
to catch misconfigurations early (fail-fast) rather than at runtime when
a customer tries to book.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    async def lifespan(app):
        try:
            await validate_startup_config(db)
        except StartupValidationError as e:
            logger.critical(f"Startup blocked: {e}")
            raise
"""

import logging
from pathlib import Path

from database.connection import Database
from shared.config import get_settings

logger = logging.getLogger(__name__)

PLACEHOLDER_SERVICE_ACCOUNT = "/path/to/service-account-key.json"


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""

    pass


def _service_account_error(path_value: str) -> str | None:
    """Return a description of what is wrong with the key file, or None."""
    if path_value == PLACEHOLDER_SERVICE_ACCOUNT:
        return (
            "GOOGLE_SERVICE_ACCOUNT_JSON is default placeholder - "
            "set path to your service account key file"
        )
    path = Path(path_value)
    if not path.is_file():
        return f"Google service account file not found: {path}"
    try:
        if len(path.read_text()) < 100:  # Valid JSON key file is typically >1KB
            return f"Google service account file appears empty or invalid: {path}"
    except PermissionError:
        return f"Google service account file not readable (permission denied): {path}"
    return None


async def validate_startup_config(db: Database | None = None) -> dict[str, bool]:
    """
    Validate all critical configuration at startup.

    Performs tiered validation:
    - TIER 1 (CRITICAL): Block startup if any fail (JWT secret, database)
    - TIER 2 (IMPORTANT): Warn but allow startup (enabled integrations
      without credentials, driver in DATABASE_URL)

    Returns:
        dict of {check_name: passed} for all validations

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    settings = get_settings()
    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # TIER 1: CRITICAL (block startup if any fail)
    # =========================================================================

    # 1. Bearer token verification secret
    if not settings.JWT_SECRET:
        critical_failures.append("JWT_SECRET is not set - bearer tokens cannot be verified")
        results["jwt_secret"] = False
    else:
        results["jwt_secret"] = True
        logger.info("  [OK] JWT secret configured")

    # 2. Database reachable
    if db is not None:
        try:
            await db.ping()
            results["database_connection"] = True
            logger.info("  [OK] Database connection successful")
        except Exception as e:
            critical_failures.append(f"Database connection failed: {e}")
            results["database_connection"] = False

    # =========================================================================
    # TIER 2: IMPORTANT (warn but allow startup)
    # =========================================================================

    # 3. Database URL format validation
    if not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        logger.warning("DATABASE_URL should use asyncpg driver: postgresql+asyncpg://...")
        results["database_url_format"] = False
    else:
        results["database_url_format"] = True

    # 4. Google Calendar credentials (only when sync is enabled)
    if settings.GOOGLE_CALENDAR_ENABLED:
        gc_error = _service_account_error(settings.GOOGLE_SERVICE_ACCOUNT_JSON)
        results["google_calendar_credentials"] = gc_error is None
        if gc_error:
            logger.warning(f"  [WARN] {gc_error} (calendar sync will fail)")
        else:
            logger.info("  [OK] Google Calendar credentials found")
    else:
        logger.info("  [INFO] Google Calendar sync disabled")

    # 5. Firebase credentials (only when push is enabled)
    if settings.PUSH_NOTIFICATIONS_ENABLED:
        push_error = _service_account_error(settings.GOOGLE_SERVICE_ACCOUNT_JSON)
        results["push_credentials"] = push_error is None
        if push_error:
            logger.warning(f"  [WARN] {push_error} (push notifications will be skipped)")
        else:
            logger.info("  [OK] Firebase credentials found")
    else:
        logger.info("  [INFO] Push notifications disabled")

    # =========================================================================
    # Summary and result
    # =========================================================================

    passed = sum(1 for v in results.values() if v)
    total = len(results)
    logger.info(f"Startup validation: {passed}/{total} checks passed")

    if critical_failures:
        logger.critical("=" * 60)
        logger.critical("STARTUP BLOCKED - Critical configuration errors:")
        for i, failure in enumerate(critical_failures, 1):
            logger.critical(f"  {i}. {failure}")
        logger.critical("=" * 60)
        raise StartupValidationError(
            f"Critical startup validation failed ({len(critical_failures)} errors): "
            f"{'; '.join(critical_failures)}"
        )

    return results
