"""
Startup configuration validation module.

This module provides startup-time validation for critical configuration
to catch misconfigurations early (fail-fast) rather than at runtime when
an admin first tries to log in.

Usage:
    from shared.startup_validator import validate_startup_config, StartupValidationError

    async def main():
        try:
            await validate_startup_config()
        except StartupValidationError as e:
            logger.critical(f"Startup blocked: {e}")
            sys.exit(1)
"""

import logging

from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

MIN_JWT_SECRET_LENGTH = 32


class StartupValidationError(Exception):
    """Raised when critical startup validation fails."""

    pass


async def validate_startup_config(settings: Settings | None = None) -> dict[str, bool]:
    """
    Validate all critical configuration at startup.

    Performs tiered validation:
    - TIER 1 (CRITICAL): Block startup if any fail
    - TIER 2 (IMPORTANT): Warn but allow startup

    Returns:
        dict of {check_name: passed} for all validations

    Raises:
        StartupValidationError: If any CRITICAL check fails
    """
    settings = settings or get_settings()
    results: dict[str, bool] = {}
    critical_failures: list[str] = []

    # =========================================================================
    # TIER 1: CRITICAL (block startup if any fail)
    # =========================================================================

    # 1. JWT secret for admin tokens
    if not settings.ADMIN_JWT_SECRET:
        critical_failures.append(
            "ADMIN_JWT_SECRET is not set - generate one with: openssl rand -hex 32"
        )
        results["jwt_secret"] = False
    else:
        results["jwt_secret"] = True
        logger.info("  [OK] Admin JWT secret configured")

    # 2. Admin credentials
    if not settings.ADMIN_USERNAME:
        critical_failures.append("ADMIN_USERNAME is not set")
        results["admin_credentials"] = False
    elif not settings.ADMIN_PASSWORD_HASH and not settings.ADMIN_PASSWORD:
        critical_failures.append(
            "Either ADMIN_PASSWORD_HASH (recommended) or ADMIN_PASSWORD must be set"
        )
        results["admin_credentials"] = False
    else:
        results["admin_credentials"] = True
        logger.info("  [OK] Admin credentials configured")

    # 3. Queue engine bounds
    if settings.STORE_TIMEOUT_SECONDS <= 0 or settings.QUEUE_RETRY_ATTEMPTS < 1:
        critical_failures.append(
            "STORE_TIMEOUT_SECONDS must be > 0 and QUEUE_RETRY_ATTEMPTS >= 1"
        )
        results["queue_bounds"] = False
    else:
        results["queue_bounds"] = True

    # =========================================================================
    # TIER 2: IMPORTANT (warn but allow startup)
    # =========================================================================

    # 4. JWT secret length (security)
    if settings.ADMIN_JWT_SECRET and len(settings.ADMIN_JWT_SECRET) < MIN_JWT_SECRET_LENGTH:
        logger.warning(
            f"ADMIN_JWT_SECRET should be at least {MIN_JWT_SECRET_LENGTH} characters for security"
        )
        results["jwt_secret_length"] = False
    else:
        results["jwt_secret_length"] = True

    # 5. Plain text admin password
    if settings.ADMIN_PASSWORD and not settings.ADMIN_PASSWORD_HASH:
        logger.warning(
            "ADMIN_PASSWORD (plain text) is deprecated. "
            "Use ADMIN_PASSWORD_HASH for secure password storage."
        )
        results["admin_password_hashed"] = False
    else:
        results["admin_password_hashed"] = True

    # 6. Database URL format validation
    if not settings.DATABASE_URL.startswith("postgresql+asyncpg://"):
        logger.warning(
            "DATABASE_URL should use asyncpg driver: postgresql+asyncpg://..."
        )
        results["database_url_format"] = False
    else:
        results["database_url_format"] = True

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
