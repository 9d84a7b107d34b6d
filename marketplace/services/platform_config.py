"""
Platform settings: key/value rows in the platform_settings table.

Holds the steward platform-fee overrides read by the fee policy and edited from the
admin routes.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from marketplace.database import get_db

logger = logging.getLogger(__name__)

STEWARD_FEE_PERCENTAGE_KEY = "steward_platform_fee_percentage"
STEWARD_FEE_FLAT_CENTS_KEY = "steward_platform_fee_flat_cents"

EDITABLE_SETTINGS = {
    STEWARD_FEE_PERCENTAGE_KEY: "Steward claim platform fee as a ratio in (0, 1]",
    STEWARD_FEE_FLAT_CENTS_KEY: "Steward claim platform fee as a flat amount in cents",
}


class PlatformConfigError(Exception):
    """Invalid platform setting."""
    pass


# ── Generic read / write ──────────────────────────────────


def get_config(key: str) -> str | None:
    """Read the value stored for key, or None."""
    db = get_db()
    try:
        row = db.execute(
            "SELECT value FROM platform_settings WHERE key = ?",
            (key,),
        ).fetchone()
        return row["value"] if row else None
    finally:
        db.close()


def set_config(key: str, value: str | None) -> None:
    """Upsert a platform setting."""
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    db = get_db()
    try:
        existing = db.execute(
            "SELECT id FROM platform_settings WHERE key = ?", (key,)
        ).fetchone()
        if existing:
            db.execute(
                "UPDATE platform_settings SET value = ?, updated_at = ? WHERE key = ?",
                (value, now, key),
            )
        else:
            db.execute(
                """INSERT INTO platform_settings (key, value, description, updated_at)
                   VALUES (?, ?, ?, ?)""",
                (key, value, EDITABLE_SETTINGS.get(key), now),
            )
        db.commit()
    finally:
        db.close()


# ── Steward fee settings ──────────────────────────────────


def get_steward_fee_settings() -> dict:
    """Return the raw stored values of both steward fee settings."""
    return {key: get_config(key) for key in EDITABLE_SETTINGS}


def _validate(key: str, value: str) -> str:
    if key == STEWARD_FEE_PERCENTAGE_KEY:
        try:
            ratio = Decimal(value)
        except InvalidOperation:
            raise PlatformConfigError("Percentage must be a number")
        if not (Decimal("0") < ratio <= Decimal("1")):
            raise PlatformConfigError("Percentage must be greater than 0 and at most 1")
        return str(ratio)

    try:
        cents = int(value)
    except ValueError:
        raise PlatformConfigError("Flat fee must be a whole number of cents")
    if cents < 0:
        raise PlatformConfigError("Flat fee cannot be negative")
    return str(cents)


def update_steward_fee_settings(values: dict) -> dict:
    """
    Validate and store steward fee settings.

    An empty string or None clears a setting, so the fee policy falls through to the
    next rule.

    Raises:
        PlatformConfigError: unknown key or invalid value.
    """
    cleaned = {}
    for key, value in values.items():
        if key not in EDITABLE_SETTINGS:
            raise PlatformConfigError(f"Unknown setting: {key}")
        if value is None or str(value).strip() == "":
            cleaned[key] = None
        else:
            cleaned[key] = _validate(key, str(value).strip())

    for key, value in cleaned.items():
        set_config(key, value)
        logger.info("Platform setting updated: %s=%s", key, value)

    return get_steward_fee_settings()
