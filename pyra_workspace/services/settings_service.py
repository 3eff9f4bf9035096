"""Settings service for database-backed configuration."""

import logging
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from pyra_workspace.models import Setting
from typing import Optional, Dict, Any, Iterable
from pyra_workspace.utils.encryption import get_encryption_service, is_encryption_configured

logger = logging.getLogger(__name__)


class SettingsService:
    """Manage application settings in database."""

    DEFAULTS: Dict[str, Dict[str, Any]] = {
        # Company / branding
        "app_name": {
            "value": "Pyra Workspace",
            "category": "company",
            "description": "Application display name",
        },
        "company_name": {
            "value": "",
            "category": "company",
            "description": "Company name printed on quotes and invoices",
        },
        "company_logo": {
            "value": "",
            "category": "company",
            "description": "Company logo URL printed on quotes and invoices",
        },
        "default_language": {
            "value": "ar",
            "category": "company",
            "description": "Default UI language (ar or en)",
        },
        # Billing
        "quote_prefix": {
            "value": "QT",
            "category": "billing",
            "description": "Prefix for quote numbers (QT-0001)",
        },
        "invoice_prefix": {
            "value": "INV",
            "category": "billing",
            "description": "Prefix for invoice numbers (INV-0001)",
        },
        "vat_rate": {
            "value": "5",
            "category": "billing",
            "description": "VAT percentage applied to quote and invoice subtotals",
        },
        "quote_expiry_days": {
            "value": "30",
            "category": "billing",
            "description": "Days until a new quote expires",
        },
        "payment_terms_days": {
            "value": "30",
            "category": "billing",
            "description": "Days until an invoice created from a quote is due",
        },
        "bank_name": {
            "value": "",
            "category": "billing",
            "description": "Bank name printed on quotes and invoices",
        },
        "bank_account_name": {
            "value": "",
            "category": "billing",
            "description": "Bank account holder name",
        },
        "bank_account_no": {
            "value": "",
            "category": "billing",
            "description": "Bank account number",
        },
        "bank_iban": {
            "value": "",
            "category": "billing",
            "description": "Bank IBAN",
        },
        "overdue_check_enabled": {
            "value": "true",
            "category": "billing",
            "description": "Mark unpaid invoices past their due date as overdue",
        },
        "overdue_check_schedule": {
            "value": "0 1 * * *",
            "category": "billing",
            "description": "Cron expression for the overdue invoice check",
        },
        # Webhooks
        "webhook_retry_enabled": {
            "value": "true",
            "category": "webhooks",
            "description": "Retry failed webhook deliveries in the background",
        },
        "webhook_retry_schedule": {
            "value": "* * * * *",
            "category": "webhooks",
            "description": "Cron expression for the webhook retry sweep",
        },
        "webhook_max_attempts": {
            "value": "3",
            "category": "webhooks",
            "description": "Delivery attempts before a webhook delivery is marked failed",
        },
        "webhook_allow_private_urls": {
            "value": "false",
            "category": "webhooks",
            "description": "Allow webhook URLs on private/internal networks",
        },
        # Notifications
        "notification_email": {
            "value": "",
            "category": "notifications",
            "description": "Address that receives admin notifications",
        },
        "smtp_host": {
            "value": "",
            "category": "notifications",
            "description": "SMTP server host",
        },
        "smtp_port": {
            "value": "587",
            "category": "notifications",
            "description": "SMTP server port",
        },
        "smtp_user": {
            "value": "",
            "category": "notifications",
            "description": "SMTP username",
        },
        "smtp_pass": {
            "value": "",
            "category": "notifications",
            "description": "SMTP password (encrypted)",
            "encrypted": True,
        },
        "smtp_from": {
            "value": "",
            "category": "notifications",
            "description": "Sender address for outgoing email",
        },
    }

    # Keys an admin may change through the settings API
    WRITABLE_KEYS = frozenset(
        {
            "app_name",
            "company_name",
            "company_logo",
            "default_language",
            "quote_prefix",
            "invoice_prefix",
            "vat_rate",
            "quote_expiry_days",
            "payment_terms_days",
            "bank_name",
            "bank_account_name",
            "bank_account_no",
            "bank_iban",
            "overdue_check_enabled",
            "overdue_check_schedule",
            "webhook_retry_enabled",
            "webhook_retry_schedule",
            "webhook_max_attempts",
            "webhook_allow_private_urls",
            "notification_email",
            "smtp_host",
            "smtp_port",
            "smtp_user",
            "smtp_pass",
            "smtp_from",
        }
    )

    @staticmethod
    async def init_defaults(db: AsyncSession) -> None:
        """Insert default settings that don't exist yet."""
        result = await db.execute(select(Setting.key))
        existing = set(result.scalars().all())

        for key, config in SettingsService.DEFAULTS.items():
            if key in existing:
                continue
            db.add(
                Setting(
                    key=key,
                    value=config["value"],
                    category=config["category"],
                    description=config["description"],
                    encrypted=config.get("encrypted", False),
                )
            )

        await db.commit()

    @classmethod
    async def get(cls, db: AsyncSession, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get setting value by key, decrypting encrypted settings.

        Args:
            db: Database session
            key: Setting key
            default: Value returned when the key is missing or empty-and-unset

        Returns:
            Setting value or default
        """
        result = await db.execute(select(Setting).where(Setting.key == key))
        setting = result.scalar_one_or_none()

        if not setting:
            return default

        if setting.encrypted and is_encryption_configured():
            try:
                return get_encryption_service().decrypt(setting.value)
            except ValueError as e:
                logger.error(f"Failed to decrypt setting '{key}': {e}")
                return None

        return setting.value

    @staticmethod
    async def get_bool(db: AsyncSession, key: str, default: bool = False) -> bool:
        """Get setting as boolean."""
        value = await SettingsService.get(db, key)
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes", "on")

    @staticmethod
    async def get_int(db: AsyncSession, key: str, default: int = 0) -> int:
        """Get setting as integer."""
        value = await SettingsService.get(db, key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            return default

    @staticmethod
    async def get_float(db: AsyncSession, key: str, default: float = 0.0) -> float:
        """Get setting as float."""
        value = await SettingsService.get(db, key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError:
            return default

    @staticmethod
    async def get_many(db: AsyncSession, keys: Iterable[str]) -> Dict[str, str]:
        """Get several plain (non-encrypted) settings in one query."""
        result = await db.execute(select(Setting).where(Setting.key.in_(list(keys))))
        return {s.key: s.value for s in result.scalars().all() if not s.encrypted}

    @classmethod
    async def set(cls, db: AsyncSession, key: str, value: str, commit: bool = True) -> Setting:
        """Set setting value, encrypting keys marked ``encrypted``.

        Raises:
            ValueError: If the value should be encrypted but encryption fails
        """
        result = await db.execute(select(Setting).where(Setting.key == key))
        setting = result.scalar_one_or_none()

        config = cls.DEFAULTS.get(key, {})
        is_encrypted = config.get("encrypted", False)

        value_to_store = value
        if is_encrypted and is_encryption_configured():
            value_to_store = get_encryption_service().encrypt(value)
        elif is_encrypted:
            logger.warning(
                f"Setting '{key}' is marked as encrypted but PYRA_ENCRYPTION_KEY is not configured. "
                "Value will be stored in plain text."
            )

        if setting:
            setting.value = value_to_store
            setting.encrypted = is_encrypted and is_encryption_configured()
        else:
            setting = Setting(
                key=key,
                value=value_to_store,
                category=config.get("category", "general"),
                description=config.get("description", ""),
                encrypted=is_encrypted and is_encryption_configured(),
            )
            db.add(setting)

        if commit:
            await db.commit()
            await db.refresh(setting)
        return setting

    @staticmethod
    async def get_all(db: AsyncSession, category: Optional[str] = None) -> list[Setting]:
        """Get all settings, optionally filtered by category."""
        query = select(Setting)
        if category:
            query = query.where(Setting.category == category)
        result = await db.execute(query.order_by(Setting.category, Setting.key))
        return list(result.scalars().all())

    @staticmethod
    async def get_map(db: AsyncSession) -> Dict[str, str]:
        """All settings as a key -> value map with encrypted values masked."""
        settings = await SettingsService.get_all(db)
        return {
            s.key: ("********" if s.encrypted and s.value else s.value)
            for s in settings
        }
