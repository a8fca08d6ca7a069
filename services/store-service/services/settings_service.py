"""Admin-managed pricing settings."""
import logging
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import DEFAULT_DELIVERY_CHARGE, DEFAULT_LOW_STOCK_THRESHOLD, DEFAULT_TAX_RATE
from errors import ValidationError
from models import Setting
from pricing import SettingsSnapshot, to_minor_units

logger = logging.getLogger(__name__)

TAX_RATE = "tax_rate"
DELIVERY_CHARGE = "delivery_charge"
LOW_STOCK_THRESHOLD = "low_stock_threshold"

DEFAULTS: Dict[str, Decimal] = {
    TAX_RATE: DEFAULT_TAX_RATE,
    DELIVERY_CHARGE: DEFAULT_DELIVERY_CHARGE,
    LOW_STOCK_THRESHOLD: Decimal(DEFAULT_LOW_STOCK_THRESHOLD),
}


class SettingsService:
    """Reads and upserts settings; missing keys fall back to configured defaults."""

    def get_settings(self, db: Session) -> Dict[str, Decimal]:
        """Current value of every known setting."""
        stored = {
            setting.key: Decimal(setting.value)
            for setting in db.execute(select(Setting)).scalars()
        }
        values = dict(DEFAULTS)
        for key, value in stored.items():
            if key in values and value is not None:
                values[key] = value
        return values

    def get_snapshot(self, db: Session) -> SettingsSnapshot:
        """Settings captured for pricing a new order."""
        values = self.get_settings(db)
        return SettingsSnapshot(
            tax_rate=values[TAX_RATE],
            delivery_charge_minor=to_minor_units(values[DELIVERY_CHARGE]),
            low_stock_threshold=int(values[LOW_STOCK_THRESHOLD]),
        )

    def update_settings(
        self,
        db: Session,
        values: Dict[str, Optional[Decimal]],
        updated_by: str
    ) -> Dict[str, Decimal]:
        """
        Upsert the provided settings (last writer wins).

        Args:
            db: Database session
            values: Setting key to new value; None values are skipped
            updated_by: Identifier of the admin making the change

        Returns:
            All settings after the update

        Raises:
            ValidationError: If a key is unknown or a value is negative
        """
        for key, value in values.items():
            if value is None:
                continue
            if key not in DEFAULTS:
                raise ValidationError(f"Unknown setting: {key}")
            if value < 0:
                raise ValidationError(f"Setting {key} cannot be negative")

            setting = db.execute(
                select(Setting).where(Setting.key == key)
            ).scalar_one_or_none()
            if setting is None:
                setting = Setting(key=key)
                db.add(setting)
            setting.value = value
            setting.updated_by = updated_by

            logger.info("Updated setting", extra={
                "key": key,
                "value": str(value),
                "updated_by": updated_by
            })

        db.commit()
        return self.get_settings(db)


def settings_to_dict(values: Dict[str, Decimal]) -> Dict[str, object]:
    """Serialize settings for API responses."""
    return {
        TAX_RATE: values[TAX_RATE],
        DELIVERY_CHARGE: values[DELIVERY_CHARGE],
        LOW_STOCK_THRESHOLD: int(values[LOW_STOCK_THRESHOLD]),
    }
