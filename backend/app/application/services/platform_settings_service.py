from __future__ import annotations

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.services.audit_service import log_audit_event
from app.application.services.fee_calculator import (
    FEE_SETTINGS_CATEGORY,
    MAX_PLATFORM_FEE_PERCENTAGE,
    PLATFORM_FEE_SETTING_KEY,
    STRIPE_FEE_SETTING_KEY,
    FeeCalculator,
    format_fee_percentage,
    is_valid_platform_fee_percentage,
    parse_fee_percentage,
)
from app.domain.models.company_profile import CompanyProfile
from app.domain.models.platform_setting import PlatformSetting

logger = logging.getLogger(__name__)

FEE_SETTING_DESCRIPTIONS = {
    PLATFORM_FEE_SETTING_KEY: "Platform fee charged on each payment, in whole percent",
    STRIPE_FEE_SETTING_KEY: "Payment processing fee deducted from each payment, in whole percent",
}


class PlatformSettingError(ValueError):
    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class CompanyNotFoundError(LookupError):
    pass


def is_fee_setting_key(key: str) -> bool:
    return key in FEE_SETTING_DESCRIPTIONS


def serialize_platform_setting(setting: PlatformSetting) -> dict:
    return {
        "id": str(setting.id),
        "key": setting.key,
        "value": setting.value,
        "description": setting.description,
        "category": setting.category,
        "updated_by": setting.updated_by,
        "updated_at": setting.updated_at.isoformat() if setting.updated_at else None,
    }


async def list_platform_settings(db: AsyncSession, *, category: str | None = None) -> list[PlatformSetting]:
    query = select(PlatformSetting).order_by(PlatformSetting.category.asc(), PlatformSetting.key.asc())
    if category:
        query = query.where(PlatformSetting.category == category)
    return list((await db.execute(query)).scalars().all())


async def get_platform_setting(db: AsyncSession, key: str) -> PlatformSetting | None:
    return (await db.execute(select(PlatformSetting).where(PlatformSetting.key == key))).scalar_one_or_none()


async def upsert_platform_setting(
    db: AsyncSession,
    *,
    key: str,
    value: str,
    description: str | None = None,
    category: str | None = None,
    updated_by: str | None = None,
) -> PlatformSetting:
    setting = await get_platform_setting(db, key)
    if setting is None:
        setting = PlatformSetting(key=key, value=value)
    setting.value = value
    if description is not None:
        setting.description = description
    if category is not None:
        setting.category = category
    setting.updated_by = updated_by
    db.add(setting)
    await db.flush()
    await db.refresh(setting)
    return setting


def _whole_percent_text(fraction: float) -> str:
    return f"{round(fraction * 100, 4):g}"


async def update_fee_setting(
    db: AsyncSession,
    *,
    key: str,
    raw_value: str,
    actor: str,
    fee_calculator: FeeCalculator,
) -> PlatformSetting:
    if not is_fee_setting_key(key):
        raise PlatformSettingError("unknown_fee_setting", f"Unknown fee setting: {key}")

    fraction = parse_fee_percentage(raw_value)
    if fraction is None:
        raise PlatformSettingError("invalid_fee_percentage", "Fee percentage must be a number between 0 and 100")
    if key == PLATFORM_FEE_SETTING_KEY and not is_valid_platform_fee_percentage(fraction):
        raise PlatformSettingError(
            "invalid_fee_percentage",
            f"Platform fee must be between 0% and {format_fee_percentage(MAX_PLATFORM_FEE_PERCENTAGE)}",
        )

    previous = await get_platform_setting(db, key)
    previous_value = previous.value if previous is not None else None
    setting = await upsert_platform_setting(
        db,
        key=key,
        value=_whole_percent_text(fraction),
        description=FEE_SETTING_DESCRIPTIONS[key],
        category=FEE_SETTINGS_CATEGORY,
        updated_by=actor,
    )
    log_audit_event(
        db,
        actor=actor,
        action="fee_setting_updated",
        entity_type="platform_setting",
        entity_id=key,
        metadata={"previous_value": previous_value, "new_value": setting.value},
    )
    await db.commit()
    await fee_calculator.clear_cache()
    logger.info("fee_setting_updated key=%s value=%s actor=%s", key, setting.value, actor)
    return setting


async def set_company_fee_override(
    db: AsyncSession,
    *,
    company_id: UUID,
    raw_value: str | None,
    actor: str,
) -> CompanyProfile:
    company = (await db.execute(select(CompanyProfile).where(CompanyProfile.id == company_id))).scalar_one_or_none()
    if company is None:
        raise CompanyNotFoundError(str(company_id))

    override: Decimal | None = None
    if raw_value is not None:
        fraction = parse_fee_percentage(raw_value)
        if fraction is None or not is_valid_platform_fee_percentage(fraction):
            raise PlatformSettingError(
                "invalid_fee_percentage",
                f"Platform fee must be between 0% and {format_fee_percentage(MAX_PLATFORM_FEE_PERCENTAGE)}",
            )
        override = Decimal(str(round(fraction, 4)))

    previous = company.custom_platform_fee_percentage
    company.custom_platform_fee_percentage = override
    db.add(company)
    log_audit_event(
        db,
        actor=actor,
        action="company_fee_override_cleared" if override is None else "company_fee_override_set",
        entity_type="company_profile",
        entity_id=str(company_id),
        metadata={
            "previous_percentage": str(previous) if previous is not None else None,
            "new_percentage": str(override) if override is not None else None,
        },
    )
    await db.commit()
    await db.refresh(company)
    logger.info("company_fee_override_updated company_id=%s percentage=%s actor=%s", company_id, override, actor)
    return company
