"""Platform fee calculation with per-company overrides.

Rates are fractions throughout (0.04 == 4%). Amounts are kept as floats
through the arithmetic and only rounded when formatted for storage in a
fixed-point column, so summed fields do not accumulate rounding error.

Global rates live in ``platform_settings`` under the ``fees`` category as
whole-percent strings ("4" == 4%). Any failure to read them, or a company's
override, falls back to the defaults below: a payment must never fail
because fee configuration is unreachable.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.concurrency import run_in_threadpool

from app.application.services.fee_settings_cache import FeeSettings, FeeSettingsCache, InProcessFeeSettingsCache
from app.domain.models.company_profile import CompanyProfile
from app.domain.models.platform_setting import PlatformSetting
from app.infrastructure.observability.metrics import record_fee_calculation, record_fee_lookup_fallback

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM_FEE_PERCENTAGE = 0.04
DEFAULT_STRIPE_PROCESSING_FEE_PERCENTAGE = 0.03
DEFAULT_TOTAL_FEE_PERCENTAGE = DEFAULT_PLATFORM_FEE_PERCENTAGE + DEFAULT_STRIPE_PROCESSING_FEE_PERCENTAGE
MAX_PLATFORM_FEE_PERCENTAGE = 0.5

FEE_SETTINGS_CATEGORY = "fees"
PLATFORM_FEE_SETTING_KEY = "platform_fee_percentage"
STRIPE_FEE_SETTING_KEY = "stripe_processing_fee_percentage"

DEFAULT_FEE_SETTINGS = FeeSettings(
    platform_fee=DEFAULT_PLATFORM_FEE_PERCENTAGE,
    stripe_fee=DEFAULT_STRIPE_PROCESSING_FEE_PERCENTAGE,
)


class FeeRateSource(StrEnum):
    COMPANY_OVERRIDE = "company_override"
    PLATFORM_SETTINGS = "platform_settings"
    DEFAULT = "default"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class FeeRateResolution:
    percentage: float
    is_custom: bool
    source: FeeRateSource

    @property
    def used_fallback(self) -> bool:
        return self.source == FeeRateSource.FALLBACK


@dataclass(frozen=True)
class FeeBreakdown:
    gross_amount: float
    platform_fee_amount: float
    stripe_fee_amount: float
    net_amount: float
    platform_fee_percentage: float


@dataclass(frozen=True)
class FeeCalculation(FeeBreakdown):
    is_custom_fee: bool = False


@dataclass(frozen=True)
class FeeCalculationFormatted:
    gross_amount: str
    platform_fee_amount: str
    stripe_fee_amount: str
    net_amount: str
    platform_fee_percentage: float
    is_custom_fee: bool

    def as_dict(self) -> dict:
        return {
            "gross_amount": self.gross_amount,
            "platform_fee_amount": self.platform_fee_amount,
            "stripe_fee_amount": self.stripe_fee_amount,
            "net_amount": self.net_amount,
            "platform_fee_percentage": self.platform_fee_percentage,
            "is_custom_fee": self.is_custom_fee,
        }


def _split(gross_amount: float, platform_fee_percentage: float, stripe_fee_percentage: float) -> FeeBreakdown:
    platform_fee_amount = gross_amount * platform_fee_percentage
    stripe_fee_amount = gross_amount * stripe_fee_percentage
    return FeeBreakdown(
        gross_amount=gross_amount,
        platform_fee_amount=platform_fee_amount,
        stripe_fee_amount=stripe_fee_amount,
        net_amount=gross_amount - platform_fee_amount - stripe_fee_amount,
        platform_fee_percentage=platform_fee_percentage,
    )


def format_amount(amount: float) -> str:
    return f"{amount:.2f}"


def calculate_fees_with_percentage(gross_amount: float, platform_fee_percentage: float) -> FeeBreakdown:
    """Split using a known platform rate and the default processing rate. No I/O."""
    return _split(gross_amount, platform_fee_percentage, DEFAULT_STRIPE_PROCESSING_FEE_PERCENTAGE)


def calculate_fees_default(gross_amount: float) -> FeeBreakdown:
    return calculate_fees_with_percentage(gross_amount, DEFAULT_PLATFORM_FEE_PERCENTAGE)


def format_fee_percentage(percentage: float) -> str:
    """0.04 -> "4%", 0.045 -> "4.50%"."""
    whole_percent = percentage * 100
    if math.isclose(whole_percent, round(whole_percent), abs_tol=1e-9):
        return f"{round(whole_percent):.0f}%"
    return f"{whole_percent:.2f}%"


def parse_fee_percentage(raw_value: str | float | int | None) -> float | None:
    """Parse "4", "4%" or " 4.5 % " into a fraction; None when unusable."""
    if raw_value is None:
        return None
    cleaned = str(raw_value).replace("%", "").strip()
    try:
        parsed = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(parsed) or parsed < 0 or parsed > 100:
        return None
    return parsed / 100


def is_valid_platform_fee_percentage(percentage: float) -> bool:
    return 0 <= percentage <= MAX_PLATFORM_FEE_PERCENTAGE


class FeeCalculator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: FeeSettingsCache | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.cache = cache if cache is not None else InProcessFeeSettingsCache()

    async def get_platform_fee_settings(self) -> FeeSettings:
        cached = await run_in_threadpool(self.cache.get)
        if cached is not None:
            return cached

        try:
            async with self.session_factory() as db:
                rows = (
                    await db.execute(
                        select(PlatformSetting.key, PlatformSetting.value).where(
                            PlatformSetting.category == FEE_SETTINGS_CATEGORY
                        )
                    )
                ).all()
        except Exception:
            logger.exception("fee_settings_lookup_failed using_defaults=true")
            record_fee_lookup_fallback("platform_settings")
            return DEFAULT_FEE_SETTINGS

        values = {key: value for key, value in rows}
        fee_settings = FeeSettings(
            platform_fee=self._setting_rate(values, PLATFORM_FEE_SETTING_KEY, DEFAULT_PLATFORM_FEE_PERCENTAGE),
            stripe_fee=self._setting_rate(values, STRIPE_FEE_SETTING_KEY, DEFAULT_STRIPE_PROCESSING_FEE_PERCENTAGE),
        )
        await run_in_threadpool(self.cache.set, fee_settings)
        return fee_settings

    @staticmethod
    def _setting_rate(values: dict[str, str], key: str, default: float) -> float:
        raw_value = values.get(key)
        if not raw_value:
            return default
        parsed = parse_fee_percentage(raw_value)
        if parsed is None:
            logger.warning("fee_setting_value_invalid key=%s value=%r using_default=%s", key, raw_value, default)
            return default
        return parsed

    async def clear_cache(self) -> None:
        await run_in_threadpool(self.cache.clear)

    async def get_stripe_processing_fee(self) -> float:
        return (await self.get_platform_fee_settings()).stripe_fee

    async def get_default_platform_fee(self) -> float:
        return (await self.get_platform_fee_settings()).platform_fee

    async def get_company_fee_percentage(self, company_id: UUID) -> FeeRateResolution:
        source = FeeRateSource.PLATFORM_SETTINGS
        try:
            async with self.session_factory() as db:
                override = (
                    await db.execute(
                        select(CompanyProfile.custom_platform_fee_percentage).where(CompanyProfile.id == company_id)
                    )
                ).scalar_one_or_none()
            if override is not None:
                return FeeRateResolution(
                    percentage=float(override),
                    is_custom=True,
                    source=FeeRateSource.COMPANY_OVERRIDE,
                )
        except Exception:
            logger.exception("company_fee_lookup_failed company_id=%s using_default=true", company_id)
            record_fee_lookup_fallback("company_override")
            source = FeeRateSource.FALLBACK

        platform_fee = await self.get_default_platform_fee()
        return FeeRateResolution(percentage=platform_fee, is_custom=False, source=source)

    async def calculate_fees(self, gross_amount: float, company_id: UUID) -> FeeCalculation:
        resolution = await self.get_company_fee_percentage(company_id)
        stripe_fee = await self.get_stripe_processing_fee()
        breakdown = _split(gross_amount, resolution.percentage, stripe_fee)
        record_fee_calculation(resolution.source)
        return FeeCalculation(
            gross_amount=breakdown.gross_amount,
            platform_fee_amount=breakdown.platform_fee_amount,
            stripe_fee_amount=breakdown.stripe_fee_amount,
            net_amount=breakdown.net_amount,
            platform_fee_percentage=breakdown.platform_fee_percentage,
            is_custom_fee=resolution.is_custom,
        )

    async def calculate_fees_formatted(self, gross_amount: float, company_id: UUID) -> FeeCalculationFormatted:
        fees = await self.calculate_fees(gross_amount, company_id)
        return FeeCalculationFormatted(
            gross_amount=format_amount(fees.gross_amount),
            platform_fee_amount=format_amount(fees.platform_fee_amount),
            stripe_fee_amount=format_amount(fees.stripe_fee_amount),
            net_amount=format_amount(fees.net_amount),
            platform_fee_percentage=fees.platform_fee_percentage,
            is_custom_fee=fees.is_custom_fee,
        )

    async def get_total_fee_percentage(self, company_id: UUID) -> float:
        resolution = await self.get_company_fee_percentage(company_id)
        stripe_fee = await self.get_stripe_processing_fee()
        return resolution.percentage + stripe_fee
