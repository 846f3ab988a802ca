from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.services.fee_calculator import FeeCalculator, format_fee_percentage
from app.application.services.platform_settings_service import (
    CompanyNotFoundError,
    PlatformSettingError,
    get_platform_setting,
    is_fee_setting_key,
    list_platform_settings,
    serialize_platform_setting,
    set_company_fee_override,
    update_fee_setting,
    upsert_platform_setting,
)
from app.infrastructure.db.session import get_async_db
from app.interfaces.api.deps import AdminPrincipal, get_fee_calculator, require_platform_admin

router = APIRouter(prefix="/admin", tags=["admin"])


class PlatformSettingUpdateRequest(BaseModel):
    value: str = Field(min_length=1, max_length=2000)
    description: str | None = Field(default=None, max_length=1000)
    category: str | None = Field(default=None, max_length=64)


class CompanyFeeOverrideRequest(BaseModel):
    percentage: str | None = Field(default=None, max_length=32)


def _invalid_setting(exc: PlatformSettingError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"error_code": exc.error_code, "message": exc.message},
    )


@router.get("/settings", status_code=status.HTTP_200_OK)
async def list_settings(
    category: str | None = Query(default=None, max_length=64),
    db: AsyncSession = Depends(get_async_db),
    admin: AdminPrincipal = Depends(require_platform_admin),
) -> dict:
    settings_rows = await list_platform_settings(db, category=category)
    return {"items": [serialize_platform_setting(item) for item in settings_rows]}


@router.get("/settings/{key}", status_code=status.HTTP_200_OK)
async def get_setting(
    key: str,
    db: AsyncSession = Depends(get_async_db),
    admin: AdminPrincipal = Depends(require_platform_admin),
) -> dict:
    setting = await get_platform_setting(db, key)
    if setting is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Setting not found")
    return serialize_platform_setting(setting)


@router.put("/settings/{key}", status_code=status.HTTP_200_OK)
async def put_setting(
    key: str,
    payload: PlatformSettingUpdateRequest,
    db: AsyncSession = Depends(get_async_db),
    admin: AdminPrincipal = Depends(require_platform_admin),
    fee_calculator: FeeCalculator = Depends(get_fee_calculator),
) -> dict:
    if is_fee_setting_key(key):
        try:
            setting = await update_fee_setting(
                db,
                key=key,
                raw_value=payload.value,
                actor=admin.actor,
                fee_calculator=fee_calculator,
            )
        except PlatformSettingError as exc:
            raise _invalid_setting(exc) from exc
        return serialize_platform_setting(setting)

    setting = await upsert_platform_setting(
        db,
        key=key,
        value=payload.value,
        description=payload.description,
        category=payload.category,
        updated_by=admin.actor,
    )
    await db.commit()
    return serialize_platform_setting(setting)


@router.get("/fees", status_code=status.HTTP_200_OK)
async def get_fee_settings(
    admin: AdminPrincipal = Depends(require_platform_admin),
    fee_calculator: FeeCalculator = Depends(get_fee_calculator),
) -> dict:
    fee_settings = await fee_calculator.get_platform_fee_settings()
    return {
        "platform_fee_percentage": fee_settings.platform_fee,
        "stripe_processing_fee_percentage": fee_settings.stripe_fee,
        "total_fee_percentage": fee_settings.platform_fee + fee_settings.stripe_fee,
        "platform_fee_display": format_fee_percentage(fee_settings.platform_fee),
        "stripe_processing_fee_display": format_fee_percentage(fee_settings.stripe_fee),
    }


@router.put("/companies/{company_id}/fee-override", status_code=status.HTTP_200_OK)
async def put_company_fee_override(
    company_id: UUID,
    payload: CompanyFeeOverrideRequest,
    db: AsyncSession = Depends(get_async_db),
    admin: AdminPrincipal = Depends(require_platform_admin),
) -> dict:
    try:
        company = await set_company_fee_override(
            db,
            company_id=company_id,
            raw_value=payload.percentage,
            actor=admin.actor,
        )
    except CompanyNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Company not found") from exc
    except PlatformSettingError as exc:
        raise _invalid_setting(exc) from exc

    override = company.custom_platform_fee_percentage
    return {
        "company_id": str(company.id),
        "custom_platform_fee_percentage": float(override) if override is not None else None,
        "custom_platform_fee_display": format_fee_percentage(float(override)) if override is not None else None,
    }
