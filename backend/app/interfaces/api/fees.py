from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.application.services.fee_calculator import FeeCalculator, format_fee_percentage
from app.interfaces.api.deps import get_fee_calculator, get_token_claims

router = APIRouter(tags=["fees"])


@router.get("/companies/{company_id}/fees/preview", status_code=status.HTTP_200_OK)
async def preview_company_fees(
    company_id: UUID,
    gross_amount: float = Query(ge=0, le=1_000_000_000),
    claims: dict = Depends(get_token_claims),
    fee_calculator: FeeCalculator = Depends(get_fee_calculator),
) -> dict:
    fees = await fee_calculator.calculate_fees_formatted(gross_amount, company_id)
    return {
        **fees.as_dict(),
        "platform_fee_display": format_fee_percentage(fees.platform_fee_percentage),
    }
