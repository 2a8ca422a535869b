"""Company (CIN) and director (DIN) verification against the MCA registry."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ..core import SettingsDep, TokenCacheDep
from ..schemas import CinVerificationRequest, DinVerificationRequest
from ..services.kyc_client import KycClient, KycError


logger = logging.getLogger(__name__)

router = APIRouter(tags=["verification"])


def get_kyc_client(settings: SettingsDep, token_cache: TokenCacheDep) -> KycClient:
    return KycClient(settings, token_cache)


KycClientDep = Annotated[KycClient, Depends(get_kyc_client)]


def _error_response(error: KycError) -> JSONResponse:
    # Provider rejections are answered with 200 so the form can show the message
    if error.rejected:
        return JSONResponse(content={
            "error": error.message,
            "responseCode": error.response_code,
            "details": error.details,
        })
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": error.message},
    )


@router.post("/verify-cin")
async def verify_cin(request: CinVerificationRequest, kyc: KycClientDep):
    """Fetch company details and directors for a CIN."""
    try:
        return await kyc.get_company_details(request.cin)
    except KycError as e:
        logger.error(f"CIN verification failed for {request.cin}: {e.message}")
        return _error_response(e)


@router.post("/verify-din")
async def verify_din(request: DinVerificationRequest, kyc: KycClientDep):
    """Fetch director details for a DIN."""
    try:
        return await kyc.get_director_details(request.din)
    except KycError as e:
        logger.error(f"DIN verification failed for {request.din}: {e.message}")
        return _error_response(e)
