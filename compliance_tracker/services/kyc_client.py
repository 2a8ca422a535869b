"""
KYC lookups against the MCA registry (company CIN and director DIN).

The provider issues a bearer token valid for about an hour. It is kept in the
injected ExpiringTokenCache so every request in the process reuses it.
"""

import logging
from typing import Any

import httpx

from ..core.config import Settings, get_settings
from ..core.token_cache import ExpiringTokenCache


logger = logging.getLogger(__name__)

API_BASE_URL = "https://kycapi.microvistatech.com/api/v1"
TOKEN_URL = "https://kycapi.microvistatech.com/api/auth/generateauthtoken"
TOKEN_CACHE_KEY = "kyc-auth-token"

CIN_ERROR_MESSAGES = {
    "102": "Invalid CIN number format. Please check and try again.",
    "103": "No company found with this CIN number. Please verify the CIN is correct.",
    "110": "MCA service is temporarily unavailable. Please try again later.",
}

DIN_ERROR_MESSAGES = {
    "102": "Invalid DIN number. Please check and try again.",
    "103": "No record found for this DIN number.",
    "110": "Service temporarily unavailable. Please try again later.",
}


class KycError(Exception):
    """
    A KYC lookup failed.

    ``rejected`` is True when the provider answered but refused the lookup
    (unknown CIN, bad format). It is False for transport failures, unusable
    responses and auth problems.
    """

    def __init__(
        self,
        message: str,
        response_code: str | None = None,
        details: Any = None,
        rejected: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.response_code = response_code
        self.details = details
        self.rejected = rejected


# =============================================================================
# RESPONSE NORMALIZATION
# =============================================================================


def _pick(data: Any, *names: str, default: Any = None) -> Any:
    """First truthy value among differently-cased keys."""
    if not isinstance(data, dict):
        return default
    for name in names:
        value = data.get(name)
        if value:
            return value
    return default


def normalize_director(raw: dict[str, Any]) -> dict[str, str]:
    """Map the provider's inconsistent director field casing onto one shape."""
    name_parts = str(raw.get("name") or "").split()
    return {
        "firstName": _pick(raw, "firstName", "FirstName", "first_name")
        or (name_parts[0] if name_parts else ""),
        "lastName": _pick(raw, "lastName", "LastName", "last_name")
        or (name_parts[-1] if name_parts else ""),
        "middleName": _pick(raw, "middleName", "MiddleName", "middle_name", default=""),
        "din": _pick(raw, "din", "DIN", "dinOrPAN", "DINorPAN", "DINOrPAN", default=""),
        "designation": _pick(raw, "designation", "Designation", default=""),
        "dob": _pick(raw, "dob", "DOB", "dateOfBirth", default=""),
        "educationalQualification": _pick(
            raw, "educationalQualification", "EducationalQualification", default=""
        ),
        "signatoryAssociationStatus": _pick(
            raw, "signatoryAssociationStatus", "SignatoryAssociationStatus", default=""
        ),
    }


def _is_success(data: dict[str, Any]) -> bool:
    value = data.get("isSuccess")
    if value is None:
        value = data.get("IsSuccess")
    return bool(value)


def _message(data: dict[str, Any], default: str) -> str:
    return _pick(data, "message", "Message", default=default)


# =============================================================================
# CLIENT
# =============================================================================


class KycClient:
    """Company and director verification client."""

    def __init__(
        self,
        settings: Settings | None = None,
        token_cache: ExpiringTokenCache | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or get_settings()
        self._token_cache = token_cache or ExpiringTokenCache(
            ttl_seconds=self.settings.kyc_token_ttl_minutes * 60
        )
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self.settings.kyc_enabled

    @property
    def _credentials(self) -> dict[str, str]:
        return {
            "TokenID": self.settings.kyc_token_id or "",
            "TokenSecret": self.settings.kyc_token_secret or "",
        }

    async def get_auth_token(self) -> str:
        """Bearer token for the data endpoints, reused until it expires."""
        if not self.is_configured:
            raise KycError("Verification service unavailable: KYC API credentials are not configured")
        return await self._token_cache.get_or_fetch(TOKEN_CACHE_KEY, self._fetch_token)

    async def _fetch_token(self) -> str:
        logger.info("Generating KYC auth token")
        data = await self._get_json(TOKEN_URL, self._credentials, headers={}, label="token")

        token = data.get("Data", {}).get("Token") if isinstance(data.get("Data"), dict) else None
        if not data.get("IsSuccess") or not token:
            raise KycError(data.get("Message") or "Failed to generate token")
        return token

    async def get_company_details(self, cin: str) -> dict[str, Any]:
        """Company master data and directors for a CIN, LLPIN or FCRN."""
        data = await self._lookup(
            f"{API_BASE_URL}/CIN/GetCompanyDetails",
            {"CINorLLPorFCRN": cin},
            label="CIN",
        )
        if not _is_success(data):
            raise self._rejection(data, "CIN verification failed", CIN_ERROR_MESSAGES)

        body = _pick(data, "Data", "data", default={})
        raw_directors = _pick(body, "directorData", "DirectorData", "directors", default=[])
        directors = [
            normalize_director(d) for d in raw_directors if isinstance(d, dict)
        ] if isinstance(raw_directors, list) else []

        logger.info(f"CIN {cin} verified with {len(directors)} directors")
        return {
            "isSuccess": True,
            "message": _message(data, "Success"),
            "data": {
                "data": {
                    "companyData": _pick(body, "companyData"),
                    "directorData": directors,
                }
            },
        }

    async def get_director_details(self, din: str) -> dict[str, Any]:
        """Director record for a DIN."""
        data = await self._lookup(
            f"{API_BASE_URL}/DINAPI/GetDINDetails",
            {"DIN": din},
            label="DIN",
        )
        if not _is_success(data):
            raise self._rejection(data, "DIN verification failed", DIN_ERROR_MESSAGES)

        body = _pick(data, "data", "Data", default={})
        directors = (
            _pick(_pick(body, "data", default={}), "directorData")
            or _pick(body, "directorData")
            or []
        )
        return {
            "isSuccess": True,
            "message": _message(data, "Success"),
            "data": {
                "directorData": directors if isinstance(directors, list) else [directors],
            },
        }

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _lookup(self, url: str, params: dict[str, str], label: str) -> dict[str, Any]:
        token = await self.get_auth_token()
        headers = {"Authorization": f"Bearer {token}"}
        try:
            return await self._get_json(url, {**params, **self._credentials}, headers, label)
        except KycError as e:
            if e.response_code == "401":
                self._token_cache.invalidate(TOKEN_CACHE_KEY)
            raise

    async def _get_json(
        self,
        url: str,
        params: dict[str, str],
        headers: dict[str, str],
        label: str,
    ) -> dict[str, Any]:
        timeout = self.settings.http_timeout_seconds
        headers = {**headers, "Content-Type": "application/json"}
        try:
            if self._client is not None:
                response = await self._client.get(url, params=params, headers=headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            logger.error(f"KYC {label} request timed out: {e}")
            raise KycError("Connection to verification service timed out. Please try again.") from e
        except httpx.ConnectError as e:
            logger.error(f"KYC {label} connection failed: {e}")
            raise KycError("Unable to reach verification service. Please try again later.") from e
        except httpx.HTTPError as e:
            logger.error(f"KYC {label} request failed: {e}")
            raise KycError("Network error. Please check your internet connection and try again.") from e

        if response.status_code == 401:
            raise KycError("Verification service rejected the auth token. Please try again.", response_code="401")

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Failed to parse KYC {label} response: {response.text[:500]}")
            raise KycError(f"Invalid response from {label} API", details=response.text[:1000]) from e

        if not isinstance(data, dict):
            raise KycError(f"Invalid response from {label} API", details=data)
        return data

    def _rejection(
        self,
        data: dict[str, Any],
        default_message: str,
        messages: dict[str, str],
    ) -> KycError:
        code = _pick(data, "ResponseCode", "responseCode", "statusCode", "StatusCode")
        code = str(code) if code is not None else None
        message = messages.get(code or "", _message(data, default_message))
        logger.info(f"KYC lookup rejected: code={code} message={message}")
        return KycError(message, response_code=code, details=data, rejected=True)
