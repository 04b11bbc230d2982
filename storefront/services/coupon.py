# storefront/services/coupon.py

import httpx
import logging
from typing import List

from pydantic import ValidationError

from storefront.clients.coupon_api import CouponApiClient
from storefront.schemas.coupon import CouponLine, CouponValidateRequest, CouponValidationResult
from storefront.services.cart import CouponValidator

logger = logging.getLogger(__name__)

REASON_HTTP_FAIL = "HTTP_FAIL"
REASON_NETWORK = "NETWORK"


def _failure(reason: str) -> CouponValidationResult:
    return CouponValidationResult(ok=False, discount_base=0.0, reason=reason)


async def validate_coupon(client: CouponApiClient, code: str, lines: List[CouponLine]) -> CouponValidationResult:
    """
    Проверяет промокод на бэкенде для текущего состава корзины.

    Никогда не бросает исключений: сетевая ошибка -> reason "NETWORK",
    не-2xx ответ или тело не в JSON -> reason "HTTP_FAIL" (либо reason из тела
    ответа, если бэкенд его прислал).
    """
    payload = CouponValidateRequest(code=code, lines=lines).model_dump(by_alias=True)
    logger.info(f"Validating coupon '{code}' against {len(lines)} cart lines.")

    try:
        response = await client.validate(payload)
    except httpx.RequestError:
        logger.warning(f"Coupon validation for '{code}' failed: network error.")
        return _failure(REASON_NETWORK)

    try:
        data = response.json()
    except ValueError:
        logger.warning(f"Coupon validation for '{code}' returned a non-JSON body (status {response.status_code}).")
        return _failure(REASON_HTTP_FAIL)

    if not response.is_success:
        reason = data.get("reason") if isinstance(data, dict) else None
        logger.warning(f"Coupon validation for '{code}' failed. Status: {response.status_code}, Reason: {reason}")
        return _failure(str(reason) if reason else REASON_HTTP_FAIL)

    try:
        result = CouponValidationResult.model_validate(data)
    except ValidationError:
        logger.warning(f"Coupon validation for '{code}' returned an unexpected body: {data!r}", exc_info=True)
        return _failure(REASON_HTTP_FAIL)

    if result.ok:
        logger.info(f"Coupon '{code}' accepted. Discount: {result.discount_base}")
    else:
        logger.info(f"Coupon '{code}' rejected. Reason: {result.reason}")
    return result


def make_validator(client: CouponApiClient) -> CouponValidator:
    """Привязывает клиента к функции проверки, которую ожидает CartStore.apply_coupon."""
    async def validator(code: str, lines: List[CouponLine]) -> CouponValidationResult:
        return await validate_coupon(client, code, lines)
    return validator
