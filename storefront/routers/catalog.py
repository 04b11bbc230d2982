# storefront/routers/catalog.py

import logging
from fastapi import APIRouter

from storefront.core.config import settings
from storefront.schemas.product import QuoteRequest, QuoteResponse
from storefront.services.money import convert_and_format
from storefront.services import pricing as pricing_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/catalog/quote", response_model=QuoteResponse)
async def quote_product_price(request_data: QuoteRequest):
    """
    Предпросмотр цены товара для выбранных опций (без добавления в корзину).
    Если выбор не передан, используется стартовый выбор по умолчанию.
    Обязательность опций здесь не проверяется, только сообщается в missing_required.
    """
    product = request_data.product
    attributes = pricing_service.derive_attributes(product)
    selection = request_data.selection if request_data.selection is not None else pricing_service.initial_selection(attributes)

    quote = pricing_service.price_for(product, selection)
    currency = request_data.currency or settings.BASE_CURRENCY

    return QuoteResponse(
        attributes=attributes,
        selection=selection,
        variant_key=pricing_service.variant_key(selection),
        quote=quote,
        price_display=convert_and_format(quote.unit_price_base, settings.FX_RATES, currency, settings.BASE_CURRENCY),
        compare_price_display=(
            convert_and_format(quote.compare_price_base, settings.FX_RATES, currency, settings.BASE_CURRENCY)
            if quote.compare_price_base is not None else None
        ),
        missing_required=pricing_service.missing_required(attributes, selection),
    )
