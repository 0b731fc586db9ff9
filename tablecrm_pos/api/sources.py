from __future__ import annotations

import asyncio
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from tablecrm_pos.api import mocks
from tablecrm_pos.api.normalizer import NormalizedList, normalize_list_response
from tablecrm_pos.config import Settings
from tablecrm_pos.constants import ENDPOINTS, MOCK_DELAY, MOCK_SUBMIT_DELAY
from tablecrm_pos.models import (
    Contragent,
    Organization,
    OrderPayload,
    Paybox,
    PriceType,
    Product,
    Warehouse,
    parse_entities,
)
from tablecrm_pos.utils.validators import phone_digits

logger = logging.getLogger(__name__)

LOAD_FAILED = "Не удалось загрузить данные"
SALE_FAILED = "Не удалось создать продажу"


class TableCrmError(Exception):
    pass


class TokenRequiredError(TableCrmError, ValueError):
    def __init__(self, message: str = "Token is required") -> None:
        super().__init__(message)


class ApiError(TableCrmError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _require_token(token: Optional[str]) -> str:
    if not token:
        raise TokenRequiredError()
    return token


# только ASCII: "1_000" и "١٢" остаются строками
_INT_RE = re.compile(r"[+-]?[0-9]+")
_FLOAT_RE = re.compile(r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


def coerce_id(value: Any) -> Any:
    """'42' -> 42, '4.5' -> 4.5, 'abc-uuid' остаётся строкой."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    s = str(value).strip()
    if _INT_RE.fullmatch(s):
        return int(s)
    if not _FLOAT_RE.fullmatch(s):
        return value
    f = float(s)
    return f if math.isfinite(f) else value


def build_sale_body(payload: OrderPayload) -> List[Dict[str, Any]]:
    # API принимает массив документов, отправляем ровно один
    return [
        {
            "comment": payload.comment,
            "client": coerce_id(payload.client_id),
            "organization": coerce_id(payload.organization_id),
            "warehouse": coerce_id(payload.warehouse_id),
            "paybox": coerce_id(payload.paybox_id),
            "mode": payload.mode,
            "products": [
                {
                    "good": coerce_id(p.product_id),
                    "quantity": p.quantity,
                    "price": p.price,
                    "discount": p.discount,
                    "price_type": coerce_id(payload.price_type_id),
                }
                for p in payload.products
            ],
        }
    ]


class DataSource(ABC):
    @abstractmethod
    async def fetch_clients(self, token: str, search: Optional[str] = None) -> NormalizedList: ...

    @abstractmethod
    async def fetch_warehouses(self, token: str) -> NormalizedList: ...

    @abstractmethod
    async def fetch_payboxes(self, token: str) -> NormalizedList: ...

    @abstractmethod
    async def fetch_organizations(self, token: str) -> NormalizedList: ...

    @abstractmethod
    async def fetch_price_types(self, token: str) -> NormalizedList: ...

    @abstractmethod
    async def fetch_products(self, token: str, query: Optional[str] = None) -> NormalizedList: ...

    @abstractmethod
    async def create_sale(self, payload: OrderPayload) -> Any: ...

    async def fetch_reference(self, kind: str, token: str) -> NormalizedList:
        fetchers = {
            "warehouses": self.fetch_warehouses,
            "payboxes": self.fetch_payboxes,
            "organizations": self.fetch_organizations,
            "price_types": self.fetch_price_types,
        }
        return await fetchers[kind](token)

    async def aclose(self) -> None:
        return None


class MockDataSource(DataSource):
    """Статические данные вместо сети (dev-режим)."""

    def __init__(self, delay: float = MOCK_DELAY, submit_delay: float = MOCK_SUBMIT_DELAY) -> None:
        self.delay = delay
        self.submit_delay = submit_delay
        self.sales: List[OrderPayload] = []

    async def _mock_list(self, items: list) -> NormalizedList:
        await asyncio.sleep(self.delay)
        return NormalizedList(items=list(items))

    async def fetch_clients(self, token: str, search: Optional[str] = None) -> NormalizedList:
        _require_token(token)
        items = mocks.MOCK_CLIENTS
        if search:
            digits = phone_digits(search)
            q = search.lower()
            items = [
                c
                for c in items
                if (digits and digits in phone_digits(c.phone)) or q in (c.name or "").lower()
            ]
        return await self._mock_list(items)

    async def fetch_warehouses(self, token: str) -> NormalizedList:
        _require_token(token)
        return await self._mock_list(mocks.MOCK_WAREHOUSES)

    async def fetch_payboxes(self, token: str) -> NormalizedList:
        _require_token(token)
        return await self._mock_list(mocks.MOCK_PAYBOXES)

    async def fetch_organizations(self, token: str) -> NormalizedList:
        _require_token(token)
        return await self._mock_list(mocks.MOCK_ORGANIZATIONS)

    async def fetch_price_types(self, token: str) -> NormalizedList:
        _require_token(token)
        return await self._mock_list(mocks.MOCK_PRICE_TYPES)

    async def fetch_products(self, token: str, query: Optional[str] = None) -> NormalizedList:
        _require_token(token)
        items = mocks.MOCK_PRODUCTS
        if query:
            q = query.lower()
            items = [p for p in items if q in p.name.lower()]
        return await self._mock_list(items)

    async def create_sale(self, payload: OrderPayload) -> Any:
        _require_token(payload.token)
        await asyncio.sleep(self.submit_delay)
        self.sales.append(payload)
        logger.info("Mock-продажа: mode=%s, позиций=%s", payload.mode, len(payload.products))
        return {"ok": True}


class LiveDataSource(DataSource):
    """HTTP-клиент TableCRM. Токен передаётся query-параметром."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, kind: str, token: str, params: Dict[str, str] | None = None) -> NormalizedList:
        _require_token(token)
        query = {"token": token}
        for k, v in (params or {}).items():
            if v:
                query[k] = v

        response = await self._client.get(ENDPOINTS[kind], params=query)
        if not response.is_success:
            message = response.text
            logger.error("API error response: %s %s", response.status_code, message)
            raise ApiError(message or LOAD_FAILED, status_code=response.status_code)

        return normalize_list_response(response.json())

    async def _fetch(self, kind: str, token: str, model, params: Dict[str, str] | None = None) -> NormalizedList:
        raw = await self._request(kind, token, params)
        return NormalizedList(items=parse_entities(raw.items, model), meta=raw.meta)

    async def fetch_clients(self, token: str, search: Optional[str] = None) -> NormalizedList:
        return await self._fetch("clients", token, Contragent, {"search": search or ""})

    async def fetch_warehouses(self, token: str) -> NormalizedList:
        return await self._fetch("warehouses", token, Warehouse)

    async def fetch_payboxes(self, token: str) -> NormalizedList:
        return await self._fetch("payboxes", token, Paybox)

    async def fetch_organizations(self, token: str) -> NormalizedList:
        return await self._fetch("organizations", token, Organization)

    async def fetch_price_types(self, token: str) -> NormalizedList:
        return await self._fetch("price_types", token, PriceType)

    async def fetch_products(self, token: str, query: Optional[str] = None) -> NormalizedList:
        return await self._fetch("products", token, Product, {"search": query or ""})

    async def create_sale(self, payload: OrderPayload) -> Any:
        token = _require_token(payload.token)
        response = await self._client.post(
            ENDPOINTS["sales"],
            params={"token": token},
            json=build_sale_body(payload),
        )
        if not response.is_success:
            message = response.text
            logger.error("Sale error response: %s %s", response.status_code, message)
            raise ApiError(message or SALE_FAILED, status_code=response.status_code)

        if not response.content:
            return None
        return response.json()


def build_data_source(cfg: Settings) -> DataSource:
    if cfg.use_mocks:
        logger.info("Источник данных: mock")
        return MockDataSource()
    logger.info("Источник данных: %s", cfg.base_url)
    return LiveDataSource(cfg.base_url, timeout=cfg.http_timeout)
