from __future__ import annotations

import uuid

from tablecrm_pos.models import Contragent, Organization, Paybox, PriceType, Product, Warehouse


def _random_id() -> str:
    return str(uuid.uuid4())


MOCK_CLIENTS = [
    Contragent(id=_random_id(), name='ООО "Продукты +"', phone="+79998887766"),
    Contragent(id=_random_id(), name="ИП Иванов Сергей", phone="+79990001122"),
    Contragent(id=_random_id(), name='ООО "МегаТех"', phone="+79995556644"),
]

MOCK_WAREHOUSES = [
    Warehouse(id=_random_id(), name="Основной склад"),
    Warehouse(id=_random_id(), name="Интернет-магазин"),
]

MOCK_PAYBOXES = [
    Paybox(id=_random_id(), name="Касса №1"),
    Paybox(id=_random_id(), name="Касса №2"),
]

MOCK_ORGANIZATIONS = [
    Organization(id=_random_id(), work_name='ООО "Торговый дом"', inn="7701000001"),
    Organization(id=_random_id(), short_name='ООО "Розница"', inn="7701000002"),
]

MOCK_PRICE_TYPES = [
    PriceType(id=_random_id(), name="Розничная", currency="RUB"),
    PriceType(id=_random_id(), name="Опт", currency="RUB"),
]

MOCK_PRODUCTS = [
    Product(id=_random_id(), name="Колонка JBL Mini", sku="JBL-001", price=3990, rest=25),
    Product(id=_random_id(), name="Наушники AirSound", sku="AS-123", price=5990, rest=12),
    Product(id=_random_id(), name="Умные часы FitWatch", sku="FW-456", price=9990, rest=8),
]
