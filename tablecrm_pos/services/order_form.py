from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from tablecrm_pos.api.sources import DataSource
from tablecrm_pos.constants import (
    CLIENT_SEARCH_DEBOUNCE,
    MIN_SEARCH_LENGTH,
    MODE_COMPLETE,
    PRODUCT_SEARCH_DEBOUNCE,
    REFERENCE_KINDS,
    SELECTION_FIELDS,
    SUBMIT_MODES,
)
from tablecrm_pos.db.sqlite import TokenStore
from tablecrm_pos.models import CartItem, Contragent, OrderPayload, OrderProductInput, Product
from tablecrm_pos.services.debounce import Debouncer
from tablecrm_pos.utils.validators import clamp_discount, clamp_price, clamp_quantity, phone_digits

logger = logging.getLogger(__name__)

MSG_TOKEN_REQUIRED = "Введите токен кассы"
MSG_TOKEN_SAVED = "Токен сохранен"
MSG_TOKEN_RESTORED = "Токен восстановлен из памяти"
MSG_REFERENCES_FAILED = "Не удалось загрузить справочники"
MSG_CLIENT_SEARCH_FAILED = "Ошибка поиска клиента"
MSG_PRODUCT_SEARCH_FAILED = "Ошибка поиска товара"
MSG_SALE_FAILED = "Ошибка создания продажи"

VALIDATION_MESSAGES = {
    "token": MSG_TOKEN_REQUIRED,
    "client": "Выберите клиента",
    "organization_id": "Укажите организацию",
    "paybox_id": "Выберите счет/кассу",
    "warehouse_id": "Укажите склад",
    "price_type_id": "Укажите тип цен",
    "cart": "Добавьте хотя бы один товар",
}

# порядок проверки выбора справочников
SELECTION_CHECK_ORDER = ("organization_id", "paybox_id", "warehouse_id", "price_type_id")


class SubmitState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ReferenceList:
    items: list = field(default_factory=list)
    loading: bool = False


@dataclass
class SaleRecord:
    mode: str
    payload: OrderPayload
    items: List[CartItem]
    client: Optional[Contragent]
    total_quantity: int
    total_amount: float
    created_at: str
    response: Any = None


def filter_clients(clients: List[Contragent], query: str) -> List[Contragent]:
    """Сужает нечёткий серверный поиск до совпадений по началу имени или телефона."""
    q = query.strip().lower()
    digits = phone_digits(q)
    out = []
    for c in clients:
        if c.name and c.name.lower().startswith(q):
            out.append(c)
        # запрос без цифр по телефону не совпадает
        elif digits and c.phone and phone_digits(c.phone).startswith(digits):
            out.append(c)
    return out


def filter_products(products: List[Product], query: str) -> List[Product]:
    q = query.strip().lower()
    return [
        p
        for p in products
        if (p.name and p.name.lower().startswith(q)) or (p.sku and p.sku.lower().startswith(q))
    ]


class OrderFormController:
    """
    Всё состояние формы продажи и вся оркестрация вызовов API.

    Работает в одном event loop: методы, запускающие поиск, нужно вызывать
    изнутри запущенного цикла.
    """

    def __init__(
        self,
        source: DataSource,
        token_store: TokenStore,
        client_debounce: float = CLIENT_SEARCH_DEBOUNCE,
        product_debounce: float = PRODUCT_SEARCH_DEBOUNCE,
    ) -> None:
        self.source = source
        self.token_store = token_store

        self.token = ""
        self.token_input = ""
        self.token_error = ""
        self.token_message = ""

        self.references: Dict[str, ReferenceList] = {k: ReferenceList() for k in REFERENCE_KINDS}
        self.selection: Dict[str, str] = {f: "" for f in SELECTION_FIELDS}

        self.client_phone = ""
        self.debounced_phone = ""
        self.clients: List[Contragent] = []
        self.client_loading = False
        self.selected_client: Optional[Contragent] = None
        self.client_manually_selected = False

        self.product_query = ""
        self.debounced_product_query = ""
        self.product_results: List[Product] = []
        self.product_loading = False

        self.cart: List[CartItem] = []
        self.comment = ""

        self.submit_state = SubmitState.IDLE
        self.submit_message = ""
        self.last_sale: Optional[SaleRecord] = None

        self._client_generation = 0
        self._product_generation = 0
        self._client_debouncer = Debouncer(client_debounce, self._search_clients)
        self._product_debouncer = Debouncer(product_debounce, self._search_products)

    # ---------------- status ----------------

    def _set_status(self, state: SubmitState, message: str) -> None:
        self.submit_state = state
        self.submit_message = message

    # ---------------- token ----------------

    async def restore_token(self) -> bool:
        saved = self.token_store.load()
        if not saved:
            return False
        self.token = saved
        self.token_input = saved
        self.token_message = MSG_TOKEN_RESTORED
        await self.load_references()
        return True

    async def save_token(self, value: str) -> bool:
        value = (value or "").strip()
        self.token_input = value
        if not value:
            self.token_error = MSG_TOKEN_REQUIRED
            return False

        changed = value != self.token
        self.token = value
        self.token_store.save(value)
        self.token_error = ""
        self.token_message = MSG_TOKEN_SAVED

        if changed:
            logger.info("Токен изменён, справочники перезагружаются")
            self._reset_references()
            await self.load_references()
        return True

    def _reset_references(self) -> None:
        self.references = {k: ReferenceList() for k in REFERENCE_KINDS}
        self.selection = {f: "" for f in SELECTION_FIELDS}
        # ответы поиска по старому токену больше не нужны
        self._client_generation += 1
        self._product_generation += 1

    # ---------------- reference lists ----------------

    async def load_references(self) -> None:
        if not self.token:
            return
        token = self.token
        targets = {k: ref for k, ref in self.references.items() if not ref.items and not ref.loading}
        if not targets:
            return

        for ref in targets.values():
            ref.loading = True

        kinds = list(targets)
        results = await asyncio.gather(
            *(self.source.fetch_reference(k, token) for k in kinds),
            return_exceptions=True,
        )

        failed = False
        for kind, result in zip(kinds, results):
            ref = targets[kind]
            ref.loading = False
            if isinstance(result, BaseException):
                failed = True
                logger.error("Не удалось загрузить %s: %s", kind, result, exc_info=result)
                continue
            if token != self.token:
                continue
            ref.items = result.items

        if failed and token == self.token:
            self._set_status(SubmitState.ERROR, MSG_REFERENCES_FAILED)

    def options(self, kind: str) -> list:
        return self.references[kind].items

    def set_selection(self, field_name: str, value: str) -> None:
        if field_name not in self.selection:
            raise KeyError(field_name)
        self.selection[field_name] = value or ""

    # ---------------- clients ----------------

    @property
    def selected_client_id(self) -> str:
        return self.selected_client.id if self.selected_client else ""

    def set_client_phone(self, value: str) -> None:
        self.client_phone = value or ""
        self.client_manually_selected = False
        self.selected_client = None
        self._client_debouncer.trigger(self.client_phone)

    def select_client(self, client: Contragent) -> None:
        self.selected_client = client
        self.client_phone = client.phone or ""
        self.clients = []
        self.client_manually_selected = True
        self._client_generation += 1
        self.client_loading = False

    def select_client_by_id(self, client_id: str) -> bool:
        for c in self.clients:
            if c.id == client_id:
                self.select_client(c)
                return True
        return False

    async def _search_clients(self, phone: str) -> None:
        self.debounced_phone = phone
        self._client_generation += 1
        generation = self._client_generation

        query = phone.strip()
        if not self.token or len(query) < MIN_SEARCH_LENGTH or self.client_manually_selected:
            self.clients = []
            self.client_loading = False
            return

        self.client_loading = True
        try:
            response = await self.source.fetch_clients(self.token, query)
        except Exception as e:
            logger.error("Client search error: %s", e)
            if generation == self._client_generation:
                self.client_loading = False
                self._set_status(SubmitState.ERROR, MSG_CLIENT_SEARCH_FAILED)
            return

        if generation != self._client_generation:
            logger.debug("Устаревший ответ поиска клиента отброшен: %r", query)
            return
        self.client_loading = False
        self.clients = filter_clients(response.items, query)

    # ---------------- products ----------------

    def set_product_query(self, value: str) -> None:
        self.product_query = value or ""
        self._product_debouncer.trigger(self.product_query)

    async def _search_products(self, query: str) -> None:
        self.debounced_product_query = query
        self._product_generation += 1
        generation = self._product_generation

        if not self.token or len(query.strip()) < MIN_SEARCH_LENGTH:
            self.product_results = []
            self.product_loading = False
            return

        self.product_loading = True
        try:
            response = await self.source.fetch_products(self.token, query)
        except Exception as e:
            logger.error("Product search error: %s", e)
            if generation == self._product_generation:
                self.product_loading = False
                self._set_status(SubmitState.ERROR, MSG_PRODUCT_SEARCH_FAILED)
            return

        if generation != self._product_generation:
            logger.debug("Устаревший ответ поиска товара отброшен: %r", query)
            return
        self.product_loading = False
        self.product_results = filter_products(response.items, query)

    # ---------------- cart ----------------

    def find_cart_item(self, item_id: str) -> Optional[CartItem]:
        return next((it for it in self.cart if it.id == item_id), None)

    def add_product(self, product: Product) -> CartItem:
        item = self.find_cart_item(product.id)
        if item is not None:
            item.quantity += 1
        else:
            item = CartItem.from_product(product)
            self.cart.append(item)

        # после выбора товара поле поиска очищается
        self._product_debouncer.cancel()
        self._product_generation += 1
        self.product_query = ""
        self.debounced_product_query = ""
        self.product_results = []
        self.product_loading = False
        return item

    def add_product_by_id(self, product_id: str) -> Optional[CartItem]:
        for p in self.product_results:
            if p.id == product_id:
                return self.add_product(p)
        return None

    def update_cart_item(self, item_id: str, field_name: str, value: float) -> bool:
        item = self.find_cart_item(item_id)
        if item is None:
            return False
        if field_name == "quantity":
            item.quantity = clamp_quantity(value)
        elif field_name == "price":
            item.price = clamp_price(value)
        elif field_name == "discount":
            item.discount = clamp_discount(value)
        else:
            raise KeyError(field_name)
        return True

    def remove_from_cart(self, item_id: str) -> bool:
        before = len(self.cart)
        self.cart = [it for it in self.cart if it.id != item_id]
        return len(self.cart) < before

    @property
    def total_quantity(self) -> int:
        return sum(it.quantity for it in self.cart)

    @property
    def total_amount(self) -> float:
        return sum(it.line_total for it in self.cart)

    def set_comment(self, value: str) -> None:
        self.comment = value or ""

    # ---------------- submit ----------------

    def validate(self) -> str:
        if not self.token:
            return VALIDATION_MESSAGES["token"]
        if not self.selected_client_id:
            return VALIDATION_MESSAGES["client"]
        for f in SELECTION_CHECK_ORDER:
            if not self.selection[f]:
                return VALIDATION_MESSAGES[f]
        if not self.cart:
            return VALIDATION_MESSAGES["cart"]
        return ""

    def build_payload(self, mode: str) -> OrderPayload:
        return OrderPayload(
            token=self.token,
            client_id=self.selected_client_id,
            organization_id=self.selection["organization_id"],
            warehouse_id=self.selection["warehouse_id"],
            paybox_id=self.selection["paybox_id"],
            price_type_id=self.selection["price_type_id"],
            mode=mode,
            products=[
                OrderProductInput(
                    product_id=it.id,
                    quantity=it.quantity,
                    price=it.price or 0.0,
                    discount=it.discount,
                )
                for it in self.cart
            ],
            comment=self.comment.strip(),
        )

    async def submit(self, mode: str) -> bool:
        if mode not in SUBMIT_MODES:
            raise ValueError(f"unknown mode: {mode}")

        error = self.validate()
        if error:
            self._set_status(SubmitState.ERROR, error)
            return False

        complete = mode == MODE_COMPLETE
        self._set_status(SubmitState.LOADING, "Создаем и проводим..." if complete else "Создаем черновик...")

        payload = self.build_payload(mode)
        record = SaleRecord(
            mode=mode,
            payload=payload,
            items=copy.deepcopy(self.cart),
            client=self.selected_client,
            total_quantity=self.total_quantity,
            total_amount=self.total_amount,
            created_at=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        )

        try:
            record.response = await self.source.create_sale(payload)
        except Exception as e:
            logger.exception("Ошибка создания продажи")
            self._set_status(SubmitState.ERROR, str(e) or MSG_SALE_FAILED)
            return False

        self.last_sale = record
        self._set_status(SubmitState.SUCCESS, "Продажа создана и проведена" if complete else "Черновик создан")
        if complete:
            self.cart = []
        logger.info("Продажа отправлена: mode=%s, позиций=%s, сумма=%.2f", mode, len(payload.products), record.total_amount)
        return True

    # ---------------- misc ----------------

    async def settle(self) -> None:
        """Дождаться отложенных поисков (для серверного рендера и бота)."""
        await self._client_debouncer.wait()
        await self._product_debouncer.wait()

    def cancel_pending(self) -> None:
        self._client_debouncer.cancel()
        self._product_debouncer.cancel()
