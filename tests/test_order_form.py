import asyncio

import pytest

from tablecrm_pos.api import mocks
from tablecrm_pos.api.normalizer import NormalizedList
from tablecrm_pos.api.sources import ApiError, MockDataSource
from tablecrm_pos.models import Contragent, Product
from tablecrm_pos.services.order_form import (
    OrderFormController,
    SubmitState,
    filter_clients,
    filter_products,
)


async def _ready(ctl: OrderFormController, product: Product, client: Contragent) -> None:
    await ctl.save_token("tok")
    ctl.select_client(client)
    ctl.set_selection("organization_id", "1")
    ctl.set_selection("paybox_id", "2")
    ctl.set_selection("warehouse_id", "3")
    ctl.set_selection("price_type_id", "4")
    ctl.add_product(product)


# ---------------- cart ----------------

def test_adding_same_product_increments_quantity(controller, product):
    controller.add_product(product)
    controller.add_product(product)
    assert len(controller.cart) == 1
    assert controller.cart[0].quantity == 2


def test_remove_from_cart_removes_only_that_row(controller, product):
    other = Product(id="p2", name="Кружка", price=50.0)
    controller.add_product(product)
    controller.add_product(other)
    assert controller.remove_from_cart("p1") is True
    assert [it.id for it in controller.cart] == ["p2"]
    assert controller.remove_from_cart("missing") is False


def test_totals(controller, product):
    controller.add_product(product)
    controller.update_cart_item("p1", "quantity", 2)
    controller.update_cart_item("p1", "discount", 10)
    assert controller.total_quantity == 2
    assert controller.total_amount == pytest.approx(180.0)


def test_cart_edits_are_clamped(controller, product):
    controller.add_product(product)
    controller.update_cart_item("p1", "quantity", 0)
    controller.update_cart_item("p1", "discount", 150)
    controller.update_cart_item("p1", "price", -5)
    item = controller.cart[0]
    assert item.quantity == 1
    assert item.discount == 100
    assert item.price == 0
    assert controller.update_cart_item("missing", "quantity", 3) is False


@pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
@pytest.mark.parametrize("field_name", ["quantity", "price", "discount"])
def test_cart_edits_reject_non_finite_values(controller, product, field_name, value):
    controller.add_product(product)
    with pytest.raises(ValueError):
        controller.update_cart_item("p1", field_name, value)
    item = controller.cart[0]
    assert (item.quantity, item.price, item.discount) == (1, 100, 0)


def test_product_without_price_counts_as_zero(controller):
    controller.add_product(Product(id="x", name="Без цены"))
    assert controller.total_amount == 0


# ---------------- validation ----------------

def test_validation_order(run, controller, product, client_ivan):
    controller.add_product(product)
    controller.set_selection("organization_id", "1")
    assert controller.validate() == "Введите токен кассы"

    run(controller.save_token("tok"))
    assert controller.validate() == "Выберите клиента"

    controller.select_client(client_ivan)
    controller.set_selection("organization_id", "")
    assert controller.validate() == "Укажите организацию"

    controller.set_selection("organization_id", "1")
    assert controller.validate() == "Выберите счет/кассу"

    controller.set_selection("paybox_id", "2")
    assert controller.validate() == "Укажите склад"

    controller.set_selection("warehouse_id", "3")
    assert controller.validate() == "Укажите тип цен"

    controller.set_selection("price_type_id", "4")
    assert controller.validate() == ""

    controller.remove_from_cart("p1")
    assert controller.validate() == "Добавьте хотя бы один товар"


def test_unknown_selection_field(controller):
    with pytest.raises(KeyError):
        controller.set_selection("currency", "RUB")


# ---------------- submit ----------------

def test_submit_draft_keeps_cart(run, controller, mock_source, product, client_ivan):
    async def scenario():
        await _ready(controller, product, client_ivan)
        return await controller.submit("draft")

    assert run(scenario()) is True
    assert len(mock_source.sales) == 1
    assert mock_source.sales[0].mode == "draft"
    assert mock_source.sales[0].client_id == "c1"
    assert controller.cart
    assert controller.submit_state == SubmitState.SUCCESS
    assert controller.submit_message == "Черновик создан"


def test_submit_complete_clears_cart(run, controller, mock_source, product, client_ivan):
    async def scenario():
        await _ready(controller, product, client_ivan)
        controller.set_comment("  сборка  ")
        return await controller.submit("complete")

    assert run(scenario()) is True
    assert controller.cart == []
    assert controller.submit_state == SubmitState.SUCCESS
    assert controller.submit_message == "Продажа создана и проведена"
    assert mock_source.sales[0].comment == "сборка"
    assert controller.last_sale.total_amount == pytest.approx(100.0)
    assert len(controller.last_sale.items) == 1


def test_submit_validation_error_skips_network(run, controller, mock_source):
    assert run(controller.submit("complete")) is False
    assert controller.submit_state == SubmitState.ERROR
    assert controller.submit_message == "Введите токен кассы"
    assert mock_source.sales == []


def test_submit_failure_surfaces_message_and_can_retry(run, token_store, product, client_ivan):
    class FlakySource(MockDataSource):
        calls = 0

        async def create_sale(self, payload):
            self.calls += 1
            if self.calls == 1:
                raise ApiError("Недостаточно прав")
            return await super().create_sale(payload)

    ctl = OrderFormController(FlakySource(0, 0), token_store, 0, 0)

    async def scenario():
        await _ready(ctl, product, client_ivan)
        first = await ctl.submit("complete")
        state_after_first = ctl.submit_state, ctl.submit_message
        second = await ctl.submit("complete")
        return first, state_after_first, second

    first, state_after_first, second = run(scenario())
    assert first is False
    assert state_after_first == (SubmitState.ERROR, "Недостаточно прав")
    assert second is True
    assert ctl.submit_state == SubmitState.SUCCESS


def test_submit_rejects_unknown_mode(run, controller):
    with pytest.raises(ValueError):
        run(controller.submit("posted"))


# ---------------- token / references ----------------

def test_save_empty_token(run, controller, token_store):
    assert run(controller.save_token("   ")) is False
    assert controller.token_error == "Введите токен кассы"
    assert token_store.load() is None


def test_save_token_persists_and_loads_references(run, controller, token_store):
    assert run(controller.save_token(" tok ")) is True
    assert token_store.load() == "tok"
    assert controller.token_message == "Токен сохранен"
    assert controller.options("warehouses") == mocks.MOCK_WAREHOUSES
    assert controller.options("organizations") == mocks.MOCK_ORGANIZATIONS
    assert not any(ref.loading for ref in controller.references.values())


def test_token_change_resets_selection(run, controller):
    async def scenario():
        await controller.save_token("one")
        controller.set_selection("warehouse_id", mocks.MOCK_WAREHOUSES[0].id)
        await controller.save_token("one")
        kept = controller.selection["warehouse_id"]
        await controller.save_token("two")
        return kept

    kept = run(scenario())
    assert kept == mocks.MOCK_WAREHOUSES[0].id
    assert controller.selection["warehouse_id"] == ""
    assert controller.options("payboxes") == mocks.MOCK_PAYBOXES


def test_restore_token(run, mock_source, token_store):
    token_store.save("saved")
    ctl = OrderFormController(mock_source, token_store, 0, 0)
    assert run(ctl.restore_token()) is True
    assert ctl.token == "saved"
    assert ctl.token_message == "Токен восстановлен из памяти"
    assert ctl.options("price_types") == mocks.MOCK_PRICE_TYPES


def test_restore_without_saved_token(run, controller):
    assert run(controller.restore_token()) is False
    assert controller.token == ""


def test_one_failed_reference_does_not_block_others(run, token_store):
    class BrokenPayboxes(MockDataSource):
        async def fetch_payboxes(self, token):
            raise ApiError("boom")

    ctl = OrderFormController(BrokenPayboxes(0, 0), token_store, 0, 0)
    run(ctl.save_token("tok"))
    assert ctl.options("payboxes") == []
    assert ctl.options("warehouses") == mocks.MOCK_WAREHOUSES
    assert ctl.submit_state == SubmitState.ERROR
    assert ctl.submit_message == "Не удалось загрузить справочники"
    assert ctl.references["payboxes"].loading is False


def test_references_are_fetched_only_when_empty(run, token_store):
    class Counting(MockDataSource):
        calls = 0

        async def fetch_warehouses(self, token):
            self.calls += 1
            return await super().fetch_warehouses(token)

    source = Counting(0, 0)
    ctl = OrderFormController(source, token_store, 0, 0)

    async def scenario():
        await ctl.save_token("tok")
        await ctl.load_references()

    run(scenario())
    assert source.calls == 1


# ---------------- client search ----------------

def test_filter_clients_query_without_digits_ignores_phone():
    clients = [
        Contragent(id="1", name="Ivan Petrov", phone="+79990001122"),
        Contragent(id="2", name="Petr Ivanov", phone="+79995556644"),
    ]
    assert [c.id for c in filter_clients(clients, "iv")] == ["1"]


def test_filter_clients_by_phone_prefix():
    clients = [
        Contragent(id="1", name="Ivan", phone="+7 (999) 000-11-22"),
        Contragent(id="2", name="Petr", phone="+7 (888) 000-11-22"),
        Contragent(id="3", name="Anna"),
    ]
    assert [c.id for c in filter_clients(clients, "+7999")] == ["1"]


def test_filter_products_by_name_or_sku():
    products = [
        Product(id="1", name="Колонка", sku="JBL-001"),
        Product(id="2", name="Наушники", sku="AS-123"),
    ]
    assert [p.id for p in filter_products(products, "кол")] == ["1"]
    assert [p.id for p in filter_products(products, " as-")] == ["2"]


def test_client_search_and_select(run, controller):
    async def scenario():
        await controller.save_token("tok")
        controller.set_client_phone("+7999000")
        await controller.settle()
        found = list(controller.clients)
        controller.select_client(found[0])
        return found

    found = run(scenario())
    assert [c.name for c in found] == ["ИП Иванов Сергей"]
    assert controller.selected_client_id == found[0].id
    assert controller.client_phone == "+79990001122"
    assert controller.clients == []
    assert controller.client_manually_selected is True


def test_short_phone_does_not_search(run, controller):
    async def scenario():
        await controller.save_token("tok")
        controller.set_client_phone("+")
        await controller.settle()

    run(scenario())
    assert controller.clients == []
    assert controller.debounced_phone == "+"


def test_editing_phone_clears_selection(run, controller, client_ivan):
    async def scenario():
        await controller.save_token("tok")
        controller.select_client(client_ivan)
        controller.set_client_phone("+7999")
        await controller.settle()

    run(scenario())
    assert controller.selected_client_id == ""
    assert controller.client_manually_selected is False
    assert len(controller.clients) == 3


def test_pending_search_after_selection_is_suppressed(run, token_store, client_ivan):
    ctl = OrderFormController(MockDataSource(0, 0), token_store, client_debounce=0.05)

    async def scenario():
        await ctl.save_token("tok")
        ctl.set_client_phone("+7999")
        ctl.select_client(client_ivan)
        await ctl.settle()

    run(scenario())
    assert ctl.clients == []
    assert ctl.selected_client_id == "c1"


def test_debounce_only_searches_last_value(run, token_store):
    class Recording(MockDataSource):
        def __init__(self):
            super().__init__(0, 0)
            self.queries = []

        async def fetch_clients(self, token, search=None):
            self.queries.append(search)
            return await super().fetch_clients(token, search)

    source = Recording()
    ctl = OrderFormController(source, token_store, client_debounce=0.05)

    async def scenario():
        await ctl.save_token("tok")
        for value in ("+7", "+79", "+799", "+7999"):
            ctl.set_client_phone(value)
        await ctl.settle()

    run(scenario())
    assert source.queries == ["+7999"]


def test_stale_client_response_is_discarded(run, token_store):
    class SlowFirst(MockDataSource):
        def __init__(self):
            super().__init__(0, 0)
            self.release = None

        async def fetch_clients(self, token, search=None):
            if search == "Ivan":
                await self.release.wait()
                return NormalizedList(items=[Contragent(id="old", name="Ivan Old")])
            return NormalizedList(items=[Contragent(id="new", name="Petr New")])

    source = SlowFirst()
    ctl = OrderFormController(source, token_store, 0, 0)

    async def scenario():
        source.release = asyncio.Event()
        await ctl.save_token("tok")
        ctl.set_client_phone("Ivan")
        await asyncio.sleep(0.01)
        ctl.set_client_phone("Petr")
        await asyncio.sleep(0.01)
        source.release.set()
        await ctl.settle()

    run(scenario())
    assert [c.id for c in ctl.clients] == ["new"]
    assert ctl.client_loading is False


def test_client_search_failure_sets_error(run, token_store):
    class Broken(MockDataSource):
        async def fetch_clients(self, token, search=None):
            raise ApiError("down")

    ctl = OrderFormController(Broken(0, 0), token_store, 0, 0)

    async def scenario():
        await ctl.save_token("tok")
        ctl.set_client_phone("+7999")
        await ctl.settle()

    run(scenario())
    assert ctl.submit_state == SubmitState.ERROR
    assert ctl.submit_message == "Ошибка поиска клиента"
    assert ctl.client_loading is False


# ---------------- product search ----------------

def test_product_search_and_add(run, controller):
    async def scenario():
        await controller.save_token("tok")
        controller.set_product_query("Умные")
        await controller.settle()
        results = list(controller.product_results)
        controller.add_product_by_id(results[0].id)
        return results

    results = run(scenario())
    assert [p.sku for p in results] == ["FW-456"]
    assert controller.product_query == ""
    assert controller.product_results == []
    assert controller.cart[0].sku == "FW-456"


def test_product_search_needs_two_chars_and_token(run, controller):
    async def scenario():
        controller.set_product_query("Умные")
        await controller.settle()
        without_token = list(controller.product_results)
        await controller.save_token("tok")
        controller.set_product_query("У")
        await controller.settle()
        return without_token

    assert run(scenario()) == []
    assert controller.product_results == []


def test_product_search_failure_sets_error(run, token_store):
    class Broken(MockDataSource):
        async def fetch_products(self, token, query=None):
            raise ApiError("down")

    ctl = OrderFormController(Broken(0, 0), token_store, 0, 0)

    async def scenario():
        await ctl.save_token("tok")
        ctl.set_product_query("Колонка")
        await ctl.settle()

    run(scenario())
    assert ctl.submit_message == "Ошибка поиска товара"
    assert ctl.product_loading is False
