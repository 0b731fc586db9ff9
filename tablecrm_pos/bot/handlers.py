from __future__ import annotations

import logging
from html import escape
from typing import Dict, List, Optional

from aiogram import Router
from aiogram.filters import Command
from aiogram.fsm.context import FSMContext
from aiogram.types import FSInputFile, Message, ReplyKeyboardRemove

from tablecrm_pos.api.sources import DataSource
from tablecrm_pos.bot.keyboards import main_kb
from tablecrm_pos.bot.states import CommentInput, TokenInput
from tablecrm_pos.config import settings
from tablecrm_pos.constants import (
    MODE_COMPLETE,
    MODE_DRAFT,
    REFERENCE_KINDS,
    REFERENCE_TITLES,
    SELECTION_FIELDS,
    TOKEN_STORAGE_KEY,
)
from tablecrm_pos.db.sqlite import TokenStore
from tablecrm_pos.models import option_label
from tablecrm_pos.services.order_form import (
    MSG_CLIENT_SEARCH_FAILED,
    MSG_PRODUCT_SEARCH_FAILED,
    OrderFormController,
    SubmitState,
)
from tablecrm_pos.services.receipt_pdf import generate_receipt_pdf
from tablecrm_pos.utils.formatters import money
from tablecrm_pos.utils.validators import is_finite_number

logger = logging.getLogger(__name__)

router = Router()

CONTROLLERS: Dict[int, OrderFormController] = {}  # chat_id -> форма

KIND_ALIASES = {
    "paybox": "paybox_id",
    "касса": "paybox_id",
    "org": "organization_id",
    "organization": "organization_id",
    "организация": "organization_id",
    "warehouse": "warehouse_id",
    "склад": "warehouse_id",
    "price": "price_type_id",
    "price_type": "price_type_id",
    "цена": "price_type_id",
}


def _is_admin(message: Message) -> bool:
    if not settings.admin_id:
        return True
    try:
        return int(message.from_user.id) == int(settings.admin_id)
    except Exception:
        return False


async def _controller(chat_id: int, source: DataSource) -> OrderFormController:
    ctl = CONTROLLERS.get(chat_id)
    if ctl is None:
        # в чате нет набора текста, поэтому без задержки поиска
        store = TokenStore(key=f"{TOKEN_STORAGE_KEY}:{chat_id}", db_path=settings.db_path)
        ctl = OrderFormController(source, store, client_debounce=0, product_debounce=0)
        CONTROLLERS[chat_id] = ctl
        await ctl.restore_token()
    return ctl


def _arg(message: Message) -> str:
    parts = (message.text or "").split(maxsplit=1)
    return parts[1].strip() if len(parts) > 1 else ""


def _parse_index(raw: str, size: int) -> Optional[int]:
    """'2' -> 1 (номер в списке начинается с 1)."""
    try:
        n = int(raw)
    except (TypeError, ValueError):
        return None
    if 1 <= n <= size:
        return n - 1
    return None


def _parse_number(raw: str) -> float:
    value = float(raw.strip().replace(",", "."))
    if not is_finite_number(value):
        raise ValueError(raw)
    return value


def _status(ctl: OrderFormController) -> str:
    if not ctl.submit_message:
        return ""
    icon = "❌" if ctl.submit_state == SubmitState.ERROR else "✅"
    return f"{icon} {escape(ctl.submit_message)}"


def format_refs(ctl: OrderFormController) -> str:
    lines = ["<b>Справочники</b>"]
    for kind in REFERENCE_KINDS:
        field = next(f for f, k in SELECTION_FIELDS.items() if k == kind)
        ref = ctl.references[kind]
        lines.append(f"\n<b>{REFERENCE_TITLES[kind]}</b> ({field.replace('_id', '')}):")
        if ref.loading:
            lines.append("  Загрузка...")
            continue
        if not ref.items:
            lines.append("  (пусто)")
        for i, o in enumerate(ref.items, start=1):
            label = o.label if kind == "organizations" else option_label(o)
            mark = "✅ " if ctl.selection[field] == o.id else ""
            lines.append(f"  {i}. {mark}{escape(label)}")
    return "\n".join(lines)


def format_cart(ctl: OrderFormController) -> str:
    if not ctl.cart:
        return "🧺 Корзина пуста."
    lines = ["<b>🧺 Корзина:</b>"]
    for i, it in enumerate(ctl.cart, start=1):
        disc = f", скидка {it.discount:g}%" if it.discount else ""
        lines.append(f"{i}. {escape(it.name)} — {money(it.price)} × {it.quantity}{disc}")
    lines.append(f"\nПозиций: <b>{ctl.total_quantity}</b>")
    lines.append(f"На сумму: <b>{money(ctl.total_amount)}</b>")
    if ctl.comment:
        lines.append(f"Комментарий: {escape(ctl.comment)}")
    return "\n".join(lines)


def _numbered(items: List, render) -> str:
    return "\n".join(f"{i}. {render(x)}" for i, x in enumerate(items, start=1))


@router.message(Command("start"))
async def cmd_start(message: Message, source: DataSource):
    if not _is_admin(message):
        return
    ctl = await _controller(message.chat.id, source)
    text = "✅ Касса TableCRM. Справка: /help"
    if ctl.token:
        text += f"\n{escape(ctl.token_message)}"
    else:
        text += "\nСначала сохраните токен: /token ТОКЕН"
    await message.answer(text, reply_markup=main_kb())


@router.message(Command("help"))
async def cmd_help(message: Message):
    if not _is_admin(message):
        return

    text = (
        "<b>Касса TableCRM — команды</b>\n\n"
        "/token ТОКЕН — сохранить токен кассы\n"
        "/cancel — отмена ввода\n\n"
        "<b>Клиент</b>\n"
        "/client ТЕЛЕФОН — поиск клиента\n"
        "/client_pick N — выбрать клиента из результатов\n\n"
        "<b>Справочники</b>\n"
        "/refs — показать\n"
        "/set paybox|org|warehouse|price N — выбрать значение\n\n"
        "<b>Товары</b>\n"
        "/product ЗАПРОС — поиск (название или артикул)\n"
        "/add N — добавить найденный товар\n"
        "/cart — корзина\n"
        "/qty N КОЛ-ВО, /price N ЦЕНА, /discount N ПРОЦЕНТ\n"
        "/remove N — удалить позицию\n\n"
        "<b>Продажа</b>\n"
        "/comment ТЕКСТ — комментарий\n"
        "/draft — создать черновик\n"
        "/complete — создать и провести\n"
    )
    await message.answer(text)


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, state: FSMContext):
    if not _is_admin(message):
        return
    await state.clear()
    await message.answer("❎ Отменено.", reply_markup=ReplyKeyboardRemove())


# ---------------- token ----------------

async def _save_token(message: Message, source: DataSource, value: str) -> None:
    ctl = await _controller(message.chat.id, source)
    if not await ctl.save_token(value):
        await message.answer(f"❌ {escape(ctl.token_error)}")
        return
    text = f"✅ {escape(ctl.token_message)}"
    status = _status(ctl)
    if status:
        text += f"\n{status}"
    await message.answer(text)


@router.message(Command("token"))
async def cmd_token(message: Message, state: FSMContext, source: DataSource):
    if not _is_admin(message):
        return

    value = _arg(message)
    if value:
        await _save_token(message, source, value)
        return

    await state.set_state(TokenInput.waiting_token)
    await message.answer("Введите токен кассы одним сообщением.\nОтмена: /cancel")


@router.message(TokenInput.waiting_token)
async def token_wait(message: Message, state: FSMContext, source: DataSource):
    if not _is_admin(message):
        return

    value = (message.text or "").strip()
    if not value or value.startswith("/"):
        await message.answer("Введите токен текстом. Отмена: /cancel")
        return

    try:
        await _save_token(message, source, value)
    finally:
        await state.clear()


# ---------------- client ----------------

@router.message(Command("client"))
async def cmd_client(message: Message, source: DataSource):
    if not _is_admin(message):
        return

    ctl = await _controller(message.chat.id, source)
    phone = _arg(message)
    if not phone:
        await message.answer("Формат: /client ТЕЛЕФОН (или начало имени)")
        return

    ctl.set_client_phone(phone)
    await ctl.settle()

    if not ctl.clients:
        failed = ctl.submit_message == MSG_CLIENT_SEARCH_FAILED
        await message.answer(_status(ctl) if failed else "Клиент не найден")
        return

    body = _numbered(ctl.clients, lambda c: f"{escape(c.name)} {escape(c.phone or '')}")
    await message.answer(f"<b>Найдено:</b>\n{body}\n\nВыбрать: /client_pick N")


@router.message(Command("client_pick"))
async def cmd_client_pick(message: Message, source: DataSource):
    if not _is_admin(message):
        return

    ctl = await _controller(message.chat.id, source)
    idx = _parse_index(_arg(message), len(ctl.clients))
    if idx is None:
        await message.answer("Формат: /client_pick N (номер из результатов /client)")
        return

    client = ctl.clients[idx]
    ctl.select_client(client)
    await message.answer(f"✅ Клиент: <b>{escape(client.name)}</b>")


# ---------------- references ----------------

@router.message(Command("refs"))
async def cmd_refs(message: Message, source: DataSource):
    if not _is_admin(message):
        return

    ctl = await _controller(message.chat.id, source)
    if not ctl.token:
        await message.answer("Сначала сохраните токен: /token ТОКЕН")
        return
    await ctl.load_references()
    await message.answer(format_refs(ctl))


@router.message(Command("set"))
async def cmd_set(message: Message, source: DataSource):
    if not _is_admin(message):
        return

    ctl = await _controller(message.chat.id, source)
    parts = (message.text or "").split()
    if len(parts) != 3 or parts[1].lower() not in KIND_ALIASES:
        await message.answer("Формат: /set paybox|org|warehouse|price N")
        return

    field = KIND_ALIASES[parts[1].lower()]
    options = ctl.options(SELECTION_FIELDS[field])
    idx = _parse_index(parts[2], len(options))
    if idx is None:
        await message.answer("Нет такого номера. Список: /refs")
        return

    ctl.set_selection(field, options[idx].id)
    await message.answer(format_refs(ctl))


# ---------------- products / cart ----------------

@router.message(Command("product"))
async def cmd_product(message: Message, source: DataSource):
    if not _is_admin(message):
        return

    ctl = await _controller(message.chat.id, source)
    query = _arg(message)
    if not query:
        await message.answer("Формат: /product ЗАПРОС")
        return

    ctl.set_product_query(query)
    await ctl.settle()

    if not ctl.product_results:
        failed = ctl.submit_message == MSG_PRODUCT_SEARCH_FAILED
        await message.answer(_status(ctl) if failed else "Товары не найдены")
        return

    body = _numbered(
        ctl.product_results,
        lambda p: f"{escape(p.name)} · {escape(p.sku or '')} · {money(p.price)}",
    )
    await message.answer(f"<b>Товары:</b>\n{body}\n\nДобавить: /add N")


@router.message(Command("add"))
async def cmd_add(message: Message, source: DataSource):
    if not _is_admin(message):
        return

    ctl = await _controller(message.chat.id, source)
    idx = _parse_index(_arg(message), len(ctl.product_results))
    if idx is None:
        await message.answer("Формат: /add N (номер из результатов /product)")
        return

    item = ctl.add_product(ctl.product_results[idx])
    await message.answer(f"✅ {escape(item.name)} × {item.quantity}\n\n{format_cart(ctl)}")


@router.message(Command("cart"))
async def cmd_cart(message: Message, source: DataSource):
    if not _is_admin(message):
        return
    ctl = await _controller(message.chat.id, source)
    await message.answer(format_cart(ctl))


async def _edit_cart(message: Message, source: DataSource, field: str) -> None:
    ctl = await _controller(message.chat.id, source)
    parts = (message.text or "").split()
    idx = _parse_index(parts[1], len(ctl.cart)) if len(parts) == 3 else None
    if idx is None:
        await message.answer(f"Формат: /{parts[0].lstrip('/')} N ЗНАЧЕНИЕ (N — номер в /cart)")
        return

    try:
        value = _parse_number(parts[2])
    except ValueError:
        await message.answer("Значение должно быть числом, пример: 2 или 10.5")
        return

    ctl.update_cart_item(ctl.cart[idx].id, field, value)
    await message.answer(format_cart(ctl))


@router.message(Command("qty"))
async def cmd_qty(message: Message, source: DataSource):
    if not _is_admin(message):
        return
    await _edit_cart(message, source, "quantity")


@router.message(Command("price"))
async def cmd_price(message: Message, source: DataSource):
    if not _is_admin(message):
        return
    await _edit_cart(message, source, "price")


@router.message(Command("discount"))
async def cmd_discount(message: Message, source: DataSource):
    if not _is_admin(message):
        return
    await _edit_cart(message, source, "discount")


@router.message(Command("remove"))
async def cmd_remove(message: Message, source: DataSource):
    if not _is_admin(message):
        return

    ctl = await _controller(message.chat.id, source)
    idx = _parse_index(_arg(message), len(ctl.cart))
    if idx is None:
        await message.answer("Формат: /remove N (N — номер в /cart)")
        return

    ctl.remove_from_cart(ctl.cart[idx].id)
    await message.answer(format_cart(ctl))


# ---------------- submit ----------------

@router.message(Command("comment"))
async def cmd_comment(message: Message, state: FSMContext, source: DataSource):
    if not _is_admin(message):
        return

    ctl = await _controller(message.chat.id, source)
    text = _arg(message)
    if text:
        ctl.set_comment(text)
        await message.answer("✅ Комментарий сохранён")
        return

    await state.set_state(CommentInput.waiting_comment)
    await message.answer("Введите комментарий к заказу или '-' чтобы очистить.\nОтмена: /cancel")


@router.message(CommentInput.waiting_comment)
async def comment_wait(message: Message, state: FSMContext, source: DataSource):
    if not _is_admin(message):
        return

    text = (message.text or "").strip()
    if not text or text.startswith("/"):
        await message.answer("Введите комментарий текстом. Отмена: /cancel")
        return

    ctl = await _controller(message.chat.id, source)
    ctl.set_comment("" if text == "-" else text)
    await state.clear()
    await message.answer("✅ Комментарий сохранён")


async def _submit(message: Message, source: DataSource, mode: str) -> None:
    ctl = await _controller(message.chat.id, source)
    ok = await ctl.submit(mode)
    await message.answer(_status(ctl))
    if not ok or ctl.last_sale is None:
        return

    try:
        pdf_path = generate_receipt_pdf(ctl.last_sale)
        await message.answer_document(FSInputFile(pdf_path))
    except Exception as e:
        logger.exception("Receipt PDF failed")
        await message.answer(f"⚠️ Продажа создана, но PDF не сгенерировался: {escape(str(e))}")


@router.message(Command("draft"))
async def cmd_draft(message: Message, source: DataSource):
    if not _is_admin(message):
        return
    await _submit(message, source, MODE_DRAFT)


@router.message(Command("complete"))
async def cmd_complete(message: Message, source: DataSource):
    if not _is_admin(message):
        return
    await _submit(message, source, MODE_COMPLETE)
