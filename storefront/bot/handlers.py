from __future__ import annotations

import logging

from aiogram import Router, html
from aiogram.filters import Command, CommandObject
from aiogram.fsm.context import FSMContext
from aiogram.types import FSInputFile, Message, ReplyKeyboardRemove

from storefront.bot.keyboards import main_kb, skip_kb
from storefront.bot.states import CompanyInfoEdit
from storefront.config import settings
from storefront.constants import ORDER_PENDING
from storefront.container import Services
from storefront.models import CompanyInfo
from storefront.services.backup import make_backup
from storefront.utils.formatters import money

logger = logging.getLogger(__name__)

router = Router()

ORDERS_SHOWN = 20


def _is_admin(message: Message) -> bool:
    if message.from_user is None:
        return False
    return int(message.from_user.id) == int(settings.admin_id)


def _step_value(message: Message, current: str) -> str:
    """'-' keeps what is already stored."""
    text = (message.text or "").strip()
    return current if text == "-" else text


@router.message(Command("start"))
async def cmd_start(message: Message):
    if not _is_admin(message):
        return
    await message.answer("✅ Storefront bot is running", reply_markup=main_kb())


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, state: FSMContext):
    if not _is_admin(message):
        return
    await state.clear()
    await message.answer("❎ Cancelled.", reply_markup=ReplyKeyboardRemove())


@router.message(Command("help"))
async def cmd_help(message: Message):
    if not _is_admin(message):
        return

    text = (
        "<b>Storefront bot: commands</b>\n\n"
        "/start: start\n"
        "/cancel: cancel input\n"
        "/help: this help\n"
        "/ping: health check\n\n"
        "<b>Orders</b>\n"
        "/orders: pending orders\n"
        "/confirm ORDER_ID: confirm an order and decrement stock\n\n"
        "<b>Store</b>\n"
        "/company: edit company info\n"
        "/backup: database + saved order PDFs\n"
    )
    await message.answer(text)


@router.message(Command("ping"))
async def cmd_ping(message: Message):
    if not _is_admin(message):
        return
    await message.answer("pong ✅")


@router.message(Command("backup"))
async def cmd_backup(message: Message):
    if not _is_admin(message):
        return
    try:
        file_path = make_backup()
    except OSError as e:
        logger.exception("backup failed")
        await message.answer(f"❌ Backup error: {html.quote(str(e))}")
        return
    await message.answer_document(FSInputFile(file_path))


@router.message(Command("orders"))
async def cmd_orders(message: Message, services: Services):
    if not _is_admin(message):
        return

    shop = services.shop
    if not await shop.load():
        await message.answer(f"❌ {html.quote(shop.error or shop.initialization_error or 'load failed')}")
        return

    pending = [o for o in shop.orders if o.status == ORDER_PENDING]
    if not pending:
        await message.answer("No pending orders.")
        return

    lines = ["<b>Pending orders:</b>"]
    for o in pending[:ORDERS_SHOWN]:
        lines.append(f"\n<code>{o.id}</code> · {html.quote(o.created_at)} · {money(o.total)}")
        for it in o.items:
            lines.append(f"• {html.quote(it.product_name)} ({html.quote(it.variant_name)}) × {it.quantity}")
    if len(pending) > ORDERS_SHOWN:
        lines.append(f"\n… and {len(pending) - ORDERS_SHOWN} more")
    await message.answer("\n".join(lines))


@router.message(Command("confirm"))
async def cmd_confirm(message: Message, command: CommandObject, services: Services):
    if not _is_admin(message):
        return

    order_id = (command.args or "").strip()
    if not order_id:
        await message.answer("Usage: /confirm ORDER_ID")
        return

    shop = services.shop
    if shop.find_order(order_id) is None:
        await shop.load()

    ok, payload = await shop.confirm_order(order_id)
    if not ok:
        await message.answer(f"❌ {html.quote(payload)}")
        return
    await message.answer(f"✅ Order <code>{payload.id}</code> confirmed, stock updated.")


@router.message(Command("company"))
async def cmd_company(message: Message, state: FSMContext, services: Services):
    if not _is_admin(message):
        return

    info = services.shop.company_info or CompanyInfo(name="", address="", phone="", email="")
    await state.clear()
    await state.set_state(CompanyInfoEdit.waiting_name)
    await state.update_data(name=info.name, address=info.address, phone=info.phone, email=info.email)
    await message.answer(
        f"1/4) Store name (now: {html.quote(info.name or '-')})\nSend '-' to keep it. Cancel: /cancel",
        reply_markup=skip_kb(),
    )


@router.message(CompanyInfoEdit.waiting_name)
async def company_name(message: Message, state: FSMContext):
    if not _is_admin(message):
        return

    data = await state.get_data()
    name = _step_value(message, data.get("name", ""))
    if not name or name.startswith("/"):
        await message.answer("The store name is required. Cancel: /cancel")
        return

    await state.update_data(name=name)
    await state.set_state(CompanyInfoEdit.waiting_address)
    await message.answer(f"2/4) Address (now: {html.quote(data.get('address') or '-')})", reply_markup=skip_kb())


@router.message(CompanyInfoEdit.waiting_address)
async def company_address(message: Message, state: FSMContext):
    if not _is_admin(message):
        return

    data = await state.get_data()
    await state.update_data(address=_step_value(message, data.get("address", "")))
    await state.set_state(CompanyInfoEdit.waiting_phone)
    await message.answer(
        f"3/4) Phone for order messages, with country code (now: {html.quote(data.get('phone') or '-')})",
        reply_markup=skip_kb(),
    )


@router.message(CompanyInfoEdit.waiting_phone)
async def company_phone(message: Message, state: FSMContext):
    if not _is_admin(message):
        return

    data = await state.get_data()
    phone = _step_value(message, data.get("phone", ""))
    if phone and not any(ch.isdigit() for ch in phone):
        await message.answer("The phone must contain digits. Try again or /cancel")
        return

    await state.update_data(phone=phone)
    await state.set_state(CompanyInfoEdit.waiting_email)
    await message.answer(f"4/4) Email (now: {html.quote(data.get('email') or '-')})", reply_markup=skip_kb())


@router.message(CompanyInfoEdit.waiting_email)
async def company_email(message: Message, state: FSMContext, services: Services):
    if not _is_admin(message):
        return

    data = await state.get_data()
    email = _step_value(message, data.get("email", ""))
    info = CompanyInfo(name=data["name"], address=data.get("address", ""), phone=data.get("phone", ""), email=email)

    try:
        ok, payload = await services.shop.update_company_info(info)
    finally:
        await state.clear()

    if not ok:
        await message.answer(f"❌ {html.quote(payload)}", reply_markup=main_kb())
        return
    await message.answer(f"✅ Company info saved: {html.quote(info.name)}", reply_markup=main_kb())
