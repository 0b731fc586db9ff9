import asyncio
import logging

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from tablecrm_pos.api.sources import build_data_source
from tablecrm_pos.bot.handlers import router
from tablecrm_pos.config import settings
from tablecrm_pos.db.sqlite import init_db


async def main() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    if not settings.bot_token:
        raise RuntimeError("BOT_TOKEN is empty. Set BOT_TOKEN in .env")

    init_db(settings.db_path)
    source = build_data_source(settings)

    bot = Bot(token=settings.bot_token, default=DefaultBotProperties(parse_mode=ParseMode.HTML))
    dp = Dispatcher(source=source)
    dp.include_router(router)

    try:
        await dp.start_polling(bot)
    finally:
        await source.aclose()
        await bot.session.close()

if __name__ == "__main__":
    asyncio.run(main())
