from aiogram.types import KeyboardButton, ReplyKeyboardMarkup


def main_kb() -> ReplyKeyboardMarkup:
    return ReplyKeyboardMarkup(
        keyboard=[
            [KeyboardButton(text="/help"), KeyboardButton(text="/refs")],
            [KeyboardButton(text="/cart"), KeyboardButton(text="/comment")],
            [KeyboardButton(text="/draft"), KeyboardButton(text="/complete")],
        ],
        resize_keyboard=True,
    )
