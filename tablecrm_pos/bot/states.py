from aiogram.fsm.state import State, StatesGroup


class TokenInput(StatesGroup):
    waiting_token = State()


class CommentInput(StatesGroup):
    waiting_comment = State()
