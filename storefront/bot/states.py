from aiogram.fsm.state import State, StatesGroup


class CompanyInfoEdit(StatesGroup):
    waiting_name = State()
    waiting_address = State()
    waiting_phone = State()
    waiting_email = State()
