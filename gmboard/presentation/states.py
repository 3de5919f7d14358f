from aiogram.fsm.state import StatesGroup, State

class AdminSG(StatesGroup):
    wait_restore = State()
