from .manager import LOGIN_METHOD, LOGOUT_NOTIFICATION, SessionManager
from .state import SessionStates, can_transition

__all__ = ["LOGIN_METHOD", "LOGOUT_NOTIFICATION", "SessionManager", "SessionStates", "can_transition"]
