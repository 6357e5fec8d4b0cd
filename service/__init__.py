"""业务服务"""
from .token_store import TokenStore
from .session_manager import (
    SessionManager,
    IssuedToken,
    VerifiedToken,
    init_session_manager,
    get_session_manager,
)

__all__ = [
    'TokenStore',
    'SessionManager',
    'IssuedToken',
    'VerifiedToken',
    'init_session_manager',
    'get_session_manager',
]
