"""数据库模型"""
from .user import User, utcnow
from .token import AuthToken, TokenKind, RevokeReason

__all__ = ['User', 'AuthToken', 'TokenKind', 'RevokeReason', 'utcnow']
