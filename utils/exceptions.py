"""认证相关异常"""


class AuthError(Exception):
    """认证模块异常基类"""
    code = 'AUTH_ERROR'
    status_code = 400

    def __init__(self, message=None, *, code=None, status_code=None):
        super().__init__(message or self.__class__.__doc__)
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class InvalidDurationError(AuthError, ValueError):
    """无效的时长格式"""
    code = 'INVALID_DURATION'


class TokenError(AuthError):
    """令牌验证失败"""
    code = 'INVALID_TOKEN'
    status_code = 401


class TokenExpiredError(TokenError):
    """令牌已过期"""
    code = 'TOKEN_EXPIRED'


class MalformedTokenError(TokenError):
    """令牌签名或结构无效"""


class TokenRevokedError(TokenError):
    """令牌已被撤销或不存在"""


class OwnerInactiveError(TokenError):
    """令牌所属用户不存在或已停用"""


class WrongTokenKindError(TokenError):
    """令牌类型不匹配"""


class StoreError(AuthError):
    """令牌存储异常"""
    code = 'STORE_ERROR'
    status_code = 500


class DuplicateDigestError(StoreError):
    """令牌摘要已存在"""
    code = 'DUPLICATE_TOKEN'
    status_code = 409


class StoreUnavailableError(StoreError):
    """令牌存储暂时不可用"""
    code = 'STORE_UNAVAILABLE'
    status_code = 503
