"""JWT令牌编解码"""
import hashlib
import re
import secrets
import time
import uuid
from datetime import timedelta
from typing import Optional

import jwt

from utils.exceptions import InvalidDurationError, MalformedTokenError, TokenExpiredError

_DURATION_PATTERN = re.compile(r'(\d+)([smhd])')
_DURATION_UNITS = {
    's': 'seconds',
    'm': 'minutes',
    'h': 'hours',
    'd': 'days',
}

# 签发时必须存在、验证时必须校验的声明
REQUIRED_CLAIMS = ['exp', 'iat', 'sub', 'jti', 'type']


def parse_duration(value) -> timedelta:
    """
    解析时长字符串

    Args:
        value: 形如 "30s"、"15m"、"1h"、"7d" 的字符串

    Returns:
        timedelta: 对应的时长

    Raises:
        InvalidDurationError: 格式不合法
    """
    if isinstance(value, timedelta):
        return value
    # 不去除空白，" 1h" 和 "1h\n" 都视为非法
    match = _DURATION_PATTERN.fullmatch(value) if isinstance(value, str) else None
    if not match:
        raise InvalidDurationError(f'无效的时长格式: {value!r}')
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def hash_token(token: str) -> str:
    """计算令牌的SHA-256摘要（数据库只保存摘要，不保存原始令牌）"""
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


def generate_secure_token(length=32) -> str:
    """生成非JWT用途的随机令牌"""
    return secrets.token_hex(length)


class TokenCodec:
    """签发和校验HS256签名令牌，不访问数据库"""

    def __init__(self, secret: str, algorithm: str = 'HS256'):
        if not secret:
            raise ValueError('JWT密钥未配置')
        self._secret = secret
        self._algorithm = algorithm

    def issue(self, claims: dict, ttl) -> str:
        """
        签发令牌

        Args:
            claims: 令牌声明，需包含 user_id 和 type
            ttl: 有效期，如 "1h"

        Returns:
            str: 签名后的令牌
        """
        lifetime = parse_duration(ttl)
        payload = dict(claims)
        issued_at = int(payload.get('iat') or time.time())
        payload['iat'] = issued_at
        payload['exp'] = issued_at + int(lifetime.total_seconds())
        payload['sub'] = str(payload.get('sub') or payload['user_id'])
        # jti保证同一秒内为同一用户签发的令牌也互不相同
        payload.setdefault('jti', uuid.uuid4().hex)
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> dict:
        """
        校验签名和过期时间

        Raises:
            TokenExpiredError: 令牌已过期
            MalformedTokenError: 签名或结构无效
        """
        try:
            return jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={'require': REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError('令牌已过期') from e
        except jwt.InvalidTokenError as e:
            raise MalformedTokenError(f'无效的令牌: {str(e)}') from e

    def peek(self, token: str) -> Optional[dict]:
        """不校验签名和过期时间直接解码，仅用于展示，不能用于授权"""
        try:
            return jwt.decode(token, options={'verify_signature': False})
        except jwt.InvalidTokenError:
            return None

    def is_expired(self, token: str) -> bool:
        """仅根据令牌内容判断是否过期（无法解析的令牌视为已过期）"""
        payload = self.peek(token)
        if not payload or not payload.get('exp'):
            return True
        return time.time() >= payload['exp']
