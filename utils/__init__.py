"""工具函数"""
from .auth import (
    generate_random_password,
    extract_bearer_token,
    get_client_info,
)
from .token_codec import (
    TokenCodec,
    parse_duration,
    hash_token,
    generate_secure_token,
)

__all__ = [
    'generate_random_password',
    'extract_bearer_token',
    'get_client_info',
    'TokenCodec',
    'parse_duration',
    'hash_token',
    'generate_secure_token',
]
