"""认证相关工具函数"""
import secrets
import string
from typing import Optional


def generate_random_password(length=12):
    """生成随机密码"""
    characters = string.ascii_letters + string.digits + string.punctuation
    password = ''.join(secrets.choice(characters) for _ in range(length))
    return password


def extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    """
    从 Authorization 请求头中提取令牌

    Args:
        auth_header: 形如 "Bearer <token>" 的请求头

    Returns:
        str: 令牌，格式不正确时返回None
    """
    if not auth_header:
        return None

    parts = auth_header.split(' ')
    if len(parts) == 2 and parts[0] == 'Bearer' and parts[1]:
        return parts[1]
    return None


def get_client_info(request):
    """
    获取客户端信息，用于记录令牌来源

    Returns:
        dict: ip_address, user_agent, device_label
    """
    user_agent = request.headers.get('User-Agent', '')
    return {
        'ip_address': request.remote_addr,
        'user_agent': user_agent[:500] or None,
        'device_label': (request.headers.get('X-Device-Label') or '')[:200] or None,
    }
