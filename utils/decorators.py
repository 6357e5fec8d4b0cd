"""Flask路由装饰器"""
from functools import wraps
from flask import jsonify, request, g
from extensions import logger
from service import get_session_manager
from utils.auth import extract_bearer_token
from utils.exceptions import StoreUnavailableError, TokenError, TokenExpiredError


def _error(message, error, status=401):
    return jsonify({'success': False, 'message': message, 'error': error}), status


def _attach(token, verified):
    """将用户信息存储到g对象中供路由使用"""
    g.user = verified.user
    g.user_id = verified.user_id
    g.token = token
    g.token_id = verified.token_id


def authenticate(f):
    """
    登录验证装饰器
    从 Authorization: Bearer <token> 中读取访问令牌并到数据库中验证
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = extract_bearer_token(request.headers.get('Authorization'))
        if not token:
            return _error('未提供访问令牌', 'NO_TOKEN')

        try:
            verified = get_session_manager().verify_access_token(token)
        except TokenExpiredError:
            return _error('访问令牌已过期，请重新登录', 'TOKEN_EXPIRED')
        except TokenError as e:
            # 令牌无效、已撤销、用户已停用对外统一返回 INVALID_TOKEN
            logger.info(f'认证失败: {e.__class__.__name__}: {str(e)}')
            return _error('无效的访问令牌', 'INVALID_TOKEN')
        except StoreUnavailableError:
            # 无法判断令牌是否有效，不能当作令牌无效处理
            return _error('认证服务暂时不可用，请稍后重试', 'STORE_UNAVAILABLE', 503)

        _attach(token, verified)
        return f(*args, **kwargs)
    return decorated_function


def optional_authenticate(f):
    """
    可选登录装饰器
    令牌有效时附加用户信息，否则以匿名身份继续处理请求
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.user = None
        g.user_id = None
        token = extract_bearer_token(request.headers.get('Authorization'))
        if token:
            try:
                _attach(token, get_session_manager().verify_access_token(token))
            except (TokenError, StoreUnavailableError) as e:
                logger.debug(f'可选认证忽略无效令牌: {str(e)}')
        return f(*args, **kwargs)
    return decorated_function


def authorize(*roles):
    """
    角色权限验证装饰器，需放在 authenticate 之后

    Args:
        roles: 允许访问的角色
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = g.get('user')
            if not user:
                return _error('需要登录', 'AUTHENTICATION_REQUIRED')

            if user.get('role') not in roles:
                logger.warning(f'用户 {user.get("id")} 权限不足，角色: {user.get("role")}，需要: {roles}')
                response = jsonify({
                    'success': False,
                    'message': f'权限不足，需要以下角色之一: {", ".join(roles)}',
                    'error': 'INSUFFICIENT_PERMISSIONS',
                    'required': list(roles),
                    'current': user.get('role'),
                })
                return response, 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def admin_required(f):
    """
    管理员权限验证装饰器
    自动包含登录验证
    """
    return authenticate(authorize('admin')(f))


def brand_required(f):
    """品牌账号权限验证装饰器，管理员同样可以访问"""
    return authenticate(authorize('brand', 'admin')(f))
