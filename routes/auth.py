"""认证相关路由"""
from flask import Blueprint, request, jsonify, g, current_app
from extensions import db, logger
from models import User, RevokeReason, TokenKind
from service import get_session_manager
from utils import get_client_info
from utils.decorators import authenticate
from utils.exceptions import TokenError, TokenExpiredError

auth_bp = Blueprint('auth', __name__, url_prefix='/api/users')

MIN_PASSWORD_LENGTH = 6


def _fail(message, error, status=400):
    return jsonify({'success': False, 'message': message, 'error': error}), status


def _token_response(user, issued, message, status=200, **extra):
    body = {
        'success': True,
        'message': message,
        'user': user.to_dict() if isinstance(user, User) else user,
        'token': issued.token,
        'token_expiry': issued.expires_at.isoformat(),
        'expires_in': issued.expires_in,
    }
    body.update(extra)
    return jsonify(body), status


def _register(role):
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    # 验证
    if not name or not email or not password:
        return _fail('姓名、邮箱和密码都是必填的', 'MISSING_FIELDS')
    if len(password) < MIN_PASSWORD_LENGTH:
        return _fail(f'密码长度至少为{MIN_PASSWORD_LENGTH}位', 'WEAK_PASSWORD')
    if role == 'brand' and not (data.get('company_name') or '').strip():
        return _fail('品牌账号需要填写公司名称', 'MISSING_FIELDS')

    # 检查用户是否已存在
    if User.query.filter_by(email=email).first():
        return _fail('该邮箱已被注册', 'USER_EXISTS')

    user = User(name=name, email=email, role=role) # type: ignore
    if role == 'brand':
        user.company_name = data['company_name'].strip()
    user.set_password(password)
    user.update_last_login()
    db.session.add(user)
    db.session.commit()
    logger.info(f'新用户注册: {email}, 角色: {role}')

    issued = get_session_manager().issue_access_token(
        user.id, user.email, user.role, **get_client_info(request)
    )
    return _token_response(user, issued, '注册成功', 201)


@auth_bp.route('/register', methods=['POST'])
def register():
    """普通用户注册"""
    return _register('user')


@auth_bp.route('/register-brand', methods=['POST'])
def register_brand():
    """品牌账号注册"""
    return _register('brand')


@auth_bp.route('/login', methods=['POST'])
def login():
    """用户登录"""
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''

    if not email or not password:
        return _fail('请输入邮箱和密码', 'MISSING_CREDENTIALS')

    user = User.query.filter_by(email=email).first()

    # 用户不存在、密码错误、账号停用统一返回相同的错误
    if not user or not user.check_password(password) or not user.is_active:
        logger.warning(f'登录失败，IP: {request.remote_addr}, 邮箱: {email}')
        return _fail('邮箱或密码错误', 'INVALID_CREDENTIALS', 401)

    user.update_last_login()
    db.session.commit()

    issued = get_session_manager().issue_access_token(
        user.id, user.email, user.role, **get_client_info(request)
    )
    logger.info(f'用户 {user.email} 登录成功，IP: {request.remote_addr}')
    return _token_response(user, issued, '登录成功')


@auth_bp.route('/logout', methods=['POST'])
@authenticate
def logout():
    """登出（撤销当前令牌）"""
    revoked = get_session_manager().revoke_token(g.token, RevokeReason.LOGOUT)
    logger.info(f'用户 {g.user_id} 已登出')
    return jsonify({'success': True, 'message': '已成功登出', 'revoked': revoked})


@auth_bp.route('/logout-all', methods=['POST'])
@authenticate
def logout_all():
    """退出所有设备（撤销该用户的所有令牌）"""
    count = get_session_manager().revoke_all_for_owner(g.user_id, RevokeReason.LOGOUT_ALL)
    return jsonify({'success': True, 'message': '已退出所有设备', 'revoked_count': count})


@auth_bp.route('/change-password', methods=['PUT'])
@authenticate
def change_password():
    """修改密码，撤销所有令牌后重新签发当前设备的令牌"""
    data = request.get_json(silent=True) or {}
    old_password = data.get('old_password') or ''
    new_password = data.get('new_password') or ''

    if not old_password or not new_password:
        return _fail('所有字段都是必填的', 'MISSING_FIELDS')
    if len(new_password) < MIN_PASSWORD_LENGTH:
        return _fail(f'新密码长度至少为{MIN_PASSWORD_LENGTH}位', 'WEAK_PASSWORD')

    user = db.session.get(User, g.user_id)
    if not user:
        return _fail('用户不存在', 'USER_NOT_FOUND', 404)
    if not user.check_password(old_password):
        return _fail('旧密码不正确', 'INVALID_PASSWORD')

    user.set_password(new_password)
    db.session.commit()

    manager = get_session_manager()
    # 撤销该用户的所有令牌，强制所有设备重新登录
    manager.revoke_all_for_owner(user.id, RevokeReason.PASSWORD_CHANGE)
    issued = manager.issue_access_token(user.id, user.email, user.role, **get_client_info(request))
    logger.info(f'用户 {user.email} 修改了密码，所有令牌已撤销')
    return _token_response(user, issued, '密码修改成功')


@auth_bp.route('/refresh-token', methods=['POST'])
@authenticate
def refresh_token():
    """签发新的访问令牌，并撤销当前令牌"""
    manager = get_session_manager()
    issued = manager.issue_access_token(
        g.user_id, g.user['email'], g.user['role'], **get_client_info(request)
    )
    manager.revoke_token(g.token, RevokeReason.SUPERSEDED)
    return _token_response(g.user, issued, '令牌刷新成功')


@auth_bp.route('/verify-token', methods=['GET'])
@authenticate
def verify_token():
    """验证令牌是否有效"""
    return jsonify({'success': True, 'message': '令牌有效', 'user': g.user, 'token_id': g.token_id})


@auth_bp.route('/profile', methods=['GET'])
@authenticate
def profile():
    """个人资料"""
    return jsonify({'success': True, 'user': g.user})


@auth_bp.route('/sessions', methods=['GET'])
@authenticate
def sessions():
    """当前登录的设备列表"""
    items = get_session_manager().list_sessions(g.user_id)
    for item in items:
        item['current'] = item['id'] == g.token_id
    return jsonify({'success': True, 'sessions': items})


@auth_bp.route('/forgot-password', methods=['POST'])
def forgot_password():
    """申请重置密码（无论邮箱是否存在都返回相同结果）"""
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    if not email:
        return _fail('请输入邮箱', 'MISSING_FIELDS')

    body = {'success': True, 'message': '如果该邮箱已注册，重置链接将发送到邮箱'}
    user = User.query.filter_by(email=email).first()
    if user and user.is_active:
        issued = get_session_manager().issue_password_reset_token(user.id, user.email)
        if current_app.config.get('EXPOSE_SPECIAL_TOKENS'):
            body['reset_token'] = issued.token
    return jsonify(body)


@auth_bp.route('/reset-password', methods=['POST'])
def reset_password():
    """使用重置令牌设置新密码，并撤销该用户的所有会话"""
    data = request.get_json(silent=True) or {}
    token = data.get('token') or ''
    new_password = data.get('new_password') or ''

    if not token or not new_password:
        return _fail('所有字段都是必填的', 'MISSING_FIELDS')
    if len(new_password) < MIN_PASSWORD_LENGTH:
        return _fail(f'新密码长度至少为{MIN_PASSWORD_LENGTH}位', 'WEAK_PASSWORD')

    manager = get_session_manager()
    try:
        verified = manager.consume_special_token(token, TokenKind.PASSWORD_RESET)
    except TokenExpiredError:
        return _fail('重置链接已过期', 'TOKEN_EXPIRED')
    except TokenError:
        return _fail('重置链接无效', 'INVALID_TOKEN')

    user = db.session.get(User, verified.user_id)
    if not user:
        return _fail('用户不存在', 'USER_NOT_FOUND', 404)
    user.set_password(new_password)
    db.session.commit()
    manager.revoke_all_for_owner(verified.user_id, RevokeReason.PASSWORD_CHANGE)
    logger.info(f'用户 {verified.user_id} 通过重置链接修改了密码')
    return jsonify({'success': True, 'message': '密码已重置，请重新登录'})


@auth_bp.route('/send-verification', methods=['POST'])
@authenticate
def send_verification():
    """发送邮箱验证令牌"""
    if g.user.get('is_email_verified'):
        return _fail('邮箱已验证', 'ALREADY_VERIFIED')

    issued = get_session_manager().issue_email_verification_token(g.user_id, g.user['email'])
    body = {'success': True, 'message': '验证邮件已发送', 'expires_at': issued.expires_at.isoformat()}
    if current_app.config.get('EXPOSE_SPECIAL_TOKENS'):
        body['verification_token'] = issued.token
    return jsonify(body)


@auth_bp.route('/verify-email', methods=['POST'])
def verify_email():
    """验证邮箱"""
    data = request.get_json(silent=True) or {}
    token = data.get('token') or ''
    if not token:
        return _fail('缺少验证令牌', 'MISSING_FIELDS')

    try:
        verified = get_session_manager().consume_special_token(token, TokenKind.EMAIL_VERIFICATION)
    except TokenExpiredError:
        return _fail('验证链接已过期', 'TOKEN_EXPIRED')
    except TokenError:
        return _fail('验证链接无效', 'INVALID_TOKEN')

    user = db.session.get(User, verified.user_id)
    if not user:
        return _fail('用户不存在', 'USER_NOT_FOUND', 404)
    user.is_email_verified = True
    db.session.commit()
    logger.info(f'用户 {verified.user_id} 已验证邮箱')
    return jsonify({'success': True, 'message': '邮箱验证成功'})
