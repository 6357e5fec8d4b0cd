"""管理员路由：令牌统计与清理"""
from flask import Blueprint, jsonify, g
from extensions import db, logger
from models import User, RevokeReason
from scheduler import get_scheduler
from service import get_session_manager
from utils.decorators import admin_required

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')


@admin_bp.route('/tokens/stats', methods=['GET'])
@admin_required
def token_stats():
    """令牌统计"""
    stats = get_scheduler().get_stats()
    if stats is None:
        return jsonify({'success': False, 'message': '令牌统计暂时不可用', 'error': 'STORE_UNAVAILABLE'}), 503
    return jsonify({'success': True, 'stats': stats})


@admin_bp.route('/tokens/cleanup', methods=['POST'])
@admin_required
def manual_cleanup():
    """手动清理令牌"""
    result = get_scheduler().trigger_manual_cleanup()
    logger.info(f'管理员 {g.user_id} 手动清理了令牌，共 {result["total"]} 个')
    return jsonify({'success': True, 'result': result})


@admin_bp.route('/tokens/cleanup/comprehensive', methods=['POST'])
@admin_required
def comprehensive_cleanup():
    """手动执行全面清理"""
    result = get_scheduler().trigger_comprehensive_cleanup()
    logger.info(f'管理员 {g.user_id} 执行了全面清理，共 {result["total"]} 个')
    return jsonify({'success': True, 'result': result})


@admin_bp.route('/scheduler', methods=['GET'])
@admin_required
def scheduler_status():
    """清理调度器状态"""
    return jsonify({'success': True, 'scheduler': get_scheduler().get_status()})


@admin_bp.route('/users/<int:user_id>/deactivate', methods=['POST'])
@admin_required
def deactivate_user(user_id):
    """管理员：停用用户（其现有令牌在下一次验证时失效）"""
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'success': False, 'message': '用户不存在', 'error': 'USER_NOT_FOUND'}), 404
    if user.id == g.user_id:
        return jsonify({'success': False, 'message': '不能停用自己的账号', 'error': 'INVALID_OPERATION'}), 400

    user.is_active = False
    db.session.commit()
    logger.info(f'管理员 {g.user_id} 停用了用户 {user.email}')
    return jsonify({'success': True, 'user': user.to_dict()})


@admin_bp.route('/users/<int:user_id>/revoke-tokens', methods=['POST'])
@admin_required
def revoke_user_tokens(user_id):
    """管理员：强制用户在所有设备下线"""
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'success': False, 'message': '用户不存在', 'error': 'USER_NOT_FOUND'}), 404

    count = get_session_manager().revoke_all_for_owner(user.id, RevokeReason.SECURITY)
    logger.info(f'管理员 {g.user_id} 撤销了用户 {user.email} 的 {count} 个令牌')
    return jsonify({'success': True, 'revoked_count': count})
