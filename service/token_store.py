"""令牌记录存储"""
from datetime import timedelta
from functools import wraps
from typing import Dict, Iterable, List, Optional

from sqlalchemy import and_, case, func, or_
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from extensions import db, logger
from models import AuthToken, RevokeReason, TokenKind, User, utcnow
from utils.exceptions import DuplicateDigestError, StoreError, StoreUnavailableError


def _store_operation(func):
    """将数据库连接失败、超时等异常统一转换为 StoreUnavailableError"""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (OperationalError, PoolTimeoutError, DisconnectionError) as e:
            db.session.rollback()
            logger.error(f'令牌存储操作 {func.__name__} 失败: {str(e)}')
            raise StoreUnavailableError('令牌存储暂时不可用') from e
    return wrapper


class TokenStore:
    """
    令牌记录的持久化操作

    所有状态变更都通过单条带条件的 UPDATE/DELETE 完成，
    不依赖先读后写，因此并发请求之间不需要进程内锁。
    """

    @_store_operation
    def insert(self, record: AuthToken) -> AuthToken:
        """
        保存新的令牌记录

        Raises:
            DuplicateDigestError: 摘要已存在
        """
        db.session.add(record)
        try:
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            if AuthToken.query.filter_by(digest=record.digest).first() is not None:
                logger.error(f'令牌摘要重复，user_id={record.owner_id}, kind={record.kind}')
                raise DuplicateDigestError('令牌摘要已存在') from e
            raise StoreError(f'保存令牌记录失败: {str(e)}') from e
        return record

    @_store_operation
    def find_active_by_digest(self, digest: str) -> Optional[AuthToken]:
        """查找有效（未撤销且未过期）的令牌记录"""
        return AuthToken.query.filter_by(digest=digest, is_active=True).filter(
            AuthToken.expires_at > utcnow()
        ).first()

    @_store_operation
    def find_by_digest(self, digest: str) -> Optional[AuthToken]:
        """查找令牌记录（不论状态）"""
        return AuthToken.query.filter_by(digest=digest).first()

    @_store_operation
    def get_owner(self, owner_id: int) -> Optional[User]:
        """读取令牌所属用户的当前状态"""
        return db.session.get(User, owner_id)

    @_store_operation
    def touch_usage(self, token_id: int) -> bool:
        """
        原子地增加使用次数并更新最后使用时间

        Returns:
            bool: 记录仍然有效且已更新时返回True；已被撤销或已过期返回False
        """
        now = utcnow()
        updated = AuthToken.query.filter_by(id=token_id, is_active=True).filter(
            AuthToken.expires_at > now
        ).update(
            {
                AuthToken.usage_count: AuthToken.usage_count + 1,
                AuthToken.last_used_at: now,
            },
            synchronize_session=False
        )
        db.session.commit()
        return updated == 1

    @_store_operation
    def revoke(self, token_id: int, reason: str = RevokeReason.MANUAL) -> bool:
        """
        撤销单个令牌，重复撤销不会报错

        Returns:
            bool: 本次调用是否撤销了令牌
        """
        updated = AuthToken.query.filter_by(id=token_id, is_active=True).update(
            self._revoked_values(reason),
            synchronize_session=False
        )
        db.session.commit()
        return updated > 0

    @_store_operation
    def revoke_all_for_owner(self, owner_id: int, reason: str = RevokeReason.MANUAL) -> int:
        """撤销用户的所有有效令牌，返回撤销数量"""
        updated = AuthToken.query.filter_by(owner_id=owner_id, is_active=True).update(
            self._revoked_values(reason),
            synchronize_session=False
        )
        db.session.commit()
        return updated

    @_store_operation
    def supersede_owner_kind(self, owner_id: int, kind: str,
                             reason: str = RevokeReason.SUPERSEDED,
                             before_id: Optional[int] = None) -> int:
        """
        作废该用户同类型的有效令牌

        Args:
            before_id: 只作废ID小于它的记录（即新令牌之前签发的记录）
        """
        query = AuthToken.query.filter_by(owner_id=owner_id, kind=kind, is_active=True)
        if before_id is not None:
            query = query.filter(AuthToken.id < before_id)
        updated = query.update(
            self._revoked_values(reason),
            synchronize_session=False
        )
        db.session.commit()
        return updated

    @_store_operation
    def list_active_for_owner(self, owner_id: int, kind: Optional[str] = None) -> List[AuthToken]:
        """列出用户当前有效的令牌，最近使用的排在前面"""
        query = AuthToken.query.filter_by(owner_id=owner_id, is_active=True).filter(
            AuthToken.expires_at > utcnow()
        )
        if kind:
            query = query.filter_by(kind=kind)
        return query.order_by(
            func.coalesce(AuthToken.last_used_at, AuthToken.created_at).desc()
        ).all()

    @_store_operation
    def delete_expired(self, kinds: Optional[Iterable[str]] = None) -> int:
        """删除已过期的令牌记录"""
        query = AuthToken.query.filter(AuthToken.expires_at <= utcnow())
        if kinds:
            query = query.filter(AuthToken.kind.in_(list(kinds)))
        deleted = query.delete(synchronize_session=False)
        db.session.commit()
        return deleted

    @_store_operation
    def delete_revoked_older_than(self, age: timedelta) -> int:
        """删除撤销时间早于 age 之前的令牌记录"""
        cutoff = utcnow() - age
        deleted = AuthToken.query.filter_by(is_active=False).filter(
            or_(AuthToken.revoked_at.is_(None), AuthToken.revoked_at <= cutoff)
        ).delete(synchronize_session=False)
        db.session.commit()
        return deleted

    @_store_operation
    def delete_overused(self, thresholds: Dict[str, int]) -> int:
        """
        删除使用次数超过上限的令牌记录

        Args:
            thresholds: {令牌类型: 最大使用次数}
        """
        conditions = [
            and_(AuthToken.kind == kind, AuthToken.usage_count > limit)
            for kind, limit in thresholds.items()
        ]
        if not conditions:
            return 0
        deleted = AuthToken.query.filter(or_(*conditions)).delete(synchronize_session=False)
        db.session.commit()
        return deleted

    @_store_operation
    def delete_for_inactive_owners(self, threshold: timedelta) -> int:
        """删除长期未登录（或从未登录）用户的所有令牌记录"""
        cutoff = utcnow() - threshold
        inactive_owner_ids = db.select(User.id).where(
            or_(User.last_login.is_(None), User.last_login < cutoff)
        )
        deleted = AuthToken.query.filter(
            AuthToken.owner_id.in_(inactive_owner_ids)
        ).delete(synchronize_session=False)
        db.session.commit()
        return deleted

    @_store_operation
    def stats(self) -> dict:
        """按类型统计令牌数量"""
        now = utcnow()
        rows = db.session.query(
            AuthToken.kind,
            func.count(AuthToken.id),
            func.sum(case((AuthToken.expires_at <= now, 1), else_=0)),
            func.sum(case((AuthToken.is_active.is_(False), 1), else_=0)),
            func.sum(case((and_(AuthToken.is_active.is_(True), AuthToken.expires_at > now), 1), else_=0)),
        ).group_by(AuthToken.kind).all()

        result = {
            'total': 0,
            'total_by_kind': {kind: 0 for kind in TokenKind.ALL},
            'expired_by_kind': {kind: 0 for kind in TokenKind.ALL},
            'revoked_by_kind': {kind: 0 for kind in TokenKind.ALL},
            'active_by_kind': {kind: 0 for kind in TokenKind.ALL},
            'timestamp': now.isoformat() + 'Z',
        }
        for kind, total, expired, revoked, active in rows:
            result['total'] += total
            result['total_by_kind'][kind] = total
            result['expired_by_kind'][kind] = int(expired or 0)
            result['revoked_by_kind'][kind] = int(revoked or 0)
            result['active_by_kind'][kind] = int(active or 0)
        return result

    @staticmethod
    def _revoked_values(reason):
        if reason not in RevokeReason.ALL:
            raise ValueError(f'未知的撤销原因: {reason}')
        return {
            AuthToken.is_active: False,
            AuthToken.revoked_at: utcnow(),
            AuthToken.revoked_reason: reason,
        }
