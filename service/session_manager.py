"""会话令牌管理：签发、验证、撤销"""
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from extensions import logger
from models import AuthToken, RevokeReason, TokenKind, User
from service.token_store import TokenStore
from utils.exceptions import OwnerInactiveError, TokenRevokedError, WrongTokenKindError
from utils.token_codec import TokenCodec, hash_token, parse_duration

# 数据库中保留的令牌末尾字符数，仅用于排查问题
TRUNCATED_LENGTH = 10


@dataclass
class IssuedToken:
    """签发结果"""
    token: str
    token_id: int
    expires_at: datetime
    expires_in: int


@dataclass
class VerifiedToken:
    """验证结果"""
    claims: dict
    token_id: int
    user: Optional[dict] = field(default=None)

    @property
    def user_id(self):
        return int(self.claims['user_id'])


class SessionManager:
    """
    会话管理器

    先由 TokenCodec 校验签名和过期时间，再到 TokenStore 中确认记录未被撤销，
    因此签名有效、尚未过期的令牌仍然可以被服务端撤销。
    """

    def __init__(self, codec: TokenCodec, store: TokenStore, access_expiry='1h',
                 password_reset_expiry='15m', email_verification_expiry='1h'):
        self.codec = codec
        self.store = store
        self.expiry = {
            TokenKind.ACCESS: parse_duration(access_expiry),
            TokenKind.PASSWORD_RESET: parse_duration(password_reset_expiry),
            TokenKind.EMAIL_VERIFICATION: parse_duration(email_verification_expiry),
        }

    @classmethod
    def from_config(cls, config):
        """根据Flask配置创建实例"""
        return cls(
            codec=TokenCodec(config['JWT_SECRET_KEY'], config.get('JWT_ALGORITHM', 'HS256')),
            store=TokenStore(),
            access_expiry=config.get('ACCESS_TOKEN_EXPIRY', '1h'),
            password_reset_expiry=config.get('PASSWORD_RESET_EXPIRY', '15m'),
            email_verification_expiry=config.get('EMAIL_VERIFICATION_EXPIRY', '1h'),
        )

    def issue_access_token(self, user_id, email, role, ip_address=None,
                           user_agent=None, device_label=None) -> IssuedToken:
        """
        签发访问令牌并保存到数据库

        Args:
            user_id: 用户ID
            email: 用户邮箱
            role: 用户角色
            ip_address: IP地址（可选）
            user_agent: 用户代理（可选）
            device_label: 设备描述（可选）

        Returns:
            IssuedToken: 令牌及其过期时间
        """
        claims = {'user_id': user_id, 'email': email, 'role': role}
        issued = self._issue(claims, TokenKind.ACCESS, ip_address=ip_address,
                             user_agent=user_agent, device_label=device_label)
        logger.info(f'为用户 {email} (ID: {user_id}) 签发访问令牌，token_id={issued.token_id}')
        return issued

    def issue_special_token(self, user_id, email, kind) -> IssuedToken:
        """
        签发重置密码或邮箱验证令牌，同时作废该用户同类型的旧令牌

        Args:
            user_id: 用户ID
            email: 用户邮箱
            kind: password_reset 或 email_verification
        """
        if kind not in TokenKind.SPECIAL:
            raise ValueError(f'不支持的令牌类型: {kind}')
        issued = self._issue({'user_id': user_id, 'email': email}, kind)
        logger.info(f'为用户 {email} (ID: {user_id}) 签发 {kind} 令牌，token_id={issued.token_id}')

        # 先保存再作废ID更小的旧令牌，并发签发时只有最新的一个保持有效
        superseded = self.store.supersede_owner_kind(
            user_id, kind, RevokeReason.SUPERSEDED, before_id=issued.token_id
        )
        if superseded:
            logger.info(f'用户 {user_id} 的 {superseded} 个旧 {kind} 令牌已作废')
        return issued

    def issue_password_reset_token(self, user_id, email) -> IssuedToken:
        return self.issue_special_token(user_id, email, TokenKind.PASSWORD_RESET)

    def issue_email_verification_token(self, user_id, email) -> IssuedToken:
        return self.issue_special_token(user_id, email, TokenKind.EMAIL_VERIFICATION)

    def verify_access_token(self, token) -> VerifiedToken:
        """
        验证访问令牌（签名 + 数据库记录 + 用户状态）

        Raises:
            TokenExpiredError: 令牌已过期
            MalformedTokenError: 令牌无效
            WrongTokenKindError: 不是访问令牌
            TokenRevokedError: 令牌已被撤销或不在数据库中
            OwnerInactiveError: 用户不存在或已停用
            StoreUnavailableError: 数据库不可用
        """
        claims = self.codec.verify(token)
        if claims.get('type') != TokenKind.ACCESS:
            logger.warning(f'令牌验证失败：令牌类型为 {claims.get("type")}，user_id={claims.get("user_id")}')
            raise WrongTokenKindError('令牌类型不正确')

        record = self.store.find_active_by_digest(hash_token(token))
        if record is None:
            logger.warning(f'令牌验证失败：令牌已撤销或不在数据库中，user_id={claims.get("user_id")}')
            raise TokenRevokedError('令牌已失效')

        # touch_usage 提交后 record 会过期，之后不能再读取它的属性
        token_id, owner_id = record.id, record.owner_id

        # 条件更新：记录在查询之后被撤销时这里会返回False
        if not self.store.touch_usage(token_id):
            logger.warning(f'令牌验证失败：令牌在验证过程中被撤销，token_id={token_id}')
            raise TokenRevokedError('令牌已失效')

        user = self._load_active_owner(owner_id)
        return VerifiedToken(claims=claims, token_id=token_id, user=user.to_dict())

    def verify_special_token(self, token, expected_kind) -> VerifiedToken:
        """
        验证重置密码/邮箱验证令牌，不更新使用次数

        令牌使用后应由调用方立即撤销（见 consume_special_token）。
        """
        claims = self.codec.verify(token)
        if claims.get('type') != expected_kind:
            logger.warning(f'令牌验证失败：期望 {expected_kind}，实际为 {claims.get("type")}')
            raise WrongTokenKindError(f'令牌类型不正确，需要 {expected_kind}')

        record = self.store.find_active_by_digest(hash_token(token))
        if record is None or record.kind != expected_kind:
            logger.warning(f'{expected_kind} 令牌验证失败：令牌已失效，user_id={claims.get("user_id")}')
            raise TokenRevokedError('令牌已失效')

        user = self._load_active_owner(record.owner_id)
        return VerifiedToken(claims=claims, token_id=record.id, user=user.to_dict())

    def consume_special_token(self, token, expected_kind) -> VerifiedToken:
        """验证一次性令牌并立即撤销；并发使用同一令牌时只有一个请求会成功"""
        verified = self.verify_special_token(token, expected_kind)
        if not self.store.revoke(verified.token_id, RevokeReason.MANUAL):
            raise TokenRevokedError('令牌已失效')
        return verified

    def revoke_token(self, token, reason=RevokeReason.MANUAL) -> bool:
        """
        撤销令牌（用于登出）

        Returns:
            bool: 是否撤销成功，令牌不存在或已撤销时返回False
        """
        record = self.store.find_by_digest(hash_token(token))
        if record is None:
            return False
        revoked = self.store.revoke(record.id, reason)
        if revoked:
            logger.info(f'令牌已撤销，token_id={record.id}, user_id={record.owner_id}, 原因: {reason}')
        return revoked

    def revoke_all_for_owner(self, user_id, reason=RevokeReason.MANUAL) -> int:
        """撤销用户的所有令牌（修改密码、退出所有设备）"""
        count = self.store.revoke_all_for_owner(user_id, reason)
        logger.info(f'已撤销用户 {user_id} 的所有令牌，共 {count} 个，原因: {reason}')
        return count

    def list_sessions(self, user_id):
        """列出用户当前登录的设备"""
        return [record.to_dict() for record in self.store.list_active_for_owner(user_id, TokenKind.ACCESS)]

    def _issue(self, claims, kind, **provenance) -> IssuedToken:
        lifetime: timedelta = self.expiry[kind]
        issued_at = int(time.time())
        token = self.codec.issue(dict(claims, type=kind, iat=issued_at), lifetime)

        # 记录的过期时间与令牌中的exp一致
        expires_at = datetime.fromtimestamp(issued_at, tz=timezone.utc) + lifetime
        record = AuthToken(
            owner_id=claims['user_id'], # type: ignore
            kind=kind, # type: ignore
            digest=hash_token(token), # type: ignore
            truncated_value=token[-TRUNCATED_LENGTH:], # type: ignore
            expires_at=expires_at.replace(tzinfo=None), # type: ignore
            **provenance
        )
        self.store.insert(record)
        return IssuedToken(
            token=token,
            token_id=record.id,
            expires_at=expires_at,
            expires_in=int(lifetime.total_seconds()),
        )

    def _load_active_owner(self, owner_id) -> User:
        # 每次验证都重新检查用户状态，停用用户的令牌立即失效
        user = self.store.get_owner(owner_id)
        if not user or not user.is_active:
            logger.warning(f'令牌验证失败：用户不存在或已停用，user_id={owner_id}')
            raise OwnerInactiveError('用户不存在或已停用')
        return user


# 全局会话管理器实例
_session_manager: Optional[SessionManager] = None


def init_session_manager(app) -> SessionManager:
    """根据应用配置初始化会话管理器"""
    global _session_manager
    _session_manager = SessionManager.from_config(app.config)
    return _session_manager


def get_session_manager() -> SessionManager:
    """获取会话管理器实例"""
    if _session_manager is None:
        raise RuntimeError("Session manager has not been initialized.")
    return _session_manager
