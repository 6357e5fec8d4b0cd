"""令牌记录模型"""
from extensions import db
from models.user import utcnow


class TokenKind:
    """令牌类型"""
    ACCESS = 'access'
    PASSWORD_RESET = 'password_reset'
    EMAIL_VERIFICATION = 'email_verification'

    ALL = (ACCESS, PASSWORD_RESET, EMAIL_VERIFICATION)
    SPECIAL = (PASSWORD_RESET, EMAIL_VERIFICATION)


class RevokeReason:
    """撤销原因"""
    LOGOUT = 'logout'
    LOGOUT_ALL = 'logout_all'
    PASSWORD_CHANGE = 'password_change'
    SECURITY = 'security'
    EXPIRED = 'expired'
    MANUAL = 'manual'
    SUPERSEDED = 'superseded'

    ALL = (LOGOUT, LOGOUT_ALL, PASSWORD_CHANGE, SECURITY, EXPIRED, MANUAL, SUPERSEDED)


class AuthToken(db.Model):
    """令牌记录 - 保存已签发令牌的摘要，用于服务端验证、撤销和审计"""
    __tablename__ = 'auth_token'
    __table_args__ = (
        db.Index('ix_auth_token_owner_kind_active', 'owner_id', 'kind', 'is_active'),
    )

    id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    kind = db.Column(db.String(32), nullable=False, default=TokenKind.ACCESS)
    digest = db.Column(db.String(64), unique=True, nullable=False, index=True)  # 令牌的SHA-256摘要
    truncated_value = db.Column(db.String(16), nullable=False)  # 令牌末尾几位，仅用于排查问题
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_used_at = db.Column(db.DateTime, nullable=True)
    usage_count = db.Column(db.Integer, nullable=False, default=0)
    ip_address = db.Column(db.String(50), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    device_label = db.Column(db.String(200), nullable=True)
    revoked_at = db.Column(db.DateTime, nullable=True)
    revoked_reason = db.Column(db.String(32), nullable=True)

    # 关联用户
    owner = db.relationship('User', backref=db.backref('tokens', lazy='dynamic'))

    def to_dict(self):
        """会话列表展示用，不包含摘要"""
        return {
            'id': self.id,
            'kind': self.kind,
            'token_suffix': self.truncated_value,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None,
            'usage_count': self.usage_count,
            'ip_address': self.ip_address,
            'user_agent': self.user_agent,
            'device_label': self.device_label,
        }

    def __repr__(self):
        return f'<AuthToken id={self.id} owner_id={self.owner_id} kind={self.kind} active={self.is_active}>'
