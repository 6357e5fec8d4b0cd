"""用户模型"""
from datetime import datetime, timezone
from werkzeug.security import generate_password_hash, check_password_hash
from extensions import db


def utcnow():
    """当前UTC时间（不带时区信息，与数据库中保存的格式一致）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(db.Model):
    """用户数据模型"""
    ROLES = ('admin', 'user', 'brand')

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default='user')
    is_active = db.Column(db.Boolean, nullable=False, default=True)  # 停用后其所有令牌立即失效
    is_email_verified = db.Column(db.Boolean, nullable=False, default=False)
    last_login = db.Column(db.DateTime, nullable=True)  # 用于清理长期不活跃用户的会话
    created_at = db.Column(db.DateTime, default=utcnow)
    # 品牌账号字段
    company_name = db.Column(db.String(200), nullable=True)

    def set_password(self, password):
        """设置密码"""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """验证密码"""
        return check_password_hash(self.password_hash, password)

    def update_last_login(self):
        """记录登录时间"""
        self.last_login = utcnow()

    def to_dict(self):
        """转换为字典格式（不包含密码）"""
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'is_active': self.is_active,
            'is_email_verified': self.is_email_verified,
            'last_login': self.last_login.isoformat() if self.last_login else None,
            'company_name': self.company_name,
        }

    def __repr__(self):
        return f'<User {self.email}>'
