import os
import sys
import tempfile
import uuid
from datetime import timedelta
from pathlib import Path

# 日志文件写到临时目录，避免在仓库中生成 app.log
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "survey_auth_test.log"))

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app import create_app  # noqa: E402
from extensions import db  # noqa: E402
from models import AuthToken, TokenKind, User, utcnow  # noqa: E402
from scheduler import shutdown_scheduler  # noqa: E402
from service import get_session_manager  # noqa: E402


@pytest.fixture
def app(tmp_path):
    # 使用文件数据库，多线程测试中各连接能看到同一份数据
    app = create_app("testing", SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'test.db'}")
    yield app
    shutdown_scheduler()
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def manager(app_ctx):
    return get_session_manager()


@pytest.fixture
def make_user(app_ctx):
    """创建用户，默认最近登录过"""
    def _make_user(email=None, role="user", password="secret123", is_active=True,
                   last_login_days_ago=0):
        user = User(
            name="Test User",
            email=email or f"{uuid.uuid4().hex[:8]}@example.com",
            role=role,
            is_active=is_active,
        )
        user.set_password(password)
        user.last_login = None if last_login_days_ago is None else utcnow() - timedelta(days=last_login_days_ago)
        db.session.add(user)
        db.session.commit()
        return user
    return _make_user


@pytest.fixture
def make_token(app_ctx):
    """直接写入令牌记录，用于构造清理场景"""
    def _make_token(owner, kind=TokenKind.ACCESS, expires_in=timedelta(hours=1), is_active=True,
                    revoked_days_ago=None, usage_count=0):
        record = AuthToken(
            owner_id=owner.id,
            kind=kind,
            digest=uuid.uuid4().hex + uuid.uuid4().hex,
            truncated_value="xxxxxxxxxx",
            expires_at=utcnow() + expires_in,
            is_active=is_active,
            usage_count=usage_count,
        )
        if not is_active:
            record.revoked_at = utcnow() - timedelta(days=revoked_days_ago or 0)
            record.revoked_reason = "manual"
        db.session.add(record)
        db.session.commit()
        return record
    return _make_token


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}
