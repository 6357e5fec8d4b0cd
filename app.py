"""应用入口"""
import atexit
import os
from flask import Flask
from waitress import serve
from config import config
from extensions import db, logger
from models import User
from routes import auth_bp, admin_bp
from scheduler import init_scheduler, shutdown_scheduler
from service import init_session_manager
from utils import generate_random_password
from utils.error_handlers import register_error_handlers


def _engine_options(app_config):
    """数据库连接参数：限制等待连接和锁的时间，超时后按存储不可用处理"""
    uri = app_config['SQLALCHEMY_DATABASE_URI']
    timeout = app_config.get('STORE_TIMEOUT', 5)
    if uri.startswith('sqlite'):
        options = {'connect_args': {'timeout': timeout, 'check_same_thread': False}}
        if uri in ('sqlite://', 'sqlite:///:memory:'):
            return options
        options['pool_timeout'] = timeout
        return options
    options = {'pool_timeout': timeout, 'pool_pre_ping': True}
    if uri.startswith('postgresql'):
        options['connect_args'] = {
            'connect_timeout': timeout,
            'options': f'-c statement_timeout={timeout * 1000}',
        }
    return options


def create_app(config_name=None, **overrides) -> Flask:
    """
    创建Flask应用

    Args:
        config_name: 配置名称（development/production/testing），默认读取 FLASK_CONFIG
        overrides: 覆盖的配置项
    """
    app = Flask(__name__)
    app.config.from_object(config[config_name or os.getenv('FLASK_CONFIG', 'default')])
    app.config.update(overrides)
    if not app.config.get('JWT_SECRET_KEY'):
        raise RuntimeError('JWT_SECRET_KEY 未配置')
    app.config.setdefault('SQLALCHEMY_ENGINE_OPTIONS', _engine_options(app.config))

    db.init_app(app)
    register_error_handlers(app)
    app.register_blueprint(auth_bp)
    app.register_blueprint(admin_bp)

    with app.app_context():
        db.create_all()

    init_session_manager(app)
    init_scheduler(app)
    return app


def init_db(app: Flask):
    """初始化数据库，没有管理员账号时创建默认管理员"""
    with app.app_context():
        db.create_all()

        # 检查是否已存在管理员账号
        if User.query.filter_by(role='admin').count() > 0:
            return

        admin_email = os.getenv('ADMIN_EMAIL', 'admin@system.local').lower()
        admin_password = os.getenv('ADMIN_PASSWORD') or generate_random_password(16)
        admin = User(name='admin', email=admin_email, role='admin') # type: ignore
        admin.set_password(admin_password)
        admin.update_last_login()
        db.session.add(admin)
        db.session.commit()

        # 记录到日志
        logger.info('='*60)
        logger.info('数据库初始化成功！')
        logger.info('默认管理员账号已创建：')
        logger.info(f'  邮箱: {admin_email}')
        if not os.getenv('ADMIN_PASSWORD'):
            logger.info(f'  密码: {admin_password}')
        logger.info('请妥善保管此密码，建议登录后立即修改！')
        logger.info('='*60)


if __name__ == '__main__':
    app = create_app()
    init_db(app)
    atexit.register(shutdown_scheduler)

    # 使用 Waitress WSGI 服务器（支持 Windows 和 Linux）
    logger.info("启动 Waitress WSGI 服务器...")
    logger.info(f"访问地址: http://{app.config['HOST']}:{app.config['PORT']}")
    serve(app, host=app.config['HOST'], port=app.config['PORT'], threads=app.config['THREADS'])
