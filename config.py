"""应用配置"""
import os
from dotenv import load_dotenv

# 加载环境变量
load_dotenv()


def _env_int(name, default):
    return int(os.getenv(name, default))


class Config:
    """基础配置"""
    # Flask配置
    SECRET_KEY = os.getenv('SECRET_KEY', 'change-me')

    # JWT配置
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', SECRET_KEY)  # JWT密钥，默认使用SECRET_KEY
    JWT_ALGORITHM = 'HS256'
    ACCESS_TOKEN_EXPIRY = os.getenv('ACCESS_TOKEN_EXPIRY', '1h')
    PASSWORD_RESET_EXPIRY = os.getenv('PASSWORD_RESET_EXPIRY', '15m')
    EMAIL_VERIFICATION_EXPIRY = os.getenv('EMAIL_VERIFICATION_EXPIRY', '1h')

    # 是否在响应中返回重置密码/邮箱验证令牌（仅用于开发和测试，生产环境应通过邮件发送）
    EXPOSE_SPECIAL_TOKENS = False

    # 数据库配置
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URL', 'sqlite:///data.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    STORE_TIMEOUT = _env_int('STORE_TIMEOUT', 5)  # 数据库操作超时（秒）

    # 服务器配置
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = _env_int("PORT", 5000)
    THREADS = _env_int("THREADS", 4)

    # 令牌清理配置
    SCHEDULER_ENABLED = os.getenv('SCHEDULER_ENABLED', 'true').lower() == 'true'
    CLEANUP_JOB_TIMEOUT = _env_int('CLEANUP_JOB_TIMEOUT', 300)  # 单个清理任务最长执行时间（秒）
    REVOKED_TOKEN_RETENTION = os.getenv('REVOKED_TOKEN_RETENTION', '7d')
    INACTIVE_SESSION_THRESHOLD = os.getenv('INACTIVE_SESSION_THRESHOLD', '30d')
    TOKEN_USAGE_LIMITS = {
        'access': _env_int('ACCESS_TOKEN_MAX_USES', 1000),
        'password_reset': _env_int('SPECIAL_TOKEN_MAX_USES', 100),
        'email_verification': _env_int('SPECIAL_TOKEN_MAX_USES', 100),
    }

    # 清理任务的cron表达式（UTC）
    CLEANUP_ACCESS_CRON = os.getenv('CLEANUP_ACCESS_CRON', '0 * * * *')          # 每小时
    CLEANUP_SPECIAL_CRON = os.getenv('CLEANUP_SPECIAL_CRON', '0 0 * * *')        # 每天
    CLEANUP_REVOKED_CRON = os.getenv('CLEANUP_REVOKED_CRON', '0 */12 * * *')     # 每12小时
    CLEANUP_INACTIVE_CRON = os.getenv('CLEANUP_INACTIVE_CRON', '0 */6 * * *')    # 每6小时
    CLEANUP_OVERUSED_CRON = os.getenv('CLEANUP_OVERUSED_CRON', '30 0 * * *')     # 每天00:30
    CLEANUP_COMPREHENSIVE_CRON = os.getenv('CLEANUP_COMPREHENSIVE_CRON', '0 2 * * sun')  # 每周日02:00

    # 所有时间字段应使用 UTC 时间


class DevelopmentConfig(Config):
    """开发环境配置"""
    DEBUG = True
    EXPOSE_SPECIAL_TOKENS = True


class ProductionConfig(Config):
    """生产环境配置"""
    DEBUG = False


class TestingConfig(Config):
    """测试环境配置"""
    TESTING = True
    SECRET_KEY = 'test-secret-key'
    JWT_SECRET_KEY = 'test-jwt-secret-key-for-testing-only'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    EXPOSE_SPECIAL_TOKENS = True
    SCHEDULER_ENABLED = False
    CLEANUP_JOB_TIMEOUT = 10


# 配置字典
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
