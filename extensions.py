"""Flask扩展初始化"""
from flask_sqlalchemy import SQLAlchemy
import logging
import os

# 初始化数据库
db = SQLAlchemy()

# 配置日志
def setup_logging():
    """配置应用日志"""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(os.getenv('LOG_FILE', 'app.log'), encoding='utf-8'),
            logging.StreamHandler()
        ]
    )
    logging.getLogger().setLevel(os.getenv('LOG_LEVEL', 'INFO').upper())
    # APScheduler每次执行任务都会输出INFO日志，调低其级别
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
    return logging.getLogger('survey_auth')

logger = setup_logging()
