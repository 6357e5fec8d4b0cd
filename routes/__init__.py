"""路由模块"""
from .auth import auth_bp
from .admin import admin_bp

__all__ = ['auth_bp', 'admin_bp']
