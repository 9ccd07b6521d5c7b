"""API Routes Module"""
from .routes import include_routers, health_router, auth_router, admin_router

__all__ = ['include_routers', 'health_router', 'auth_router', 'admin_router']
