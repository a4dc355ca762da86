from gatebot.middlewares.db_middleware import DatabaseMiddleware
from gatebot.middlewares.auth_middleware import AdminMiddleware, IsAdmin
from gatebot.middlewares.rate_limit_middleware import RateLimitMiddleware
from gatebot.middlewares.access_middleware import AccessMiddleware

__all__ = ["DatabaseMiddleware", "AdminMiddleware", "IsAdmin", "RateLimitMiddleware", "AccessMiddleware"]
