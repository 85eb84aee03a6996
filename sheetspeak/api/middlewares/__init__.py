from sheetspeak.api.middlewares.request_context import RequestContextMiddleware
from sheetspeak.api.middlewares.throttle import ThrottleMiddleware

__all__ = ["RequestContextMiddleware", "ThrottleMiddleware"]
