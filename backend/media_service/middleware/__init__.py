from media_service.middleware.request_log import RequestLoggingMiddleware

__all__ = ["RequestLoggingMiddleware"]
