from thcplus.middleware.age_gate import AgeGateMiddleware
from thcplus.middleware.request_log import RequestLoggingMiddleware
from thcplus.middleware.security import SecurityHeadersMiddleware

__all__ = ["AgeGateMiddleware", "RequestLoggingMiddleware", "SecurityHeadersMiddleware"]
