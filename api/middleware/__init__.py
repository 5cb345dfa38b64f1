from .request_id import RequestIDMiddleware, bind_principal, get_request_id, get_client_ip, get_user_id
from .logging import LoggingMiddleware

__all__ = [
    "RequestIDMiddleware",
    "LoggingMiddleware",
    "bind_principal",
    "get_request_id",
    "get_client_ip",
    "get_user_id",
]
