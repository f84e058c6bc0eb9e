from .env import get_runtime_environment
from .logger import get_logger, init_logger, trace_method

__all__ = ["get_logger", "init_logger", "trace_method", "get_runtime_environment"]
