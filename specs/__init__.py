from .config import AttentionConfig, trace_enabled

__all__ = [
    "AttentionConfig",
    "trace_enabled",
]
