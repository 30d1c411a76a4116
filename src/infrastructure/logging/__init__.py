from .config import build_logging_config, configure_logging
from .context import (
    clear_context,
    get_context,
    new_sweep_id,
    set_context,
    use_context,
)

__all__ = [
    "build_logging_config",
    "configure_logging",
    "clear_context",
    "get_context",
    "new_sweep_id",
    "set_context",
    "use_context",
]
