from clubhouse.hooks.entries import is_clubhouse_hook_entry, strip_clubhouse_hooks
from clubhouse.pipeline.snapshots import (
    ConfigPipeline,
    ConfigSnapshot,
    get_hooks_config_path,
    is_disposable,
)

__all__ = [
    "ConfigPipeline",
    "ConfigSnapshot",
    "get_hooks_config_path",
    "is_clubhouse_hook_entry",
    "is_disposable",
    "strip_clubhouse_hooks",
]
