"""Instance bootstrap: user-data rendering and completion polling."""

from mint.bootstrap.poller import BootstrapPoller, PollConfig
from mint.bootstrap.stub import MAX_USER_DATA_BYTES, render_stub, script_url, verify_digest

__all__ = [
    "MAX_USER_DATA_BYTES",
    "BootstrapPoller",
    "PollConfig",
    "render_stub",
    "script_url",
    "verify_digest",
]
