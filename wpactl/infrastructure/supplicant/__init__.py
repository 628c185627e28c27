"""wpa_supplicant process, control interface and config file handling."""

from .config_file import ConfigMutator, minimal_config, parse_sections, render_sections
from .control import ControlClient, MockControlClient
from .daemon import LOG_PATTERNS, LogFilter, MockSupplicantSession, SupplicantSession, filter_lines

__all__ = [
    "LOG_PATTERNS",
    "ConfigMutator",
    "ControlClient",
    "LogFilter",
    "MockControlClient",
    "MockSupplicantSession",
    "SupplicantSession",
    "filter_lines",
    "minimal_config",
    "parse_sections",
    "render_sections",
]
