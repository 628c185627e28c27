from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator

DEFAULT_LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

INTERFACE_ENV_VAR = "WIFI_INTERFACE"
CONFIG_ENV_VAR = "WPACTL_CONFIG"
DEFAULT_CONFIG_PATHS = (Path("/etc/wpactl/wpactl.yml"), Path("configs/wpactl.yml"))


class InterfaceConfig(BaseModel):
    name: str = Field("wlan0")

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not value or len(value) > 15 or any(c.isspace() or c == "/" for c in value):
            raise ValueError(f"invalid interface name: {value!r}")
        return value


class SupplicantConfig(BaseModel):
    binary: str = Field("wpa_supplicant")
    cli_binary: str = Field("wpa_cli")
    config_path: Path = Field(Path("/etc/wpa_supplicant/wpa_supplicant.conf"))
    ctrl_interface: str = Field("/var/run/wpa_supplicant")
    log_dir: Path = Field(Path("/tmp"))
    debug_level: int = Field(2, ge=1, le=4)
    settle_secs: float = Field(1.0, ge=0.0, le=30.0)
    restart_delay_secs: float = Field(1.0, ge=0.0, le=30.0)
    stop_grace_secs: float = Field(3.0, gt=0.0, le=60.0)
    stop_system_service: bool = Field(True)
    use_sudo: bool = Field(False)

    @field_validator("config_path", "log_dir")
    @classmethod
    def _expand(cls, value: Path) -> Path:
        return value.expanduser()


class DhcpConfig(BaseModel):
    binary: str = Field("dhclient")
    configure_dns: bool = Field(True)
    stop_grace_secs: float = Field(3.0, gt=0.0, le=60.0)


class TimeoutsConfig(BaseModel):
    command_secs: float = Field(10.0, gt=0.0, le=120.0)
    scan_settle_secs: float = Field(3.0, ge=0.0, le=30.0)
    scan_retries: int = Field(1, ge=0, le=5)
    state_wait_secs: float = Field(15.0, gt=0.0, le=300.0)
    hs20_state_wait_secs: float = Field(45.0, gt=0.0, le=600.0)
    poll_interval_secs: float = Field(0.5, gt=0.0, le=10.0)
    lease_wait_secs: float = Field(8.0, gt=0.0, le=120.0)

    @field_validator("poll_interval_secs")
    @classmethod
    def _validate_poll_interval(cls, value: float, info: ValidationInfo) -> float:
        state_wait = info.data.get("state_wait_secs")
        if state_wait is not None and value > state_wait:
            raise ValueError("poll_interval_secs must be <= state_wait_secs")
        return value


class CredentialsConfig(BaseModel):
    base_dir: Path = Field(Path("~/.config/wpactl/credentials"))

    @field_validator("base_dir")
    @classmethod
    def _expand_base_dir(cls, value: Path) -> Path:
        return value.expanduser()


class LoggingConfig(BaseModel):
    level: str = Field("INFO")
    format: str = Field(DEFAULT_LOG_FORMAT)
    file: Path | None = Field(None)

    @field_validator("level")
    @classmethod
    def _validate_level(cls, value: str) -> str:
        level = value.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"invalid log level: {value}")
        return level

    @field_validator("file")
    @classmethod
    def _expand_file(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None


class WpactlConfig(BaseModel):
    interface: InterfaceConfig = Field(default_factory=InterfaceConfig)
    supplicant: SupplicantConfig = Field(default_factory=SupplicantConfig)
    dhcp: DhcpConfig = Field(default_factory=DhcpConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    mock_mode: bool = Field(False)

    def supplicant_log_path(self, interface: str | None = None) -> Path:
        return self.supplicant.log_dir / f"wpa_supplicant_{interface or self.interface.name}.log"


def _apply_env_defaults(raw: dict) -> dict:
    # WIFI_INTERFACE only fills the name when the file leaves it unset
    env_iface = os.environ.get(INTERFACE_ENV_VAR)
    if env_iface:
        iface = raw.get("interface") or {}
        if not iface.get("name"):
            iface["name"] = env_iface
        raw["interface"] = iface
    return raw


def load_config(path: Path) -> WpactlConfig:
    with Path(path).expanduser().open("r", encoding="utf-8") as fp:
        raw = yaml.safe_load(fp) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    try:
        return WpactlConfig.model_validate(_apply_env_defaults(raw))
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


def default_config() -> WpactlConfig:
    """Built-in defaults, still honouring WIFI_INTERFACE."""
    return WpactlConfig.model_validate(_apply_env_defaults({}))


def resolve_config_path(cli_path: Path | None) -> Path:
    """Resolve config path by priority: CLI, env, /etc/wpactl, repo configs."""
    candidates: list[Path] = []
    if cli_path:
        p = Path(cli_path).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        p = Path(env).expanduser()
        if p.exists():
            return p.resolve()
        candidates.append(p)
    for p in DEFAULT_CONFIG_PATHS:
        if p.exists():
            return p.resolve()
        candidates.append(p)
    # Fallback to first candidate even if not exists to surface errors consistently
    return candidates[0] if candidates else Path("configs/wpactl.yml").resolve()


def configure_logging(cfg: LoggingConfig, verbose: bool = False) -> None:
    """Install the root log handlers once per process."""
    level = logging.DEBUG if verbose else getattr(logging, cfg.level)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if cfg.file is not None:
        cfg.file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(cfg.file, encoding="utf-8"))
    logging.basicConfig(
        level=level,
        format=cfg.format,
        datefmt=DEFAULT_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
