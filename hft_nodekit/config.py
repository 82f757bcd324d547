"""Unified configuration system for HFT-NodeKit."""

import logging
import os
import sys
from pathlib import Path
from typing import Dict, Any, Optional, List, Union

# Handle different Python versions for TOML support
if sys.version_info >= (3, 11):
    import tomllib as tomli
else:
    import tomli
import tomli_w

from hft_nodekit.toolkit.core.errors import ConfigError

logger = logging.getLogger(__name__)

PACKAGE_DEFAULTS = Path(__file__).parent / "config.default.toml"


class Config:
    """Unified configuration manager for all NodeKit components."""

    def __init__(self, custom_config_path: Optional[str] = None, load_user_files: bool = True):
        """Initialize configuration with unified loading strategy.

        Args:
            custom_config_path: Path to a custom config file (highest priority)
            load_user_files: Also read the project-local and ~/.config files
        """
        self.config_data = {}

        # Define config file paths in order of priority
        self.config_paths = self._get_config_paths(custom_config_path, load_user_files)

        # Load configuration, starting with defaults and overriding
        self._load_configuration()

    def _get_config_paths(self, custom_path: Optional[str] = None, load_user_files: bool = True) -> List[Path]:
        """Get configuration file paths in priority order.

        Returns:
            List of config paths in priority order (highest priority first)
        """
        paths = []

        # 1. Custom path (if provided) - highest priority
        if custom_path:
            path = Path(custom_path).expanduser()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            paths.append(path)

        if load_user_files:
            # 2. Project root local config (for development)
            project_root = Path(__file__).parent.parent
            paths.append(project_root / "config.local.toml")

            # 3. User config in ~/.config (for user customization)
            paths.append(Path.home() / ".config" / "hft-nodekit" / "config.toml")

        # 4. Package defaults (baseline values)
        paths.append(PACKAGE_DEFAULTS)

        return paths

    def _load_configuration(self):
        """Load configuration from all paths, with priority override."""
        config = {}

        # Reverse the paths list to load from lowest to highest priority
        for path in reversed(self.config_paths):
            if path.exists():
                try:
                    with open(path, "rb") as f:
                        new_config = tomli.load(f)
                except (OSError, tomli.TOMLDecodeError) as e:
                    raise ConfigError(f"Error reading config file {path}: {e}") from e
                self._deep_merge(config, new_config)
                logger.debug(f"Loaded configuration layer {path}")

        self.config_data = config

    def _deep_merge(self, target: Dict[str, Any], source: Dict[str, Any]):
        """Deep merge source dict into target dict."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._deep_merge(target[key], value)
            else:
                target[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value by key.

        Args:
            key: The key to retrieve, can use dot notation for nested keys
            default: Default value if key doesn't exist

        Returns:
            The configuration value or default
        """
        keys = key.split('.')
        result = self.config_data

        for k in keys:
            if isinstance(result, dict) and k in result:
                result = result[k]
            else:
                return default

        return result

    def require(self, key: str) -> Any:
        """Like get(), but a missing or empty value is a ConfigError."""
        value = self.get(key)
        if value is None or value == "":
            raise ConfigError(f"Configuration missing: {key}")
        return value

    def set(self, key: str, value: Any, save_path: Optional[Path] = None) -> bool:
        """Set a configuration value and optionally save to file.

        Args:
            key: The key to set, can use dot notation for nested keys
            value: The value to set
            save_path: Path to save updated config

        Returns:
            True if successful, False otherwise
        """
        keys = key.split('.')
        config = self.config_data

        for k in keys[:-1]:
            if k not in config or not isinstance(config[k], dict):
                config[k] = {}
            config = config[k]

        config[keys[-1]] = value

        if save_path:
            return self.save(save_path)

        return True

    def save(self, path: Optional[Union[str, Path]] = None) -> bool:
        """Save the current configuration to a file.

        Args:
            path: Path to save the config (default: first configured path)

        Returns:
            True if successful, False otherwise
        """
        save_path = Path(path) if path else self.config_paths[0]

        try:
            save_path.parent.mkdir(parents=True, exist_ok=True)
            with open(save_path, "wb") as f:
                tomli_w.dump(self.config_data, f)
            return True
        except OSError as e:
            logger.error(f"Error saving configuration to {save_path}: {e}")
            return False

    # Typed helpers used by the control plane

    def get_registry_path(self) -> str:
        """Get the SQLite registry location."""
        return os.path.expanduser(self.require("registry.path"))

    def get_timeouts(self) -> Dict[str, float]:
        """Get per-operation transport timeouts in seconds."""
        return {k: float(v) for k, v in self.get("timeouts", {}).items()}

    def get_http_settings(self) -> Dict[str, Any]:
        """Get scheme and port of the remote control endpoint."""
        return {
            "scheme": self.get("http.scheme", "http"),
            "port": int(self.get("http.port", 80)),
        }

    def get_ssh_settings(self) -> Dict[str, Any]:
        """Get remote-shell connection settings."""
        ssh = dict(self.get("ssh", {}))
        if ssh.get("key_path"):
            ssh["key_path"] = os.path.expanduser(ssh["key_path"])
        ssh["port"] = int(ssh.get("port", 22))
        ssh["connect_timeout"] = int(ssh.get("connect_timeout", 10))
        return ssh

    def get_env_bundle(self) -> Dict[str, str]:
        """Get the environment bundle written before every start/restart."""
        return {str(k): str(v) for k, v in self.get("env", {}).items()}

    def get_manifest(self):
        """Build the deployment manifest describing the remote layout."""
        from hft_nodekit.toolkit.core.manifest import DeploymentManifest
        return DeploymentManifest.from_config(self.get("manifest", {}), self.get_env_bundle())

    def get_settle_delay(self) -> float:
        """Get the settle delay before the binding verification pass."""
        return float(self.get("verification.settle_delay", 10))

    def get_drain_delay(self) -> float:
        """Get the grace wait between stopping the old primary and starting the new one."""
        return float(self.get("failover.drain_delay", 3))

    def get_lease_ttl(self) -> float:
        """Get how long a per-node lease survives a crashed holder."""
        return float(self.get("failover.lease_ttl", 600))

    def get_allowlist_settings(self) -> Dict[str, Any]:
        """Get the allow-list webhook settings."""
        return dict(self.get("allowlist", {}))

    def get_monitor_settings(self) -> Dict[str, Any]:
        """Get health monitor thresholds."""
        return {
            "failure_threshold": int(self.get("monitor.failure_threshold", 3)),
            "auto_failover": bool(self.get("monitor.auto_failover", False)),
            "interval": float(self.get("monitor.interval", 30)),
            "latency_warning_ms": float(self.get("monitor.latency_warning_ms", 300)),
        }


# Global configuration instance
_config_instance = None

def get_config(custom_path=None):
    """Get the config instance, creating it if necessary."""
    global _config_instance
    if _config_instance is None or custom_path:
        _config_instance = Config(custom_path)
    return _config_instance
