"""
Feature Flags & Kill Switches
Runtime tuning of the read-model engine with environment overrides and kill switches
"""
from typing import Dict, Any
import logging
import os
from datetime import datetime

logger = logging.getLogger(__name__)


class FeatureFlagsManager:
    """Manages feature flags and kill switches for the read-model engine"""

    ENV_PREFIX = "FLAG_"

    def __init__(self):
        # Default global feature flags
        self.default_flags = {
            # Resolution pipeline
            "read_model.concurrent_fetch": True,
            "read_model.fetch_timeout_seconds": 5.0,
            "read_model.resolver_concurrency": 8,
            "read_model.model_index_enabled": True,
            "read_model.product_name_fallback": True,
            "read_model.display_names": True,
            "read_model.log_timings": True,

            # Primary record
            "read_model.primary_max_retries": 2,
            "read_model.primary_retry_base_delay": 0.2,

            # Catalog
            "catalog.require_listing_status": True,

            # Monitoring and observability
            "monitoring.metrics_collection": True,
        }

        self._flag_cache: Dict[str, Any] = self.default_flags.copy()
        self._apply_env_overrides()

        # Kill switch registry
        self.kill_switches = {
            "emergency.disable_name_resolution": False,
            "emergency.disable_concurrency": False,
        }

        # Flag change history
        self.change_history = []

    def get_flag(self, flag_key: str, default: Any = False) -> Any:
        """Get feature flag value, honoring kill switches"""
        try:
            if self._is_killed_by_emergency_switch(flag_key):
                return False
            return self._flag_cache.get(flag_key, default)
        except Exception as e:
            logger.warning(f"Error getting flag {flag_key}: {e}")
            return default

    def get_all_flags(self) -> Dict[str, Any]:
        all_flags = self._flag_cache.copy()
        for flag_key in all_flags:
            if self._is_killed_by_emergency_switch(flag_key):
                all_flags[flag_key] = False
        return all_flags

    def set_flag(self, flag_key: str, value: Any, updated_by: str = "system") -> bool:
        """Set feature flag value"""
        if not self._is_valid_flag_key(flag_key):
            logger.warning(f"Invalid flag key: {flag_key}")
            return False

        self._flag_cache[flag_key] = value
        self._record_flag_change(flag_key, value, updated_by)
        logger.info(f"Set flag {flag_key}={value} by {updated_by}")
        return True

    def reset(self) -> None:
        """Restore defaults and clear kill switches."""
        self._flag_cache = self.default_flags.copy()
        self._apply_env_overrides()
        for key in self.kill_switches:
            self.kill_switches[key] = False

    def activate_kill_switch(self, kill_switch: str, activated_by: str = "system") -> bool:
        """Activate emergency kill switch"""
        if kill_switch not in self.kill_switches:
            logger.warning(f"Unknown kill switch: {kill_switch}")
            return False

        self.kill_switches[kill_switch] = True
        logger.critical(f"KILL SWITCH ACTIVATED: {kill_switch} by {activated_by}")
        self._record_flag_change(kill_switch, True, activated_by)
        return True

    def deactivate_kill_switch(self, kill_switch: str, deactivated_by: str = "system") -> bool:
        """Deactivate emergency kill switch"""
        if kill_switch not in self.kill_switches:
            logger.warning(f"Unknown kill switch: {kill_switch}")
            return False

        self.kill_switches[kill_switch] = False
        logger.warning(f"Kill switch deactivated: {kill_switch} by {deactivated_by}")
        self._record_flag_change(kill_switch, False, deactivated_by)
        return True

    def get_flag_diagnostics(self) -> Dict[str, Any]:
        """Get diagnostics information about feature flags"""
        active_kill_switches = [k for k, v in self.kill_switches.items() if v]
        return {
            "flags": self.get_all_flags(),
            "kill_switches": {
                "total_switches": len(self.kill_switches),
                "active_switches": len(active_kill_switches),
                "active_switch_names": active_kill_switches,
            },
            "recent_changes": self.change_history[-10:] if self.change_history else [],
        }

    # Private helper methods

    def _apply_env_overrides(self):
        """FLAG_READ_MODEL__FETCH_TIMEOUT_SECONDS=2 overrides read_model.fetch_timeout_seconds"""
        for flag_key, default in self.default_flags.items():
            env_key = self.ENV_PREFIX + flag_key.upper().replace(".", "__")
            raw = os.getenv(env_key)
            if raw is None:
                continue
            try:
                self._flag_cache[flag_key] = self._coerce(raw, default)
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_key}: {raw!r}")

    @staticmethod
    def _coerce(raw: str, default: Any) -> Any:
        if isinstance(default, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(default, int):
            return int(raw)
        if isinstance(default, float):
            return float(raw)
        return raw

    def _is_killed_by_emergency_switch(self, flag_key: str) -> bool:
        if self.kill_switches.get("emergency.disable_name_resolution") and flag_key in (
            "read_model.model_index_enabled",
            "read_model.product_name_fallback",
            "read_model.display_names",
        ):
            return True
        if self.kill_switches.get("emergency.disable_concurrency") and flag_key == "read_model.concurrent_fetch":
            return True
        return False

    def _is_valid_flag_key(self, flag_key: str) -> bool:
        """Validate flag key format"""
        return bool(flag_key) and all(c.isalnum() or c in '._' for c in flag_key)

    def _record_flag_change(self, flag_key: str, value: Any, updated_by: str):
        change_record = {
            "timestamp": datetime.now().isoformat(),
            "flag_key": flag_key,
            "new_value": value,
            "updated_by": updated_by
        }

        self.change_history.append(change_record)

        # Keep only last 100 changes
        if len(self.change_history) > 100:
            self.change_history = self.change_history[-100:]

# Global feature flags manager instance
feature_flags = FeatureFlagsManager()
