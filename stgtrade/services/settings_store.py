import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from stgtrade.core.config import ClaudeConfig, StorageConfig
from stgtrade.core.types import AgentRole, ModelTier

logger = logging.getLogger(__name__)

DEFAULT_MODEL_TIERS: Dict[AgentRole, ModelTier] = {
    role: ModelTier.ECONOMY for role in AgentRole
}
DEFAULT_MODEL_TIERS.update({
    AgentRole.TRADER: ModelTier.PRO,
    AgentRole.RISK_MANAGER: ModelTier.PRO,
    AgentRole.FUND_MANAGER: ModelTier.PRO,
})


def default_model_assignment(config: Optional[ClaudeConfig] = None) -> Dict[AgentRole, str]:
    """Role -> model id using the configured tier models."""
    config = config or ClaudeConfig()
    tiers = config.tier_models
    return {role: tiers[tier.value] for role, tier in DEFAULT_MODEL_TIERS.items()}


class SettingsStore:
    """Local JSON settings: the user-provided API key and the role -> model assignment.

    The assignment is only ever replaced as a whole map. Reads fall back to
    defaults when the file is absent or corrupt.
    """

    def __init__(
        self,
        config: Optional[StorageConfig] = None,
        path: Optional[Union[str, Path]] = None,
        claude_config: Optional[ClaudeConfig] = None,
    ):
        self.config = config or StorageConfig()
        self.path = Path(path) if path is not None else self.config.settings_path
        self.claude_config = claude_config or ClaudeConfig()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except Exception as e:
            logger.warning("Could not read settings file %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
        except Exception as e:
            logger.error("Failed to save settings to %s: %s", self.path, e)
            raise

    def load_model_assignment(self) -> Dict[AgentRole, str]:
        assignment = default_model_assignment(self.claude_config)
        stored = self._read().get("model_assignment")
        if not isinstance(stored, dict):
            return assignment
        for role_value, model in stored.items():
            try:
                role = AgentRole(role_value)
            except ValueError:
                logger.debug("Ignoring unknown role in settings: %s", role_value)
                continue
            if isinstance(model, str) and model.strip():
                assignment[role] = model.strip()
        return assignment

    def save_model_assignment(self, assignment: Dict[AgentRole, str]) -> None:
        data = self._read()
        data["model_assignment"] = {AgentRole(role).value: model for role, model in assignment.items()}
        self._write(data)
        logger.info("Saved model assignment", extra={"roles": len(assignment)})

    def load_api_key(self) -> Optional[str]:
        key = self._read().get("api_key")
        if isinstance(key, str) and key.strip():
            return key.strip()
        return None

    def save_api_key(self, api_key: str) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("api_key must be a non-empty string")
        data = self._read()
        data["api_key"] = api_key.strip()
        self._write(data)

    def clear_api_key(self) -> None:
        data = self._read()
        if data.pop("api_key", None) is not None:
            self._write(data)
