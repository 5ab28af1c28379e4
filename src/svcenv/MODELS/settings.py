"""
Controller settings: which services to start and the default readiness budget.
"""
import os
from enum import Enum
from typing import Any, List, Dict, Optional, Mapping
from pydantic import BaseModel, Field


class SelectionPolicy(str, Enum):
    """
    How the controller decides which declared services to start.
    """
    STATIC = "static"  # every declared service
    OPT_IN = "opt-in"  # only the explicitly enabled ones


class ControllerSettings(BaseModel):
    """
    Settings of one LifecycleController.
    """
    policy: SelectionPolicy = SelectionPolicy.STATIC
    enabled: List[str] = []
    env_files: List[str] = []
    log_dir: Optional[str] = None  # where failed containers' logs are written
    network_prefix: str = "svcenv"
    container_labels: Dict[str, str] = {"org.svcenv.managed": "true"}
    readiness_max_retries: Optional[int] = Field(default=None, ge=1)
    readiness_retry_interval: Optional[float] = Field(default=None, ge=0.0)
    startup_poll_interval: float = 0.5

    @classmethod
    def from_environ(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        defaults: Optional[Mapping[str, Any]] = None,
        **overrides,
    ) -> "ControllerSettings":
        """
        Builds settings from SVCENV_* variables.

        SVCENV_POLICY=static|opt-in, SVCENV_SERVICES=kafka,cassandra,
        SVCENV_ENV_FILES=.env,.env.test, SVCENV_LOG_DIR, SVCENV_NETWORK_PREFIX,
        SVCENV_READINESS_RETRIES, SVCENV_READINESS_INTERVAL.
        The environment wins over defaults, keyword overrides win over both.
        """
        env = os.environ if environ is None else environ
        values = dict(defaults or {})
        if env.get("SVCENV_SERVICES"):
            values["enabled"] = _split(env["SVCENV_SERVICES"])
            values["policy"] = SelectionPolicy.OPT_IN
        if env.get("SVCENV_POLICY"):
            values["policy"] = env["SVCENV_POLICY"]
        if env.get("SVCENV_ENV_FILES"):
            values["env_files"] = _split(env["SVCENV_ENV_FILES"])
        if env.get("SVCENV_LOG_DIR"):
            values["log_dir"] = env["SVCENV_LOG_DIR"]
        if env.get("SVCENV_NETWORK_PREFIX"):
            values["network_prefix"] = env["SVCENV_NETWORK_PREFIX"]
        if env.get("SVCENV_READINESS_RETRIES"):
            values["readiness_max_retries"] = int(env["SVCENV_READINESS_RETRIES"])
        if env.get("SVCENV_READINESS_INTERVAL"):
            values["readiness_retry_interval"] = float(env["SVCENV_READINESS_INTERVAL"])
        values.update(overrides)
        return cls(**values)


def _split(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]
