"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < CLI flags < per-session overrides

The ``AZURE_API_KEY`` / ``AZURE_ENDPOINT`` / ``AZURE_DEPLOYMENT`` trio, when
all three are set, adds a model profile named after the deployment and makes
it active.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any

import yaml

from aicli.llm.types import ModelProfile, ProviderKind, detect_kind
from aicli.tools.base import ToolRisk

DEFAULT_CONFIG_PATH = "~/.aicli/config.yaml"


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ModelConfig:
    endpoint: str = ""
    deployment: str = ""
    kind: str = ""  # empty: detect from the deployment name
    api_key: str = ""
    api_key_env: str = ""
    api_version: str = ""
    context_window: int = 0
    max_tokens: int = 4_096
    temperature: float = 0.7
    timeout_seconds: float = 120.0

    def resolved_kind(self) -> ProviderKind:
        if self.kind:
            return ProviderKind(self.kind.lower())
        return detect_kind(self.deployment)

    def resolved_api_key(self) -> str:
        if self.api_key:
            return self.api_key
        if self.api_key_env:
            return os.environ.get(self.api_key_env, "")
        return ""

    def to_profile(self, name: str) -> ModelProfile:
        return ModelProfile(
            name=name,
            endpoint=self.endpoint,
            deployment=self.deployment,
            kind=self.resolved_kind(),
            context_window=self.context_window,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            api_key=self.resolved_api_key(),
            api_version=self.api_version,
            timeout=self.timeout_seconds,
        )


@dataclass
class AgentConfig:
    active_model: str = ""
    max_rounds: int = 25
    compact_threshold: float = 0.85
    keep_tail: int = 4
    compaction_strategy: str = "model"
    rate_limit_backoff: float = 2.0
    working_dir: str = ""


@dataclass
class ToolsConfig:
    disabled: list[str] = field(default_factory=list)
    shell_timeout: int = 30
    tool_timeout: float = 60.0
    max_output_kb: int = 100
    parallel: bool = True
    allow_outside_workspace: bool = False


@dataclass
class PolicyConfig:
    max_risk: str = "SHELL"
    blocked_patterns: list[str] = field(default_factory=list)
    redaction_patterns: list[str] = field(default_factory=list)
    audit_log_path: str = ""
    audit_max_size_mb: int = 10
    audit_keep_files: int = 5


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: str = ""


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class AppConfig:
    agent: AgentConfig = field(default_factory=AgentConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    models: dict[str, ModelConfig] = field(default_factory=dict)

    # ----- per-session overrides (applied last) ----
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-session override using dot notation (e.g. 'agent.max_rounds')."""
        self._overrides[dotpath] = value
        _apply_dotpath(self, dotpath, value)

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def to_dict(self, redact: bool = True) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        if redact:
            for model in d["models"].values():
                if model.get("api_key"):
                    model["api_key"] = "***"
        return d

    @property
    def active_model(self) -> str:
        """The configured active model, else the first one defined."""
        if self.agent.active_model:
            return self.agent.active_model
        return next(iter(self.models), "")

    def get_profile(self, name: str | None = None) -> ModelProfile:
        """
        Resolve a named model into a ``ModelProfile``.

        Raises ``KeyError`` if the model is not configured.
        """
        name = name or self.active_model
        if name not in self.models:
            raise KeyError(
                f"Unknown model {name!r}. Configured: {sorted(self.models)}"
            )
        return self.models[name].to_profile(name)

    def profiles(self) -> dict[str, ModelProfile]:
        return {name: m.to_profile(name) for name, m in self.models.items()}

    def validate(self) -> list[str]:
        """Return a list of problems; empty when the config is usable."""
        problems: list[str] = []
        if not self.models:
            problems.append(
                "no models configured (add a 'models:' section or set "
                "AZURE_API_KEY, AZURE_ENDPOINT and AZURE_DEPLOYMENT)"
            )
        elif self.active_model not in self.models:
            problems.append(f"active model {self.active_model!r} is not configured")

        for name, m in self.models.items():
            if not m.endpoint:
                problems.append(f"models.{name}: endpoint is required")
            if not m.deployment:
                problems.append(f"models.{name}: deployment is required")
            if m.kind and m.kind.lower() not in {k.value for k in ProviderKind}:
                problems.append(
                    f"models.{name}: unknown kind {m.kind!r} "
                    f"(expected one of {', '.join(k.value for k in ProviderKind)})"
                )
            if not m.resolved_api_key():
                source = f"${m.api_key_env}" if m.api_key_env else "api_key"
                problems.append(f"models.{name}: no API key ({source} is empty)")
            if m.max_tokens <= 0:
                problems.append(f"models.{name}: max_tokens must be positive")

        if not 0.0 < self.agent.compact_threshold <= 1.0:
            problems.append("agent.compact_threshold must be in (0, 1]")
        if self.agent.max_rounds < 1:
            problems.append("agent.max_rounds must be at least 1")
        if self.agent.keep_tail < 1:
            problems.append("agent.keep_tail must be at least 1")
        if self.agent.compaction_strategy not in ("model", "local"):
            problems.append("agent.compaction_strategy must be 'model' or 'local'")
        if self.policy.max_risk.strip().upper() not in ToolRisk.__members__:
            problems.append(
                f"policy.max_risk {self.policy.max_risk!r} is not one of "
                f"{', '.join(ToolRisk.__members__)}"
            )
        return problems


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in (raw or {}).items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "AICLI_ACTIVE_MODEL":        ("agent.active_model", str),
    "AICLI_MAX_ROUNDS":          ("agent.max_rounds", int),
    "AICLI_COMPACT_THRESHOLD":   ("agent.compact_threshold", float),
    "AICLI_KEEP_TAIL":           ("agent.keep_tail", int),
    "AICLI_COMPACTION_STRATEGY": ("agent.compaction_strategy", str),
    "AICLI_WORKING_DIR":         ("agent.working_dir", str),
    "AICLI_TOOLS_DISABLED":      ("tools.disabled", list),
    "AICLI_SHELL_TIMEOUT":       ("tools.shell_timeout", int),
    "AICLI_TOOL_TIMEOUT":        ("tools.tool_timeout", float),
    "AICLI_TOOLS_PARALLEL":      ("tools.parallel", bool),
    "AICLI_ALLOW_OUTSIDE":       ("tools.allow_outside_workspace", bool),
    "AICLI_POLICY_MAX_RISK":     ("policy.max_risk", str),
    "AICLI_POLICY_BLOCKED":      ("policy.blocked_patterns", list),
    "AICLI_POLICY_REDACTION":    ("policy.redaction_patterns", list),
    "AICLI_POLICY_AUDIT_PATH":   ("policy.audit_log_path", str),
    "AICLI_LOG_LEVEL":           ("logging.level", str),
    "AICLI_LOG_FILE":            ("logging.file", str),
}

_AZURE_ENV = ("AZURE_API_KEY", "AZURE_ENDPOINT", "AZURE_DEPLOYMENT")


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> AppConfig:
    """
    Build an AppConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  CLI flags  <  per-session overrides

    Parameters
    ----------
    config_path : path to YAML config file; defaults to ``~/.aicli/config.yaml``
    cli_overrides : dict of dotpath -> value CLI flag overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    p = Path(config_path or DEFAULT_CONFIG_PATH).expanduser()
    if p.is_file():
        with p.open("r", encoding="utf-8") as f:
            file_data = yaml.safe_load(f) or {}
        if not isinstance(file_data, dict):
            raise ValueError(f"{p}: top level must be a mapping")
        raw = _deep_merge(raw, file_data)
    elif config_path is not None:
        raise FileNotFoundError(f"Config file not found: {p}")

    # --- Build sections from raw ---
    cfg = AppConfig(
        agent=_build_section(AgentConfig, raw.get("agent", {})),
        tools=_build_section(ToolsConfig, raw.get("tools", {})),
        policy=_build_section(PolicyConfig, raw.get("policy", {})),
        logging=_build_section(LoggingConfig, raw.get("logging", {})),
        models={
            name: _build_section(ModelConfig, data)
            for name, data in (raw.get("models") or {}).items()
        },
    )

    # --- 2. Azure env trio ---
    api_key, endpoint, deployment = (os.environ.get(v) for v in _AZURE_ENV)
    if api_key and endpoint and deployment:
        cfg.models[deployment] = ModelConfig(
            endpoint=endpoint,
            deployment=deployment,
            api_key=api_key,
        )
        cfg.agent.active_model = deployment

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. CLI flag overrides ---
    if cli_overrides:
        for dotpath, value in cli_overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg
