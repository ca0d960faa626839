"""
Configuration management (SSOT).

This module defines ALL configuration for the decision engine.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Thresholds are fractions in [0, 1]
- Reconciliation signal weights sum to 1.0
- The LLM tier is OFF unless explicitly enabled
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


@dataclass
class SourceConfig:
    """HTTP feed configuration (bank statements or documents)."""

    base_url: str = ""
    token: str = ""
    timeout_seconds: int = 30
    max_retries: int = 3

    @property
    def is_configured(self) -> bool:
        """Return True if a base URL is set."""
        return bool(self.base_url)


@dataclass
class ClassificationConfig:
    """Classification thresholds."""

    # At or above this confidence a result is suggested for approval
    approval_threshold: float = 0.90
    # Minimum confidence for a classifier tier to win
    accept_threshold: float = 0.50


@dataclass
class ReconciliationConfig:
    """Reconciliation matcher settings."""

    weight_value: float = 0.5
    weight_date: float = 0.3
    weight_vendor: float = 0.2
    # Amounts within this absolute difference count as equal
    amount_epsilon: float = 0.01
    # Relative difference at which the value signal reaches zero
    value_tolerance: float = 0.05
    # Full date score within this many days
    date_full_days: int = 3
    # Date score reaches zero at this many days
    date_zero_days: int = 7
    # Minimum composite score for a pair to be matched
    match_threshold: float = 0.75


@dataclass
class SyncConfig:
    """Sync cycle settings."""

    # Rolling window fetched each cycle (days back from today)
    window_days: int = 30
    # Records per classification and persistence chunk
    chunk_size: int = 50
    # Maximum records classified concurrently
    max_in_flight: int = 4


@dataclass
class RegistryConfig:
    """Category registry settings."""

    cache_ttl_seconds: float = 60.0
    # Seed the default category catalog into an empty store
    seed_defaults: bool = True


@dataclass
class LLMConfig:
    """Local LLM (Ollama) configuration.

    - enabled: Master switch (default OFF)
    - ollama_url: Can be localhost, LAN IP, or remote URL
    - max_confidence: Upper bound for AI suggestions so they always go to review
    """

    enabled: bool = False
    ollama_url: str = "http://localhost:11434"
    auth_header: str | None = None
    model: str = "qwen2.5:3b-instruct-q4_K_M"
    timeout_seconds: int = 30
    max_concurrent: int = 2
    max_confidence: float = 0.89

    def is_remote(self) -> bool:
        """Check if Ollama URL is remote (not localhost)."""
        url_lower = self.ollama_url.lower()
        return not any(
            local in url_lower
            for local in ["localhost", "127.0.0.1", "::1", "host.docker.internal"]
        )


@dataclass
class Config:
    """Application configuration (SSOT)."""

    bank: SourceConfig = field(default_factory=SourceConfig)
    documents: SourceConfig = field(default_factory=SourceConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    state_db_path: Path = field(default_factory=lambda: Path("data/guardian.db"))

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []

        cls = self.classification
        if not 0.0 <= cls.approval_threshold <= 1.0:
            errors.append("classification.approval_threshold must be between 0 and 1")
        if not 0.0 <= cls.accept_threshold <= 1.0:
            errors.append("classification.accept_threshold must be between 0 and 1")
        if cls.accept_threshold > cls.approval_threshold:
            errors.append("accept_threshold must be <= approval_threshold")

        recon = self.reconciliation
        weight_sum = recon.weight_value + recon.weight_date + recon.weight_vendor
        if abs(weight_sum - 1.0) > 1e-6:
            errors.append(f"reconciliation weights must sum to 1.0 (got {weight_sum:.2f})")
        if recon.date_zero_days <= recon.date_full_days:
            errors.append("reconciliation.date_zero_days must be > date_full_days")
        if recon.value_tolerance <= 0:
            errors.append("reconciliation.value_tolerance must be positive")

        if self.sync.chunk_size < 1:
            errors.append("sync.chunk_size must be >= 1")
        if self.sync.max_in_flight < 1:
            errors.append("sync.max_in_flight must be >= 1")
        if self.sync.window_days < 1:
            errors.append("sync.window_days must be >= 1")

        if self.llm.enabled and not self.llm.ollama_url:
            errors.append("llm.ollama_url is required when LLM is enabled")
        if not 0.0 <= self.llm.max_confidence < cls.approval_threshold:
            errors.append("llm.max_confidence must stay below the approval threshold")

        return errors


def _load_source(data: dict, url_env: str, token_env: str) -> SourceConfig:
    return SourceConfig(
        base_url=os.environ.get(url_env, data.get("base_url", "")),
        token=os.environ.get(token_env, data.get("token", "")),
        timeout_seconds=data.get("timeout_seconds", 30),
        max_retries=data.get("max_retries", 3),
    )


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - GUARDIAN_DB_PATH
    - GUARDIAN_BANK_URL / GUARDIAN_BANK_TOKEN
    - GUARDIAN_DOCUMENTS_URL / GUARDIAN_DOCUMENTS_TOKEN
    - GUARDIAN_LLM_ENABLED (true/false)
    - OLLAMA_URL
    - OLLAMA_MODEL
    - GUARDIAN_SYNC_WINDOW_DAYS

    Raises:
        ConfigValidationError: If the resulting configuration is inconsistent.
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    bank = _load_source(data.get("bank", {}), "GUARDIAN_BANK_URL", "GUARDIAN_BANK_TOKEN")
    documents = _load_source(
        data.get("documents", {}), "GUARDIAN_DOCUMENTS_URL", "GUARDIAN_DOCUMENTS_TOKEN"
    )

    cls_data = data.get("classification", {})
    classification = ClassificationConfig(
        approval_threshold=cls_data.get("approval_threshold", 0.90),
        accept_threshold=cls_data.get("accept_threshold", 0.50),
    )

    recon_data = data.get("reconciliation", {})
    reconciliation = ReconciliationConfig(
        weight_value=recon_data.get("weight_value", 0.5),
        weight_date=recon_data.get("weight_date", 0.3),
        weight_vendor=recon_data.get("weight_vendor", 0.2),
        amount_epsilon=recon_data.get("amount_epsilon", 0.01),
        value_tolerance=recon_data.get("value_tolerance", 0.05),
        date_full_days=recon_data.get("date_full_days", 3),
        date_zero_days=recon_data.get("date_zero_days", 7),
        match_threshold=recon_data.get("match_threshold", 0.75),
    )

    sync_data = data.get("sync", {})
    window_days = sync_data.get("window_days", 30)
    window_env = os.environ.get("GUARDIAN_SYNC_WINDOW_DAYS", "")
    if window_env:
        try:
            window_days = int(window_env)
        except ValueError:
            pass  # Keep file value

    sync = SyncConfig(
        window_days=window_days,
        chunk_size=sync_data.get("chunk_size", 50),
        max_in_flight=sync_data.get("max_in_flight", 4),
    )

    registry_data = data.get("registry", {})
    registry = RegistryConfig(
        cache_ttl_seconds=registry_data.get("cache_ttl_seconds", 60.0),
        seed_defaults=registry_data.get("seed_defaults", True),
    )

    llm_data = data.get("llm", {})
    llm_enabled_env = os.environ.get("GUARDIAN_LLM_ENABLED", "").lower()
    llm_enabled = llm_data.get("enabled", False)
    if llm_enabled_env == "true":
        llm_enabled = True
    elif llm_enabled_env == "false":
        llm_enabled = False

    llm = LLMConfig(
        enabled=llm_enabled,
        ollama_url=os.environ.get(
            "OLLAMA_URL", llm_data.get("ollama_url", "http://localhost:11434")
        ),
        auth_header=os.environ.get("OLLAMA_AUTH_HEADER", llm_data.get("auth_header")),
        model=os.environ.get("OLLAMA_MODEL", llm_data.get("model", "qwen2.5:3b-instruct-q4_K_M")),
        timeout_seconds=int(llm_data.get("timeout_seconds", 30)),
        max_concurrent=llm_data.get("max_concurrent", 2),
        max_confidence=llm_data.get("max_confidence", 0.89),
    )

    state_db = os.environ.get("GUARDIAN_DB_PATH", data.get("state_db_path", "data/guardian.db"))

    config = Config(
        bank=bank,
        documents=documents,
        classification=classification,
        reconciliation=reconciliation,
        sync=sync,
        registry=registry,
        llm=llm,
        state_db_path=Path(state_db),
    )

    errors = config.validate()
    if errors:
        raise ConfigValidationError("; ".join(errors))

    return config


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Guardian decision engine configuration

# Bank statement feed (JSON over HTTP)
bank:
  base_url: ""                             # e.g. http://bank-gateway:9000
  token: ""
  timeout_seconds: 30
  max_retries: 3

# Supporting document feed (JSON over HTTP)
documents:
  base_url: ""                             # e.g. http://mailbox-gateway:9100
  token: ""
  timeout_seconds: 30
  max_retries: 3

classification:
  approval_threshold: 0.90                 # At or above: suggest approve
  accept_threshold: 0.50                   # Minimum confidence for a tier to win

reconciliation:
  weight_value: 0.5
  weight_date: 0.3
  weight_vendor: 0.2
  amount_epsilon: 0.01                     # Absolute amount difference treated as equal
  value_tolerance: 0.05                    # Relative difference where value score hits 0
  date_full_days: 3
  date_zero_days: 7
  match_threshold: 0.75

sync:
  window_days: 30                          # Rolling window fetched each cycle
  chunk_size: 50
  max_in_flight: 4

registry:
  cache_ttl_seconds: 60
  seed_defaults: true

# Local LLM settings (Ollama), off by default
llm:
  enabled: false
  ollama_url: "http://localhost:11434"
  auth_header: null
  model: "qwen2.5:3b-instruct-q4_K_M"
  timeout_seconds: 30
  max_concurrent: 2
  max_confidence: 0.89                     # AI suggestions always go to review

state_db_path: "data/guardian.db"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)
