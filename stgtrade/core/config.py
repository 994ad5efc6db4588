import os
from pathlib import Path
from dotenv import load_dotenv
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable

load_dotenv()


class EnvConfig:
    """Small helper for reading and casting environment variables.

    Usage: EnvConfig.get('ANTHROPIC_API_KEY', cast=str, aliases=['CLAUDE_API_KEY'])
    """

    @staticmethod
    def get(name: str, default: Any = None, cast: Optional[Callable] = None, aliases: Optional[list] = None):
        aliases = aliases or []
        for key in (name, *aliases):
            val = os.getenv(key)
            if val is not None:
                if cast is not None:
                    try:
                        return cast(val)
                    except Exception as exc:  # keep error explicit
                        raise ValueError(f"Invalid value for {key}: {exc}")
                return val
        return default


QUOTE_SOURCES = ('gateway', 'yfinance')


@dataclass
class BaseConfig:
    """Mixin-like helper for dataclasses that load from envs and validate."""

    @classmethod
    def _env(cls, name: str, default: Any = None, cast: Optional[Callable] = None, aliases: Optional[list] = None):
        return EnvConfig.get(name, default=default, cast=cast, aliases=aliases)

    def validate(self, required: bool = True):
        """Default no-op; override in subclasses with required flag."""
        return None


@dataclass
class ClaudeConfig(BaseConfig):
    api_key: Optional[str] = None
    pro_model: str = "claude-opus-4-5"
    standard_model: str = "claude-sonnet-4-5"
    economy_model: str = "claude-haiku-4-5"
    lookup_model: Optional[str] = None
    max_tokens: int = 4000
    analysis_temperature: float = 0.01
    default_temperature: float = 0.2
    web_search_max_uses: int = 5
    request_timeout: float = 300.0

    def __post_init__(self):
        self.api_key = self.api_key or self._env('ANTHROPIC_API_KEY', aliases=['CLAUDE_API_KEY'])
        # Respect explicit constructor values: only consult env vars when using the dataclass defaults
        if self.pro_model == ClaudeConfig.pro_model:
            self.pro_model = self._env('CLAUDE_PRO_MODEL', default=self.pro_model)
        if self.standard_model == ClaudeConfig.standard_model:
            self.standard_model = self._env('CLAUDE_STANDARD_MODEL', default=self.standard_model)
        if self.economy_model == ClaudeConfig.economy_model:
            self.economy_model = self._env('CLAUDE_ECONOMY_MODEL', default=self.economy_model)
        self.lookup_model = self.lookup_model or self._env('CLAUDE_LOOKUP_MODEL', default=self.economy_model)
        if self.max_tokens == ClaudeConfig.max_tokens:
            self.max_tokens = self._env('CLAUDE_MAX_TOKENS', default=self.max_tokens, cast=int)
        if self.web_search_max_uses == ClaudeConfig.web_search_max_uses:
            self.web_search_max_uses = self._env('CLAUDE_WEB_SEARCH_MAX_USES', default=self.web_search_max_uses, cast=int)

    @property
    def tier_models(self) -> Dict[str, str]:
        return {
            'pro': self.pro_model,
            'standard': self.standard_model,
            'economy': self.economy_model,
        }

    def is_pro_model(self, model: Optional[str]) -> bool:
        """True when the model id belongs to the pro tier."""
        if not model:
            return False
        return model == self.pro_model or 'opus' in model.lower()

    def validate(self, required: bool = True) -> None:
        if required and not self.api_key:
            raise ValueError('ANTHROPIC_API_KEY not set. Set via environment or ClaudeConfig.api_key')
        if self.max_tokens < 100:
            raise ValueError('max_tokens must be >= 100')
        for name in ('analysis_temperature', 'default_temperature'):
            if not 0 <= getattr(self, name) <= 1:
                raise ValueError(f'{name} must be between 0 and 1')
        if self.web_search_max_uses < 1:
            raise ValueError('web_search_max_uses must be >= 1')


@dataclass
class RetryConfig(BaseConfig):
    max_retries: int = 3
    base_delay_seconds: float = 10.0
    rate_limit_multiplier: float = 2.0
    default_multiplier: float = 1.5

    def __post_init__(self):
        if self.max_retries == RetryConfig.max_retries:
            self.max_retries = self._env('STG_MAX_RETRIES', default=self.max_retries, cast=int)
        if self.base_delay_seconds == RetryConfig.base_delay_seconds:
            self.base_delay_seconds = self._env('STG_RETRY_BASE_DELAY', default=self.base_delay_seconds, cast=float)

    def validate(self, required: bool = True) -> None:
        if self.max_retries < 0:
            raise ValueError('max_retries must be >= 0')
        if self.base_delay_seconds < 0:
            raise ValueError('base_delay_seconds must be >= 0')
        if self.rate_limit_multiplier < 1 or self.default_multiplier < 1:
            raise ValueError('backoff multipliers must be >= 1')


@dataclass
class PipelineConfig(BaseConfig):
    """Cooldown policy (seconds) and forecast heuristics for a pipeline run."""
    inference_step_cooldown: float = 6
    internet_search_cooldown: float = 35
    pro_model_cooldown: float = 45
    pre_pipeline_cooldown: float = 35
    forecast_days: int = 180
    score_nudge_percent: float = 4.0
    sentiment_scale: float = 5.0
    quote_source: str = 'gateway'

    def __post_init__(self):
        for attr, env_name in (
            ('inference_step_cooldown', 'STG_INFERENCE_STEP_COOLDOWN'),
            ('internet_search_cooldown', 'STG_INTERNET_SEARCH_COOLDOWN'),
            ('pro_model_cooldown', 'STG_PRO_MODEL_COOLDOWN'),
            ('pre_pipeline_cooldown', 'STG_PRE_PIPELINE_COOLDOWN'),
        ):
            current = getattr(self, attr)
            if current == getattr(PipelineConfig, attr):
                setattr(self, attr, self._env(env_name, default=current, cast=float))
        if self.quote_source == PipelineConfig.quote_source:
            self.quote_source = self._env('STG_QUOTE_SOURCE', default=self.quote_source)

    def validate(self, required: bool = True) -> None:
        for attr in ('inference_step_cooldown', 'internet_search_cooldown', 'pro_model_cooldown', 'pre_pipeline_cooldown'):
            if getattr(self, attr) < 0:
                raise ValueError(f'{attr} must be >= 0')
        if self.forecast_days < 1:
            raise ValueError('forecast_days must be >= 1')
        if self.quote_source not in QUOTE_SOURCES:
            raise ValueError(f'quote_source must be one of {list(QUOTE_SOURCES)}')


@dataclass
class StorageConfig(BaseConfig):
    base_dir: Path = None
    history_file: str = 'trade_history.json'
    settings_file: str = 'settings.json'
    max_history_records: Optional[int] = None

    def __post_init__(self):
        base = self._env('STG_DATA_DIR', default='data')
        self.base_dir = Path(base) if self.base_dir is None else Path(self.base_dir)
        cap = self._env('STG_MAX_HISTORY_RECORDS', default=None, cast=int)
        if cap is not None and self.max_history_records is None:
            self.max_history_records = cap

    @property
    def history_path(self) -> Path:
        return self.base_dir / self.history_file

    @property
    def settings_path(self) -> Path:
        return self.base_dir / self.settings_file

    def validate(self, required: bool = True) -> None:
        if not isinstance(self.base_dir, Path):
            self.base_dir = Path(self.base_dir)
        if self.max_history_records is not None and self.max_history_records < 1:
            raise ValueError('max_history_records must be >= 1 when set')


class AppConfig:
    """Central application configuration container.

    Access sub-configs as attributes (e.g., `AppConfig.claude`).
    Use `AppConfig.from_env()` for a validated instance reflecting the
    current environment.
    """

    claude: ClaudeConfig = ClaudeConfig()
    retry: RetryConfig = RetryConfig()
    pipeline: PipelineConfig = PipelineConfig()
    storage: StorageConfig = StorageConfig()

    def __init__(
        self,
        claude: Optional[ClaudeConfig] = None,
        retry: Optional[RetryConfig] = None,
        pipeline: Optional[PipelineConfig] = None,
        storage: Optional[StorageConfig] = None,
    ):
        self.claude = claude or ClaudeConfig()
        self.retry = retry or RetryConfig()
        self.pipeline = pipeline or PipelineConfig()
        self.storage = storage or StorageConfig()

    def validate_all(self, strict: bool = False) -> None:
        self.claude.validate(required=strict)
        self.retry.validate()
        self.pipeline.validate()
        self.storage.validate()

    @staticmethod
    def check_availability() -> Dict[str, Dict[str, Any]]:
        """Return availability map for each config.

        For each named sub-config return a dict with keys:
        - available: bool
        - reason: Optional[str] explaining failure when available is False
        """
        results: Dict[str, Dict[str, Any]] = {}
        # Construct fresh instances so availability reflects current environment
        configs = {
            'claude': ClaudeConfig(),
            'retry': RetryConfig(),
            'pipeline': PipelineConfig(),
            'storage': StorageConfig(),
        }
        for name, cfg in configs.items():
            try:
                cfg.validate(required=True)
                results[name] = {'available': True, 'reason': None}
            except Exception as e:
                results[name] = {'available': False, 'reason': str(e)}
        return results

    @staticmethod
    def from_env(strict: bool = False) -> 'AppConfig':
        config = AppConfig()
        config.validate_all(strict=strict)
        return config
