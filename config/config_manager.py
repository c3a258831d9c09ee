"""
Configuration Manager for the Onchain Eligibility Engine
Validated configuration groups merged from defaults, a YAML file and environment variables
"""
from __future__ import annotations

import json
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from utils.constants import (
    ACTIVITY_DECAY_DAYS,
    ACTIVITY_SATURATION,
    CACHE_MAX_ENTRIES,
    CACHE_SWEEP_INTERVAL_SECONDS,
    CACHE_TTL,
    CORRELATION_FLAG_THRESHOLD,
    CORRELATION_WINDOW_DAYS,
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_MAX_SECONDS,
    DEFAULT_GAS_LIMIT,
    DEFAULT_MAX_CONCURRENCY_PER_CHAIN,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RPC_TIMEOUT_MS,
    DEFAULT_SCORE_WEIGHTS,
    DEFAULT_SLIPPAGE,
    DIVERSITY_REFERENCE_TOKENS,
    EVALUATION_DEADLINE_SECONDS,
    HIGH_GAS_ALERT_GWEI,
    LIQUIDITY_LOCK_PERIOD_DAYS,
    MAX_TRANSACTION_AMOUNT_USD,
    MEV_PROFIT_THRESHOLD,
    MIN_HOLDER_COUNT,
    MIN_LIQUIDITY_USD,
    NEUTRAL_SIGNAL,
    PRICE_IMPACT_WARNING,
    PRIORITY_FEE_GWEI,
    SANDWICH_BLOCK_WINDOW,
    SUPPORTED_CHAIN_IDS,
    TOKEN_AGE_THRESHOLD_DAYS,
    WALLET_DIVERSITY_THRESHOLD,
)
from utils.errors import ConfigurationError

logger = logging.getLogger(__name__)


class ConfigType(Enum):
    """Configuration types"""
    GATEWAY = "gateway"
    CACHE = "cache"
    ROUTING = "routing"
    MEV = "mev"
    WALLET = "wallet"
    SUPPLY = "supply"
    SCORING = "scoring"
    ENGINE = "engine"
    LOGGING = "logging"


class ConfigSource(Enum):
    """Configuration sources"""
    DEFAULT = "default"
    FILE = "file"
    ENVIRONMENT = "environment"


def _parse_json_mapping(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return json.loads(value) if value else {}
    return value


def _parse_csv(value: Any) -> Any:
    if isinstance(value, str):
        return [item.strip() for item in value.split(',') if item.strip()]
    return value


class GatewayConfig(BaseModel):
    rpc_timeout_ms: int = Field(DEFAULT_RPC_TIMEOUT_MS, gt=0)
    retry_attempts: int = Field(DEFAULT_RETRY_ATTEMPTS, ge=1)
    backoff_base_seconds: float = Field(DEFAULT_BACKOFF_BASE_SECONDS, ge=0)
    backoff_max_seconds: float = Field(DEFAULT_BACKOFF_MAX_SECONDS, ge=0)
    backoff_jitter: bool = True
    max_concurrency_per_chain: int = Field(DEFAULT_MAX_CONCURRENCY_PER_CHAIN, ge=1)
    enabled_chains: List[int] = Field(default_factory=lambda: sorted(SUPPORTED_CHAIN_IDS))
    rpc_endpoints: Dict[int, str] = Field(default_factory=dict)

    @field_validator('enabled_chains', mode='before')
    @classmethod
    def parse_enabled_chains(cls, v):
        return _parse_csv(v)

    @field_validator('enabled_chains')
    @classmethod
    def validate_enabled_chains(cls, v):
        unknown = [c for c in v if c not in SUPPORTED_CHAIN_IDS]
        if unknown:
            raise ValueError(f"Unknown chain ids: {unknown}")
        return v

    @field_validator('rpc_endpoints', mode='before')
    @classmethod
    def parse_rpc_endpoints(cls, v):
        return _parse_json_mapping(v)


class CacheConfig(BaseModel):
    cache_ttl: int = Field(CACHE_TTL['default'], gt=0)
    cache_sweep_interval_seconds: float = Field(CACHE_SWEEP_INTERVAL_SECONDS, gt=0)
    cache_max_entries: int = Field(CACHE_MAX_ENTRIES, ge=1)
    redis_url: Optional[str] = None
    ttl_settings: Dict[str, int] = Field(default_factory=dict)

    @field_validator('ttl_settings', mode='before')
    @classmethod
    def parse_ttl_settings(cls, v):
        return _parse_json_mapping(v)


class RoutingConfig(BaseModel):
    gas_limit: int = Field(DEFAULT_GAS_LIMIT, gt=0)
    priority_fee_gwei: float = Field(PRIORITY_FEE_GWEI, ge=0)
    slippage_tolerance: float = Field(float(DEFAULT_SLIPPAGE), ge=0, lt=1)
    min_liquidity_usd: float = Field(float(MIN_LIQUIDITY_USD), ge=0)
    price_impact_warning: float = Field(float(PRICE_IMPACT_WARNING), ge=0, le=1)
    high_gas_alert_gwei: float = Field(HIGH_GAS_ALERT_GWEI, gt=0)
    max_transaction_amount_usd: float = Field(float(MAX_TRANSACTION_AMOUNT_USD), gt=0)


class MEVConfig(BaseModel):
    mev_profit_threshold: float = Field(float(MEV_PROFIT_THRESHOLD), gt=0)
    sandwich_block_window: int = Field(SANDWICH_BLOCK_WINDOW, ge=0)


class WalletConfig(BaseModel):
    wallet_diversity_threshold: float = Field(WALLET_DIVERSITY_THRESHOLD, ge=0, le=1)
    diversity_reference_tokens: int = Field(DIVERSITY_REFERENCE_TOKENS, ge=2)
    activity_decay_days: float = Field(ACTIVITY_DECAY_DAYS, gt=0)
    activity_saturation: float = Field(ACTIVITY_SATURATION, gt=0)
    token_age_threshold_days: int = Field(TOKEN_AGE_THRESHOLD_DAYS, ge=0)
    min_holder_count: int = Field(MIN_HOLDER_COUNT, ge=0)


class SupplyConfig(BaseModel):
    liquidity_lock_period_days: int = Field(LIQUIDITY_LOCK_PERIOD_DAYS, gt=0)
    correlation_flag_threshold: float = Field(CORRELATION_FLAG_THRESHOLD, ge=-1, le=1)
    correlation_window_days: int = Field(CORRELATION_WINDOW_DAYS, ge=2)


class ScoringConfig(BaseModel):
    weight_diversity: float = Field(DEFAULT_SCORE_WEIGHTS['diversity'], ge=0)
    weight_activity: float = Field(DEFAULT_SCORE_WEIGHTS['activity'], ge=0)
    weight_risk: float = Field(DEFAULT_SCORE_WEIGHTS['risk'], ge=0)
    weight_mev: float = Field(DEFAULT_SCORE_WEIGHTS['mev'], ge=0)
    neutral_signal: float = Field(NEUTRAL_SIGNAL, ge=0, le=1)

    @model_validator(mode='after')
    def validate_weights(self):
        total = self.weight_diversity + self.weight_activity + self.weight_risk + self.weight_mev
        if total <= 0:
            raise ValueError("At least one scoring weight must be positive")
        return self


class EngineSettings(BaseModel):
    evaluation_deadline_seconds: float = Field(EVALUATION_DEADLINE_SECONDS, gt=0)


class LoggingConfig(BaseModel):
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_format: str = "json"
    log_outputs: List[str] = Field(default_factory=lambda: ["console"])

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator('log_outputs', mode='before')
    @classmethod
    def parse_log_outputs(cls, v):
        return _parse_csv(v)

    def to_logger_config(self) -> Dict[str, Any]:
        """Keys understood by StructuredLogger"""
        return {
            "log_level": self.log_level,
            "log_dir": self.log_dir,
            "format": self.log_format,
            "outputs": list(self.log_outputs)
        }


class ConfigManager:
    """
    Centralized configuration management with:
    - Schema validation using Pydantic
    - YAML file overrides
    - Environment variable overrides (field name upper-cased)
    """

    def __init__(self, config_path: Optional[str] = None, env_prefix: str = ""):
        self.config_path = Path(config_path) if config_path else None
        self.env_prefix = env_prefix
        self.configs: Dict[ConfigType, BaseModel] = {}
        self.sources: Dict[ConfigType, ConfigSource] = {}
        self.config_schemas: Dict[ConfigType, type] = {
            ConfigType.GATEWAY: GatewayConfig,
            ConfigType.CACHE: CacheConfig,
            ConfigType.ROUTING: RoutingConfig,
            ConfigType.MEV: MEVConfig,
            ConfigType.WALLET: WalletConfig,
            ConfigType.SUPPLY: SupplyConfig,
            ConfigType.SCORING: ScoringConfig,
            ConfigType.ENGINE: EngineSettings,
            ConfigType.LOGGING: LoggingConfig,
        }
        self._file_config: Dict[str, Any] = {}

        logger.info("ConfigManager initialized")

    async def initialize(self) -> None:
        """Load every configuration group"""
        self._file_config = await self._load_config_file()
        for config_type in ConfigType:
            self._load_config(config_type)
        logger.info("Configuration manager initialized successfully")

    async def _load_config_file(self) -> Dict[str, Any]:
        """Read the YAML file, if one was given"""
        if self.config_path is None:
            return {}
        if not self.config_path.exists():
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        async with aiofiles.open(self.config_path, 'r') as f:
            content = await f.read()
        try:
            data = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file {self.config_path} must contain a mapping")

        unknown = set(data) - {t.value for t in ConfigType}
        if unknown:
            logger.warning(f"Ignoring unknown config sections: {sorted(unknown)}")
        return data

    def _load_config(self, config_type: ConfigType) -> None:
        """Load configuration from multiple sources"""
        schema_class = self.config_schemas[config_type]
        config_data = schema_class().model_dump()
        source = ConfigSource.DEFAULT

        file_data = self._file_config.get(config_type.value) or {}
        if file_data:
            config_data.update(file_data)
            source = ConfigSource.FILE

        env_data = self._load_config_from_env(config_type)
        if env_data:
            config_data.update(env_data)
            source = ConfigSource.ENVIRONMENT

        try:
            self.configs[config_type] = schema_class(**config_data)
            self.sources[config_type] = source
            logger.debug(f"Loaded {config_type.value} configuration from {source.value}")
        except ValidationError as e:
            logger.error(f"Validation error in {config_type.value} config: {e}")
            raise ConfigurationError(f"Invalid {config_type.value} configuration: {e}") from e

    def _load_config_from_env(self, config_type: ConfigType) -> Dict:
        """Load configuration from environment variables"""
        env_data = {}
        schema_class = self.config_schemas[config_type]

        for field_name in schema_class.model_fields:
            env_var = f"{self.env_prefix}{field_name.upper()}"
            value = os.getenv(env_var)
            if value is not None and value not in ('null', 'None', ''):
                env_data[field_name] = value

        return env_data

    def get_config(self, config_type: ConfigType) -> BaseModel:
        """Get configuration for specified type"""
        return self.configs.get(config_type) or self.config_schemas[config_type]()

    def get_gateway_config(self) -> GatewayConfig:
        return self.get_config(ConfigType.GATEWAY)

    def get_cache_config(self) -> CacheConfig:
        return self.get_config(ConfigType.CACHE)

    def get_routing_config(self) -> RoutingConfig:
        return self.get_config(ConfigType.ROUTING)

    def get_mev_config(self) -> MEVConfig:
        return self.get_config(ConfigType.MEV)

    def get_wallet_config(self) -> WalletConfig:
        return self.get_config(ConfigType.WALLET)

    def get_supply_config(self) -> SupplyConfig:
        return self.get_config(ConfigType.SUPPLY)

    def get_scoring_config(self) -> ScoringConfig:
        return self.get_config(ConfigType.SCORING)

    def get_engine_settings(self) -> EngineSettings:
        return self.get_config(ConfigType.ENGINE)

    def get_logging_config(self) -> LoggingConfig:
        return self.get_config(ConfigType.LOGGING)

    def as_engine_config(self) -> Dict[str, Dict[str, Any]]:
        """Plain dict of every group, as consumed by EligibilityEngine"""
        return {
            config_type.value: self.get_config(config_type).model_dump()
            for config_type in ConfigType
        }
