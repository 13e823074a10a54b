from __future__ import annotations

import logging
import sys
from typing import Any, Optional

import pydantic as pd
import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.console import Console
from rich.logging import RichHandler

from goprobe.core.models.objects import DEFAULT_SAMPLE_KINDS, ClusterDescriptor, SampleKind

logger = logging.getLogger("goprobe")


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="GOPROBE_", env_nested_delimiter="__", extra="ignore")

    quiet: bool = pd.Field(False)
    verbose: bool = pd.Field(False)

    # Access
    token: Optional[pd.SecretStr] = pd.Field(None)
    root_url: str = pd.Field("http://127.0.0.1:9002")
    # base64 encoded PEM CA, trusted next to the certifi bundle by both the api servers and direct captures
    certificate: str = pd.Field("")

    # Storage
    storage_path: str = pd.Field("./data/pprof")

    # Kubernetes Settings
    clusters: list[ClusterDescriptor] = pd.Field(default_factory=list)

    # Capture Settings
    sample_kinds: list[SampleKind] = pd.Field(default_factory=lambda: list(DEFAULT_SAMPLE_KINDS))
    sample_index: str = pd.Field("")

    # Server Settings
    host: str = pd.Field("0.0.0.0")
    port: int = pd.Field(9002, ge=1, le=65535)

    # Logging Settings
    log_to_stderr: bool = pd.Field(False)
    width: Optional[int] = pd.Field(None, ge=1)

    _logging_console: Optional[Console] = pd.PrivateAttr(None)

    @pd.field_validator("root_url")
    @classmethod
    def validate_root_url(cls, v: str) -> str:
        if not v.startswith("https://") and not v.startswith("http://"):
            raise ValueError("root_url must start with https:// or http://")

        return v.removesuffix("/")

    @pd.field_validator("sample_kinds")
    @classmethod
    def validate_sample_kinds(cls, v: list[SampleKind]) -> list[SampleKind]:
        if v == []:
            raise ValueError("At least one sample kind has to be captured")

        # NOTE: dict.fromkeys keeps the configured order
        return list(dict.fromkeys(v))

    @pd.field_validator("clusters")
    @classmethod
    def validate_clusters(cls, v: list[ClusterDescriptor]) -> list[ClusterDescriptor]:
        names = [cluster.name for cluster in v]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise ValueError(f"Cluster names must be unique, duplicated: {', '.join(sorted(duplicates))}")
        return v

    @classmethod
    def from_file(cls, path: Optional[str], **overrides: Any) -> Config:
        """Load the YAML config file (if any) and apply overrides on top of it."""

        values: dict[str, Any] = {}
        if path is not None:
            with open(path, "r") as file:
                values = yaml.safe_load(file) or {}
            if not isinstance(values, dict):
                raise ValueError(f"Config file {path} must contain a mapping")

        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    @property
    def has_token(self) -> bool:
        return self.token is not None and self.token.get_secret_value() != ""

    def check_token(self, token: Optional[str]) -> bool:
        # NOTE: Without a configured token every caller is rejected
        if not self.has_token:
            return False
        return token == self.token.get_secret_value()

    @property
    def logging_console(self) -> Console:
        if self._logging_console is None:
            self._logging_console = Console(file=sys.stderr if self.log_to_stderr else sys.stdout, width=self.width)
        return self._logging_console

    @staticmethod
    def set_config(config: Config) -> None:
        global _config

        _config = config
        logging.basicConfig(
            level="NOTSET",
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=config.logging_console)],
        )
        logging.getLogger("").setLevel(logging.CRITICAL)
        logger.setLevel(logging.DEBUG if config.verbose else logging.CRITICAL if config.quiet else logging.INFO)

    @staticmethod
    def get_config() -> Optional[Config]:
        return _config


_config: Optional[Config] = None
