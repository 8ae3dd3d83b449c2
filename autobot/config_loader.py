"""
Configuration loader for AUTOBOT.

Two layers:
  1. Built-in defaults and stack templates (autobot/config.yaml)
  2. Per-repo gate config (<repo>/.autobot.json)

The repo config is re-read on every run so edits land immediately.
Any problem reading it falls back to the built-in default gate set.
"""

from __future__ import annotations

import concurrent.futures
import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from autobot.sandbox import DEFAULT_HOST_ROOT, PathTranslator

CONFIG_FILENAME = ".autobot.json"
DEFAULT_LOAD_TIMEOUT = 5.0
DEFAULT_MAX_RETRIES = 3

STACKS = ("typescript", "javascript", "python", "go", "rust")


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class GateConfig(BaseModel):
    """One named shell command run against the repository."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    command: str
    timeout_ms: int = Field(
        default=60_000,
        gt=0,
        validation_alias=AliasChoices("timeoutMs", "timeout", "timeout_ms"),
        serialization_alias="timeoutMs",
    )
    enabled: bool = True
    fail_on_error: bool = Field(
        default=True,
        validation_alias=AliasChoices("failOnError", "fail_on_error"),
        serialization_alias="failOnError",
    )
    order: int | None = None


class RepositoryConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    qa_gates: list[GateConfig] = Field(
        validation_alias=AliasChoices("qaGates", "qa_gates"),
        serialization_alias="qaGates",
    )
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=1,
        validation_alias=AliasChoices("maxRetries", "max_retries"),
        serialization_alias="maxRetries",
    )
    version: str = "1.0"

    @field_validator("max_retries", mode="before")
    @classmethod
    def _default_retries(cls, value: Any) -> Any:
        # 0, negatives and null mean "use the default", same as an absent key.
        if isinstance(value, (int, float)) and value < 1:
            return DEFAULT_MAX_RETRIES
        return value or DEFAULT_MAX_RETRIES

    @model_validator(mode="after")
    def _check_and_sort(self) -> "RepositoryConfig":
        seen: set[str] = set()
        for gate in self.qa_gates:
            if gate.name in seen:
                raise ValueError(f"Duplicate gate name: {gate.name}")
            seen.add(gate.name)

        # Unordered gates run after every ordered one; sort is stable.
        self.qa_gates = sorted(
            self.qa_gates,
            key=lambda g: (g.order is None, g.order if g.order is not None else 0),
        )
        return self

    @property
    def enabled_gates(self) -> list[GateConfig]:
        return [g for g in self.qa_gates if g.enabled]

    def to_json(self) -> str:
        return json.dumps(self.model_dump(by_alias=True, exclude_none=True), indent=2)


class EngineSettings(BaseModel):
    """Process-level settings, read from the environment."""
    host_root: str = DEFAULT_HOST_ROOT
    sandbox_root: str | None = None
    config_timeout: float = DEFAULT_LOAD_TIMEOUT
    store_path: str = ".autobot/store.json"

    @classmethod
    def from_env(cls) -> "EngineSettings":
        data: dict[str, Any] = {}
        if os.environ.get("AUTOBOT_HOST_ROOT"):
            data["host_root"] = os.environ["AUTOBOT_HOST_ROOT"]
        if os.environ.get("WORKSPACE_ROOT"):
            data["sandbox_root"] = os.environ["WORKSPACE_ROOT"]
        if os.environ.get("AUTOBOT_CONFIG_TIMEOUT"):
            data["config_timeout"] = os.environ["AUTOBOT_CONFIG_TIMEOUT"]
        if os.environ.get("AUTOBOT_STORE"):
            data["store_path"] = os.environ["AUTOBOT_STORE"]
        return cls(**data)

    def translator(self) -> PathTranslator:
        return PathTranslator(host_root=self.host_root, sandbox_root=self.sandbox_root)


# ---------------------------------------------------------------------------
# Built-in defaults
# ---------------------------------------------------------------------------

_BUILTIN_CONFIG_PATH = Path(__file__).parent / "config.yaml"


@lru_cache(maxsize=1)
def _builtin() -> dict[str, Any]:
    with open(_BUILTIN_CONFIG_PATH, "r") as f:
        return yaml.safe_load(f) or {}


def default_config() -> RepositoryConfig:
    """A fresh copy of the built-in default gate set."""
    return RepositoryConfig.model_validate(_builtin()["default"])


def load_templates() -> dict[str, RepositoryConfig]:
    return {
        name: RepositoryConfig.model_validate(data)
        for name, data in _builtin().get("templates", {}).items()
    }


def validate_config(data: Any) -> RepositoryConfig:
    """Validate a config object without touching the filesystem."""
    return RepositoryConfig.model_validate(data)


def create_example_config(repo_path: Path, stack: str = "typescript") -> Path:
    """Write a stack template as <repo>/.autobot.json. Unknown stacks get typescript."""
    templates = load_templates()
    config = templates.get(stack) or templates["typescript"]
    config_path = Path(repo_path) / CONFIG_FILENAME
    config_path.write_text(config.to_json() + "\n", encoding="utf-8")
    logger.info(f"[CONFIG] Created example config at {config_path}")
    return config_path


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

def _load_from_file(config_path: Path) -> RepositoryConfig:
    content = config_path.read_text(encoding="utf-8")
    return RepositoryConfig.model_validate(json.loads(content))


class ConfigResolver:
    """
    Resolves a repository's gate config.

    Never raises: a missing, malformed or slow config file yields the
    built-in default instead.
    """

    def __init__(
        self,
        translator: PathTranslator | None = None,
        load_timeout: float = DEFAULT_LOAD_TIMEOUT,
    ):
        self.translator = translator or PathTranslator()
        self.load_timeout = load_timeout

    def resolve(self, repo_path: str | Path) -> RepositoryConfig:
        container_path = self.translator.translate(str(repo_path))
        config_path = Path(container_path) / CONFIG_FILENAME

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(_load_from_file, config_path)
            config = future.result(timeout=self.load_timeout)
        except FileNotFoundError:
            logger.info(f"[CONFIG] No {CONFIG_FILENAME} in {container_path}, using default config")
            return default_config()
        except concurrent.futures.TimeoutError:
            logger.error(f"[CONFIG] Timeout loading {config_path}, using default config")
            return default_config()
        except Exception as e:
            logger.error(f"[CONFIG] Error loading {config_path}: {e}. Using default config")
            return default_config()
        finally:
            # Don't block on a hung read; the worker thread is abandoned.
            executor.shutdown(wait=False)

        logger.debug(f"[CONFIG] Loaded {config_path} ({len(config.qa_gates)} gates)")
        return config

    def enabled_gates(self, repo_path: str | Path) -> list[GateConfig]:
        return self.resolve(repo_path).enabled_gates
