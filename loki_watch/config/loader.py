"""Reading and writing loki-watch configuration files."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from .models import GlobalConfig, TriggerConfig

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
HOME_ENV = "LOKI_WATCH_HOME"

_ENV_REFERENCE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)\}")

ModelT = TypeVar("ModelT", bound=BaseModel)


def _slugify(name: str) -> str:
    return "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")


def expand_env(value: Any) -> Any:
    """Replace ``${NAME}`` references with environment values, leaving unknown names intact."""

    if isinstance(value, str):
        return _ENV_REFERENCE.sub(lambda m: os.environ.get(m.group("name"), m.group(0)), value)
    if isinstance(value, dict):
        return {key: expand_env(item) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env(item) for item in value]
    return value


def load_model(path: Path, model: type[ModelT]) -> ModelT:
    """Parse ``path`` as YAML or JSON, expand env references and validate it."""

    text = path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text) if path.suffix in (".yaml", ".yml") else json.loads(text)
    except (yaml.YAMLError, ValueError) as exc:
        raise ValueError(f"{path}: cannot be parsed: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path}: configuration must be a mapping")
    try:
        return model.model_validate(expand_env(data))
    except ValidationError as exc:
        raise ValueError(f"{path}: {exc}") from exc


def dump_model(path: Path, config: BaseModel) -> None:
    payload = config.model_dump(mode="json", exclude_none=True)
    with path.open("w", encoding="utf-8") as stream:
        if path.suffix == ".json":
            json.dump(payload, stream, indent=2, ensure_ascii=False)
        else:
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)


@dataclass(slots=True)
class ConfigLocator:
    """Directory layout under the loki-watch home.

    The home is ``$LOKI_WATCH_HOME`` when set, else ``project_root``, else the
    working directory.
    """

    project_root: Path | None = None
    create: bool = field(default=True, repr=False)

    def __post_init__(self) -> None:
        env_root = os.environ.get(HOME_ENV)
        if env_root:
            self.project_root = Path(env_root).expanduser().resolve()
        else:
            self.project_root = (self.project_root or Path.cwd()).resolve()
        if self.create:
            self.ensure_directories()

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def state_dir(self) -> Path:
        return self.data_dir / "state"

    @property
    def outputs_dir(self) -> Path:
        return self.data_dir / "outputs"

    @property
    def triggers_dir(self) -> Path:
        return self.data_dir / "triggers"

    @property
    def logs_dir(self) -> Path:
        return self.project_root / "logs"

    def ensure_directories(self) -> None:
        for directory in (self.state_dir, self.outputs_dir, self.triggers_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME

    def resolve(self, path: Path) -> Path:
        """Anchor a relative configured path at the home directory."""

        return path if path.is_absolute() else (self.project_root / path).resolve()


class ConfigRepository:
    """Global settings plus one file per trigger under ``data/triggers``."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global_cache: GlobalConfig | None = None

    def load_global_config(self) -> GlobalConfig:
        if self._global_cache is None:
            path = self.locator.global_config_path()
            if path.exists():
                self._global_cache = load_model(path, GlobalConfig)
            else:
                self.save_global_config(GlobalConfig())
        return self._global_cache

    def save_global_config(self, config: GlobalConfig) -> None:
        dump_model(self.locator.global_config_path(), config)
        self._global_cache = config

    def trigger_path(self, trigger_id: str) -> Path:
        return self.locator.triggers_dir / f"{_slugify(trigger_id)}.yaml"

    def list_trigger_files(self) -> Iterator[Path]:
        for path in sorted(self.locator.triggers_dir.iterdir()):
            if path.is_file() and path.suffix in CONFIG_EXTENSIONS:
                yield path

    def _index(self) -> dict[str, tuple[Path, TriggerConfig]]:
        """Map trigger ids to their files, rejecting two files that declare the same id."""

        triggers: dict[str, tuple[Path, TriggerConfig]] = {}
        for path in self.list_trigger_files():
            trigger = load_model(path, TriggerConfig)
            previous = triggers.get(trigger.trigger_id)
            if previous is not None:
                raise ValueError(
                    f"Trigger id {trigger.trigger_id!r} is declared by both {previous[0].name} and {path.name}"
                )
            triggers[trigger.trigger_id] = (path, trigger)
        return triggers

    def list_triggers(self) -> list[TriggerConfig]:
        return [trigger for _, trigger in self._index().values()]

    def find_trigger_file(self, trigger_id: str) -> Path | None:
        """Return the file declaring ``trigger_id``, whatever its name or extension."""

        path = self.trigger_path(trigger_id)
        if path.exists():
            trigger = load_model(path, TriggerConfig)
            if trigger.trigger_id == trigger_id:
                return path
        entry = self._index().get(trigger_id)
        return entry[0] if entry else None

    def load_trigger(self, trigger_id: str) -> TriggerConfig:
        path = self.find_trigger_file(trigger_id)
        if path is None:
            raise FileNotFoundError(f"Trigger configuration not found: {trigger_id}")
        return load_model(path, TriggerConfig)

    def save_trigger(self, config: TriggerConfig) -> Path:
        path = self.find_trigger_file(config.trigger_id) or self.trigger_path(config.trigger_id)
        dump_model(path, config)
        return path

    def delete_trigger(self, trigger_id: str) -> bool:
        path = self.find_trigger_file(trigger_id)
        if path is None:
            return False
        path.unlink()
        return True


__all__ = [
    "CONFIG_EXTENSIONS",
    "ConfigLocator",
    "ConfigRepository",
    "dump_model",
    "expand_env",
    "load_model",
]
