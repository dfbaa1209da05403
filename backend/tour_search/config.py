"""Configuration loader for the tour search backend."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from typing_extensions import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

LOGGER = logging.getLogger(__name__)

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = REPO_ROOT / ".env"

FilterMode = Literal["none", "whitelist", "blacklist"]

ENV_OVERRIDES = {
    "TOUR_SEARCH_DIRECTORY_URL": ("directory", "url"),
    "TOUR_SEARCH_SPREADSHEET_URL": ("spreadsheet", "url"),
    "TOUR_SEARCH_SCENE_PATH": ("scene", "snapshot_path"),
}


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded."""


class _FrozenModel(BaseModel):
    """Base model enforcing immutability for config sections."""

    model_config = ConfigDict(frozen=True)


class PipelineConfig(_FrozenModel):
    """Pipeline-level configuration."""

    version: str = Field(..., min_length=1)


class ReadinessConfig(_FrozenModel):
    """Bounded retry settings used while waiting for the host scene graph."""

    max_attempts: int = Field(5, ge=1)
    initial_delay_seconds: float = Field(0.1, ge=0.0)
    max_delay_seconds: float = Field(2.0, ge=0.0)
    backoff_factor: float = Field(2.0, ge=1.0)


class SceneConfig(_FrozenModel):
    """Scene graph discovery settings."""

    snapshot_path: Optional[str] = None
    include_detail_catalog: bool = True
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)


class DirectoryFeedConfig(_FrozenModel):
    """Directory (business data) feed settings."""

    enabled: bool = False
    url: str = ""
    replace_tour_data: bool = True
    include_standalone_entries: bool = False
    timeout_seconds: float = Field(10.0, gt=0)


class CSVOptions(_FrozenModel):
    """Delimited-text parsing switches for the spreadsheet feed."""

    header: bool = True
    skip_empty_lines: bool = True
    dynamic_typing: bool = True
    delimiter: str = Field(",", min_length=1, max_length=1)


class SpreadsheetFeedConfig(_FrozenModel):
    """Spreadsheet feed settings."""

    enabled: bool = False
    url: str = ""
    fetch_mode: Literal["csv", "json"] = "csv"
    use_as_data_source: bool = False
    include_standalone_entries: bool = False
    timeout_seconds: float = Field(10.0, gt=0)
    csv_options: CSVOptions = Field(default_factory=CSVOptions)


class ValueFilterConfig(_FrozenModel):
    """Allow/deny list pair evaluated under a filter mode."""

    mode: FilterMode = "none"
    allowed: List[str] = Field(default_factory=list)
    blacklisted: List[str] = Field(default_factory=list)


class SceneFilterConfig(_FrozenModel):
    """Exact-name filters applied to scenes (panoramas and 3D models)."""

    mode: FilterMode = "none"
    allowed_values: List[str] = Field(default_factory=list)
    blacklisted_values: List[str] = Field(default_factory=list)
    allowed_media_indexes: List[int] = Field(default_factory=list)
    blacklisted_media_indexes: List[int] = Field(default_factory=list)


class FiltersConfig(_FrozenModel):
    """Inclusion filters applied before entries reach the corpus."""

    scenes: SceneFilterConfig = Field(default_factory=SceneFilterConfig)
    element_types: ValueFilterConfig = Field(default_factory=ValueFilterConfig)
    element_labels: ValueFilterConfig = Field(default_factory=ValueFilterConfig)
    tags: ValueFilterConfig = Field(default_factory=ValueFilterConfig)


class IncludeConfig(_FrozenModel):
    """Content inclusion switches."""

    unlabeled_with_subtitles: bool = True
    unlabeled_with_tags: bool = True
    completely_blank: bool = True
    skip_empty_labels: bool = False
    min_label_length: int = Field(0, ge=0)
    element_types: Dict[str, bool] = Field(default_factory=dict)

    def includes_type(self, entity_type: str) -> bool:
        """Return whether elements of ``entity_type`` are switched on."""

        return self.element_types.get(entity_type, True) is not False


class LabelConfig(_FrozenModel):
    """Display label fallback switches."""

    use_subtitles: bool = True
    use_tags: bool = True
    use_element_type: bool = True
    placeholder: str = Field("[Unnamed Item]", min_length=1)


class ThumbnailConfig(_FrozenModel):
    """Default thumbnail images keyed by entity type."""

    default_image: str = Field(..., min_length=1)
    default_images: Dict[str, str] = Field(default_factory=dict)

    def image_for(self, entity_type: str) -> str:
        """Return the default image configured for ``entity_type``."""

        return self.default_images.get(entity_type) or self.default_image


class FieldWeightsConfig(_FrozenModel):
    """Per-field weights handed to the matching engine."""

    label: float = Field(1.0, gt=0.0, le=1.0)
    business_name: float = Field(0.9, gt=0.0, le=1.0)
    subtitle: float = Field(0.8, gt=0.0, le=1.0)
    business_tag: float = Field(0.7, gt=0.0, le=1.0)
    tags: float = Field(0.6, gt=0.0, le=1.0)
    parent_label: float = Field(0.3, gt=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_ordering(self) -> "FieldWeightsConfig":
        ordered = [
            self.label,
            self.business_name,
            self.subtitle,
            self.business_tag,
            self.tags,
            self.parent_label,
        ]
        if any(later > earlier for earlier, later in zip(ordered, ordered[1:])):
            msg = (
                "search.field_weights must be non-increasing: label >= business_name >="
                " subtitle >= business_tag >= tags >= parent_label"
            )
            raise ValueError(msg)
        return self

    def as_mapping(self) -> Dict[str, float]:
        """Return the weights keyed by searchable field name."""

        return {
            "label": self.label,
            "business_name": self.business_name,
            "subtitle": self.subtitle,
            "business_tag": self.business_tag,
            "tags": self.tags,
            "parent_label": self.parent_label,
        }


class BoostConfig(_FrozenModel):
    """Relevance boosts assigned by provenance."""

    primary_enhanced: float = Field(3.0, gt=0.0)
    secondary_enhanced: float = Field(2.0, gt=0.0)
    labeled: float = Field(1.5, gt=0.0)
    unlabeled: float = Field(1.0, gt=0.0)
    child: float = Field(0.8, gt=0.0)

    @model_validator(mode="after")
    def _validate_ordering(self) -> "BoostConfig":
        ordered = [self.primary_enhanced, self.secondary_enhanced, self.labeled, self.unlabeled, self.child]
        if any(later > earlier for earlier, later in zip(ordered, ordered[1:])):
            msg = "search.boosts must be non-increasing from primary_enhanced down to child"
            raise ValueError(msg)
        return self


class ResultTypeFilterConfig(_FrozenModel):
    """Presentation-level filter on result groups."""

    mode: FilterMode = "none"
    allowed_types: List[str] = Field(default_factory=list)
    blacklisted_types: List[str] = Field(default_factory=list)


class RelatedCriterionConfig(_FrozenModel):
    """One weighted similarity criterion; a zero weight disables it."""

    enabled: bool = True
    weight: float = Field(1.0, ge=0.0)

    @property
    def active(self) -> bool:
        return self.enabled and self.weight > 0


class RelatedCriteriaConfig(_FrozenModel):
    """Criteria scoring how closely two entries are related."""

    group_type: RelatedCriterionConfig = Field(default_factory=RelatedCriterionConfig)
    tags: RelatedCriterionConfig = Field(default_factory=lambda: RelatedCriterionConfig(weight=0.8))
    parent: RelatedCriterionConfig = Field(default_factory=lambda: RelatedCriterionConfig(weight=0.6))
    metadata: RelatedCriterionConfig = Field(
        default_factory=lambda: RelatedCriterionConfig(enabled=False, weight=0.5)
    )


class RelatedContentConfig(_FrozenModel):
    """Settings for suggesting entries related to a selected one."""

    max_items: int = Field(3, ge=1)
    criteria: RelatedCriteriaConfig = Field(default_factory=RelatedCriteriaConfig)


class SearchConfig(_FrozenModel):
    """Matching engine and presentation settings."""

    threshold: float = Field(0.4, ge=0.0, le=1.0)
    min_search_chars: int = Field(2, ge=1)
    max_results: int = Field(50, ge=1)
    field_weights: FieldWeightsConfig = Field(default_factory=FieldWeightsConfig)
    boosts: BoostConfig = Field(default_factory=BoostConfig)
    type_order: List[str] = Field(default_factory=list)
    display_labels: Dict[str, str] = Field(default_factory=dict)
    result_types: ResultTypeFilterConfig = Field(default_factory=ResultTypeFilterConfig)
    related_content: RelatedContentConfig = Field(default_factory=RelatedContentConfig)

    @field_validator("type_order")
    @classmethod
    def _unique_type_order(cls, value: List[str]) -> List[str]:
        seen: List[str] = []
        for entry in value:
            if entry in seen:
                msg = f"search.type_order lists '{entry}' more than once"
                raise ValueError(msg)
            seen.append(entry)
        return seen


class ServiceConfig(_FrozenModel):
    """Build service settings."""

    feed_deadline_seconds: float = Field(15.0, gt=0)
    build_on_startup: bool = True
    allowed_origins: List[str] = Field(default_factory=list)


class AppConfig(_FrozenModel):
    """Top-level application configuration composed from config.yaml."""

    pipeline: PipelineConfig
    scene: SceneConfig = Field(default_factory=SceneConfig)
    directory: DirectoryFeedConfig = Field(default_factory=DirectoryFeedConfig)
    spreadsheet: SpreadsheetFeedConfig = Field(default_factory=SpreadsheetFeedConfig)
    filters: FiltersConfig = Field(default_factory=FiltersConfig)
    include: IncludeConfig = Field(default_factory=IncludeConfig)
    labels: LabelConfig = Field(default_factory=LabelConfig)
    thumbnails: ThumbnailConfig
    search: SearchConfig = Field(default_factory=SearchConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)

    @staticmethod
    def default_path() -> Path:
        """Return the default location of the configuration file.

        Returns:
            Path: Absolute path to config.yaml at the repository root.
        """
        return REPO_ROOT / "config.yaml"


def _determine_env_file_path() -> Optional[Path]:
    """Return the path to the environment file if one should be loaded."""

    override = os.getenv("TOUR_SEARCH_ENV_FILE")
    if override:
        candidate = Path(override).expanduser()
        if candidate.exists():
            return candidate
        LOGGER.warning("Configured environment file override does not exist: %s", candidate)
        return None
    if DEFAULT_ENV_FILE.exists():
        return DEFAULT_ENV_FILE
    return None


def _strip_inline_comment(value: str) -> str:
    """Remove inline comments from an environment value when unquoted."""

    comment_index = value.find("#")
    if comment_index == -1:
        return value
    return value[:comment_index].rstrip()


def _load_env_file(path: Path) -> None:
    """Populate ``os.environ`` with values read from a ``.env`` file."""

    try:
        with path.open("r", encoding="utf-8") as handle:
            for raw_line in handle:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if line.lower().startswith("export "):
                    line = line[7:].lstrip()
                if "=" not in line:
                    continue
                key, raw_value = line.split("=", 1)
                key = key.strip()
                if not key:
                    continue
                existing_value = os.environ.get(key)
                if existing_value is not None and existing_value.strip() != "":
                    continue
                value = raw_value.strip()
                if not value:
                    os.environ[key] = ""
                    continue
                if value[0] in {'"', "'"} and value[-1] == value[0]:
                    os.environ[key] = value[1:-1]
                    continue
                os.environ[key] = _strip_inline_comment(value)
    except OSError:
        LOGGER.warning("Unable to read environment file at %s", path)


def _apply_environment_overrides(raw_content: Dict[str, Any]) -> Dict[str, Any]:
    """Merge environment-based overrides into the raw configuration mapping.

    Args:
        raw_content: Parsed YAML configuration prior to Pydantic validation.

    Returns:
        Dict[str, Any]: Configuration mapping with environment overrides applied.
    """

    env_file_path = _determine_env_file_path()
    if env_file_path is not None:
        _load_env_file(env_file_path)

    for env_key, (section, field_name) in ENV_OVERRIDES.items():
        raw = os.getenv(env_key)
        if raw is None or not raw.strip():
            continue
        section_content = raw_content.setdefault(section, {})
        if not isinstance(section_content, dict):
            continue
        section_content[field_name] = raw.strip()
        LOGGER.info("Configuration %s.%s overridden from %s", section, field_name, env_key)
    return raw_content


def _read_yaml(path: Path) -> Dict[str, Any]:
    """Read YAML content from disk.

    Args:
        path: Location of the YAML file.

    Returns:
        Dict[str, Any]: Parsed YAML content.

    Raises:
        ConfigError: If the file cannot be read or parsed.
    """
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except FileNotFoundError as exc:
        LOGGER.error("Configuration file missing at %s", path)
        raise ConfigError("Configuration file not found") from exc
    except yaml.YAMLError as exc:
        LOGGER.error("Invalid YAML syntax in %s", path)
        raise ConfigError("Invalid YAML syntax") from exc
    if not isinstance(data, dict):
        LOGGER.error("Configuration root must be a mapping: %s", path)
        raise ConfigError("Configuration root must be a mapping")
    return data


@lru_cache(maxsize=1)
def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from YAML.

    Args:
        path: Optional override path to the YAML file.

    Returns:
        AppConfig: Parsed configuration object.

    Raises:
        ConfigError: If the configuration cannot be loaded or validated.
    """
    config_path = path or AppConfig.default_path()
    raw_content = _read_yaml(config_path)
    raw_content = _apply_environment_overrides(raw_content)
    try:
        return AppConfig(**raw_content)
    except ValidationError as exc:
        LOGGER.error("Invalid configuration values: %s", exc)
        raise ConfigError("Configuration validation failed") from exc
