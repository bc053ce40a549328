"""Read API service configuration YAML files.

Only the small part of a service config that decides whether an API
publishes a library for a given language is modelled here:

    type: google.api.Service
    publishing:
      library_settings:
        - python_settings:
            common:
              destinations: [PACKAGE_MANAGER]
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ConfigError

SERVICE_TYPE = "google.api.Service"
PUBLISHING_DESTINATIONS = ("GITHUB", "PACKAGE_MANAGER")


class CommonLanguageSettings(BaseModel):
    destinations: list[str] | None = None


class LanguageSettings(BaseModel):
    common: CommonLanguageSettings | None = None


class LibrarySettings(BaseModel):
    """One ``library_settings`` entry.

    Per-language sections are named ``<language>_settings`` and are kept as
    extra fields, validated only when a language is looked up.
    """

    model_config = ConfigDict(extra="allow")

    def for_language(self, language: str) -> LanguageSettings | None:
        raw = (self.model_extra or {}).get(f"{language}_settings")
        if raw is None:
            return None
        return LanguageSettings.model_validate(raw)


class Publishing(BaseModel):
    library_settings: list[LibrarySettings] | None = None


class ServiceConfig(BaseModel):
    """The parts of a ``google.api.Service`` document librarian reads."""

    type: str
    name: str = ""
    title: str = ""
    publishing: Publishing | None = None


def load_service_config(path: Path) -> ServiceConfig | None:
    """Parse a YAML file, returning None if it is not a service config.

    Raises:
        ConfigError: If the file is not valid YAML, or is a service config
            with malformed publishing settings.
    """
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"failed to parse {path}: {exc}") from exc
    if not isinstance(data, dict) or data.get("type") != SERVICE_TYPE:
        return None
    try:
        return ServiceConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid service config {path}: {exc}") from exc


def requests_library(config: ServiceConfig, language: str, source: str = "") -> bool:
    """Whether a service config asks for a ``language`` library to be published.

    Every level is optional; a missing level means "no". There must be at
    most one ``library_settings`` entry.

    Raises:
        ConfigError: If the config has more than one library_settings entry,
            or the language section is malformed.
    """
    settings = (config.publishing.library_settings if config.publishing else None) or []
    if not settings:
        return False
    if len(settings) != 1:
        raise ConfigError(
            f"{source or 'service config'}: expected one library_settings entry, "
            f"found {len(settings)}"
        )
    try:
        language_settings = settings[0].for_language(language)
    except ValidationError as exc:
        raise ConfigError(
            f"{source or 'service config'}: invalid {language}_settings: {exc}"
        ) from exc
    if language_settings is None or language_settings.common is None:
        return False
    destinations = language_settings.common.destinations or []
    return any(d in PUBLISHING_DESTINATIONS for d in destinations)
