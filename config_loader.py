"""Loading and validation of the calendar configuration file."""
import json
import logging
import os
from typing import Any, Dict, List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    ValidationError,
    field_validator,
)

from processor.models import (
    VIEW_KINDS,
    AppConfig,
    CalendarSourceConfig,
    DisplayConfig,
    RefreshConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.json'

_cached_config: Optional[AppConfig] = None


class ConfigError(ValueError):
    """Raised when the configuration file is missing or invalid."""


ViewKind = Literal['week', 'weeknext', '4week', 'month']


class CalendarSourceSchema(BaseModel):
    """One entry of the calendars list."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    name: str
    url: HttpUrl
    colour: str
    enabled: bool
    hide_timed_events: bool = Field(default=False, alias='hideTimedEvents')


class DisplaySchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    default_view: ViewKind = Field(alias='defaultView')
    enabled_views: List[ViewKind] = Field(
        default_factory=lambda: list(VIEW_KINDS), min_length=1, alias='enabledViews'
    )
    agenda_days: int = Field(default=2, ge=1, le=14, alias='agendaDays')
    week_starts_on: Literal[0, 1] = Field(default=1, alias='weekStartsOn')
    time_format: Literal['12h', '24h'] = Field(default='12h', alias='timeFormat')
    grid_start_hour: int = Field(default=6, ge=0, le=23, alias='gridStartHour')
    grid_end_hour: int = Field(default=22, ge=1, le=24, alias='gridEndHour')


class RefreshSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_poll_interval_minutes: float = Field(default=5, ge=1, alias='clientPollIntervalMinutes')
    server_cache_ttl_minutes: float = Field(default=15, ge=1, alias='serverCacheTTLMinutes')


class AppConfigSchema(BaseModel):
    """Shape of config.json; keys are camelCase."""
    calendars: List[CalendarSourceSchema] = Field(min_length=1)
    display: DisplaySchema
    refresh: RefreshSchema = Field(default_factory=RefreshSchema)
    timezone: str = 'Europe/London'

    @field_validator('calendars')
    @classmethod
    def _unique_ids(cls, value: List[CalendarSourceSchema]) -> List[CalendarSourceSchema]:
        ids = [calendar.id for calendar in value]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"duplicate ids {', '.join(duplicates)}")
        return value

    @field_validator('timezone')
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown IANA zone {value!r}")
        return value


def get_config(path: Optional[str] = None) -> AppConfig:
    """
    Return the application configuration, loading it on first use.

    Args:
        path: Config file path (default: CALENDAR_CONFIG_PATH or config.json)

    Returns:
        Validated AppConfig

    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config(path or os.environ.get('CALENDAR_CONFIG_PATH', DEFAULT_CONFIG_PATH))
    return _cached_config


def clear_config_cache() -> None:
    global _cached_config
    _cached_config = None


def load_config(path: str) -> AppConfig:
    """
    Read and validate a JSON configuration file.

    Args:
        path: Path to the configuration file

    Returns:
        Validated AppConfig

    Raises:
        ConfigError: If the file cannot be read or is invalid
    """
    try:
        with open(path, encoding='utf-8') as f:
            raw = f.read()
    except OSError as e:
        raise ConfigError(
            f"Could not read {path}. Copy config.example.json to {path} "
            f"and fill in your calendar URLs."
        ) from e

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path} is not valid JSON: {e}") from e

    config = parse_config(data)
    logger.info(f"Loaded configuration with {len(config.calendars)} calendars from {path}")
    return config


def parse_config(data: Any) -> AppConfig:
    """
    Validate raw configuration data and apply defaults.

    Args:
        data: Parsed JSON document

    Returns:
        Validated AppConfig

    Raises:
        ConfigError: Listing every validation issue found
    """
    try:
        schema = AppConfigSchema.model_validate(data)
    except ValidationError as e:
        issues = [f"{_error_path(error['loc'])}: {error['msg']}" for error in e.errors()]
        raise ConfigError("Invalid config:\n" + "\n".join(f"  - {issue}" for issue in issues)) from e

    display = schema.display
    return AppConfig(
        calendars=[
            CalendarSourceConfig(
                id=calendar.id,
                name=calendar.name,
                url=str(calendar.url),
                colour=calendar.colour,
                enabled=calendar.enabled,
                hide_timed_events=calendar.hide_timed_events
            )
            for calendar in schema.calendars
        ],
        display=DisplayConfig(
            default_view=display.default_view,
            enabled_views=list(display.enabled_views),
            agenda_days=display.agenda_days,
            week_starts_on=display.week_starts_on,
            time_format=display.time_format,
            grid_start_hour=display.grid_start_hour,
            grid_end_hour=display.grid_end_hour
        ),
        refresh=RefreshConfig(
            client_poll_interval_minutes=schema.refresh.client_poll_interval_minutes,
            server_cache_ttl_minutes=schema.refresh.server_cache_ttl_minutes
        ),
        timezone=schema.timezone
    )


def _error_path(loc) -> str:
    path = ''
    for part in loc:
        if isinstance(part, int):
            path += f"[{part}]"
        else:
            path += f".{part}" if path else str(part)
    return path or 'config'


def to_client_config(config: AppConfig) -> Dict[str, Any]:
    """
    Build the configuration sent to clients, without feed URLs.

    Args:
        config: Application configuration

    Returns:
        JSON-serializable dictionary with camelCase keys
    """
    display = config.display
    return {
        'display': {
            'defaultView': display.default_view,
            'enabledViews': list(display.enabled_views),
            'agendaDays': display.agenda_days,
            'weekStartsOn': display.week_starts_on,
            'timeFormat': display.time_format,
            'gridStartHour': display.grid_start_hour,
            'gridEndHour': display.grid_end_hour
        },
        'calendars': [
            {
                'id': calendar.id,
                'name': calendar.name,
                'colour': calendar.colour,
                'enabled': calendar.enabled,
                'hideTimedEvents': calendar.hide_timed_events
            }
            for calendar in config.calendars
        ],
        'refresh': {
            'clientPollIntervalMinutes': config.refresh.client_poll_interval_minutes,
            'serverCacheTTLMinutes': config.refresh.server_cache_ttl_minutes
        },
        'timezone': config.timezone
    }

