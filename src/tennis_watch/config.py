"""Configuration objects and helpers for the availability watcher."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .classifier import DEFAULT_RULES, ClassifierRules, SiteRoutes
from .errors import ConfigurationError
from .extractor import AVAILABLE_MARKERS
from .models import Facility
from .navigation import NavigationTarget

DEFAULT_BASE_URL = "https://resv.city.meguro.tokyo.jp"
ENTRY_PATH = "/Web/Home/WgR_ModeSelect"
CALENDAR_PATH = "/Web/Yoyaku/WgR_ShisetsubetsuAkiJoukyou"
DETAIL_PATH = "/Web/Yoyaku/WgR_JikantaibetsuAkiJoukyou"

DEFAULT_FACILITIES: tuple[Facility, ...] = (
    Facility("駒場", ("駒場",)),
    Facility("区民センター", ("区民センター",)),
    Facility("碑文谷", ("碑文谷",)),
)

# Calendar cells use a triangle for "partly free"; both lead to a detail page.
CALENDAR_MARKERS: tuple[str, ...] = AVAILABLE_MARKERS + ("△",)

DECOY_LABELS: tuple[str, ...] = ("キャンセル", "戻る", "ログアウト", "ログイン", "中止")


def facility_type_target(calendar_url: Optional[str] = None) -> NavigationTarget:
    """The "search by facility type" entry on the top page."""
    return NavigationTarget(
        label="facility-type search",
        url_hint=calendar_url,
        text_hints={"施設の種類から": 30, "種類から探す": 20, "施設種類": 20, "施設から探す": 10},
        must_not_match=DECOY_LABELS,
        handler_hints=("ShisetsuShubetsu", "ShisetsubetsuAkiJoukyou"),
    )


def tennis_target(calendar_url: Optional[str] = None) -> NavigationTarget:
    """The tennis court category leading to the facility calendar."""
    return NavigationTarget(
        label="tennis courts",
        url_hint=calendar_url,
        text_hints={"庭球場": 30, "テニスコート": 20, "テニス": 10},
        must_not_match=DECOY_LABELS,
        handler_hints=("ShisetsubetsuAkiJoukyou",),
    )


def detail_target(detail_url: Optional[str] = None) -> NavigationTarget:
    """The time-slot view link shown on the calendar."""
    return NavigationTarget(
        label="time-slot view",
        url_hint=detail_url,
        text_hints={"時間帯別": 20, "時間帯": 10, "空き状況": 10},
        must_not_match=DECOY_LABELS,
        handler_hints=("Jikantaibetsu",),
        threshold=30,
    )


@dataclass(frozen=True)
class RetryBudget:
    tries: int
    base_delay: float


@dataclass(frozen=True)
class EngineConfig:
    """Everything the engine needs; built once and never mutated."""

    entry_url: str
    calendar_url: str
    detail_url: str
    facilities: tuple[Facility, ...] = DEFAULT_FACILITIES
    routes: SiteRoutes = field(default_factory=SiteRoutes)
    classifier_rules: ClassifierRules = DEFAULT_RULES
    facility_type_target: Optional[NavigationTarget] = None
    tennis_target: Optional[NavigationTarget] = None
    detail_target: Optional[NavigationTarget] = None
    calendar_markers: tuple[str, ...] = CALENDAR_MARKERS
    available_markers: tuple[str, ...] = AVAILABLE_MARKERS
    max_marks_per_facility: int = 8
    extra_delay_ms: int = 0
    settle_ms: int = 2000
    top_retry: RetryBudget = RetryBudget(3, 1.5)
    calendar_retry: RetryBudget = RetryBudget(5, 2.0)
    traversal_retry: RetryBudget = RetryBudget(4, 2.5)
    detail_retry: RetryBudget = RetryBudget(2, 2.5)
    detail_view_retry: RetryBudget = RetryBudget(4, 2.5)

    def __post_init__(self) -> None:
        if not self.facilities:
            raise ConfigurationError("At least one facility must be configured")
        if self.max_marks_per_facility < 1:
            raise ConfigurationError("max_marks_per_facility must be >= 1")
        if self.facility_type_target is None:
            object.__setattr__(self, "facility_type_target", facility_type_target(self.calendar_url))
        if self.tennis_target is None:
            object.__setattr__(self, "tennis_target", tennis_target(self.calendar_url))
        if self.detail_target is None:
            object.__setattr__(self, "detail_target", detail_target(self.detail_url))

    @classmethod
    def for_site(cls, base_url: str = DEFAULT_BASE_URL, **overrides) -> "EngineConfig":
        base = base_url.rstrip("/")
        return cls(
            entry_url=f"{base}{ENTRY_PATH}",
            calendar_url=f"{base}{CALENDAR_PATH}",
            detail_url=f"{base}{DETAIL_PATH}",
            **overrides,
        )


def parse_facilities(raw: Optional[str]) -> tuple[Facility, ...]:
    """
    Parse ``TARGET_FACILITIES``.

    Entries are comma separated; each is either a bare name pattern or
    ``key=pattern1|pattern2``. An unset or blank value selects the defaults.
    """
    if raw is None or not raw.strip():
        return DEFAULT_FACILITIES
    facilities: list[Facility] = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if "=" in entry:
            key, _, patterns = entry.partition("=")
            facilities.append(Facility(key.strip(), tuple(p.strip() for p in patterns.split("|"))))
        else:
            facilities.append(Facility(entry, (entry,)))
    if not facilities:
        raise ConfigurationError(f"TARGET_FACILITIES does not name any facility: {raw!r}")
    return tuple(facilities)


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables."""

    resend_api_key: Optional[SecretStr] = Field(None, alias="RESEND_API_KEY")
    notify_email: Optional[str] = Field(None, alias="NOTIFY_EMAIL")
    mail_from: str = Field("tennis-checker <onboarding@resend.dev>", alias="MAIL_FROM")
    notify_on_error: bool = Field(False, alias="NOTIFY_ON_ERROR")
    heartbeat_hour: Optional[int] = Field(None, alias="HEARTBEAT_HOUR", ge=0, le=23)
    extra_delay_ms: int = Field(0, alias="EXTRA_DELAY_MS", ge=0)
    proxy_server: Optional[str] = Field(None, alias="PROXY_SERVER")
    proxy_username: Optional[str] = Field(None, alias="PROXY_USERNAME")
    proxy_password: Optional[SecretStr] = Field(None, alias="PROXY_PASSWORD")
    target_facilities: Optional[str] = Field(None, alias="TARGET_FACILITIES")
    base_url: str = Field(DEFAULT_BASE_URL, alias="BASE_URL")
    headless: bool = Field(True, alias="HEADLESS")
    nav_timeout_seconds: int = Field(120, alias="NAV_TIMEOUT_SECONDS", ge=1)
    max_marks_per_facility: int = Field(8, alias="MAX_MARKS_PER_FACILITY", ge=1)
    artifacts_dir: Path = Field(Path("artifacts"), alias="ARTIFACTS_DIR")
    timezone: str = Field("Asia/Tokyo", alias="TIMEZONE")

    model_config = SettingsConfigDict(
        env_file=(".env",),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("heartbeat_hour", "proxy_server", "notify_email", "resend_api_key", mode="before")
    @classmethod
    def blank_as_unset(cls, value: object) -> object:
        """Treat empty environment values as "not configured"."""
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("target_facilities")
    @classmethod
    def check_facilities(cls, value: Optional[str]) -> Optional[str]:
        parse_facilities(value)
        return value

    @property
    def mail_enabled(self) -> bool:
        return bool(self.resend_api_key and self.resend_api_key.get_secret_value() and self.notify_email)

    @property
    def proxy(self) -> Optional[dict[str, str]]:
        """Playwright proxy settings, when a proxy is configured."""
        if not self.proxy_server:
            return None
        proxy = {"server": self.proxy_server}
        if self.proxy_username:
            proxy["username"] = self.proxy_username
        if self.proxy_password:
            proxy["password"] = self.proxy_password.get_secret_value()
        return proxy

    def engine_config(self) -> EngineConfig:
        """Build the immutable engine configuration from these settings."""
        return EngineConfig.for_site(
            self.base_url,
            facilities=parse_facilities(self.target_facilities),
            max_marks_per_facility=self.max_marks_per_facility,
            extra_delay_ms=self.extra_delay_ms,
        )
