"""Settings for the nearby proximity-privacy service."""

from __future__ import annotations

from typing import Optional, Tuple, Union

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DAY_SECONDS = 24 * 60 * 60
HOUR_SECONDS = 60 * 60


def _env_field(default, *env_names: str):
	if env_names:
		alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
		return Field(default=default, validation_alias=alias)
	return Field(default=default)


class Settings(BaseSettings):
	redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")
	environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")

	# Fuzz radii in meters. The hidden tier applies when the subject sets hide_distance.
	fuzz_min_radius_m: int = _env_field(20, "FUZZ_MIN_RADIUS_M")
	fuzz_max_radius_m: int = _env_field(100, "FUZZ_MAX_RADIUS_M")
	fuzz_hidden_min_radius_m: int = _env_field(200, "FUZZ_HIDDEN_MIN_RADIUS_M")
	fuzz_hidden_max_radius_m: int = _env_field(400, "FUZZ_HIDDEN_MAX_RADIUS_M")

	# Freshness tiers: age <= solid -> solid, <= faded -> faded, otherwise hidden
	freshness_solid_seconds: int = _env_field(3 * DAY_SECONDS, "FRESHNESS_SOLID_SECONDS")
	freshness_faded_seconds: int = _env_field(6 * DAY_SECONDS, "FRESHNESS_FADED_SECONDS")

	# Viewport span (degrees) breakpoints, widest first. Bucket index = number of breakpoints passed.
	zoom_breakpoints: Union[str, Tuple[float, ...]] = _env_field((0.30, 0.15, 0.08, 0.04), "ZOOM_BREAKPOINTS")

	publish_window_seconds: int = _env_field(6 * HOUR_SECONDS, "PUBLISH_WINDOW_SECONDS")

	crossed_radius_m: int = _env_field(1000, "CROSSED_RADIUS_M")
	crossed_cooldown_seconds: int = _env_field(6 * HOUR_SECONDS, "CROSSED_COOLDOWN_SECONDS")
	crossed_pair_dedupe_seconds: int = _env_field(DAY_SECONDS, "CROSSED_PAIR_DEDUPE_SECONDS")
	crossed_event_ttl_seconds: int = _env_field(7 * DAY_SECONDS, "CROSSED_EVENT_TTL_SECONDS")
	crossed_scan_timeout_seconds: float = _env_field(2.0, "CROSSED_SCAN_TIMEOUT_SECONDS")
	crossed_notification_title: str = _env_field("Someone crossed your path", "CROSSED_NOTIFICATION_TITLE")
	crossed_notification_body: str = _env_field(
		"Someone nearby crossed paths with you recently. Open Nearby to look around.",
		"CROSSED_NOTIFICATION_BODY",
	)

	# Raw server-side range query and the true-distance cutoff applied before fuzzing.
	nearby_query_radius_m: int = _env_field(1000, "NEARBY_QUERY_RADIUS_M")
	nearby_display_radius_m: int = _env_field(1000, "NEARBY_DISPLAY_RADIUS_M")
	nearby_max_results: int = _env_field(200, "NEARBY_MAX_RESULTS")

	crossing_radius_m: int = _env_field(1000, "CROSSING_RADIUS_M")
	crossing_cooldown_seconds: int = _env_field(DAY_SECONDS, "CROSSING_COOLDOWN_SECONDS")
	crossing_unlock_threshold: int = _env_field(10, "CROSSING_UNLOCK_THRESHOLD")
	crossing_unlock_seconds: int = _env_field(48 * HOUR_SECONDS, "CROSSING_UNLOCK_SECONDS")
	crossing_history_limit: int = _env_field(15, "CROSSING_HISTORY_LIMIT")
	crossing_history_ttl_seconds: int = _env_field(14 * DAY_SECONDS, "CROSSING_HISTORY_TTL_SECONDS")
	# Idle pair tallies lapse after this long without a counted crossing.
	crossing_tally_ttl_seconds: int = _env_field(30 * DAY_SECONDS, "CROSSING_TALLY_TTL_SECONDS")
	crossed_paths_page_limit: int = _env_field(50, "CROSSED_PATHS_PAGE_LIMIT")

	obs_enabled: bool = _env_field(True, "OBS_ENABLED")
	obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
	obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")
	obs_metrics_public: bool = _env_field(True, "OBS_METRICS_PUBLIC")
	obs_admin_token: Optional[str] = _env_field(None, "OBS_ADMIN_TOKEN")
	service_name: str = _env_field("nearby-api", "SERVICE_NAME")
	git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")

	model_config = SettingsConfigDict(
		env_prefix="",
		env_file=".env",
		case_sensitive=False,
		extra="ignore",
	)

	# Environment helpers
	def is_prod(self) -> bool:
		return self.environment.lower() in ("prod", "production", "live")

	def is_dev(self) -> bool:
		return self.environment.lower() in ("dev", "development")

	def fuzz_bounds(self, hide_distance: bool) -> Tuple[int, int]:
		if hide_distance:
			return self.fuzz_hidden_min_radius_m, self.fuzz_hidden_max_radius_m
		return self.fuzz_min_radius_m, self.fuzz_max_radius_m

	@field_validator("zoom_breakpoints", mode="before")
	def _split_breakpoints(cls, value):  # type: ignore[override]
		"""Accept a comma-separated string, a JSON list, or any sequence of numbers."""
		if isinstance(value, str):
			text = value.strip().strip("[]()")
			return tuple(float(part) for part in text.split(",") if part.strip())
		if isinstance(value, (list, tuple)):
			return tuple(float(item) for item in value)
		return value

	@field_validator("obs_log_level", mode="after")
	def _normalise_level(cls, value: str) -> str:  # type: ignore[override]
		return value.upper()

	@model_validator(mode="after")
	def _check_policy(self) -> "Settings":
		if self.fuzz_min_radius_m < 1 or self.fuzz_hidden_min_radius_m < 1:
			raise ValueError("fuzz minimum radius must be at least 1 meter")
		if self.fuzz_min_radius_m > self.fuzz_max_radius_m:
			raise ValueError("fuzz_min_radius_m must not exceed fuzz_max_radius_m")
		if self.fuzz_hidden_min_radius_m > self.fuzz_hidden_max_radius_m:
			raise ValueError("fuzz_hidden_min_radius_m must not exceed fuzz_hidden_max_radius_m")
		if self.freshness_solid_seconds > self.freshness_faded_seconds:
			raise ValueError("freshness_solid_seconds must not exceed freshness_faded_seconds")
		if self.crossed_event_ttl_seconds < max(self.crossed_cooldown_seconds, self.crossed_pair_dedupe_seconds):
			raise ValueError("crossed_event_ttl_seconds must cover the cooldown and pair dedupe windows")
		if self.crossing_tally_ttl_seconds < max(self.crossing_cooldown_seconds, self.crossing_unlock_seconds):
			raise ValueError("crossing_tally_ttl_seconds must cover the crossing cooldown and unlock windows")
		points = tuple(self.zoom_breakpoints)
		if any(later >= earlier for earlier, later in zip(points, points[1:])):
			raise ValueError("zoom_breakpoints must be strictly descending")
		return self


settings = Settings()
