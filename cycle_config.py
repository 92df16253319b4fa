# cycle_config.py — environment config, loaded once at startup

from __future__ import annotations
import os
import pathlib
import typing as t
from dataclasses import dataclass, asdict

from clock import BusinessClock, parse_calendar_date

TRUTHY = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class PhaseSettings:
    public_start_day: int = 1
    public_end_day: int = 7
    preorder_start_day: int = 8

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CycleConfig:
    shop_domain: str
    access_token: str
    api_key: str
    api_version: str
    phase: PhaseSettings
    test_mode: bool
    test_date: t.Optional[str]
    business_tz: str
    mf_namespace: str
    mf_reference_key: str
    mf_phase_key: str
    mf_active_key: str
    mf_next_key: str
    mf_following_key: str
    location_id: t.Optional[str]
    dry_run: bool
    mutation_sleep_sec: float
    request_timeout_sec: int
    enable_scheduler: bool
    run_every_min: int
    data_dir: str
    log_to_stdout: bool
    slack_webhook_url: t.Optional[str]
    port: int

    @property
    def log_dir(self) -> pathlib.Path:
        return pathlib.Path(self.data_dir) / "logs"

    @property
    def state_dir(self) -> pathlib.Path:
        return pathlib.Path(self.data_dir) / "state"

    def build_clock(self) -> BusinessClock:
        override = None
        if self.test_mode and self.test_date:
            override = parse_calendar_date(self.test_date)
        return BusinessClock(self.business_tz, override)

    def public_view(self) -> dict:
        """Config without secrets, for the status page."""
        hidden = {"access_token", "api_key", "slack_webhook_url"}
        return {k: v for k, v in asdict(self).items() if k not in hidden}


def _env(env: t.Mapping[str, str], name: str, default: str = "") -> str:
    v = env.get(name)
    return v.strip() if v is not None and str(v).strip() != "" else default


def _flag(env: t.Mapping[str, str], name: str, default: str = "0") -> bool:
    return _env(env, name, default).lower() in TRUTHY


def _int(env: t.Mapping[str, str], name: str, default: int) -> int:
    raw = _env(env, name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise SystemExit(f"[FATAL] {name} must be an integer, got {raw!r}")


def _float(env: t.Mapping[str, str], name: str, default: float) -> float:
    raw = _env(env, name, str(default))
    try:
        return float(raw)
    except ValueError:
        raise SystemExit(f"[FATAL] {name} must be a number, got {raw!r}")


def _day(env: t.Mapping[str, str], name: str, default: int) -> int:
    v = _int(env, name, default)
    if not 1 <= v <= 31:
        raise SystemExit(f"[FATAL] {name} must be between 1 and 31, got {v}")
    return v


def load_phase_settings(env: t.Optional[t.Mapping[str, str]] = None) -> PhaseSettings:
    env = os.environ if env is None else env
    settings = PhaseSettings(
        public_start_day=_day(env, "PUBLIC_START_DAY", 1),
        public_end_day=_day(env, "PUBLIC_END_DAY", 7),
        preorder_start_day=_day(env, "PREORDER_START_DAY", 8),
    )
    if not (settings.public_start_day <= settings.public_end_day < settings.preorder_start_day):
        print(f"[WARN] phase days out of order (public {settings.public_start_day}-"
              f"{settings.public_end_day}, preorder from {settings.preorder_start_day})", flush=True)
    return settings


def load_config(env: t.Optional[t.Mapping[str, str]] = None) -> CycleConfig:
    env = os.environ if env is None else env

    required = ["SHOPIFY_STORE_URL", "SHOPIFY_ACCESS_TOKEN", "API_KEY"]
    for k in required:
        if not _env(env, k):
            raise SystemExit(f"[FATAL] {k} is required")

    shop = _env(env, "SHOPIFY_STORE_URL").lower()
    shop = shop.replace("https://", "").replace("http://", "").rstrip("/")

    test_mode = _flag(env, "TEST_MODE", "false")
    test_date = _env(env, "TEST_DATE") or None
    if test_date:
        try:
            parse_calendar_date(test_date)
        except ValueError as e:
            raise SystemExit(f"[FATAL] TEST_DATE: {e}")

    cfg = CycleConfig(
        shop_domain=shop,
        access_token=_env(env, "SHOPIFY_ACCESS_TOKEN"),
        api_key=_env(env, "API_KEY"),
        api_version=_env(env, "API_VERSION", "2024-10"),
        phase=load_phase_settings(env),
        test_mode=test_mode,
        test_date=test_date,
        business_tz=_env(env, "BUSINESS_TZ", "Europe/Berlin"),
        mf_namespace=_env(env, "MF_NAMESPACE", "custom"),
        mf_reference_key=_env(env, "MF_REFERENCE_KEY", "data_referencia"),
        mf_phase_key=_env(env, "MF_PHASE_KEY", "sale_phase"),
        mf_active_key=_env(env, "MF_ACTIVE_KEY", "active_product"),
        mf_next_key=_env(env, "MF_NEXT_KEY", "next_product"),
        mf_following_key=_env(env, "MF_FOLLOWING_KEY", "following_product"),
        location_id=_env(env, "LOCATION_ID") or None,
        dry_run=_flag(env, "DRY_RUN"),
        mutation_sleep_sec=_float(env, "MUTATION_SLEEP_SEC", 0.35),
        request_timeout_sec=_int(env, "REQUEST_TIMEOUT_SEC", 30),
        enable_scheduler=_flag(env, "ENABLE_SCHEDULER"),
        run_every_min=_int(env, "RUN_EVERY_MIN", 60),
        data_dir=_env(env, "DATA_DIR", "./data").rstrip("/"),
        log_to_stdout=_flag(env, "LOG_TO_STDOUT", "1"),
        slack_webhook_url=_env(env, "SLACK_WEBHOOK_URL") or None,
        port=_int(env, "PORT", 10000),
    )

    # fail at startup, not on first run
    try:
        cfg.build_clock()
    except ValueError as e:
        raise SystemExit(f"[FATAL] BUSINESS_TZ: {e}")
    return cfg
