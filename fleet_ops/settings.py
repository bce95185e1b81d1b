"""
File: fleet_ops/settings.py
Purpose: Environment-backed configuration for the fleet-ops service.
Key responsibilities:
- Parse simulation constants (tick, speed, battery drain, arrival tolerance).
- Parse routing, assistant, demo-data and RabbitMQ settings.
"""

from dataclasses import dataclass
import os
from pathlib import Path


DEFAULT_DATA_DIR = Path(__file__).parent / "data"


def _bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean env var with a fallback."""
    raw = os.getenv(name, "")
    if raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Fleet-ops configuration parsed from environment."""
    host: str = os.getenv("FLEET_OPS_HOST", "0.0.0.0")
    port: int = int(os.getenv("FLEET_OPS_PORT", "8000"))
    sim_tick_ms: int = int(os.getenv("SIM_TICK_MS", "1000"))
    avg_speed_mps: float = float(os.getenv("SIM_AVG_SPEED_MPS", "12"))
    battery_drain: float = float(os.getenv("SIM_BATTERY_DRAIN", "0.5"))
    default_battery: float = float(os.getenv("SIM_DEFAULT_BATTERY", "80"))
    arrival_tolerance_m: float = float(os.getenv("SIM_ARRIVAL_TOLERANCE_M", "1.0"))
    autostart_deliveries: int = int(os.getenv("SIM_AUTOSTART_DELIVERIES", "3"))
    route_provider: str = os.getenv("ROUTE_PROVIDER", "auto")
    mapbox_token: str = os.getenv("MAPBOX_TOKEN", "")
    mapbox_profile: str = os.getenv("MAPBOX_PROFILE", "driving-traffic")
    mapbox_base_url: str = os.getenv("MAPBOX_BASE_URL", "https://api.mapbox.com")
    route_timeout_s: float = float(os.getenv("ROUTE_TIMEOUT_S", "10"))
    google_ai_api_key: str = os.getenv("GOOGLE_AI_API_KEY", "")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
    gemini_base_url: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com")
    chat_timeout_s: float = float(os.getenv("CHAT_TIMEOUT_S", "15"))
    fleet_data_dir: str = os.getenv("FLEET_DATA_DIR", str(DEFAULT_DATA_DIR))
    fleet_city_code: str = os.getenv("FLEET_CITY_CODE", "TJ")
    fleet_max_vehicles: int = int(os.getenv("FLEET_MAX_VEHICLES", "5"))
    events_enabled: bool = _bool_env("EVENTS_ENABLED", False)
    rabbit_host: str = os.getenv("RABBITMQ_HOST", "rabbitmq")
    rabbit_port: int = int(os.getenv("RABBITMQ_PORT", "5672"))
    rabbit_user: str = os.getenv("RABBITMQ_USER", "fleet")
    rabbit_pass: str = os.getenv("RABBITMQ_PASS", "fleetpass")
    exchange_name: str = "fleet.events"

    @property
    def tick_interval_s(self) -> float:
        return self.sim_tick_ms / 1000.0


settings = Settings()


def rabbit_url(cfg: Settings | None = None) -> str:
    cfg = cfg or settings
    return f"amqp://{cfg.rabbit_user}:{cfg.rabbit_pass}@{cfg.rabbit_host}:{cfg.rabbit_port}/"
