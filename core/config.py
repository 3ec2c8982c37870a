"""Service configuration.

Settings are read from the environment. A ``.env`` file (and an optional
``.env.local`` override) at the repository root is loaded first, so local
runs and deployments use the same variable names.

Each concern gets its own dataclass section; ``load_config()`` assembles
them into a ``ServiceConfig``. Invalid values raise ``ValueError`` at load
time rather than when the value is first used.
"""

import os
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parent.parent

DEFAULT_ARTIFACT_TEMPLATES: Tuple[str, ...] = (
    "Factura_de_deudores_{number}.pdf",
    "Entrega_{number}.pdf",
)


# =============================================================================
# Environment helpers
# =============================================================================

def _get(env: Mapping[str, str], key: str, default: Optional[str] = None) -> Optional[str]:
    value = env.get(key)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _get_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    value = _get(env, key)
    if value is None:
        return default
    lowered = value.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{key} must be a boolean, got {value!r}")


def _get_int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    value = _get(env, key)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {value!r}")
    if parsed < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {parsed}")
    return parsed


def _get_float(env: Mapping[str, str], key: str, default: float, minimum: float = 0.0) -> float:
    value = _get(env, key)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError:
        raise ValueError(f"{key} must be a number, got {value!r}")
    if parsed < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {parsed}")
    return parsed


def _get_date(env: Mapping[str, str], key: str) -> Optional[date]:
    value = _get(env, key)
    if value is None:
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"{key} must be a YYYY-MM-DD date, got {value!r}")


def _get_list(env: Mapping[str, str], key: str) -> List[str]:
    value = _get(env, key)
    if value is None:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


# =============================================================================
# Sections
# =============================================================================

@dataclass
class ERPConfig:
    """SAP Business One Service Layer connection."""
    base_url: str = ""
    company_db: str = ""
    username: str = ""
    password: str = ""
    verify_ssl: bool = False
    timeout_seconds: int = 30
    page_size: int = 50

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.company_db and self.username and self.password)


@dataclass
class TransportConfig:
    """WhatsApp Web gateway the transport session talks to."""
    gateway_url: str = "http://localhost:3000"
    session_name: str = "default"
    api_key: Optional[str] = None
    poll_interval_seconds: float = 2.0
    request_timeout_seconds: float = 30.0


@dataclass
class SessionConfig:
    """Session supervisor and reconnection tuning."""
    startup_attempts: int = 3
    startup_retry_step_seconds: float = 10.0
    start_timeout_seconds: float = 120.0
    ready_timeout_seconds: float = 120.0
    pairing_timeout_seconds: float = 300.0
    ready_grace_seconds: float = 30.0
    readiness_probe_attempts: int = 5
    readiness_probe_interval_seconds: float = 10.0
    probe_timeout_seconds: float = 15.0
    send_timeout_seconds: float = 60.0
    heartbeat_interval_seconds: float = 300.0
    heartbeat_failure_threshold: int = 3
    health_check_interval_seconds: float = 86400.0
    alert_threshold_hours: float = 72.0
    alert_cooldown_hours: float = 24.0
    staleness_threshold_hours: float = 168.0
    refresh_pause_seconds: float = 10.0
    reconnect_step_seconds: float = 5.0
    reconnect_cap_seconds: float = 30.0
    reconnect_max_attempts: int = 5
    reconnect_attempt_timeout_seconds: float = 180.0
    session_info_path: Path = ROOT_DIR / "data" / "session-info.json"


@dataclass
class Salesperson:
    code: int
    phone: str
    name: str


@dataclass
class DeliveryConfig:
    """Delivery cycle behaviour."""
    artifact_dir: Path = ROOT_DIR / "data" / "pdfs"
    artifact_templates: Tuple[str, ...] = DEFAULT_ARTIFACT_TEMPLATES
    max_padding: int = 5
    verify_artifacts: bool = True
    # Issue-date floor; without PROCESS_INVOICES_FROM_DATE the service start date
    from_date: date = field(default_factory=date.today)
    max_documents_per_cycle: int = 50
    inter_item_delay_seconds: float = 3.0
    test_mode: bool = False
    test_phone: Optional[str] = None
    admin_phone: Optional[str] = None
    country_code: str = "54"
    min_phone_digits: int = 10
    company_name: str = ""
    salespeople: Dict[int, Salesperson] = field(default_factory=dict)


@dataclass
class AlertConfig:
    """SMTP settings shared by session alerts and the missed-delivery report."""
    enabled: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    use_ssl: bool = False
    sender: Optional[str] = None
    recipients: List[str] = field(default_factory=list)
    report_recipients: List[str] = field(default_factory=list)
    timeout_seconds: float = 30.0


@dataclass
class ScheduleConfig:
    """Wall-clock schedules of the background jobs (local time)."""
    cycle_minute: int = 50
    initial_cycle_delay_seconds: float = 5.0
    report_hour: int = 18
    retention_hour: int = 5
    retention_days: int = 30


@dataclass
class DashboardConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class ServiceConfig:
    """Complete configuration of the delivery service."""
    erp: ERPConfig = field(default_factory=ERPConfig)
    transport: TransportConfig = field(default_factory=TransportConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    log_level: str = "INFO"
    log_json: bool = False


# =============================================================================
# Loading
# =============================================================================

def load_env_files(root: Path = ROOT_DIR) -> None:
    """Load .env then .env.local; real environment variables always win."""
    for name in (".env", ".env.local"):
        env_path = root / name
        if env_path.exists():
            load_dotenv(env_path, override=False)


def _load_salespeople(env: Mapping[str, str]) -> Dict[int, Salesperson]:
    """Collect SALES_PERSON_<code> / SALES_PERSON_NAME_<code> pairs."""
    salespeople: Dict[int, Salesperson] = {}
    prefix = "SALES_PERSON_"
    for key, value in env.items():
        if not key.startswith(prefix):
            continue
        suffix = key[len(prefix):]
        if not suffix.isdigit() or not value.strip():
            continue
        code = int(suffix)
        name = _get(env, f"SALES_PERSON_NAME_{code}", f"Código {code}")
        salespeople[code] = Salesperson(code=code, phone=value.strip(), name=name)
    return salespeople


def load_config(env: Optional[Mapping[str, str]] = None) -> ServiceConfig:
    """Build the service configuration.

    Args:
        env: Mapping to read from. Defaults to ``os.environ`` after loading
            the .env files.

    Raises:
        ValueError: If a value cannot be parsed or the combination is invalid
    """
    if env is None:
        load_env_files()
        env = os.environ

    erp = ERPConfig(
        base_url=(_get(env, "SAP_SERVICE_LAYER_URL", "") or "").rstrip("/"),
        company_db=_get(env, "SAP_COMPANY_DB", ""),
        username=_get(env, "SAP_USERNAME", ""),
        password=_get(env, "SAP_PASSWORD", ""),
        verify_ssl=_get_bool(env, "SAP_VERIFY_SSL", False),
        timeout_seconds=_get_int(env, "SAP_TIMEOUT_SECONDS", 30, minimum=1),
        page_size=_get_int(env, "SAP_PAGE_SIZE", 50, minimum=1),
    )

    transport = TransportConfig(
        gateway_url=(_get(env, "WHATSAPP_GATEWAY_URL", "http://localhost:3000") or "").rstrip("/"),
        session_name=_get(env, "WHATSAPP_SESSION_NAME", "default"),
        api_key=_get(env, "WHATSAPP_GATEWAY_API_KEY"),
        poll_interval_seconds=_get_float(env, "WHATSAPP_POLL_INTERVAL_SECONDS", 2.0, minimum=0.1),
        request_timeout_seconds=_get_float(env, "WHATSAPP_REQUEST_TIMEOUT_SECONDS", 30.0, minimum=1.0),
    )

    session = SessionConfig(
        startup_attempts=_get_int(env, "SESSION_STARTUP_ATTEMPTS", 3, minimum=1),
        ready_timeout_seconds=_get_float(env, "SESSION_READY_TIMEOUT_SECONDS", 120.0, minimum=1.0),
        pairing_timeout_seconds=_get_float(env, "SESSION_PAIRING_TIMEOUT_SECONDS", 300.0, minimum=1.0),
        heartbeat_interval_seconds=_get_float(env, "SESSION_HEARTBEAT_SECONDS", 300.0, minimum=1.0),
        alert_threshold_hours=_get_float(env, "SESSION_ALERT_THRESHOLD_HOURS", 72.0),
        alert_cooldown_hours=_get_float(env, "SESSION_ALERT_RETRY_HOURS", 24.0),
        staleness_threshold_hours=_get_float(env, "SESSION_EXPIRY_HOURS", 168.0, minimum=1.0),
        reconnect_max_attempts=_get_int(env, "SESSION_RECONNECT_MAX_ATTEMPTS", 5, minimum=1),
        session_info_path=Path(_get(env, "SESSION_INFO_PATH", str(ROOT_DIR / "data" / "session-info.json"))),
    )

    delivery = DeliveryConfig(
        artifact_dir=Path(_get(env, "INVOICE_PDF_PATH", str(ROOT_DIR / "data" / "pdfs"))),
        max_padding=_get_int(env, "ARTIFACT_MAX_PADDING", 5),
        verify_artifacts=_get_bool(env, "VERIFY_ARTIFACTS", True),
        from_date=_get_date(env, "PROCESS_INVOICES_FROM_DATE") or date.today(),
        max_documents_per_cycle=_get_int(env, "MAX_DOCUMENTS_PER_CYCLE", 50, minimum=1),
        inter_item_delay_seconds=_get_float(env, "INTER_ITEM_DELAY_SECONDS", 3.0),
        test_mode=_get_bool(env, "TEST_MODE", False),
        test_phone=_get(env, "TEST_PHONE"),
        admin_phone=_get(env, "ADMIN_PHONE"),
        country_code=_get(env, "PHONE_COUNTRY_CODE", "54"),
        company_name=_get(env, "COMPANY_NAME", ""),
        salespeople=_load_salespeople(env),
    )
    if delivery.test_mode and not delivery.test_phone:
        raise ValueError("TEST_MODE is enabled but TEST_PHONE is not set")

    alert_recipients = _get_list(env, "SESSION_ALERT_EMAIL")
    alerts = AlertConfig(
        enabled=_get_bool(env, "SESSION_ALERT_ENABLED", False),
        smtp_host=_get(env, "EMAIL_HOST", "smtp.gmail.com"),
        smtp_port=_get_int(env, "EMAIL_PORT", 587, minimum=1),
        smtp_username=_get(env, "EMAIL_USERNAME"),
        smtp_password=_get(env, "EMAIL_PASSWORD"),
        use_ssl=_get_bool(env, "EMAIL_SECURE", False),
        sender=_get(env, "EMAIL_FROM") or _get(env, "EMAIL_USERNAME"),
        recipients=alert_recipients,
        report_recipients=_get_list(env, "REPORT_EMAIL") or alert_recipients,
    )
    if alerts.enabled and not alerts.recipients:
        raise ValueError("SESSION_ALERT_ENABLED is set but SESSION_ALERT_EMAIL is empty")

    schedule = ScheduleConfig(
        cycle_minute=_get_int(env, "CYCLE_MINUTE", 50),
        report_hour=_get_int(env, "REPORT_HOUR", 18),
        retention_hour=_get_int(env, "RETENTION_HOUR", 5),
        retention_days=_get_int(env, "PDF_RETENTION_DAYS", 30, minimum=1),
    )
    if schedule.cycle_minute > 59:
        raise ValueError("CYCLE_MINUTE must be between 0 and 59")
    for name, hour in (("REPORT_HOUR", schedule.report_hour), ("RETENTION_HOUR", schedule.retention_hour)):
        if hour > 23:
            raise ValueError(f"{name} must be between 0 and 23")

    dashboard = DashboardConfig(
        enabled=_get_bool(env, "DASHBOARD_ENABLED", True),
        host=_get(env, "DASHBOARD_HOST", "0.0.0.0"),
        port=_get_int(env, "DASHBOARD_PORT", 8000, minimum=1),
    )

    return ServiceConfig(
        erp=erp,
        transport=transport,
        session=session,
        delivery=delivery,
        alerts=alerts,
        schedule=schedule,
        dashboard=dashboard,
        log_level=(_get(env, "LOG_LEVEL", "INFO") or "INFO").upper(),
        log_json=(_get(env, "LOG_FORMAT", "text") or "text").lower() == "json",
    )
