import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from gasto_categorizer.logger import get_logger

logger = get_logger(__name__)


CONFIG_FILENAME = "config.yaml"

_CONFIG_FILE_PATH: str | None = None
_CONFIG_FILE_VALUES: dict[str, str] = {}
_EXTERNAL_ENV_KEYS: set[str] = set()

_CONFIG_KEYS = (
    "LOG_LEVEL",
    "LOG_DIR",
    "DATA_DIR",
    "LEDGER_API_URL",
    "LEDGER_API_TOKEN",
    "LEDGER_TIMEOUT_SECONDS",
    "LEDGER_SOURCE_TAG",
    "CATEGORY_CACHE_TTL",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_BASE_URL",
    "OPENAI_EMBEDDING_MODEL",
    "AI_TIMEOUT_SECONDS",
    "NOTIFY_WEBHOOK_URL",
    "DISCORD_WEBHOOK_URL",
    "RAG_THRESHOLD",
    "RAG_REVALIDATION_THRESHOLD",
    "RAG_CONFIDENCE_BLEND",
    "RAG_MIN_SCORE",
    "RAG_MAX_RESULTS",
    "RAG_VECTOR_ENABLED",
    "MIN_CONFIDENCE",
    "AUTO_REGISTER_THRESHOLD",
    "CONFIRMATION_TIMEOUT_SECONDS",
    "EXPIRATION_WARNING_SECONDS",
    "EXPIRATION_INTERVAL_SECONDS",
    "CLEANUP_INTERVAL_SECONDS",
    "DELIVERED_RETENTION_SECONDS",
    "DELIVERY_INTERVAL_SECONDS",
    "DELIVERY_MAX_ATTEMPTS",
    "DELIVERY_BATCH_SIZE",
    "DELIVER_ON_CONFIRM",
    "LIST_CONTEXT_TTL_SECONDS",
    "ENABLE_JOBS",
)


def _resolve_dotenv_path() -> str | None:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        candidate = os.path.join(config_dir, ".env")
        if os.path.exists(candidate):
            return candidate
    resolved = find_dotenv(usecwd=True)
    return resolved or None


def _resolve_config_path() -> str:
    config_dir = os.getenv("CONFIG_DIR")
    if config_dir:
        return os.path.join(config_dir, CONFIG_FILENAME)
    cwd = os.getcwd()
    candidate = os.path.join(cwd, "config", CONFIG_FILENAME)
    if os.path.exists(candidate):
        return candidate
    return os.path.join(cwd, CONFIG_FILENAME)


def _strip_inline_comment(raw_value: str) -> str:
    in_single = False
    in_double = False
    escaped = False
    for index, char in enumerate(raw_value):
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if char == '"' and not in_single:
            in_double = not in_double
            continue
        if char == "'" and not in_double:
            in_single = not in_single
            continue
        if char == "#" and not in_single and not in_double:
            return raw_value[:index].rstrip()
    return raw_value


def _unquote_value(raw_value: str) -> str:
    if len(raw_value) < 2:
        return raw_value
    if raw_value[0] == raw_value[-1] == '"':
        return raw_value[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    if raw_value[0] == raw_value[-1] == "'":
        return raw_value[1:-1].replace("\\'", "'").replace("\\\\", "\\")
    return raw_value


def read_config_file(path: str | None) -> dict[str, str]:
    if not path or not os.path.exists(path):
        return {}

    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            if ":" not in stripped:
                continue
            key, raw_value = stripped.split(":", 1)
            key = key.strip()
            if not key:
                continue
            cleaned = _strip_inline_comment(raw_value).strip()
            if not cleaned:
                continue
            value = _unquote_value(cleaned)
            if value:
                values[key] = value
    return values


def load_environment() -> None:
    global _CONFIG_FILE_PATH
    global _CONFIG_FILE_VALUES
    global _EXTERNAL_ENV_KEYS

    dotenv_path = _resolve_dotenv_path()
    if dotenv_path:
        load_dotenv(dotenv_path=dotenv_path, override=False)

    _EXTERNAL_ENV_KEYS = set(os.environ.keys())

    _CONFIG_FILE_PATH = _resolve_config_path()
    _CONFIG_FILE_VALUES = read_config_file(_CONFIG_FILE_PATH)

    for key in _CONFIG_KEYS:
        if key not in os.environ and key in _CONFIG_FILE_VALUES:
            os.environ[key] = _CONFIG_FILE_VALUES[key]


def get_config_path() -> str | None:
    return _CONFIG_FILE_PATH


def is_env_override(name: str) -> bool:
    return name in _EXTERNAL_ENV_KEYS


def ensure_dir(path: str | None) -> None:
    if path and path not in {".", "./"}:
        os.makedirs(path, exist_ok=True)


def get_env_int(name: str, default: int, min_value: int | None = None) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning(
            "[ENV] %s='%s' below minimum %s, using default %s.",
            name,
            raw,
            min_value,
            default,
        )
        return default
    return value


def get_env_float(
    name: str,
    default: float = 0.0,
    *,
    min_value: float | None = None,
    max_value: float | None = None,
) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[ENV] Invalid %s='%s', using default %.2f.", name, raw, default)
        return default
    if (min_value is not None and value < min_value) or (
        max_value is not None and value > max_value
    ):
        logger.warning(
            "[ENV] %s='%s' outside [%s, %s], using default %s.",
            name,
            raw,
            min_value,
            max_value,
            default,
        )
        return default
    return value


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    logger.warning("[ENV] Invalid %s='%s', using default %s.", name, raw, default)
    return default


@dataclass(frozen=True)
class EngineSettings:
    rag_threshold: float = 0.6
    rag_revalidation_threshold: float = 0.5
    rag_confidence_blend: float = 0.1
    rag_min_score: float = 0.4
    rag_max_results: int = 3
    rag_vector_enabled: bool = False
    min_confidence: float = 0.5
    auto_register_threshold: float = 0.9
    confirmation_timeout_seconds: int = 300
    expiration_warning_seconds: int = 30
    expiration_interval_seconds: int = 30
    cleanup_interval_seconds: int = 300
    delivered_retention_seconds: int = 3600
    delivery_interval_seconds: int = 300
    delivery_max_attempts: int = 5
    delivery_batch_size: int = 10
    deliver_on_confirm: bool = True
    list_context_ttl_seconds: int = 600
    ai_timeout_seconds: float = 20.0
    category_cache_ttl: float = 60.0
    ledger_source_tag: str = "whatsapp"
    enable_jobs: bool = True

    @classmethod
    def from_env(cls) -> "EngineSettings":
        defaults = cls()
        return cls(
            rag_threshold=get_env_float(
                "RAG_THRESHOLD", defaults.rag_threshold, min_value=0.0, max_value=1.0
            ),
            rag_revalidation_threshold=get_env_float(
                "RAG_REVALIDATION_THRESHOLD",
                defaults.rag_revalidation_threshold,
                min_value=0.0,
                max_value=1.0,
            ),
            rag_confidence_blend=get_env_float(
                "RAG_CONFIDENCE_BLEND", defaults.rag_confidence_blend, min_value=0.0, max_value=1.0
            ),
            rag_min_score=get_env_float(
                "RAG_MIN_SCORE", defaults.rag_min_score, min_value=0.0, max_value=1.0
            ),
            rag_max_results=get_env_int("RAG_MAX_RESULTS", defaults.rag_max_results, min_value=1),
            rag_vector_enabled=get_env_bool("RAG_VECTOR_ENABLED", defaults.rag_vector_enabled),
            min_confidence=get_env_float(
                "MIN_CONFIDENCE", defaults.min_confidence, min_value=0.0, max_value=1.0
            ),
            auto_register_threshold=get_env_float(
                "AUTO_REGISTER_THRESHOLD",
                defaults.auto_register_threshold,
                min_value=0.0,
                max_value=1.0,
            ),
            confirmation_timeout_seconds=get_env_int(
                "CONFIRMATION_TIMEOUT_SECONDS", defaults.confirmation_timeout_seconds, min_value=1
            ),
            expiration_warning_seconds=get_env_int(
                "EXPIRATION_WARNING_SECONDS", defaults.expiration_warning_seconds, min_value=0
            ),
            expiration_interval_seconds=get_env_int(
                "EXPIRATION_INTERVAL_SECONDS", defaults.expiration_interval_seconds, min_value=1
            ),
            cleanup_interval_seconds=get_env_int(
                "CLEANUP_INTERVAL_SECONDS", defaults.cleanup_interval_seconds, min_value=1
            ),
            delivered_retention_seconds=get_env_int(
                "DELIVERED_RETENTION_SECONDS", defaults.delivered_retention_seconds, min_value=0
            ),
            delivery_interval_seconds=get_env_int(
                "DELIVERY_INTERVAL_SECONDS", defaults.delivery_interval_seconds, min_value=1
            ),
            delivery_max_attempts=get_env_int(
                "DELIVERY_MAX_ATTEMPTS", defaults.delivery_max_attempts, min_value=1
            ),
            delivery_batch_size=get_env_int(
                "DELIVERY_BATCH_SIZE", defaults.delivery_batch_size, min_value=1
            ),
            deliver_on_confirm=get_env_bool("DELIVER_ON_CONFIRM", defaults.deliver_on_confirm),
            list_context_ttl_seconds=get_env_int(
                "LIST_CONTEXT_TTL_SECONDS", defaults.list_context_ttl_seconds, min_value=1
            ),
            ai_timeout_seconds=get_env_float(
                "AI_TIMEOUT_SECONDS", defaults.ai_timeout_seconds, min_value=0.1
            ),
            category_cache_ttl=get_env_float(
                "CATEGORY_CACHE_TTL", defaults.category_cache_ttl, min_value=0.0
            ),
            ledger_source_tag=os.getenv("LEDGER_SOURCE_TAG") or defaults.ledger_source_tag,
            enable_jobs=get_env_bool("ENABLE_JOBS", defaults.enable_jobs),
        )


_SENSITIVE_ENV_KEYS = (
    "KEY",
    "TOKEN",
    "SECRET",
    "PASSWORD",
    "PASS",
    "AUTH",
    "BEARER",
    "PRIVATE",
    "WEBHOOK",
)


def _should_mask_env_value(name: str, value: str) -> bool:
    upper_name = name.upper()
    if any(marker in upper_name for marker in _SENSITIVE_ENV_KEYS):
        return True
    if value.startswith("sk-") or value.startswith("rk-"):
        return True
    if value.startswith("Bearer ") or value.startswith("bearer "):
        return True
    if value.startswith("eyJ") and value.count(".") == 2:
        return True
    return False


def _mask_env_value(name: str, value: str) -> str:
    sanitized = value.replace("\r", "\\r").replace("\n", "\\n")
    if not _should_mask_env_value(name, sanitized):
        return sanitized
    if len(sanitized) <= 4:
        return "****"
    return f"{sanitized[:2]}...{sanitized[-2:]}"


def log_environment() -> None:
    logger.info("[ENV] Logging configured environment variables (masked where needed).")
    for key in _CONFIG_KEYS:
        raw_value = os.getenv(key)
        value = "<unset>" if raw_value is None else _mask_env_value(key, raw_value)
        logger.info("[ENV] %s=%s", key, value)


load_environment()

DATA_DIR = os.getenv("DATA_DIR", ".")
LOG_DIR = os.getenv("LOG_DIR")

ensure_dir(DATA_DIR)
ensure_dir(LOG_DIR)
