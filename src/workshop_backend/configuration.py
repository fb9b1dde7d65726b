from __future__ import annotations

import os
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

DEFAULTS: Dict[str, Any] = {
    "app": {
        "name": "Workshop API",
        "version": "1.0.0",
        "environment": "development",
        "log_level": "INFO",
        "cors_origins": "*",
    },
    "storage": {
        "object_backend": "s3",
        "record_backend": "dynamodb",
        "bucket": "",
        "region": "us-east-1",
        "table": "Workshops",
        "local_root": "data/objects",
        "sqlite_path": "data/workshops.db",
        "key_prefix": "workshops",
        "public_base_url": "",
        "list_page_size": 1000,
        "max_list_keys": 1000,
        "delete_batch_size": 1000,
        "connect_timeout": 5.0,
        "read_timeout": 30.0,
    },
    "uploads": {
        "max_bytes": 10 * 1024 * 1024,
        "allowed_types": ["image/jpeg", "image/png", "image/gif"],
    },
}

# Environment variable -> dotted config key
ENV_OVERRIDES: Dict[str, str] = {
    "APP_ENV": "app.environment",
    "LOG_LEVEL": "app.log_level",
    "CORS_ORIGINS": "app.cors_origins",
    "WORKSHOP_OBJECT_BACKEND": "storage.object_backend",
    "WORKSHOP_RECORD_BACKEND": "storage.record_backend",
    "S3_BUCKET_NAME": "storage.bucket",
    "AWS_REGION": "storage.region",
    "DYNAMODB_TABLE": "storage.table",
    "WORKSHOP_LOCAL_ROOT": "storage.local_root",
    "WORKSHOP_SQLITE_PATH": "storage.sqlite_path",
    "WORKSHOP_PUBLIC_BASE_URL": "storage.public_base_url",
    "MAX_UPLOAD_BYTES": "uploads.max_bytes",
}

OBJECT_BACKENDS = ("s3", "local")
RECORD_BACKENDS = ("dynamodb", "sqlite")


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """Nested overrides from the environment, cast to the type of each default."""
    overrides: Dict[str, Any] = {}
    for name, dotted in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if not raw:
            continue
        section, key = dotted.split(".")
        default = DEFAULTS[section][key]
        value = type(default)(raw) if isinstance(default, (int, float)) else raw
        overrides.setdefault(section, {})[key] = value
    return overrides


def load_settings(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> DictConfig:
    """
    Build the runtime settings.

    Built-in defaults are merged with environment overrides and then with the
    explicit ``overrides`` mapping. The result is in struct mode, so a typo in
    a key raises instead of silently adding a new setting.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    base = OmegaConf.create(DEFAULTS)
    OmegaConf.set_struct(base, True)

    merged = OmegaConf.merge(base, OmegaConf.create(_env_overrides(environ)))
    if overrides:
        merged = OmegaConf.merge(merged, OmegaConf.create(overrides))
    settings = DictConfig(merged)

    if settings.storage.object_backend not in OBJECT_BACKENDS:
        raise ValueError(f"Unknown object backend: {settings.storage.object_backend}")
    if settings.storage.record_backend not in RECORD_BACKENDS:
        raise ValueError(f"Unknown record backend: {settings.storage.record_backend}")
    return settings


def is_production(settings: DictConfig) -> bool:
    return settings.app.environment == "production"


def cors_origins(settings: DictConfig) -> List[str]:
    return [origin.strip() for origin in str(settings.app.cors_origins).split(",") if origin.strip()]
