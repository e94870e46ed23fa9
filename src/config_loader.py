import os
from typing import Optional

import yaml
from dotenv import load_dotenv


load_dotenv()

DEFAULTS = {
    "weights": {"vehicle": 40, "location": 30, "date": 20, "client": 5, "tonnage": 5},
    "thresholds": {"strong": 70, "possible": 50},
    "similarity": {"location_min": 0.7, "client_min": 0.6, "containment": 0.9},
    "tolerances": {"days": 5, "tonnage_ratio": 0.15},
    "pending": {"enforce_unique": True},
    "invoice": {"vat_rate": 0.15, "currency": "R", "default_tons": 35},
    "paths": {"data_dir": "data", "invoices_dir": "invoices", "weighbridge_dir": "weighbridge"},
    "locks": {"timeout": 600},
    "company": {
        "name": "SASINELWA (PTY) Ltd.",
        "reg_number": "2023/191021/07",
        "vat_number": "4740319340",
        "address": "58 Ophelia Street, Herlear, Kimberley, 8301",
        "phone": "082 569 5593",
        "email": "",
    },
}

# env var -> (section, key, cast)
ENV_OVERRIDES = {
    "VAT_RATE": ("invoice", "vat_rate", float),
    "INVOICE_DATA_DIR": ("paths", "data_dir", str),
    "INVOICES_DIR": ("paths", "invoices_dir", str),
    "WEIGHBRIDGE_DIR": ("paths", "weighbridge_dir", str),
    "COMPANY_NAME": ("company", "name", str),
    "COMPANY_VAT": ("company", "vat_number", str),
}


def _default_config_path() -> str:
    return os.getenv(
        "MATCHING_CONFIG",
        os.path.join(os.path.dirname(os.path.dirname(__file__)), "config", "matching.yml"),
    )


def load_matching_config(path: Optional[str] = None) -> dict:
    path = path or _default_config_path()
    try:
        with open(path, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
    except FileNotFoundError:
        cfg = {}

    # shallow merge defaults
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in DEFAULTS.items()}
    for k, v in cfg.items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k].update(v)
        else:
            merged[k] = v

    for env_name, (section, key, cast) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            merged.setdefault(section, {})[key] = cast(value)
    return merged
