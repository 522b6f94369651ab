# NIP/utils/config_loader.py
import yaml
import math
import os
import logging
from dataclasses import replace
from datetime import date

import pandas as pd

from replenishment_engine.models import PolicySettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "settings.yaml"


def load_app_config(config_path=DEFAULT_CONFIG_PATH):
    """
    Loads the application configuration from a YAML file.
    Returns the config dict, or a dict with an 'error' key on failure.
    """
    if not os.path.exists(config_path):
        logger.error(f"CONFIG: Configuration file not found: {config_path}")
        return {"error": f"Configuration file not found: {config_path}"}
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            return {"error": f"Configuration in {config_path} is not a mapping"}
        logger.info(f"CONFIG: Configuration loaded from {config_path}")
        return config
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"CONFIG: Error loading configuration from {config_path}: {e}")
        return {"error": f"Error loading configuration from {config_path}: {e}"}


def save_app_config(config_data, config_path=DEFAULT_CONFIG_PATH):
    """Saves the configuration dictionary to a YAML file."""
    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        logger.info(f"CONFIG: Configuration saved successfully to {config_path}")
        return True
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"CONFIG: Error saving configuration to {config_path}: {e}", exc_info=True)
        return False


def setup_logging(config):
    """
    Configures the root logger from the 'logging' section of the config.
    Existing handlers are replaced so repeated calls do not duplicate output.
    """
    log_config = config.get('logging', {})
    if not log_config:
        logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
        logging.warning("'logging' section not found in config. Using basic logging.")
        return

    level_str = str(log_config.get('level', 'INFO')).upper()
    level = getattr(logging, level_str, logging.INFO)
    log_format = log_config.get('format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    log_file = log_config.get('file_name')

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    if log_file:
        if not os.path.isabs(log_file):
            project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
            log_file = os.path.join(project_root, log_file)
        try:
            file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter(log_format))
            root_logger.addHandler(file_handler)
        except OSError as e:
            print(f"ERROR: Could not create log file handler for {log_file}. Error: {e}")

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(stream_handler)

    logging.info(f"Logging configured. Level: {level_str}. Log file: {log_file or 'none'}")


# Settings that must be strictly positive; every other policy setting only needs to be >= 0.
STRICTLY_POSITIVE_SETTINGS = {'exchange_rate'}


def _coerce_setting(field, value, default):
    """Converts a policy value to the type of its default, raising ValueError if it is unusable."""
    if isinstance(value, bool):
        raise ValueError(f"Policy setting '{field}' must be numeric, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Policy setting '{field}' must be numeric, got {value!r}")
    if not math.isfinite(number) or number < 0 or (field in STRICTLY_POSITIVE_SETTINGS and number <= 0):
        raise ValueError(f"Policy setting '{field}' out of range: {value!r}")
    return type(default)(number)


def _validated_setting(raw_settings, field, default):
    if field not in raw_settings:
        return default
    try:
        return _coerce_setting(field, raw_settings[field], default)
    except ValueError as e:
        logger.warning(f"CONFIG: {e}; using default {default}.")
        return default


def load_policy_settings(config) -> PolicySettings:
    """Builds the immutable PolicySettings from the 'policy_settings' config section."""
    defaults = PolicySettings()
    raw_settings = config.get('policy_settings') or {}
    settings = PolicySettings(**{
        name: _validated_setting(raw_settings, name, getattr(defaults, name))
        for name in PolicySettings.field_names()
    })
    logger.info(f"CONFIG: Policy settings {settings}")
    return settings


def update_policy_setting(settings: PolicySettings, field: str, value) -> PolicySettings:
    """
    Returns a copy of the settings with one field replaced.
    Unknown fields raise KeyError; non-numeric or out-of-range values raise ValueError.
    """
    if field not in PolicySettings.field_names():
        raise KeyError(f"Unknown policy setting: {field}")
    coerced = _coerce_setting(field, value, getattr(PolicySettings(), field))
    logger.info(f"CONFIG: Policy setting '{field}' set to {coerced}")
    return replace(settings, **{field: coerced})


def policy_settings_to_config(config, settings: PolicySettings):
    """Writes the settings back into the config dict so save_app_config can persist them."""
    config['policy_settings'] = {name: getattr(settings, name) for name in PolicySettings.field_names()}
    return config


def resolve_as_of_date(config, override=None) -> date:
    """The as-of date for a run: explicit override, then forecast.as_of_date, then today."""
    candidate = override or (config.get('forecast') or {}).get('as_of_date')
    if candidate:
        parsed = pd.to_datetime(candidate, errors='coerce')
        if not pd.isna(parsed):
            return parsed.date()
        logger.warning(f"CONFIG: Ignoring unparseable as-of date {candidate!r}.")
    return date.today()
