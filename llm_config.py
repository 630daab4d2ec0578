import json
import logging
import os
from dataclasses import dataclass

CONFIG_FILE = "config.json"

DEFAULT_BASE_URL = "http://localhost:1234/v1"
DEFAULT_MODEL = "llama-3.2-1b-instruct"
DEFAULT_PROXY_PORT = 3001

logger = logging.getLogger("WikiDeck.config")


@dataclass(frozen=True)
class LLMConfig:
    base_url: str
    model: str
    default_api_key: str = ""


def load_config(path=CONFIG_FILE):
    """Reads the JSON settings file. A missing or unreadable file yields {}."""
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read {path}: {e}. Using defaults.")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: expected a JSON object.")
        return {}
    return data


def _first_non_blank(*values):
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return ""


def get_llm_config(config_path=CONFIG_FILE):
    """
    Resolves the LLM settings: environment first (INFERENCE_SERVER_URL,
    MODEL_NAME, LLM_API_KEY), then the config file, then defaults.
    Resolved fresh on every call so edits take effect between extractions.
    """
    config = load_config(config_path)
    return LLMConfig(
        base_url=_first_non_blank(os.environ.get("INFERENCE_SERVER_URL"), config.get("base_url"), DEFAULT_BASE_URL),
        model=_first_non_blank(os.environ.get("MODEL_NAME"), config.get("model"), DEFAULT_MODEL),
        default_api_key=_first_non_blank(os.environ.get("LLM_API_KEY"), config.get("api_key")),
    )


def get_proxy_settings(config_path=CONFIG_FILE):
    """Returns (inference_server_url, port) for the local proxy."""
    config = load_config(config_path)
    target = _first_non_blank(os.environ.get("INFERENCE_SERVER_URL"), config.get("inference_server_url"), config.get("base_url"), DEFAULT_BASE_URL)
    port = os.environ.get("PROXY_PORT") or config.get("proxy_port") or DEFAULT_PROXY_PORT
    try:
        port = int(port)
    except (TypeError, ValueError):
        logger.warning(f"Invalid proxy port {port!r}, using {DEFAULT_PROXY_PORT}.")
        port = DEFAULT_PROXY_PORT
    return target, port
