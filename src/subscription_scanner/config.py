"""Runtime settings loaded from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from subscription_scanner.constants import (
    CLASSIFIER_MODEL,
    CLASSIFIER_TIMEOUT,
    CLASSIFY_BATCH_SIZE,
    DEFAULT_REDIRECT_URI,
    ENV_PATH,
    MAX_CONTENT_LENGTH,
    MAX_MESSAGES,
    MIN_CONFIDENCE,
)

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer for %s=%r, using default %d", name, value, default)
        return default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Invalid number for %s=%r, using default %s", name, value, default)
        return default


@dataclass
class Settings:
    """Tunable parameters of a sync run."""

    openai_api_key: str | None = None
    model: str = CLASSIFIER_MODEL
    min_confidence: int = MIN_CONFIDENCE
    max_messages: int = MAX_MESSAGES
    max_content_length: int = MAX_CONTENT_LENGTH
    batch_size: int = CLASSIFY_BATCH_SIZE
    classifier_timeout: float = CLASSIFIER_TIMEOUT
    redirect_uri: str = DEFAULT_REDIRECT_URI

    @classmethod
    def from_env(cls, env_path: Path | None = None) -> Settings:
        """Build settings from environment variables.

        A ``.env`` file in the working directory and the one at ENV_PATH (or
        ``env_path``) are loaded first; variables already set in the process
        environment win.
        """
        load_dotenv()
        load_dotenv(env_path or ENV_PATH)

        return cls(
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            model=os.environ.get("SCANNER_MODEL") or CLASSIFIER_MODEL,
            min_confidence=_env_int("SCANNER_MIN_CONFIDENCE", MIN_CONFIDENCE),
            max_messages=_env_int("SCANNER_MAX_MESSAGES", MAX_MESSAGES),
            max_content_length=_env_int("SCANNER_MAX_CONTENT_LENGTH", MAX_CONTENT_LENGTH),
            batch_size=_env_int("SCANNER_BATCH_SIZE", CLASSIFY_BATCH_SIZE),
            classifier_timeout=_env_float("SCANNER_CLASSIFIER_TIMEOUT", CLASSIFIER_TIMEOUT),
            redirect_uri=os.environ.get("SCANNER_REDIRECT_URI") or DEFAULT_REDIRECT_URI,
        )
