"""Credential reference resolution.

Dictionaries never hold secret values, only references such as
``API_TOKEN``. A reference resolves from, in order:

1. Environment variable ``VNF_SECRET_<REF>``
2. Environment variable ``<REF>``
3. The optional YAML secrets file (``secrets: {REF: value}`` or flat)
"""
import logging
import os
import re
from pathlib import Path
from typing import Mapping, Optional

import yaml

from ..errors import SecretNotFoundError

logger = logging.getLogger(__name__)

SECRET_ENV_PREFIX = "VNF_SECRET_"


def normalize_secret_ref(ref: str) -> str:
    """Convert a reference to ``UPPER_SNAKE_CASE`` for env lookup."""
    normalized = re.sub(r"[^A-Z0-9]+", "_", ref.upper())
    return normalized.strip("_")


class SecretResolver:
    """Resolve credential references to values."""

    def __init__(
        self,
        values: Optional[Mapping[str, str]] = None,
        secrets_file: Optional[Path] = None,
    ):
        self._values: dict[str, str] = dict(values or {})
        if secrets_file is not None:
            self._values.update(self._load_file(secrets_file))

    def _load_file(self, path: Path) -> dict[str, str]:
        if not path.exists():
            logger.warning(f"Secrets file not found: {path}")
            return {}

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, Mapping):
            raise ValueError(f"Secrets file {path} must contain a mapping")

        entries = data.get("secrets", data)
        return {str(k): str(v) for k, v in entries.items() if v is not None}

    def get(self, ref: str) -> Optional[str]:
        """Resolve ``ref``; None when nothing matches."""
        if not ref:
            return None

        normalized = normalize_secret_ref(ref)
        for env_name in (f"{SECRET_ENV_PREFIX}{normalized}", ref, normalized):
            value = os.environ.get(env_name)
            if value:
                return value

        return self._values.get(ref) or self._values.get(normalized)

    def require(self, ref: str) -> str:
        """Resolve ``ref`` or raise SecretNotFoundError."""
        value = self.get(ref)
        if value is None:
            raise SecretNotFoundError(ref)
        return value
