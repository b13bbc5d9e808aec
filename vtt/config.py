"""
Application configuration.

Defaults suit a single tester running the tool locally. Every value can be
overridden through a VTT_* environment variable (see AppConfig.from_env).
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = ("L1", "L2", "L3")
DEFAULT_QUESTION_COUNT = 50
DEFAULT_DEBOUNCE_SECONDS = 0.3


@dataclass
class AppConfig:
    """
    Runtime settings for the session store, image selector and web app.

    Attributes:
        categories: Fixed category labels, in dashboard order
        question_count: Images per category (N)
        debounce_seconds: Quiet period before a state write (0 writes immediately)
        storage_dir: Directory of the local key-value store
        collection_dir: Directory of exported result documents
        image_root: Root scanned for <category>/real and <category>/fake
        manifest_path: Optional JSON manifest of predefined image paths
        secret_key: Flask secret key
    """
    categories: Tuple[str, ...] = DEFAULT_CATEGORIES
    question_count: int = DEFAULT_QUESTION_COUNT
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    storage_dir: str = "outputs/local_storage"
    collection_dir: str = "collection"
    image_root: str = "static"
    manifest_path: Optional[str] = "data/image_manifest.json"
    secret_key: str = field(default="vtt-local-secret-key", repr=False)

    def __post_init__(self):
        if not self.categories:
            raise ValueError("At least one category is required")
        if len(set(self.categories)) != len(self.categories):
            raise ValueError(f"Duplicate category labels: {self.categories}")
        if self.question_count < 1:
            raise ValueError(f"question_count must be positive, got {self.question_count}")
        if self.debounce_seconds < 0:
            raise ValueError(f"debounce_seconds must be >= 0, got {self.debounce_seconds}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AppConfig":
        """
        Build config from environment variables.

        Recognised variables:
            VTT_CATEGORIES (comma separated), VTT_QUESTION_COUNT,
            VTT_DEBOUNCE_SECONDS, VTT_STORAGE_DIR, VTT_COLLECTION_DIR,
            VTT_IMAGE_ROOT, VTT_MANIFEST_PATH (empty disables the manifest),
            VTT_SECRET_KEY
        """
        env = os.environ if environ is None else environ
        config = cls()

        if env.get("VTT_CATEGORIES"):
            config.categories = tuple(c.strip() for c in env["VTT_CATEGORIES"].split(",") if c.strip())
        if env.get("VTT_QUESTION_COUNT"):
            config.question_count = int(env["VTT_QUESTION_COUNT"])
        if env.get("VTT_DEBOUNCE_SECONDS"):
            config.debounce_seconds = float(env["VTT_DEBOUNCE_SECONDS"])
        if env.get("VTT_STORAGE_DIR"):
            config.storage_dir = env["VTT_STORAGE_DIR"]
        if env.get("VTT_COLLECTION_DIR"):
            config.collection_dir = env["VTT_COLLECTION_DIR"]
        if env.get("VTT_IMAGE_ROOT"):
            config.image_root = env["VTT_IMAGE_ROOT"]
        if "VTT_MANIFEST_PATH" in env:
            config.manifest_path = env["VTT_MANIFEST_PATH"] or None
        if env.get("VTT_SECRET_KEY"):
            config.secret_key = env["VTT_SECRET_KEY"]

        # Re-run validation on overridden values
        config.__post_init__()
        logger.debug(f"Loaded config: {config}")
        return config
