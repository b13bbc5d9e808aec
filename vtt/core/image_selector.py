"""
Image Selector - Builds the image set a tester sees for one category

Responsibilities:
- Collect candidate images from a JSON manifest or from disk
- Pick a balanced set (half real, half fake, fewer if not available)
- Shuffle so ground truth is not predictable from position
- Degrade to a placeholder set instead of raising

Sources, in order:
1. Manifest (data/image_manifest.json): {"L1": ["/L1/real/a.jpg", ...], ...}
   A path containing '/real/' is a real image, anything else is fake.
2. Directory scan: <image_root>/<category>/real and <image_root>/<category>/fake

Degraded mode:
    Any failure yields question_count copies of FALLBACK_IMAGE_PATH with a
    random ground truth per slot. The selection is flagged degraded=True so
    the Session Store can record it alongside the results.
"""

import json
import logging
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, MutableSequence, Optional

from vtt.contracts import ImageItem

logger = logging.getLogger(__name__)

FALLBACK_IMAGE_PATH = "/fallback-image.jpg"
IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp"}


@dataclass
class ImageSelection:
    """Images chosen for one category."""
    category: str
    items: List[ImageItem] = field(default_factory=list)
    degraded: bool = False

    @property
    def image_paths(self) -> List[str]:
        return [item.path for item in self.items]

    @property
    def ground_truth(self) -> List[bool]:
        return [item.is_real for item in self.items]


def fisher_yates_shuffle(items: MutableSequence, rng: random.Random) -> None:
    """
    Shuffle in place with the unbiased Fisher-Yates algorithm.

    For i from n-1 down to 1, swap items[i] with items[j] where j is
    uniform in [0, i].
    """
    for i in range(len(items) - 1, 0, -1):
        j = rng.randint(0, i)
        items[i], items[j] = items[j], items[i]


def placeholder_selection(category: str, question_count: int, rng: Optional[random.Random] = None) -> ImageSelection:
    """Placeholder selection: N sentinel paths, random ground truth per slot."""
    rng = rng or random.Random()
    items = [
        ImageItem(path=FALLBACK_IMAGE_PATH, is_real=rng.random() > 0.5)
        for _ in range(question_count)
    ]
    logger.warning(f"{category}: using {len(items)} placeholder images (degraded mode)")
    return ImageSelection(category=category, items=items, degraded=True)


class ImageSelector:
    """
    Chooses balanced, shuffled image sets per category.

    Holds no per-tester state; the same selector serves every category.
    """

    def __init__(
        self,
        question_count: int = 50,
        manifest_path: Optional[str] = None,
        image_root: str = "static",
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize selector.

        Args:
            question_count: Images per category (N)
            manifest_path: Optional JSON manifest of predefined paths
            image_root: Directory holding <category>/real and <category>/fake
            rng: Random source (inject a seeded Random for reproducible order)
        """
        if question_count < 1:
            raise ValueError(f"question_count must be positive, got {question_count}")

        self.question_count = question_count
        self.image_root = Path(image_root)
        self.rng = rng or random.Random()
        self.manifest: Dict[str, List[str]] = {}

        if manifest_path:
            self.manifest = self._load_manifest(Path(manifest_path))

        logger.info(
            f"ImageSelector initialized (N={question_count}, manifest categories={sorted(self.manifest)}, "
            f"image_root={self.image_root})"
        )

    def _load_manifest(self, path: Path) -> Dict[str, List[str]]:
        if not path.exists():
            logger.warning(f"Image manifest not found: {path}, falling back to directory scan")
            return {}
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read image manifest {path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Image manifest {path} must be an object of category -> paths")
            return {}

        return {
            str(category): [str(p) for p in paths]
            for category, paths in data.items()
            if isinstance(paths, list)
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def select(self, category: str) -> ImageSelection:
        """
        Build the image set for a category.

        Never raises: failures produce a degraded placeholder selection.

        Args:
            category: Category label

        Returns:
            ImageSelection
        """
        try:
            real, fake = self._collect_candidates(category)
            items = self._balance(real, fake)
            if not items:
                raise FileNotFoundError(f"No images found for category {category}")
            fisher_yates_shuffle(items, self.rng)
        except Exception as e:
            logger.error(f"Error getting images for {category}: {e}")
            return self.fallback(category)

        logger.info(
            f"{category}: selected {len(items)} images "
            f"({sum(item.is_real for item in items)} real, {sum(not item.is_real for item in items)} fake)"
        )
        return ImageSelection(category=category, items=items, degraded=False)

    def fallback(self, category: str) -> ImageSelection:
        return placeholder_selection(category, self.question_count, self.rng)

    # =========================================================================
    # Candidate collection
    # =========================================================================

    def _collect_candidates(self, category: str):
        if category in self.manifest:
            paths = self.manifest[category]
            real = [ImageItem(path=p, is_real=True) for p in paths if "/real/" in p]
            fake = [ImageItem(path=p, is_real=False) for p in paths if "/real/" not in p]
            return real, fake

        return self._scan_dir(category, "real", True), self._scan_dir(category, "fake", False)

    def _scan_dir(self, category: str, kind: str, is_real: bool) -> List[ImageItem]:
        directory = self.image_root / category / kind
        if not directory.is_dir():
            raise FileNotFoundError(f"Image directory not found: {directory}")

        names = sorted(
            p.name for p in directory.iterdir()
            if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES
        )
        return [ImageItem(path=f"/{category}/{kind}/{name}", is_real=is_real) for name in names]

    def _balance(self, real: List[ImageItem], fake: List[ImageItem]) -> List[ImageItem]:
        """
        Take up to half of N from each class, in source order.

        For odd N the fake half gets the extra slot.
        """
        real_quota = self.question_count // 2
        fake_quota = self.question_count - real_quota
        return list(real[:real_quota]) + list(fake[:fake_quota])
