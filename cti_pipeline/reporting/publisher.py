"""
Artifact publishing to the output and public directories.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..utils.io import atomic_write_json

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = 'cti-dashboard.json'


class ArtifactPublisher:
    """Write artifacts atomically so readers never see a partial file."""

    def __init__(self, output_dir: Path, public_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir)
        self.public_dir = Path(public_dir) if public_dir else None

    def publish(self, artifact: Dict[str, Any], filename: str = DEFAULT_FILENAME) -> List[Path]:
        """
        Publish an artifact.

        Args:
            artifact: JSON-serializable artifact
            filename: File name used in every target directory

        Returns:
            Paths written, output directory first
        """
        targets = [self.output_dir / filename]
        if self.public_dir is not None and self.public_dir != self.output_dir:
            targets.append(self.public_dir / filename)

        written = [atomic_write_json(path, artifact) for path in targets]
        logger.info(f"Published {filename} to {', '.join(str(p.parent) for p in written)}")
        return written

    def save_intermediate(self, name: str, data: Any) -> Path:
        """Persist a pipeline intermediate (processed data, analysis) next to the artifact."""
        return atomic_write_json(self.output_dir / name, data)
