"""
Run manifest for gfalook.

Records the configuration hash, graph statistics and output checksums of a
render so that an image can be traced back to how it was produced.
"""

import json
import hashlib
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict
from datetime import datetime

from .params import GfalookConfig


@dataclass
class ArtifactInfo:
    """Information about a written output file."""
    name: str
    path: str
    created: str
    size_bytes: int
    checksum: str
    metadata: Dict[str, Any] = None


@dataclass
class GraphStats:
    """Size of the rendered graph."""
    n_segments: int
    n_links: int
    n_paths: int
    total_length: int
    n_displayed: int


class RunManifest:
    """JSON record written next to the main output as ``<output>.manifest.json``."""

    def __init__(self, output_path: Path):
        output_path = Path(output_path)
        self.manifest_path = output_path.with_name(output_path.name + ".manifest.json")
        from . import __version__
        self.data: Dict[str, Any] = {
            "version": __version__,
            "created": datetime.now().isoformat(),
            "config_hash": None,
            "config": None,
            "graph_stats": None,
            "artifacts": {},
        }

    def save(self) -> Path:
        self.manifest_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.manifest_path, "w") as f:
            json.dump(self.data, f, indent=2, default=str)
        return self.manifest_path

    def set_config(self, config: GfalookConfig):
        """Register configuration and compute hash."""
        serializable = config.model_dump(mode="json")
        config_str = json.dumps(serializable, sort_keys=True)
        self.data["config_hash"] = hashlib.sha256(config_str.encode()).hexdigest()[:16]
        self.data["config"] = serializable

    def set_graph_stats(self, stats: GraphStats):
        self.data["graph_stats"] = asdict(stats)

    def register_artifact(self, name: str, path: Path, metadata: Optional[Dict] = None):
        """Register an output file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Artifact not found: {path}")
        artifact = ArtifactInfo(
            name=name,
            path=str(path),
            created=datetime.now().isoformat(),
            size_bytes=path.stat().st_size,
            checksum=compute_checksum(path),
            metadata=metadata or {},
        )
        self.data["artifacts"][name] = asdict(artifact)


def compute_checksum(path: Path) -> str:
    """First 16 hex digits of the file's SHA-256."""
    sha256_hash = hashlib.sha256()
    with open(path, "rb") as f:
        for byte_block in iter(lambda: f.read(4096), b""):
            sha256_hash.update(byte_block)
    return sha256_hash.hexdigest()[:16]
