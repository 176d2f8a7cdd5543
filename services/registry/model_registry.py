"""
Model Registry

Versioned archive of published model artifacts with a movable ``current``
pointer, regression protection on publish and rollback to any archived
version.

On-disk layout under ``models_dir``::

    <name>.zip                          active artifact
    versions/<name>_v<N>_<acc>pct.zip   archived versions
    model_registry.json                 ledger

Ledger format::

    {"<name>": {"current": "v3",
                "versions": [{"version", "accuracy", "samples", "trainedAt",
                              "parameters", "fileName"}, ...]}}
"""

import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from utils.error_handling import ModelError

logger = logging.getLogger(__name__)

REGISTRY_FILE = "model_registry.json"

_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()

def _ledger_lock(path: Path) -> threading.Lock:
    """One lock per ledger file, shared by every registry instance in the process"""
    key = str(path.resolve())
    with _locks_guard:
        if key not in _locks:
            _locks[key] = threading.Lock()
        return _locks[key]

class ModelVersionInfo(BaseModel):
    """One archived version of a model"""
    model_config = ConfigDict(populate_by_name=True)

    version: str
    accuracy: float = 0.0
    samples: int = 0
    trained_at: str = Field("", alias="trainedAt")
    parameters: str = ""
    file_name: str = Field("", alias="fileName")

    @property
    def version_number(self) -> int:
        if self.version[:1].lower() == "v" and self.version[1:].isdigit():
            return int(self.version[1:])
        return 0

class ModelRegistryEntry(BaseModel):
    current: str = ""
    versions: List[ModelVersionInfo] = Field(default_factory=list)

    def find(self, version: str) -> Optional[ModelVersionInfo]:
        for info in self.versions:
            if info.version == version:
                return info
        return None

    def next_version_number(self) -> int:
        return max((info.version_number for info in self.versions), default=0) + 1

class ModelRegistry:
    """File-backed version ledger for model artifacts"""

    def __init__(self, models_dir: Union[str, Path]):
        self.models_dir = Path(models_dir)
        self.versions_dir = self.models_dir / "versions"
        self.registry_path = self.models_dir / REGISTRY_FILE
        self.models_dir.mkdir(parents=True, exist_ok=True)
        self.versions_dir.mkdir(parents=True, exist_ok=True)
        self._lock = _ledger_lock(self.registry_path)

    # ------------------------------------------------------------------
    # Ledger I/O
    # ------------------------------------------------------------------

    def _load(self) -> Dict[str, ModelRegistryEntry]:
        if not self.registry_path.exists():
            return {}
        raw = self.registry_path.read_text(encoding="utf-8")
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise ModelError(f"Corrupt model registry {self.registry_path}: {e}",
                             model_path=str(self.registry_path)) from e
        return {name: ModelRegistryEntry.model_validate(entry) for name, entry in data.items()}

    def _save(self, registry: Dict[str, ModelRegistryEntry]) -> None:
        payload = {name: entry.model_dump(by_alias=True) for name, entry in registry.items()}
        fd, tmp_path = tempfile.mkstemp(prefix=".registry_", suffix=".json", dir=self.models_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.registry_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    @staticmethod
    def _find_name(registry: Dict[str, ModelRegistryEntry], model_name: str) -> Optional[str]:
        if model_name in registry:
            return model_name
        wanted = model_name.lower()
        for name in registry:
            if name.lower() == wanted:
                return name
        return None

    def _install(self, source: Path, target: Path) -> None:
        """Copy ``source`` next to ``target`` then atomically replace it"""
        fd, tmp_path = tempfile.mkstemp(prefix=f".{target.stem}_", suffix=".tmp", dir=target.parent)
        os.close(fd)
        try:
            shutil.copyfile(source, tmp_path)
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def current_model_path(self, model_name: str) -> Path:
        return self.models_dir / f"{model_name}.zip"

    # ------------------------------------------------------------------
    # Publish / rollback
    # ------------------------------------------------------------------

    def publish_version(self, model_name: str, source_path: Union[str, Path], accuracy: float,
                        sample_count: int, parameters: Optional[Union[str, Dict[str, Any]]] = None,
                        block_on_regression: bool = True,
                        regression_threshold: float = 0.03) -> ModelVersionInfo:
        """Archive ``source_path`` as the next version and make it current.

        Raises ModelError when the source is missing, when the new accuracy
        falls more than ``regression_threshold`` below the current version
        (if blocking is on), or when another writer moved ``current`` in the
        meantime. Nothing is written in any of those cases.
        """
        source = Path(source_path)
        if not source.exists():
            raise ModelError(f"Model file not found: {source}", model_name=model_name, model_path=str(source))

        # Decide against a snapshot, commit only if the pointer is unchanged
        snapshot = self._load()
        name = self._find_name(snapshot, model_name)
        entry = snapshot[name] if name else ModelRegistryEntry()
        observed_current = entry.current

        if block_on_regression:
            current = entry.find(entry.current)
            if current is not None and current.accuracy > 0 and accuracy < current.accuracy - regression_threshold:
                raise ModelError(
                    f"Model '{model_name}' new accuracy {accuracy:.2%} is more than {regression_threshold:.0%} "
                    f"below current {current.version} ({current.accuracy:.2%}); publish blocked",
                    model_name=model_name,
                    model_path=str(source),
                )

        if isinstance(parameters, dict):
            parameters = json.dumps(parameters, sort_keys=True)

        with self._lock:
            registry = self._load()
            name = self._find_name(registry, model_name) or model_name
            entry = registry.setdefault(name, ModelRegistryEntry())
            if entry.current != observed_current:
                raise ModelError(
                    f"Registry pointer for '{model_name}' moved from '{observed_current}' to "
                    f"'{entry.current}' during publish",
                    model_name=model_name,
                )

            version = f"v{entry.next_version_number()}"
            file_name = f"{name}_{version}_{accuracy * 100:.1f}pct.zip"

            self._install(source, self.versions_dir / file_name)
            self._install(source, self.current_model_path(name))

            info = ModelVersionInfo(
                version=version,
                accuracy=accuracy,
                samples=sample_count,
                trained_at=datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S"),
                parameters=parameters or "",
                file_name=file_name,
            )
            entry.versions.append(info)
            entry.current = version
            self._save(registry)

        logger.info(f"Published {name} {version} (accuracy={accuracy:.4f}, samples={sample_count})")
        return info

    def rollback(self, model_name: str, version: str) -> bool:
        """Reinstall an archived version as current.

        Returns False for an unknown model or version; raises ModelError when
        the archive file is gone, leaving the pointer untouched.
        """
        with self._lock:
            registry = self._load()
            name = self._find_name(registry, model_name)
            if name is None:
                return False

            entry = registry[name]
            target = entry.find(version)
            if target is None:
                return False

            archive = self.versions_dir / target.file_name
            if not archive.exists():
                raise ModelError(f"Rollback failed, archived version missing: {archive}",
                                 model_name=model_name, model_path=str(archive))

            self._install(archive, self.current_model_path(name))
            entry.current = version
            self._save(registry)

        logger.info(f"Rolled back {name} to {version}")
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_versions(self, model_name: str) -> List[ModelVersionInfo]:
        """Versions newest first"""
        registry = self._load()
        name = self._find_name(registry, model_name)
        if name is None:
            return []
        return sorted(registry[name].versions,
                      key=lambda info: (info.trained_at, info.version_number),
                      reverse=True)

    def get_current_version(self, model_name: str) -> Optional[str]:
        registry = self._load()
        name = self._find_name(registry, model_name)
        if name is None:
            return None
        return registry[name].current or None

    def get_current_version_info(self, model_name: str) -> Optional[ModelVersionInfo]:
        registry = self._load()
        name = self._find_name(registry, model_name)
        if name is None:
            return None
        entry = registry[name]
        return entry.find(entry.current)

    def list_models(self) -> List[str]:
        return sorted(self._load().keys())
