import json
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from config import PRESETS_DIR, PRESETS_STORAGE_KEY
from errors import PresetExistsError, PresetNotFoundError
from models import GenerationConfig

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, blob: str) -> None: ...


class MemoryBlobStore:
    def __init__(self, blobs: Optional[Dict[str, str]] = None):
        self.blobs: Dict[str, str] = dict(blobs or {})

    def read(self, key):
        return self.blobs.get(key)

    def write(self, key, blob):
        self.blobs[key] = blob


class JsonFileBlobStore:
    """One ``<key>.json`` file per key inside ``directory``."""

    def __init__(self, directory: str = PRESETS_DIR):
        self.directory = directory

    def path_for(self, key):
        return os.path.join(self.directory, f"{key}.json")

    def read(self, key):
        path = self.path_for(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8-sig") as handle:
            return handle.read()

    def write(self, key, blob):
        os.makedirs(self.directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(blob)
            os.replace(tmp_path, self.path_for(key))
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


@dataclass(frozen=True)
class Preset:
    name: str
    config: GenerationConfig


def _match(name):
    return name.strip().casefold()


class PresetStore:
    """Named configuration snapshots.

    The stored list is read once when the store is created and rewritten in
    full after every save or delete. Names compare case-insensitively.
    """

    def __init__(self, blob_store: BlobStore, key: str = PRESETS_STORAGE_KEY):
        self.blob_store = blob_store
        self.key = key
        self.presets: List[Preset] = []
        self._load()

    def _load(self) -> None:
        try:
            blob = self.blob_store.read(self.key)
            raw_presets = json.loads(blob) if blob else []
        except Exception as exc:
            logger.warning("Unable to load presets: %s", exc)
            raw_presets = []
        if not isinstance(raw_presets, list):
            logger.warning("Stored presets are not a list, ignoring them.")
            raw_presets = []
        self.presets = []
        for entry in raw_presets:
            if not isinstance(entry, dict) or not str(entry.get("name") or "").strip():
                continue
            try:
                config = GenerationConfig.from_dict(entry.get("config") or {})
            except (TypeError, ValueError) as exc:
                logger.warning("Skipping preset %r: %s", entry.get("name"), exc)
                continue
            self.presets.append(Preset(name=str(entry["name"]).strip(), config=config))

    def _persist(self, presets: List[Preset]) -> None:
        """Write ``presets`` and adopt them only once the write succeeded."""
        payload = [{"name": p.name, "config": p.config.to_dict()} for p in presets]
        self.blob_store.write(self.key, json.dumps(payload, indent=2))
        self.presets = presets

    def _find(self, name):
        wanted = _match(name)
        return next((i for i, p in enumerate(self.presets) if _match(p.name) == wanted), None)

    def list(self) -> List[Preset]:
        return sorted(self.presets, key=lambda p: (p.name.casefold(), p.name))

    def names(self) -> List[str]:
        return [p.name for p in self.list()]

    def exists(self, name: str) -> bool:
        return self._find(name) is not None

    def load(self, name: str) -> GenerationConfig:
        index = self._find(name)
        if index is None:
            raise PresetNotFoundError(name)
        return self.presets[index].config

    def save(self, name: str, config: GenerationConfig, overwrite: bool = False) -> Preset:
        """Store ``config`` under ``name``; replacing an existing name needs ``overwrite=True``."""
        name = (name or "").strip()
        if not name:
            raise ValueError("Preset name cannot be empty.")
        preset = Preset(name=name, config=config)
        index = self._find(name)
        presets = list(self.presets)
        if index is not None:
            if not overwrite:
                raise PresetExistsError(presets[index].name)
            presets[index] = preset
        else:
            presets.append(preset)
        self._persist(presets)
        logger.info("Saved preset '%s'", name)
        return preset

    def delete(self, name: str) -> None:
        index = self._find(name)
        if index is None:
            raise PresetNotFoundError(name)
        presets = list(self.presets)
        removed = presets.pop(index)
        self._persist(presets)
        logger.info("Deleted preset '%s'", removed.name)
