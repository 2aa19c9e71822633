"""
Persistance JSON des reglages applicatifs (seuils RI).
Compatible multi-worker Gunicorn via file locking.
"""
import fcntl
import json
import math
import os
from pathlib import Path
from typing import Any

from sous_traitants_analyzer.core.exceptions import ValidationError
from sous_traitants_analyzer.models.entites import RIThresholds


class PersistentStore:
    """Fichier JSON avec file locking pour multi-worker."""

    def __init__(self, path: Path, default: Any = None):
        self.path = Path(path)
        self.lock_path = self.path.with_suffix(".lock")
        self._default = default if default is not None else {}
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> Any:
        """Lecture avec lock partage."""
        try:
            with open(self.lock_path, "a+") as lf:
                fcntl.flock(lf, fcntl.LOCK_SH)
                try:
                    with open(self.path, "r", encoding="utf-8") as f:
                        return json.load(f)
                finally:
                    fcntl.flock(lf, fcntl.LOCK_UN)
        except (FileNotFoundError, json.JSONDecodeError):
            return self._default

    def _write(self, data: Any):
        """Ecriture atomique avec lock exclusif."""
        tmp_path = self.path.with_suffix(".tmp")
        with open(self.lock_path, "a+") as lf:
            fcntl.flock(lf, fcntl.LOCK_EX)
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False, indent=2, default=str)
                os.replace(str(tmp_path), str(self.path))
            finally:
                fcntl.flock(lf, fcntl.LOCK_UN)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Any:
        return self._read()

    def save(self, data: Any):
        self._write(data)


class ThresholdsStore:
    """Seuils de classification des anomalies RI."""

    def __init__(self, path: Path):
        self._store = PersistentStore(path, default=RIThresholds().to_dict())

    def load(self) -> RIThresholds:
        data = self._store.load()
        if not isinstance(data, dict):
            return RIThresholds()
        try:
            seuils = RIThresholds.from_dict(data)
        except (TypeError, ValueError):
            return RIThresholds()
        if not (math.isfinite(seuils.warning_threshold) and math.isfinite(seuils.excellent_threshold)):
            return RIThresholds()
        return seuils

    def save(self, data: dict) -> RIThresholds:
        seuils = valider_seuils(data)
        self._store.save(seuils.to_dict())
        return seuils


def _est_nombre(valeur) -> bool:
    if isinstance(valeur, bool) or not isinstance(valeur, (int, float)):
        return False
    return math.isfinite(valeur)


def valider_seuils(data: dict) -> RIThresholds:
    """Valide un couple de seuils : deux nombres, warning < excellent."""
    if not isinstance(data, dict):
        raise ValidationError("Les seuils doivent être des nombres")
    warning = data.get("warningThreshold")
    excellent = data.get("excellentThreshold")
    if not _est_nombre(warning) or not _est_nombre(excellent):
        raise ValidationError("Les seuils doivent être des nombres")
    if warning >= excellent:
        raise ValidationError(
            "Le seuil d'alerte doit être inférieur au seuil d'excellence"
        )
    return RIThresholds(float(warning), float(excellent))
