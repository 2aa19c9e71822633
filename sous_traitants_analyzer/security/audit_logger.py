"""Journal d'audit des operations sensibles (append-only, JSON lines)."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger("sous_traitants_analyzer.audit")


class AuditLogger:
    """Trace imports de tables, modifications de reglages et connexions."""

    def __init__(self, log_path: Path):
        self.log_path = Path(log_path)
        self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def log(
        self,
        operation: str,
        utilisateur: str = "",
        *,
        details: Optional[dict] = None,
        resultat: str = "succes",
    ) -> None:
        entry = {
            "timestamp": datetime.now().isoformat(),
            "utilisateur": utilisateur or "anonyme",
            "operation": operation,
            "resultat": resultat,
        }
        if details:
            entry["details"] = details

        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error("Impossible d'ecrire dans le journal d'audit: %s", e)

    def log_import(self, utilisateur: str, dataset: str, nb_lignes: int) -> None:
        self.log("import_dataset", utilisateur, details={"dataset": dataset, "lignes": nb_lignes})

    def log_seuils(self, utilisateur: str, seuils: dict) -> None:
        self.log("maj_seuils_ri", utilisateur, details=seuils)

    def log_assureurs(self, utilisateur: str, nb_assureurs: int) -> None:
        self.log("maj_assureurs", utilisateur, details={"assureurs": nb_assureurs})

    def log_connexion(self, email: str, resultat: str = "succes") -> None:
        self.log("connexion_lien_magique", email, resultat=resultat)

    def lire_journal(self) -> list[dict]:
        if not self.log_path.exists():
            return []
        entries = []
        with open(self.log_path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    entries.append(json.loads(line))
        return entries
