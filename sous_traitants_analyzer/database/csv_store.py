"""
Tables CSV de l'application (base sous-traitants, missions, assureurs).

Chaque table est un fichier unique lu et reecrit en entier ; l'ecriture passe
par un fichier temporaire puis os.replace.
"""

import logging
import math
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

from sous_traitants_analyzer.config.constants import (
    DatasetType, STATUS_MAPPING, VALID_STATUSES,
)
from sous_traitants_analyzer.config.settings import AppConfig
from sous_traitants_analyzer.core.exceptions import DatasetError, NotFoundError, ValidationError
from sous_traitants_analyzer.models.entites import Assureur, Mission, SousTraitant
from sous_traitants_analyzer.parsers.csv_parser import (
    colonnes_csv, ecrire_csv, lire_csv, lire_fichier,
)
from sous_traitants_analyzer.utils.normalisation import chiffres

logger = logging.getLogger("sous_traitants_analyzer.database.csv_store")

TAILLE_APERCU_SCHEMA = 100
NB_ECHANTILLONS_SCHEMA = 5


def _entier(valeur, defaut: Optional[int] = None) -> Optional[int]:
    try:
        return int(str(valeur).strip())
    except (TypeError, ValueError):
        return defaut


def _flottant(valeur, defaut: float = 0.0) -> float:
    try:
        nombre = float(str(valeur).strip().replace(",", "."))
    except (TypeError, ValueError):
        return defaut
    return nombre if math.isfinite(nombre) else defaut


def compter_lignes(contenu: str) -> int:
    """Nombre de lignes non vides (en-tete compris)."""
    return sum(1 for ligne in contenu.split("\n") if ligne.strip())


def colonne_external_id(colonnes: list[str]) -> Optional[str]:
    """Colonne de reference de commande RI : 'external_id' ou '... external_id'."""
    for col in colonnes:
        if col.strip().lower() == "external_id":
            return col
    for col in colonnes:
        if col.strip().lower().endswith("external_id"):
            return col
    return None


def siret_de_ligne(row: dict) -> str:
    return row.get("Siret") or row.get("siret") or row.get("SIRET") or ""


class CSVDataStore:
    """Acces aux tables CSV sous data_dir."""

    def __init__(self, config: AppConfig = None):
        self.config = config or AppConfig()

    @property
    def data_dir(self) -> Path:
        return self.config.data_dir

    # --- Acces brut ---

    def chemin(self, dataset) -> Path:
        return self.config.chemin_dataset(DatasetType(dataset))

    def lire_texte(self, dataset) -> str:
        chemin = self.chemin(dataset)
        if not chemin.exists():
            raise NotFoundError(f"Fichier introuvable : {chemin.name}")
        return lire_fichier(chemin)

    def lire_lignes(self, dataset) -> list[dict]:
        return lire_csv(self.lire_texte(dataset))

    def ecrire_texte(self, chemin: Path, contenu: str):
        """Ecriture atomique d'un fichier texte."""
        chemin.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = chemin.with_suffix(chemin.suffix + ".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8", newline="") as f:
                f.write(contenu)
            os.replace(str(tmp_path), str(chemin))
        except OSError as e:
            raise DatasetError(f"Ecriture impossible de {chemin.name} : {e}") from e

    def enregistrer_dataset(self, dataset, contenu: str) -> dict:
        """Remplace une table par un nouveau contenu CSV."""
        try:
            type_dataset = DatasetType(dataset)
        except ValueError:
            raise ValidationError(f"Invalid datasetType: {dataset}")
        if not contenu:
            raise ValidationError("Missing datasetType or csvContent")

        chemin = self.chemin(type_dataset)
        self.ecrire_texte(chemin, contenu)
        logger.info("Table %s remplacee (%d lignes)", type_dataset.value, compter_lignes(contenu))
        return {
            "success": True,
            "dataset": type_dataset.value,
            "lastModified": self._iso_mtime(chemin),
            "lineCount": compter_lignes(contenu),
        }

    @staticmethod
    def _iso_mtime(chemin: Path) -> str:
        return datetime.fromtimestamp(chemin.stat().st_mtime).astimezone().isoformat()

    def info_dataset(self, dataset: DatasetType) -> dict:
        chemin = self.chemin(dataset)
        try:
            contenu = lire_fichier(chemin)
            return {
                "type": dataset.value,
                "exists": True,
                "lastModified": self._iso_mtime(chemin),
                "lineCount": compter_lignes(contenu),
            }
        except OSError as e:
            return {"type": dataset.value, "exists": False, "error": str(e) or "File not found"}

    def lister_datasets(self) -> list[dict]:
        return [self.info_dataset(d) for d in DatasetType]

    def derniere_modification_base(self) -> dict:
        """Date de derniere mise a jour de la base sous-traitants."""
        chemin = self.chemin(DatasetType.SOUS_TRAITANTS)
        if not chemin.exists():
            raise DatasetError("Unable to read file stats")
        mtime = chemin.stat().st_mtime
        return {
            "lastModified": datetime.fromtimestamp(mtime).strftime("%d/%m/%Y"),
            "timestamp": int(mtime * 1000),
        }

    # --- Tables typees ---

    def charger_sous_traitants(self) -> list[SousTraitant]:
        resultats = []
        for row in self.lire_lignes(DatasetType.SOUS_TRAITANTS):
            code = _entier(row.get("status"))
            resultats.append(SousTraitant(
                siret=chiffres(row.get("siret")),
                name=(row.get("name") or row.get("denomination") or "").strip(),
                phone_mobile=row.get("phone_mobile", "") or "",
                phone_secretary=row.get("phone_secretary", "") or "",
                status=code,
                status_reseau=STATUS_MAPPING.get(code, ""),
                email=row.get("email", "") or "",
                extra=row,
            ))
        return resultats

    def charger_missions(self) -> list[Mission]:
        contenu = self.lire_texte(DatasetType.MISSIONS)
        col_ri = colonne_external_id(colonnes_csv(contenu))
        missions = []
        for row in lire_csv(contenu):
            siret = chiffres(row.get("siret"))
            prescripteur = _entier(row.get("prescriber_id"))
            if not siret or prescripteur is None:
                continue
            missions.append(Mission(
                prescriber_id=prescripteur,
                company_id=_entier(row.get("company_id"), 0),
                siret=siret,
                has_ri=bool(col_ri and (row.get(col_ri) or "").strip()),
            ))
        return missions

    def charger_assureurs(self) -> list[Assureur]:
        assureurs = []
        for row in self.lire_lignes(DatasetType.ASSUREURS):
            ident = _entier(row.get("id"))
            if ident is None:
                continue
            assureurs.append(Assureur(
                id=ident,
                name=(row.get("name") or "").strip(),
                ri_percentage=_flottant(row.get("ri_percentage")),
            ))
        return assureurs

    def enregistrer_assureurs(self, assureurs: list[Assureur]) -> int:
        contenu = ecrire_csv(
            [a.to_dict() for a in assureurs], colonnes=["id", "name", "ri_percentage"],
        )
        self.ecrire_texte(self.chemin(DatasetType.ASSUREURS), contenu)
        logger.info("%d assureurs enregistres", len(assureurs))
        return len(assureurs)

    def charger_metiers(self) -> list[dict]:
        chemin = self.config.chemin_metiers
        if not chemin.exists():
            raise DatasetError("Impossible de charger les métiers")
        metiers = []
        for row in lire_csv(lire_fichier(chemin)):
            ident = _entier(row.get("id") or "0", 0)
            if ident > 0:
                metiers.append({"id": ident, "name": row.get("name") or ""})
        return metiers

    def charger_emails_autorises(self) -> dict[str, str]:
        """email (minuscules) -> nom affiche."""
        chemin = self.config.chemin_emails_autorises
        if not chemin.exists():
            logger.warning("Liste des emails autorises absente : %s", chemin)
            return {}
        autorises = {}
        for row in lire_csv(lire_fichier(chemin)):
            email = (row.get("email") or "").strip().lower()
            if email:
                autorises[email] = (row.get("name") or "").strip()
        return autorises

    # --- Repertoires par statut ---

    def _fichiers_statut(self, statut: str) -> list[Path]:
        dossier = self.data_dir / statut
        if not dossier.is_dir():
            return []
        return sorted(p for p in dossier.iterdir() if p.suffix == ".csv")

    def base_par_statut(self) -> dict:
        """Fusionne les CSV <data_dir>/<STATUT>/*.csv, dedoublonnes par SIRET."""
        lignes = []
        stats = {"totalFiles": 0, "totalRows": 0, "byStatus": {}}

        for statut in VALID_STATUSES:
            for fichier in self._fichiers_statut(statut):
                try:
                    data = lire_csv(lire_fichier(fichier))
                except (OSError, DatasetError) as e:
                    logger.error("Erreur lors du chargement de %s: %s", fichier.name, e)
                    continue
                for row in data:
                    lignes.append({**row, "status_reseau": statut, "fichier_source": fichier.name})
                stats["totalFiles"] += 1
                stats["byStatus"][statut] = stats["byStatus"].get(statut, 0) + len(data)
                stats["totalRows"] += len(data)

        uniques = {}
        for row in lignes:
            siret = siret_de_ligne(row)
            if siret and siret not in uniques:
                uniques[siret] = row

        stats["uniqueSirets"] = len(uniques)
        stats["duplicatesRemoved"] = stats["totalRows"] - len(uniques)
        return {"success": True, "data": list(uniques.values()), "stats": stats}

    def schemas_par_statut(self) -> dict:
        """Colonnes, nombre de lignes (apercu) et echantillons de chaque table de statut."""
        schemas = []
        for statut in ["U4", "U3", "U2", "U1", "U1P", "TR"]:
            for fichier in self._fichiers_statut(statut):
                try:
                    contenu = lire_fichier(fichier)
                    data = lire_csv(contenu)[:TAILLE_APERCU_SCHEMA]
                except (OSError, DatasetError) as e:
                    logger.error("Erreur lors de l'analyse de %s: %s", fichier.name, e)
                    continue
                schemas.append({
                    "status": statut,
                    "fileName": fichier.name,
                    "columns": colonnes_csv(contenu),
                    "rowCount": len(data),
                    "sampleData": data[:NB_ECHANTILLONS_SCHEMA],
                })

        par_statut = {}
        for schema in schemas:
            par_statut[schema["status"]] = par_statut.get(schema["status"], 0) + 1
        return {
            "success": True,
            "schemas": schemas,
            "stats": {"totalTables": len(schemas), "byStatus": par_statut},
        }
