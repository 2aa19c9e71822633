"""Tests des tables CSV et de la persistance des seuils RI."""

import json
import shutil
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import pytest

from sous_traitants_analyzer.config.constants import DatasetType
from sous_traitants_analyzer.config.settings import AppConfig
from sous_traitants_analyzer.core.exceptions import (
    DatasetError, NotFoundError, ValidationError,
)
from sous_traitants_analyzer.database.csv_store import (
    CSVDataStore, colonne_external_id, compter_lignes,
)
from sous_traitants_analyzer.database.persistence import (
    PersistentStore, ThresholdsStore, valider_seuils,
)
from sous_traitants_analyzer.models.entites import Assureur, RIThresholds

FIXTURES = Path(__file__).parent.parent / "fixtures"


def creer_store(tmp_path) -> CSVDataStore:
    data_dir = tmp_path / "data"
    shutil.copytree(FIXTURES / "csv-files", data_dir)
    return CSVDataStore(AppConfig(data_dir=data_dir))


class TestHelpers:

    def test_compter_lignes(self):
        assert compter_lignes("a,b\n1,2\n\n3,4\n") == 3

    def test_colonne_external_id(self):
        assert colonne_external_id(["id", "external_id"]) == "external_id"
        assert colonne_external_id(["SERVICE_B2CSDU external_id"]) == "SERVICE_B2CSDU external_id"
        assert colonne_external_id(["id", "name"]) is None


class TestTablesTypees:

    def test_sous_traitants(self, tmp_path):
        store = creer_store(tmp_path)
        sous_traitants = store.charger_sous_traitants()
        assert len(sous_traitants) == 4
        martin = sous_traitants[0]
        assert martin.siret == "12345678900011"
        assert martin.status == 5
        assert martin.status_reseau == "TR"

    def test_missions_ri(self, tmp_path):
        store = creer_store(tmp_path)
        missions = store.charger_missions()
        assert len(missions) == 26
        martin = [m for m in missions if m.siret == "12345678900011"]
        assert sum(1 for m in martin if m.has_ri) == 5

    def test_assureurs(self, tmp_path):
        store = creer_store(tmp_path)
        assureurs = store.charger_assureurs()
        assert [(a.id, a.ri_percentage) for a in assureurs] == [(1, 50.0), (2, 20.0)]

    def test_enregistrer_assureurs(self, tmp_path):
        store = creer_store(tmp_path)
        count = store.enregistrer_assureurs([Assureur(3, "Assureur Gamma", 12.5)])
        assert count == 1
        assert store.charger_assureurs() == [Assureur(3, "Assureur Gamma", 12.5)]

    def test_pourcentage_non_fini_ignore(self, tmp_path):
        store = creer_store(tmp_path)
        store.enregistrer_dataset("assureurs", "id,name,ri_percentage\n1,Alpha,nan\n2,Beta,inf\n")
        assert [a.ri_percentage for a in store.charger_assureurs()] == [0.0, 0.0]

    def test_metiers_sans_placeholder(self, tmp_path):
        store = creer_store(tmp_path)
        assert store.charger_metiers() == [
            {"id": 1, "name": "Plombier"},
            {"id": 2, "name": "Serrurier"},
        ]

    def test_metiers_absent(self, tmp_path):
        store = CSVDataStore(AppConfig(data_dir=tmp_path / "vide"))
        with pytest.raises(DatasetError):
            store.charger_metiers()

    def test_emails_autorises_minuscules(self, tmp_path):
        store = creer_store(tmp_path)
        assert store.charger_emails_autorises() == {"admin@example.fr": "Admin Test"}

    def test_table_absente(self, tmp_path):
        store = CSVDataStore(AppConfig(data_dir=tmp_path / "vide"))
        with pytest.raises(NotFoundError):
            store.lire_texte(DatasetType.MISSIONS)


class TestDatasets:

    def test_enregistrer_dataset(self, tmp_path):
        store = creer_store(tmp_path)
        resultat = store.enregistrer_dataset("assureurs", "id,name,ri_percentage\n1,A,10\n")
        assert resultat["success"] is True
        assert resultat["dataset"] == "assureurs"
        assert resultat["lineCount"] == 2
        assert store.charger_assureurs()[0].ri_percentage == 10.0

    def test_dataset_invalide(self, tmp_path):
        store = creer_store(tmp_path)
        with pytest.raises(ValidationError, match="Invalid datasetType"):
            store.enregistrer_dataset("inconnu", "a\n1\n")

    def test_contenu_vide(self, tmp_path):
        store = creer_store(tmp_path)
        with pytest.raises(ValidationError):
            store.enregistrer_dataset("missions", "")

    def test_lister_datasets(self, tmp_path):
        store = CSVDataStore(AppConfig(data_dir=tmp_path / "data"))
        store.enregistrer_dataset("missions", "siret\n12345678900011\n")
        infos = {d["type"]: d for d in store.lister_datasets()}
        assert infos["missions"]["exists"] is True
        assert infos["missions"]["lineCount"] == 2
        assert infos["assureurs"]["exists"] is False

    def test_derniere_modification(self, tmp_path):
        store = creer_store(tmp_path)
        info = store.derniere_modification_base()
        assert len(info["lastModified"]) == 10
        assert info["lastModified"][2] == "/"
        assert isinstance(info["timestamp"], int)

    def test_derniere_modification_absente(self, tmp_path):
        store = CSVDataStore(AppConfig(data_dir=tmp_path / "vide"))
        with pytest.raises(DatasetError):
            store.derniere_modification_base()


class TestTablesParStatut:

    def test_base_dedoublonnee(self, tmp_path):
        store = creer_store(tmp_path)
        resultat = store.base_par_statut()
        stats = resultat["stats"]
        assert stats["totalFiles"] == 2
        assert stats["totalRows"] == 4
        assert stats["uniqueSirets"] == 3
        assert stats["duplicatesRemoved"] == 1
        assert stats["byStatus"] == {"TR": 2, "U1": 2}
        martin = [r for r in resultat["data"] if r["siret"] == "12345678900011"][0]
        assert martin["status_reseau"] == "TR"
        assert martin["fichier_source"] == "tr.csv"

    def test_schemas(self, tmp_path):
        store = creer_store(tmp_path)
        resultat = store.schemas_par_statut()
        assert resultat["stats"]["totalTables"] == 2
        premier = resultat["schemas"][0]
        assert premier["status"] == "U1"
        assert premier["columns"] == ["siret", "name"]
        assert premier["rowCount"] == 2
        assert len(premier["sampleData"]) == 2


# ==============================
# Persistance des seuils
# ==============================

class TestPersistance:

    def test_store_defaut(self, tmp_path):
        store = PersistentStore(tmp_path / "x.json", default={"a": 1})
        assert store.exists() is False
        assert store.load() == {"a": 1}

    def test_store_aller_retour(self, tmp_path):
        store = PersistentStore(tmp_path / "sub" / "x.json", default={})
        store.save({"b": [1, 2]})
        assert store.exists()
        assert PersistentStore(tmp_path / "sub" / "x.json").load() == {"b": [1, 2]}

    def test_seuils_defaut(self, tmp_path):
        seuils = ThresholdsStore(tmp_path / "ri-thresholds.json").load()
        assert seuils == RIThresholds(-20.0, 10.0)

    def test_seuils_enregistres(self, tmp_path):
        chemin = tmp_path / "ri-thresholds.json"
        ThresholdsStore(chemin).save({"warningThreshold": -30, "excellentThreshold": 5})
        assert json.loads(chemin.read_text()) == {"warningThreshold": -30.0, "excellentThreshold": 5.0}
        assert ThresholdsStore(chemin).load() == RIThresholds(-30.0, 5.0)

    def test_seuils_fichier_corrompu(self, tmp_path):
        chemin = tmp_path / "ri-thresholds.json"
        chemin.write_text("pas du json")
        assert ThresholdsStore(chemin).load() == RIThresholds()

    def test_validation(self):
        with pytest.raises(ValidationError, match="nombres"):
            valider_seuils({"warningThreshold": "a", "excellentThreshold": 10})
        with pytest.raises(ValidationError, match="nombres"):
            valider_seuils({"warningThreshold": True, "excellentThreshold": 10})
        with pytest.raises(ValidationError, match="inférieur"):
            valider_seuils({"warningThreshold": 10, "excellentThreshold": 10})

    def test_validation_valeurs_non_finies(self, tmp_path):
        chemin = tmp_path / "ri-thresholds.json"
        for seuils in (
            {"warningThreshold": float("nan"), "excellentThreshold": 10},
            {"warningThreshold": -20, "excellentThreshold": float("inf")},
            {"warningThreshold": float("-inf"), "excellentThreshold": 10},
        ):
            with pytest.raises(ValidationError, match="nombres"):
                ThresholdsStore(chemin).save(seuils)
        assert not chemin.exists()

    def test_seuils_non_finis_sur_disque(self, tmp_path):
        chemin = tmp_path / "ri-thresholds.json"
        chemin.write_text('{"warningThreshold": NaN, "excellentThreshold": 10}')
        assert ThresholdsStore(chemin).load() == RIThresholds()
