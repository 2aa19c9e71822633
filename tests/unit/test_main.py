"""Tests de la ligne de commande."""

import json
import shutil
import sys
from pathlib import Path
from unittest.mock import patch
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import pytest
from openpyxl import load_workbook

from sous_traitants_analyzer.config.settings import AppConfig, PipelineConfig
from sous_traitants_analyzer.database.csv_store import CSVDataStore
from sous_traitants_analyzer.main import creer_argument_parser, lire_entree, main
from sous_traitants_analyzer.models.entites import CompanyStatus
from sous_traitants_analyzer.utils.normalisation import nettoyer_sirets

FIXTURES = Path(__file__).parent.parent / "fixtures"


class FakeInsee:
    configure = True

    def __init__(self, *args, **kwargs):
        self.appels = []

    def fetch_etablissement(self, siret):
        self.appels.append(siret)
        if siret == "12345678900011":
            return CompanyStatus(
                siret=siret, denomination="PLOMBERIE MARTIN",
                est_radiee=True, date_cessation="2023-05-31",
            )
        return CompanyStatus(siret=siret, denomination="SERRURERIE DUPONT")


def copier_donnees(tmp_path) -> Path:
    data_dir = tmp_path / "data"
    shutil.copytree(FIXTURES / "csv-files", data_dir)
    return data_dir


def sans_attente(nom):
    return PipelineConfig(delai_entre_requetes=0, pause_entre_lots=0)


class TestArguments:

    def test_verifier(self):
        args = creer_argument_parser().parse_args(["verifier", "liste.csv", "--profil", "rapide", "-f", "json"])
        assert args.commande == "verifier"
        assert args.fichier == Path("liste.csv")
        assert args.profil == "rapide"
        assert args.format == "json"

    def test_ri_anomalies(self):
        args = creer_argument_parser().parse_args(["ri-anomalies", "--min-missions", "3"])
        assert args.min_missions == 3
        assert args.siret is None

    def test_commande_obligatoire(self):
        with pytest.raises(SystemExit):
            creer_argument_parser().parse_args([])


class TestLireEntree:

    def test_fichier_sirets_avec_montants(self, tmp_path):
        store = CSVDataStore(AppConfig(data_dir=copier_donnees(tmp_path)))
        sirets, telephones, montants = lire_entree(FIXTURES / "entree_sirets.csv", store)
        assert nettoyer_sirets(sirets) == ["12345678900011", "98765432100022"]
        assert telephones == {}
        assert montants["12345678900011"] == 1250.5
        assert montants["98765432100022"] == 300.0

    def test_fichier_telephones(self, tmp_path):
        store = CSVDataStore(AppConfig(data_dir=copier_donnees(tmp_path)))
        sirets, telephones, montants = lire_entree(FIXTURES / "entree_telephones.csv", store)
        assert sirets == ["12345678900011"]
        assert telephones == {"12345678900011": "+33612345678"}
        assert montants == {}


class TestCommandes:

    def test_fichier_introuvable(self, tmp_path):
        code = main(["--data-dir", str(copier_donnees(tmp_path)), "verifier", str(tmp_path / "absent.csv")])
        assert code == 1

    def test_insee_non_configure(self, tmp_path, monkeypatch):
        for nom in ("INSEE_INTEGRATION_KEY", "SIRENE_KEY", "SIRENE_SECRET"):
            monkeypatch.delenv(nom, raising=False)
        code = main([
            "--data-dir", str(copier_donnees(tmp_path)),
            "verifier", str(FIXTURES / "entree_sirets.csv"),
        ])
        assert code == 1

    def test_verification_json(self, tmp_path):
        sortie = tmp_path / "rapports"
        with patch("sous_traitants_analyzer.main.InseeClient", FakeInsee), \
                patch("sous_traitants_analyzer.main.BodaccClient", lambda: None), \
                patch("sous_traitants_analyzer.main.profil_pipeline", sans_attente):
            code = main([
                "--data-dir", str(copier_donnees(tmp_path)),
                "verifier", str(FIXTURES / "entree_sirets.csv"),
                "--format", "json", "--output", str(sortie),
            ])
        assert code == 0

        rapport = json.loads((sortie / "verification-entree_sirets.json").read_text(encoding="utf-8"))
        assert rapport["stats"]["total"] == 2
        assert rapport["stats"]["radiees"] == 1
        martin = rapport["results"][0]
        assert martin["estRadiee"] is True
        assert martin["montant"] == 1250.5

    def test_verification_xlsx(self, tmp_path):
        with patch("sous_traitants_analyzer.main.InseeClient", FakeInsee), \
                patch("sous_traitants_analyzer.main.BodaccClient", lambda: None), \
                patch("sous_traitants_analyzer.main.profil_pipeline", sans_attente):
            code = main([
                "--data-dir", str(copier_donnees(tmp_path)),
                "verifier", str(FIXTURES / "entree_sirets.csv"), "--output", str(tmp_path),
            ])
        assert code == 0
        wb = load_workbook(tmp_path / "verification-entree_sirets.xlsx")
        assert wb.active.cell(row=2, column=3).value == "Radiée"

    def test_ri_anomalies_export(self, tmp_path, capsys):
        export = tmp_path / "anomalies.xlsx"
        code = main(["--data-dir", str(copier_donnees(tmp_path)), "ri-anomalies", "--output", str(export)])
        assert code == 0
        assert "98765432100022" in capsys.readouterr().out
        wb = load_workbook(export)
        assert wb["Synthèse"].cell(row=2, column=2).value == "98765432100022"

    def test_ri_anomalies_siret_invalide(self, tmp_path):
        code = main(["--data-dir", str(copier_donnees(tmp_path)), "ri-anomalies", "--siret", "1234"])
        assert code == 1
