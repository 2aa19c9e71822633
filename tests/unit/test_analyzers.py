"""Tests des jointures, de la recherche et des montants."""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import pytest

from sous_traitants_analyzer.analyzers.jointures import (
    jointure_sirets, jointure_telephones,
    valider_sirets, valider_statuts, valider_telephones,
)
from sous_traitants_analyzer.analyzers.montants import (
    creer_map_montants, enrichir_montants, total_radiees, total_radiees_formate,
)
from sous_traitants_analyzer.analyzers.recherche import (
    mot_correspond, rechercher_sous_traitants, score_nom,
)
from sous_traitants_analyzer.config.constants import DEFAULT_ENABLED_STATUSES
from sous_traitants_analyzer.core.exceptions import ValidationError
from sous_traitants_analyzer.models.entites import CompanyStatus
from sous_traitants_analyzer.parsers.csv_parser import lire_csv

FIXTURES = Path(__file__).parent.parent / "fixtures"
BASE = (FIXTURES / "csv-files" / "base-sous-traitants" / "sous-traitants.csv").read_text(encoding="utf-8")


# ==============================
# Validation
# ==============================

class TestValidation:

    def test_sirets(self):
        assert valider_sirets(["12345678900011", "123", 5]) == ["12345678900011"]
        assert valider_sirets([]) == []
        with pytest.raises(ValidationError, match="sirets must be an array"):
            valider_sirets("12345678900011")

    def test_telephones(self):
        assert valider_telephones(["0612345678", "12"]) == ["0612345678"]
        with pytest.raises(ValidationError, match="cannot be empty"):
            valider_telephones([])
        with pytest.raises(ValidationError, match="must be an array"):
            valider_telephones(None)

    def test_statuts(self):
        statuts = valider_statuts({"TR": True, "U1": False, "XX": True})
        assert statuts["TR"] is True
        assert "XX" not in statuts
        with pytest.raises(ValidationError, match="At least one status"):
            valider_statuts({"TR": False})
        with pytest.raises(ValidationError, match="must be an object"):
            valider_statuts(None)


# ==============================
# Jointure SIRET
# ==============================

class TestJointureSirets:

    def test_correspondances(self):
        resultat = jointure_sirets(BASE, ["12345678900011", "99999999999999"], DEFAULT_ENABLED_STATUSES)
        assert [m["siret"] for m in resultat["matched"]] == ["12345678900011"]
        assert resultat["matched"][0]["status_reseau"] == "TR"
        assert resultat["matched"][0]["fichier_source"] == "Base sous-traitants"
        assert resultat["unmatched"] == [{"siret": "99999999999999"}]
        assert resultat["stats"] == {
            "totalSirets": 2, "matchedCount": 1, "unmatchedCount": 1, "byStatus": {"TR": 1},
        }

    def test_liste_vide_toute_la_base(self):
        resultat = jointure_sirets(BASE, [], DEFAULT_ENABLED_STATUSES)
        assert resultat["stats"]["matchedCount"] == 4
        assert resultat["unmatched"] == []

    def test_filtre_statuts(self):
        statuts = {**{s: False for s in DEFAULT_ENABLED_STATUSES}, "U1": True}
        resultat = jointure_sirets(BASE, [], statuts)
        assert [m["siret"] for m in resultat["matched"]] == ["98765432100022"]

    def test_fichier_fourni(self):
        resultat = jointure_sirets(BASE, ["12345678900011"], DEFAULT_ENABLED_STATUSES, fichier_fourni=True)
        assert resultat["matched"][0]["fichier_source"] == "Fichier entreprise"


# ==============================
# Jointure telephone
# ==============================

class TestJointureTelephones:

    def test_mobile_puis_secretariat(self):
        resultat = jointure_telephones(
            BASE, ["0612345678", "+33 1 45 67 89 01", "0700000000"], DEFAULT_ENABLED_STATUSES,
        )
        trouves = {m["siret"]: m["matched_phone"] for m in resultat["matched"]}
        assert trouves == {"12345678900011": "+33612345678", "98765432100022": "+33145678901"}
        assert resultat["unmatched"] == [{"phone": "+33700000000", "error": "Non trouvé dans la base"}]
        assert resultat["stats"]["totalPhones"] == 3

    def test_aucun_numero_valide(self):
        resultat = jointure_telephones(BASE, ["12"], DEFAULT_ENABLED_STATUSES)
        assert resultat["matched"] == []
        assert resultat["unmatched"] == [{"phone": "12", "error": "Numéro invalide"}]


# ==============================
# Recherche
# ==============================

class TestRecherche:

    def setup_method(self):
        self.lignes = lire_csv(BASE)

    def test_mot_correspond(self):
        assert mot_correspond("plomb", "plomberie")
        assert mot_correspond("marten", "martin")
        assert not mot_correspond("dupond", "bernard")

    def test_score_nom(self):
        assert score_nom(["martin"], ["plomberie", "martin"]) == 0
        assert score_nom(["inconnu"], ["plomberie", "martin"]) is None

    def test_siret_exact(self):
        assert rechercher_sous_traitants(self.lignes, "98765432100022") == [
            {"name": "Serrurerie Dupont", "siret": "98765432100022"},
        ]

    def test_prefixe_siret(self):
        resultats = rechercher_sous_traitants(self.lignes, "123 456 789")
        assert resultats[0]["siret"] == "12345678900011"

    def test_nom_approche(self):
        resultats = rechercher_sous_traitants(self.lignes, "serurerie")
        assert resultats[0]["name"] == "Serrurerie Dupont"

    def test_email(self):
        resultats = rechercher_sous_traitants(self.lignes, "elec.fr")
        assert [r["siret"] for r in resultats] == ["44455566600044"]

    def test_requete_trop_courte(self):
        assert rechercher_sous_traitants(self.lignes, "a") == []


# ==============================
# Montants
# ==============================

class TestMontants:

    def test_map_par_siret(self):
        lignes = [["12345678900011", "1250,50"], ["98765432100022", "300"]]
        montants = creer_map_montants(lignes, 1, 0)
        assert montants["12345678900011"] == 1250.5
        assert montants["index_1"] == 300.0

    def test_map_par_telephone(self):
        lignes = [{"tel": "06 12 34 56 78", "montant": "80"}]
        montants = creer_map_montants(lignes, "montant", "tel", mode="phone")
        assert montants["+33612345678"] == 80.0

    def test_sans_colonne_montant(self):
        assert creer_map_montants([["a"]], None) == {}

    def test_enrichir_et_total(self):
        resultats = [
            CompanyStatus(siret="12345678900011", est_radiee=True),
            CompanyStatus(siret="98765432100022", est_radiee=True, phone="0612345678"),
            CompanyStatus(siret="44455566600044", montant=12.0),
            CompanyStatus(siret="55566677700055"),
        ]
        montants = {"12345678900011": 1000.0, "+33612345678": 234.56, "55566677700055": 50.0}
        enrichir_montants(resultats, montants)
        assert [r.montant for r in resultats] == [1000.0, 234.56, 12.0, 50.0]
        assert total_radiees(resultats) == pytest.approx(1234.56)
        assert total_radiees_formate(resultats) == "1 234,56"
