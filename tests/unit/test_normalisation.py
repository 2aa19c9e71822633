"""Tests des utilitaires de normalisation."""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sous_traitants_analyzer.utils.normalisation import (
    chiffres, est_siret_valide, nettoyer_sirets, extraire_siren,
    est_telephone_valide, normaliser_telephone,
    parser_montant, formater_montant,
    normaliser_chaine, distance_levenshtein,
)


# ==============================
# SIRET
# ==============================

class TestSiret:

    def test_chiffres(self):
        assert chiffres("123 456 789 00011") == "12345678900011"
        assert chiffres(None) == ""
        assert chiffres(12345) == "12345"

    def test_siret_valide(self):
        assert est_siret_valide("123 456 789 00011")
        assert not est_siret_valide("1234567890001")
        assert not est_siret_valide("")

    def test_nettoyer_dedoublonne_et_conserve_ordre(self):
        sirets = ["98765432100022", "123-456-789-00011", "98765432100022", "abc", 42, None]
        assert nettoyer_sirets(sirets) == ["98765432100022", "12345678900011"]

    def test_nettoyer_idempotent(self):
        sirets = ["123 456 789 00011", "98765432100022", "1234"]
        une_fois = nettoyer_sirets(sirets)
        assert nettoyer_sirets(une_fois) == une_fois

    def test_nettoyer_liste_vide(self):
        assert nettoyer_sirets([]) == []
        assert nettoyer_sirets(None) == []

    def test_extraire_siren(self):
        assert extraire_siren("12345678900011") == "123456789"
        assert extraire_siren("1234") == "1234"


# ==============================
# Telephones
# ==============================

class TestTelephone:

    def test_formats_valides(self):
        for numero in ["0612345678", "06 12 34 56 78", "+33612345678", "33612345678", "612345678"]:
            assert est_telephone_valide(numero), numero

    def test_formats_invalides(self):
        assert not est_telephone_valide("0012345678")
        assert not est_telephone_valide("12345")
        assert not est_telephone_valide(None)

    def test_normaliser(self):
        assert normaliser_telephone("06 12 34 56 78") == "+33612345678"
        assert normaliser_telephone("33612345678") == "+33612345678"
        assert normaliser_telephone("+33 6 12 34 56 78") == "+33612345678"
        assert normaliser_telephone("612345678") == "+33612345678"

    def test_normaliser_inconnu(self):
        assert normaliser_telephone("12") == ""
        assert normaliser_telephone("") == ""
        assert normaliser_telephone(None) == ""

    def test_normaliser_idempotent(self):
        premier = normaliser_telephone("06.12.34.56.78")
        assert normaliser_telephone(premier) == premier


# ==============================
# Montants
# ==============================

class TestMontants:

    def test_parser(self):
        assert parser_montant("1234,56") == 1234.56
        assert parser_montant("12.5 EUR") == 12.5
        assert parser_montant("300") == 300.0
        assert parser_montant(42) == 42.0

    def test_parser_illisible(self):
        assert parser_montant("") == 0.0
        assert parser_montant(None) == 0.0
        assert parser_montant("abc") == 0.0
        assert parser_montant(float("nan")) == 0.0

    def test_formater(self):
        assert formater_montant(1234.56) == "1 234,56"
        assert formater_montant(0) == "0,00"
        assert formater_montant(-1500) == "-1 500,00"


# ==============================
# Chaines
# ==============================

class TestChaines:

    def test_normaliser_chaine(self):
        assert normaliser_chaine("Électricité Générale !") == "electricite generale "
        assert normaliser_chaine(None) == ""

    def test_levenshtein(self):
        assert distance_levenshtein("martin", "martin") == 0
        assert distance_levenshtein("martin", "marten") == 1
        assert distance_levenshtein("", "abc") == 3
        assert distance_levenshtein("chat", "chien") == 3
