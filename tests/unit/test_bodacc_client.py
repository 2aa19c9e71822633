"""Tests du client BODACC (procedures collectives)."""

import io
import json
import sys
from pathlib import Path
from unittest.mock import patch
from urllib.error import HTTPError, URLError
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sous_traitants_analyzer.config.constants import ProcedureStatus, ProcedureType
from sous_traitants_analyzer.models.entites import BodaccResult, CompanyStatus
from sous_traitants_analyzer.veille.bodacc_client import (
    BodaccClient, detecter_statut_procedure, detecter_type_procedure,
    interpreter_annonce, resume_procedure,
)

URLOPEN = "sous_traitants_analyzer.veille.bodacc_client.urlopen"


class FakeResponse:
    def __init__(self, data):
        self._corps = json.dumps(data).encode()

    def read(self):
        return self._corps

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False


def annonce(nature):
    return {
        "registre": "123456789",
        "dateparution": "2024-03-12",
        "tribunal": "Tribunal de commerce de Lyon",
        "typeavis": "annonce",
        "typeavis_lib": "Avis initial",
        "jugement": json.dumps({"nature": nature, "famille": "Jugement d'ouverture"}),
    }


class TestDetection:

    def test_types(self):
        assert detecter_type_procedure("Jugement d'ouverture de liquidation judiciaire") == ProcedureType.LIQUIDATION_JUDICIAIRE
        assert detecter_type_procedure("Redressement judiciaire") == ProcedureType.REDRESSEMENT_JUDICIAIRE
        assert detecter_type_procedure("Procédure de sauvegarde") == ProcedureType.SAUVEGARDE
        assert detecter_type_procedure("Autre jugement") == ProcedureType.AUTRE

    def test_statut(self):
        assert detecter_statut_procedure("Jugement de clôture pour insuffisance d'actif") == ProcedureStatus.TERMINEE
        assert detecter_statut_procedure("Jugement d'ouverture") == ProcedureStatus.EN_COURS

    def test_interpreter_annonce(self):
        resultat = interpreter_annonce("123456789", annonce("Jugement d'ouverture de redressement judiciaire"))
        assert resultat.has_procedures is True
        assert resultat.has_active_procedures is True
        procedure = resultat.derniere_procedure
        assert procedure.type == ProcedureType.REDRESSEMENT_JUDICIAIRE
        assert procedure.tribunal == "Tribunal de commerce de Lyon"

    def test_jugement_illisible(self):
        data = annonce("x")
        data["jugement"] = "{pas du json"
        resultat = interpreter_annonce("123456789", data)
        assert resultat.derniere_procedure.name == "Avis initial"


class TestResume:

    def test_procedure_terminee(self):
        resultat = interpreter_annonce("123456789", annonce("Jugement de clôture de liquidation judiciaire"))
        resume = resume_procedure(resultat)
        assert resume["procedure"].endswith(" (Terminée)")
        assert resume["has_active_procedures"] is False
        assert resume["procedure_type"] == "LIQUIDATION_JUDICIAIRE"

    def test_sans_procedure(self):
        resume = resume_procedure(BodaccResult(siren="123456789"))
        assert resume["procedure"] is None
        assert resume["bodacc_error"] is None

    def test_erreur(self):
        resume = resume_procedure(BodaccResult(siren="123456789", error="HTTP_500"))
        assert resume["bodacc_error"] == "HTTP_500"
        assert resume["has_active_procedures"] is False


class TestBodaccClient:

    def setup_method(self):
        self.maintenant = 1_000_000.0
        self.attentes = []
        self.client = BodaccClient(sleep=self.attentes.append, horloge=lambda: self.maintenant)

    def test_requete_et_cache(self):
        with patch(URLOPEN, return_value=FakeResponse({"results": [annonce("Redressement judiciaire")]})) as mock:
            premier = self.client.fetch_procedures("123456789")
            second = self.client.fetch_procedures("123456789")
        assert mock.call_count == 1
        assert premier is second
        url = mock.call_args[0][0].full_url
        assert "registre%3D%27123456789%27" in url
        assert "familleavis%3D%27collective%27" in url

    def test_cache_expire(self):
        with patch(URLOPEN, return_value=FakeResponse({"results": []})) as mock:
            self.client.fetch_procedures("123456789")
            self.maintenant += 24 * 3600 + 1
            self.client.fetch_procedures("123456789")
        assert mock.call_count == 2

    def test_entrees_expirees_retirees_du_cache(self):
        with patch(URLOPEN, side_effect=lambda *a, **k: FakeResponse({"results": []})):
            self.client.fetch_procedures("111111111")
            self.maintenant += 24 * 3600 + 1
            self.client.fetch_procedures("222222222")
        assert set(self.client._cache) == {"222222222"}

    def test_aucune_annonce(self):
        with patch(URLOPEN, return_value=FakeResponse({"results": []})):
            resultat = self.client.fetch_procedures("123456789")
        assert resultat.has_procedures is False
        assert resultat.error is None

    def test_erreurs_non_mises_en_cache(self):
        erreur = HTTPError("https://bodacc", 503, "indisponible", {}, io.BytesIO(b""))
        with patch(URLOPEN, side_effect=[erreur, URLError("refused")]) as mock:
            assert self.client.fetch_procedures("123456789").error == "HTTP_503"
            assert self.client.fetch_procedures("123456789").error == "NETWORK_ERROR: refused"
        assert mock.call_count == 2

    def test_batch_par_groupes_de_cinq(self):
        sirens = [f"{i:09d}" for i in range(7)]
        with patch(URLOPEN, side_effect=lambda *a, **k: FakeResponse({"results": []})):
            resultats = self.client.fetch_procedures_batch(sirens)
        assert [r.siren for r in resultats] == sirens
        assert self.attentes == [1.0]

    def test_enrichir_statut(self):
        statut = CompanyStatus(siret="12345678900011", denomination="MARTIN")
        with patch(URLOPEN, return_value=FakeResponse({"results": [annonce("Liquidation judiciaire")]})):
            self.client.enrichir_statut(statut)
        assert statut.procedure == "Liquidation judiciaire"
        assert statut.procedure_type == "LIQUIDATION_JUDICIAIRE"
        assert statut.has_active_procedures is True

    def test_enrichir_entreprises(self):
        entreprises = [
            {"siret": "12345678900011", "denomination": "MARTIN", "estRadiee": True, "montant": 100},
            {"siret": "12345678900029", "denomination": "MARTIN BIS"},
        ]
        with patch(URLOPEN, return_value=FakeResponse({"results": [annonce("Sauvegarde")]})) as mock:
            resultat = self.client.enrichir_entreprises(entreprises)
        assert mock.call_count == 1  # meme SIREN
        assert resultat["stats"] == {"total": 2, "withProcedures": 2, "withActiveProcedures": 2, "errors": 0}
        premiere = resultat["enrichedCompanies"][0]
        assert premiere["procedureType"] == "SAUVEGARDE"
        assert premiere["estRadiee"] is True
        assert premiere["montant"] == 100
