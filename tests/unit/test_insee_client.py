"""Tests du client INSEE Sirene (urlopen simule)."""

import io
import json
import sys
from pathlib import Path
from unittest.mock import patch
from urllib.error import HTTPError, URLError
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import pytest

from sous_traitants_analyzer.config.settings import InseeConfig
from sous_traitants_analyzer.core.exceptions import ConfigError
from sous_traitants_analyzer.veille.insee_client import InseeClient, interpreter_reponse

URLOPEN = "sous_traitants_analyzer.veille.insee_client.urlopen"
SIRET = "12345678900011"


class FakeResponse:
    def __init__(self, data):
        self._corps = data if isinstance(data, bytes) else json.dumps(data).encode()

    def read(self):
        return self._corps

    def __enter__(self):
        return self

    def __exit__(self, *args):
        return False


def http_error(code):
    return HTTPError("https://api.insee.fr", code, "erreur", {}, io.BytesIO(b""))


def reponse_active():
    return {"etablissement": {
        "siret": SIRET,
        "uniteLegale": {"denominationUniteLegale": "PLOMBERIE MARTIN", "etatAdministratifUniteLegale": "A"},
        "periodesEtablissement": [{"dateFin": None, "etatAdministratifEtablissement": "A"}],
    }}


class TestInterpretation:

    def test_active(self):
        statut = interpreter_reponse(SIRET, reponse_active())
        assert statut.denomination == "PLOMBERIE MARTIN"
        assert statut.est_radiee is False
        assert statut.date_cessation is None

    def test_date_fin_periode(self):
        data = reponse_active()
        data["etablissement"]["periodesEtablissement"][0]["dateFin"] = "2023-05-31"
        statut = interpreter_reponse(SIRET, data)
        assert statut.est_radiee is True
        assert statut.date_cessation == "2023-05-31"

    def test_unite_cessee(self):
        data = reponse_active()
        data["etablissement"]["uniteLegale"]["etatAdministratifUniteLegale"] = "C"
        assert interpreter_reponse(SIRET, data).est_radiee is True

    def test_etablissement_ferme(self):
        data = {"etablissement": {"etatAdministratifEtablissement": "F", "uniteLegale": {"nomUniteLegale": "DUPONT"}}}
        statut = interpreter_reponse(SIRET, data)
        assert statut.est_radiee is True
        assert statut.denomination == "DUPONT"


class TestInseeClient:

    def setup_method(self):
        self.attentes = []
        self.client = InseeClient(
            InseeConfig(integration_key="cle-test", client_id="", client_secret=""),
            sleep=self.attentes.append,
        )

    def test_configure(self):
        assert self.client.configure is True
        assert InseeClient(InseeConfig(integration_key="", client_id="", client_secret="")).configure is False

    def test_succes_avec_cle_integration(self):
        with patch(URLOPEN, return_value=FakeResponse(reponse_active())) as mock:
            statut = self.client.fetch_etablissement(SIRET)
        req = mock.call_args[0][0]
        assert req.get_header("X-insee-api-key-integration") == "cle-test"
        assert req.full_url.endswith(f"/siret/{SIRET}")
        assert statut.error is None
        assert statut.denomination == "PLOMBERIE MARTIN"

    def test_404_radiee(self):
        with patch(URLOPEN, side_effect=http_error(404)):
            statut = self.client.fetch_etablissement(SIRET)
        assert statut.est_radiee is True
        assert statut.error == "SIRET_NOT_FOUND"

    def test_429_retry_puis_succes(self):
        reponses = [http_error(429), http_error(429), FakeResponse(reponse_active())]
        with patch(URLOPEN, side_effect=reponses):
            statut = self.client.fetch_etablissement(SIRET)
        assert statut.error is None
        assert self.attentes == [1, 2]

    def test_429_epuise(self):
        with patch(URLOPEN, side_effect=[http_error(429)] * 4):
            statut = self.client.fetch_etablissement(SIRET)
        assert statut.error == "RATE_LIMIT_EXCEEDED"
        assert self.attentes == [1, 2, 4]

    def test_erreur_http(self):
        with patch(URLOPEN, side_effect=http_error(500)):
            assert self.client.fetch_etablissement(SIRET).error == "HTTP_500"

    def test_erreur_reseau(self):
        with patch(URLOPEN, side_effect=URLError("timed out")):
            statut = self.client.fetch_etablissement(SIRET)
        assert statut.error == "NETWORK_ERROR: timed out"
        assert statut.est_radiee is False

    def test_reponse_vide(self):
        with patch(URLOPEN, return_value=FakeResponse(b"")):
            assert self.client.fetch_etablissement(SIRET).error == "INVALID_RESPONSE"

    def test_reponse_non_json(self):
        with patch(URLOPEN, return_value=FakeResponse(b"<html>")):
            assert self.client.fetch_etablissement(SIRET).error == "INVALID_RESPONSE"


class TestOAuth:

    def test_token_mis_en_cache(self):
        client = InseeClient(InseeConfig(integration_key="", client_id="id", client_secret="secret"))
        reponses = [
            FakeResponse({"access_token": "tok", "expires_in": 3600}),
            FakeResponse(reponse_active()),
            FakeResponse(reponse_active()),
        ]
        with patch(URLOPEN, side_effect=reponses) as mock:
            client.fetch_etablissement(SIRET)
            client.fetch_etablissement(SIRET)
        assert mock.call_count == 3
        assert mock.call_args[0][0].get_header("Authorization") == "Bearer tok"

    def test_sans_identifiants(self):
        client = InseeClient(InseeConfig(integration_key="", client_id="", client_secret=""))
        with pytest.raises(ConfigError):
            client.fetch_etablissement(SIRET)
