"""Client pour l'API Sirene de l'INSEE.

Permet de :
- Recuperer l'etat administratif d'un etablissement par son SIRET
- Detecter les etablissements radies (cessation, fermeture, unite cessee)

API Documentation : https://portail-api.insee.fr/
Production : https://api.insee.fr/api-sirene/3.11
Auth : cle d'integration (X-INSEE-Api-Key-Integration) ou OAuth 2.0
client_credentials via https://api.insee.fr/token
"""

import base64
import json
import logging
import time
from typing import Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from sous_traitants_analyzer.config.constants import (
    ERREUR_RATE_LIMIT, ERREUR_REPONSE_INVALIDE, ERREUR_RESEAU,
    ERREUR_SIRET_INTROUVABLE, INSEE_SIRET_URL, INSEE_TOKEN_URL,
)
from sous_traitants_analyzer.config.settings import InseeConfig
from sous_traitants_analyzer.core.exceptions import ConfigError
from sous_traitants_analyzer.models.entites import CompanyStatus

logger = logging.getLogger("sous_traitants_analyzer.veille.insee")

# Marge avant expiration du token OAuth
MARGE_EXPIRATION_TOKEN = 5 * 60


class InseeClient:
    """Client pour interroger l'API Sirene, un SIRET a la fois."""

    def __init__(
        self,
        config: InseeConfig = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or InseeConfig()
        self._sleep = sleep
        self._token: Optional[str] = None
        self._token_expiry: float = 0

    @property
    def configure(self) -> bool:
        return self.config.configuree

    def _get_token(self) -> Optional[str]:
        """Obtient un token OAuth2 via client_credentials (cache)."""
        if self._token and time.time() < self._token_expiry - MARGE_EXPIRATION_TOKEN:
            return self._token

        if not self.config.client_id or not self.config.client_secret:
            return None

        identifiants = f"{self.config.client_id}:{self.config.client_secret}".encode("utf-8")
        data = urlencode({
            "grant_type": "client_credentials",
            "scope": "api_inseev3",
        }).encode("utf-8")

        req = Request(INSEE_TOKEN_URL, data=data, method="POST")
        req.add_header("Authorization", "Basic " + base64.b64encode(identifiants).decode("ascii"))
        req.add_header("Content-Type", "application/x-www-form-urlencoded")

        try:
            with urlopen(req, timeout=self.config.timeout) as resp:
                result = json.loads(resp.read())
        except (URLError, ValueError) as e:
            logger.error("Echec obtention token INSEE: %s", e)
            return None

        token = result.get("access_token")
        if not token:
            return None
        self._token = token
        self._token_expiry = time.time() + (result.get("expires_in") or 3600)
        return token

    def _entetes(self) -> dict:
        entetes = {"Accept": "application/json"}
        if self.config.integration_key:
            entetes["X-INSEE-Api-Key-Integration"] = self.config.integration_key
            return entetes
        token = self._get_token()
        if not token:
            raise ConfigError("INSEE API integration key not configured")
        entetes["Authorization"] = f"Bearer {token}"
        return entetes

    def fetch_etablissement(self, siret: str) -> CompanyStatus:
        """Interroge l'INSEE pour un SIRET.

        Les erreurs (404, 429 apres retries, HTTP, reseau) sont retournees dans
        CompanyStatus.error et ne levent jamais. Seule l'absence de
        configuration leve ConfigError.
        """
        url = INSEE_SIRET_URL.format(siret=quote(siret, safe=""))
        entetes = self._entetes()

        tentative = 0
        while True:
            req = Request(url, headers=entetes, method="GET")
            try:
                with urlopen(req, timeout=self.config.timeout) as resp:
                    corps = resp.read()
                break
            except HTTPError as e:
                if e.code == 404:
                    logger.info("SIRET %s introuvable (404) : considere comme radie", siret)
                    return CompanyStatus(siret=siret, est_radiee=True, error=ERREUR_SIRET_INTROUVABLE)
                if e.code == 429:
                    if tentative < self.config.max_retries:
                        attente = 2 ** tentative
                        logger.info(
                            "Limite INSEE atteinte pour %s, nouvel essai dans %ss (%d/%d)",
                            siret, attente, tentative + 1, self.config.max_retries,
                        )
                        self._sleep(attente)
                        tentative += 1
                        continue
                    logger.warning("Limite INSEE depassee pour %s apres %d essais", siret, tentative)
                    return CompanyStatus(siret=siret, error=ERREUR_RATE_LIMIT)
                logger.warning("API INSEE %s pour le SIRET %s", e.code, siret)
                return CompanyStatus(siret=siret, error=f"HTTP_{e.code}")
            except (URLError, OSError) as e:
                raison = getattr(e, "reason", None) or e
                logger.warning("Erreur reseau INSEE pour %s: %s", siret, raison)
                return CompanyStatus(siret=siret, error=f"{ERREUR_RESEAU}: {raison}")

        try:
            data = json.loads(corps) if corps else None
        except ValueError:
            data = None
        if not data:
            return CompanyStatus(siret=siret, error=ERREUR_REPONSE_INVALIDE)
        return interpreter_reponse(siret, data)


def interpreter_reponse(siret: str, data: dict) -> CompanyStatus:
    """Construit le statut a partir d'une reponse Sirene."""
    etablissement = data.get("etablissement") or data.get("uniteLegale") or data
    if not isinstance(etablissement, dict):
        return CompanyStatus(siret=siret, error=ERREUR_REPONSE_INVALIDE)

    unite_legale = etablissement.get("uniteLegale") or {}
    denomination = (
        unite_legale.get("denominationUniteLegale")
        or unite_legale.get("nomUniteLegale")
        or etablissement.get("denominationUniteLegale")
    )

    date_cessation = etablissement.get("dateCessation")
    if not date_cessation:
        periodes = etablissement.get("periodesEtablissement") or []
        if periodes and isinstance(periodes[0], dict):
            date_cessation = periodes[0].get("dateFin")

    est_radiee = (
        bool(date_cessation)
        or etablissement.get("etatAdministratifEtablissement") == "F"
        or unite_legale.get("etatAdministratifUniteLegale") == "C"
    )
    if est_radiee:
        logger.info("SIRET %s radie (cessation: %s)", siret, date_cessation)

    return CompanyStatus(
        siret=siret,
        denomination=denomination,
        est_radiee=est_radiee,
        date_cessation=date_cessation or None,
    )
