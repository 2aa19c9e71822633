"""Client pour l'API BODACC (annonces commerciales, procedures collectives).

Seul le dernier avis de la famille 'collective' est lu : il donne l'etat
recent de la procedure (ouverture, conversion, cloture...).

API Documentation : https://www.bodacc.fr/pages/donnees-ouvertes-et-api/
"""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from sous_traitants_analyzer.config.constants import (
    BODACC_CACHE_SECONDES, BODACC_PAUSE_LOT, BODACC_TAILLE_LOT, BODACC_URL,
    BODACC_USER_AGENT, ERREUR_RESEAU, ProcedureStatus, ProcedureType,
)
from sous_traitants_analyzer.models.entites import BodaccProcedure, BodaccResult, CompanyStatus
from sous_traitants_analyzer.utils.normalisation import extraire_siren

logger = logging.getLogger("sous_traitants_analyzer.veille.bodacc")

# Ordre significatif : le premier motif trouve gagne
MOTIFS_PROCEDURES = [
    ("redressement judiciaire", ProcedureType.REDRESSEMENT_JUDICIAIRE),
    ("liquidation judiciaire", ProcedureType.LIQUIDATION_JUDICIAIRE),
    ("sauvegarde", ProcedureType.SAUVEGARDE),
    ("concordat", ProcedureType.CONCORDAT),
    ("plan de redressement", ProcedureType.PLAN_DE_REDRESSEMENT),
    ("liquidation amiable", ProcedureType.LIQUIDATION_AMIABLE),
]

SUFFIXE_TERMINEE = " (Terminée)"


def detecter_type_procedure(texte: str) -> ProcedureType:
    texte = (texte or "").lower()
    for motif, type_procedure in MOTIFS_PROCEDURES:
        if motif in texte:
            return type_procedure
    return ProcedureType.AUTRE


def detecter_statut_procedure(texte: str) -> ProcedureStatus:
    """Cloture = terminee ; tout le reste est considere en cours."""
    texte = (texte or "").lower()
    if "clôture" in texte or "cloture" in texte:
        return ProcedureStatus.TERMINEE
    return ProcedureStatus.EN_COURS


def _maintenant_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def interpreter_annonce(siren: str, annonce: dict) -> BodaccResult:
    """Construit le resultat a partir du dernier avis publie."""
    nature = famille = ""
    jugement = annonce.get("jugement")
    if isinstance(jugement, str) and jugement:
        try:
            parse = json.loads(jugement)
            nature = parse.get("nature") or ""
            famille = parse.get("famille") or ""
        except (ValueError, AttributeError) as e:
            logger.warning("Jugement illisible pour le SIREN %s: %s", siren, e)

    texte = nature or famille or annonce.get("typeavis_lib") or ""
    statut = detecter_statut_procedure(texte)
    procedure = BodaccProcedure(
        type=detecter_type_procedure(texte),
        name=texte or "Procédure inconnue",
        status=statut,
        date_debut=annonce.get("dateparution"),
        tribunal=annonce.get("tribunal"),
        typeavis=annonce.get("typeavis"),
        typeavis_lib=annonce.get("typeavis_lib"),
        dateparution=annonce.get("dateparution"),
    )
    return BodaccResult(
        siren=siren,
        procedures=[procedure],
        has_procedures=True,
        has_active_procedures=statut == ProcedureStatus.EN_COURS,
        last_update=_maintenant_iso(),
    )


class BodaccClient:
    """Client BODACC avec cache memoire de 24h par SIREN."""

    def __init__(
        self,
        timeout: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
        horloge: Callable[[], float] = time.time,
    ):
        self.timeout = timeout
        self._sleep = sleep
        self._horloge = horloge
        self._cache: dict[str, tuple[BodaccResult, float]] = {}

    def vider_cache(self):
        self._cache.clear()

    def _depuis_cache(self, siren: str) -> Optional[BodaccResult]:
        maintenant = self._horloge()
        for cle in [c for c, (_, t) in self._cache.items() if maintenant - t >= BODACC_CACHE_SECONDES]:
            del self._cache[cle]
        entree = self._cache.get(siren)
        return entree[0] if entree else None

    def fetch_procedures(self, siren: str) -> BodaccResult:
        """Dernier avis de procedure collective d'un SIREN."""
        en_cache = self._depuis_cache(siren)
        if en_cache is not None:
            return en_cache

        params = urlencode({
            "where": f"registre='{siren}' AND familleavis='collective'",
            "order_by": "dateparution DESC",
            "limit": "1",
        })
        req = Request(f"{BODACC_URL}?{params}", method="GET")
        req.add_header("Accept", "application/json")
        req.add_header("User-Agent", BODACC_USER_AGENT)

        try:
            with urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read() or b"{}")
        except HTTPError as e:
            logger.error("API BODACC %s pour le SIREN %s", e.code, siren)
            return BodaccResult(siren=siren, error=f"HTTP_{e.code}")
        except (URLError, OSError, ValueError) as e:
            raison = getattr(e, "reason", None) or e
            logger.error("Erreur reseau BODACC pour %s: %s", siren, raison)
            return BodaccResult(siren=siren, error=f"{ERREUR_RESEAU}: {raison}")

        annonces = (data.get("results") or []) if isinstance(data, dict) else []
        if annonces and isinstance(annonces[0], dict):
            resultat = interpreter_annonce(siren, annonces[0])
            logger.debug(
                "SIREN %s : procedure %s, active: %s",
                siren, resultat.procedures[0].type.value, resultat.has_active_procedures,
            )
        else:
            resultat = BodaccResult(siren=siren, last_update=_maintenant_iso())

        self._cache[siren] = (resultat, self._horloge())
        return resultat

    def fetch_procedures_batch(self, sirens: list[str]) -> list[BodaccResult]:
        """Interroge les SIREN par groupes de 5, avec une pause entre groupes."""
        resultats = []
        for debut in range(0, len(sirens), BODACC_TAILLE_LOT):
            groupe = sirens[debut:debut + BODACC_TAILLE_LOT]
            resultats.extend(self.fetch_procedures(siren) for siren in groupe)
            if debut + BODACC_TAILLE_LOT < len(sirens):
                self._sleep(BODACC_PAUSE_LOT)
        return resultats

    def enrichir_statut(self, statut: CompanyStatus) -> CompanyStatus:
        """Complete un statut INSEE avec la derniere procedure BODACC."""
        resultat = self.fetch_procedures(extraire_siren(statut.siret))
        for cle, valeur in resume_procedure(resultat).items():
            setattr(statut, cle, valeur)
        return statut

    def enrichir_entreprises(self, entreprises: list[dict]) -> dict:
        """Enrichit une liste d'entreprises (dicts camelCase) avec le BODACC."""
        sirens = []
        for entreprise in entreprises:
            siren = entreprise.get("siren") or extraire_siren(entreprise.get("siret") or "")
            if siren not in sirens:
                sirens.append(siren)
        logger.info("Enrichissement BODACC : %d entreprises, %d SIREN", len(entreprises), len(sirens))

        par_siren = {r.siren: r for r in self.fetch_procedures_batch(sirens)}

        enrichies = []
        stats = {"total": len(entreprises), "withProcedures": 0, "withActiveProcedures": 0, "errors": 0}
        for entreprise in entreprises:
            siren = entreprise.get("siren") or extraire_siren(entreprise.get("siret") or "")
            resultat = par_siren.get(siren)
            resume = resume_procedure(resultat) if resultat else {}

            if resultat is not None:
                if resultat.error:
                    stats["errors"] += 1
                elif resultat.has_procedures:
                    stats["withProcedures"] += 1
                    if resultat.has_active_procedures:
                        stats["withActiveProcedures"] += 1

            dict_entreprise = {
                "siret": entreprise.get("siret"),
                "denomination": entreprise.get("denomination"),
                "estRadiee": bool(entreprise.get("estRadiee")),
                "dateCessation": entreprise.get("dateCessation") if isinstance(entreprise.get("dateCessation"), str) else None,
                "phone": entreprise.get("phone") if isinstance(entreprise.get("phone"), str) else None,
                "status_reseau": entreprise.get("status_reseau") if isinstance(entreprise.get("status_reseau"), str) else None,
                "fichier_source": entreprise.get("fichier_source") if isinstance(entreprise.get("fichier_source"), str) else None,
                "montant": entreprise.get("montant") or 0,
                "procedure": resume.get("procedure"),
                "procedureType": resume.get("procedure_type"),
                "hasActiveProcedures": resume.get("has_active_procedures", False),
                "bodaccError": resume.get("bodacc_error"),
                "error": entreprise.get("error"),
            }
            enrichies.append(dict_entreprise)

        logger.info("Enrichissement BODACC termine : %s", stats)
        return {"enrichedCompanies": enrichies, "stats": stats}


def resume_procedure(resultat: BodaccResult) -> dict:
    """Champs procedure / procedure_type / has_active_procedures / bodacc_error."""
    if resultat.error:
        return {
            "procedure": None, "procedure_type": None,
            "has_active_procedures": False, "bodacc_error": resultat.error,
        }
    derniere = resultat.derniere_procedure
    if not resultat.has_procedures or derniere is None:
        return {
            "procedure": None, "procedure_type": None,
            "has_active_procedures": False, "bodacc_error": None,
        }
    nom = derniere.name if resultat.has_active_procedures else derniere.name + SUFFIXE_TERMINEE
    return {
        "procedure": nom,
        "procedure_type": derniere.type.value,
        "has_active_procedures": resultat.has_active_procedures,
        "bodacc_error": None,
    }
