"""
Pipeline de verification des SIRET par lots.

Les SIRET sont interroges un par un aupres de l'INSEE (et du BODACC selon le
profil), avec un delai fixe entre requetes, une pause entre lots et des
heartbeats pendant les attentes. La progression est emise sous forme
d'evenements (dicts) relayes en Server-Sent Events par l'API.
"""

import json
import logging
import math
import threading
import time
from typing import Callable, Iterator, Optional

from sous_traitants_analyzer.config.constants import ERREURS_CRITIQUES, EventType
from sous_traitants_analyzer.config.settings import ChunkConfig, PipelineConfig
from sous_traitants_analyzer.models.entites import CompanyStatus
from sous_traitants_analyzer.utils.normalisation import nettoyer_sirets

logger = logging.getLogger("sous_traitants_analyzer.verification.pipeline")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

MESSAGE_DEBUT = "Début de la vérification..."
MESSAGE_HEARTBEAT = "Connexion maintenue..."


def formater_sse(evenement: dict) -> str:
    """Trame SSE : 'data: <json>' suivi d'une ligne vide."""
    return f"data: {json.dumps(evenement, ensure_ascii=False, default=str)}\n\n"


def construire_map_telephones(data) -> dict:
    """[{siret, phone}, ...] -> {siret: phone} (entrees sans telephone ignorees)."""
    telephones = {}
    for item in data or []:
        if isinstance(item, dict) and item.get("phone"):
            telephones[item.get("siret")] = item["phone"]
    return telephones


def calculer_stats(resultats: list[CompanyStatus]) -> dict:
    return {
        "total": len(resultats),
        "radiees": sum(1 for r in resultats if r.est_radiee),
        "actives": sum(1 for r in resultats if not r.est_radiee),
        "enProcedure": sum(1 for r in resultats if r.has_active_procedures),
        "radieesOuEnProcedure": sum(
            1 for r in resultats if r.est_radiee or r.has_active_procedures
        ),
        "errors": sum(1 for r in resultats if r.error),
    }


def _duree(secondes: float) -> str:
    return f"{secondes:g}"


class VerificationPipeline:
    """Verification sequentielle, par lots, d'une liste de SIRET."""

    def __init__(
        self,
        insee,
        bodacc=None,
        config: PipelineConfig = None,
        sleep: Callable[[float], None] = time.sleep,
        horloge: Callable[[], float] = time.monotonic,
        annulation: Optional[threading.Event] = None,
    ):
        self.insee = insee
        self.bodacc = bodacc
        self.config = config or PipelineConfig()
        self._sleep = sleep
        self._horloge = horloge
        self.annulation = annulation or threading.Event()
        self._dernier_signal = 0.0

    @property
    def annule(self) -> bool:
        return self.annulation.is_set()

    def annuler(self):
        self.annulation.set()

    # --- Attentes et heartbeats ---

    def _heartbeat(self) -> dict:
        self._dernier_signal = self._horloge()
        return {
            "type": EventType.HEARTBEAT.value,
            "timestamp": int(time.time() * 1000),
            "message": MESSAGE_HEARTBEAT,
        }

    def _heartbeat_du(self) -> bool:
        return self._horloge() - self._dernier_signal >= self.config.intervalle_heartbeat

    def _attendre(self, duree: float) -> Iterator[dict]:
        """Dort `duree` secondes par tranches, en emettant les heartbeats dus."""
        restant = duree
        while restant > 0 and not self.annule:
            ecoule = self._horloge() - self._dernier_signal
            if ecoule >= self.config.intervalle_heartbeat:
                yield self._heartbeat()
                ecoule = 0.0
            tranche = min(restant, self.config.intervalle_heartbeat - ecoule)
            self._sleep(tranche)
            restant -= tranche
        if not self.annule and self._heartbeat_du():
            yield self._heartbeat()

    # --- Traitement d'un SIRET ---

    def _verifier(self, siret: str, telephones: dict) -> CompanyStatus:
        statut = self.insee.fetch_etablissement(siret)
        statut.phone = telephones.get(statut.siret or siret)
        if self.config.enrichir_bodacc and self.bodacc is not None and not statut.error:
            try:
                self.bodacc.enrichir_statut(statut)
            except Exception as e:
                logger.warning("Erreur BODACC pour SIRET %s: %s", siret, e)
        return statut

    def _compter_erreur(self, erreurs: int, statut: CompanyStatus) -> int:
        if not statut.error:
            return 0
        if not self.config.erreurs_critiques_seulement:
            return erreurs + 1
        if any(code in statut.error for code in ERREURS_CRITIQUES):
            return erreurs + 1
        return max(0, erreurs - 1)

    # --- Boucle principale ---

    def executer(self, sirets: list, telephones: dict = None) -> Iterator[dict]:
        """Genere les evenements progress / result / heartbeat / error / complete.

        Un traitement annule s'arrete sans evenement 'complete'.
        """
        telephones = telephones or {}
        nettoyes = nettoyer_sirets(sirets)
        total = len(nettoyes)
        taille_lot = self.config.taille_lot
        nb_lots = math.ceil(total / taille_lot) if total else 0
        resultats: list[CompanyStatus] = []
        erreurs = 0
        self._dernier_signal = self._horloge()

        logger.info("Traitement de %d SIRET par lots de %d", total, taille_lot)

        try:
            yield {
                "type": EventType.PROGRESS.value,
                "current": 0, "total": total, "message": MESSAGE_DEBUT,
            }

            for debut in range(0, total, taille_lot):
                lot = nettoyes[debut:debut + taille_lot]
                numero_lot = debut // taille_lot + 1

                if debut > 0:
                    pause = self.config.pause_entre_lots
                    logger.info("Pause de %ss entre les lots", _duree(pause))
                    yield {
                        "type": EventType.PROGRESS.value,
                        "current": debut, "total": total,
                        "message": f"Pause de {_duree(pause)}s entre les lots ({numero_lot}/{nb_lots})...",
                        "siret": lot[0],
                    }
                    yield from self._attendre(pause)

                for i, siret in enumerate(lot):
                    if self.annule:
                        logger.info("Verification annulee apres %d/%d SIRET", len(resultats), total)
                        return
                    if self._heartbeat_du():
                        yield self._heartbeat()

                    position = debut + i + 1
                    yield {
                        "type": EventType.PROGRESS.value,
                        "current": position, "total": total,
                        "message": (
                            f"Vérification du SIRET {siret}... ({position}/{total}) "
                            f"- Lot {numero_lot}/{nb_lots}"
                        ),
                        "siret": siret,
                    }

                    try:
                        statut = self._verifier(siret, telephones)
                        erreurs = self._compter_erreur(erreurs, statut)
                        if statut.error:
                            logger.warning("Erreur INSEE au SIRET %d: %s", position, statut.error)
                        message_fatal = f"Trop d'erreurs consécutives ({statut.error}). Vérifiez votre clé API INSEE."
                    except Exception as e:
                        logger.exception("Exception au SIRET #%d (%s)", position, siret)
                        erreurs += 1
                        statut = CompanyStatus(
                            siret=siret, error=str(e) or "UNKNOWN_ERROR",
                            phone=telephones.get(siret),
                        )
                        message_fatal = "Trop d'exceptions consécutives. Le traitement a été arrêté."

                    resultats.append(statut)
                    yield {
                        "type": EventType.RESULT.value,
                        "result": statut.to_dict(),
                        "current": position, "total": total,
                    }

                    if erreurs >= self.config.max_erreurs_consecutives:
                        logger.error(
                            "%d erreurs consecutives. Arret du traitement.", erreurs,
                        )
                        yield {
                            "type": EventType.ERROR.value,
                            "message": message_fatal,
                            "results": [r.to_dict() for r in resultats],
                        }
                        return

                    if i < len(lot) - 1:
                        delai = self.config.delai_entre_requetes
                        if erreurs > 0:
                            delai += self.config.delai_supplementaire_erreur
                        yield from self._attendre(delai)

                logger.info("Lot %d/%d termine (%d SIRET)", numero_lot, nb_lots, len(lot))

            if self.annule:
                return
            yield {
                "type": EventType.COMPLETE.value,
                "results": [r.to_dict() for r in resultats],
                "stats": calculer_stats(resultats),
            }
        except Exception as e:
            logger.exception("Erreur dans le flux de verification")
            yield {"type": EventType.ERROR.value, "message": str(e) or "Erreur inconnue"}


def verifier_sirets(
    insee,
    sirets: list,
    telephones: dict = None,
    delai: float = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[CompanyStatus]:
    """Verification simple (sans lots ni evenements), delai entre chaque requete."""
    telephones = telephones or {}
    delai = PipelineConfig().delai_entre_requetes if delai is None else delai
    nettoyes = nettoyer_sirets(sirets)
    resultats = []
    for i, siret in enumerate(nettoyes):
        statut = insee.fetch_etablissement(siret)
        statut.phone = telephones.get(statut.siret)
        resultats.append(statut)
        if i < len(nettoyes) - 1:
            sleep(delai)
        if (i + 1) % 10 == 0:
            logger.info("Progression : %d/%d SIRET traites", i + 1, len(nettoyes))
    return resultats


def traiter_par_chunks(
    insee,
    sirets: list,
    bodacc=None,
    chunks: ChunkConfig = None,
    config: PipelineConfig = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict:
    """Decoupe une tres grosse liste en chunks passes chacun dans le pipeline."""
    chunks = chunks or ChunkConfig()
    nettoyes = nettoyer_sirets(sirets)
    decoupage = [
        nettoyes[i:i + chunks.taille_chunk]
        for i in range(0, len(nettoyes), chunks.taille_chunk)
    ]
    logger.info("%d SIRET divises en %d chunks de %d", len(nettoyes), len(decoupage), chunks.taille_chunk)

    resultats = []
    for index, chunk in enumerate(decoupage):
        pipeline = VerificationPipeline(insee, bodacc=bodacc, config=config, sleep=sleep)
        resultats_chunk = []
        for evenement in pipeline.executer(chunk):
            if evenement["type"] == EventType.RESULT.value:
                resultats_chunk.append(evenement["result"])
            elif evenement["type"] == EventType.COMPLETE.value:
                resultats_chunk = evenement["results"]
            elif evenement["type"] == EventType.ERROR.value:
                logger.error("Erreur chunk %d: %s", index + 1, evenement["message"])
        resultats.extend(resultats_chunk)
        logger.info("Chunk %d termine: %d resultats", index + 1, len(resultats_chunk))

        if index < len(decoupage) - 1:
            sleep(chunks.pause_entre_chunks)

    return {
        "success": True,
        "totalProcessed": len(resultats),
        "totalChunks": len(decoupage),
        "results": resultats,
    }
