"""Detecteur d'anomalies de declaration de RI (Reparation a l'Identique).

Pour chaque intervenant, les missions sont regroupees par prescripteur :
- RI theorique = missions x pourcentage RI de l'assureur / 100
- RI reel = missions ayant une reference de commande RI
- ecart = (reel - theorique) / theorique x 100

L'ecart global est recalcule sur les totaux, puis classe selon deux seuils
(warning / ok / excellent). Les resultats sont classes par ecart croissant,
a egalite par volume de missions decroissant.
"""

import logging
from collections import defaultdict
from typing import Optional

from sous_traitants_analyzer.config.constants import (
    DEFAULT_ENABLED_STATUSES, MIN_MISSIONS_DEFAUT, RIStatus, STATUTS_EXCLUS_RI,
)
from sous_traitants_analyzer.core.exceptions import AnalyzerError, ValidationError
from sous_traitants_analyzer.database.csv_store import CSVDataStore
from sous_traitants_analyzer.models.entites import (
    Assureur, DetailAssureur, Mission, RIAnomalyResult, RIThresholds, SousTraitant,
)
from sous_traitants_analyzer.utils.normalisation import nettoyer_sirets

logger = logging.getLogger("sous_traitants_analyzer.analyzers.ri_anomalies")


def calculer_ecart(ri_reel: float, ri_theorique: float) -> float:
    """Ecart en pourcentage ; 0 si rien n'est attendu ni declare, +100 si rien n'etait attendu."""
    if ri_theorique == 0:
        return 0.0 if ri_reel == 0 else 100.0
    return (ri_reel - ri_theorique) / ri_theorique * 100


def classifier(ecart: float, seuils: RIThresholds) -> RIStatus:
    """Les bornes elles-memes sont classees 'ok'."""
    if ecart < seuils.warning_threshold:
        return RIStatus.WARNING
    if ecart > seuils.excellent_threshold:
        return RIStatus.EXCELLENT
    return RIStatus.OK


def classer(resultats: list[RIAnomalyResult]) -> list[RIAnomalyResult]:
    """Tri par ecart croissant puis volume decroissant ; ranking a partir de 1."""
    tries = sorted(resultats, key=lambda r: (r.ecart_percent, -r.total_missions_du))
    for rang, resultat in enumerate(tries, start=1):
        resultat.ranking = rang
    return tries


def parser_statuts_actifs(enabled_statuses) -> dict:
    if enabled_statuses is None:
        return dict(DEFAULT_ENABLED_STATUSES)
    if not isinstance(enabled_statuses, dict):
        raise ValidationError("enabledStatuses doit être un objet")
    return {k: bool(v) for k, v in enabled_statuses.items()}


class RIAnomalyDetector:
    """Calcul des anomalies RI a partir des tables CSV."""

    def __init__(self, store: CSVDataStore):
        self.store = store

    def _charger(self):
        assureurs = {a.id: a for a in self.store.charger_assureurs()}
        missions_par_siret: dict[str, list[Mission]] = defaultdict(list)
        for mission in self.store.charger_missions():
            missions_par_siret[mission.siret].append(mission)
        return assureurs, missions_par_siret

    def analyser_siret(
        self,
        siret: str,
        missions: list[Mission],
        assureurs: dict[int, Assureur],
        seuils: RIThresholds,
        sous_traitant: Optional[SousTraitant] = None,
    ) -> RIAnomalyResult:
        par_prescripteur: dict[int, list[Mission]] = defaultdict(list)
        for mission in missions:
            par_prescripteur[mission.prescriber_id].append(mission)

        details = []
        total_theorique = 0.0
        total_reel = 0
        for prescripteur_id in sorted(par_prescripteur):
            groupe = par_prescripteur[prescripteur_id]
            assureur = assureurs.get(prescripteur_id)
            pourcentage = assureur.ri_percentage if assureur else 0.0
            nom = assureur.name if assureur else f"Assureur inconnu ({prescripteur_id})"

            theorique = len(groupe) * pourcentage / 100
            reel = sum(1 for m in groupe if m.has_ri)
            total_theorique += theorique
            total_reel += reel
            details.append(DetailAssureur(
                assureur_id=prescripteur_id,
                assureur_name=nom,
                missions_du=len(groupe),
                ri_theorique=round(theorique, 2),
                ri_reel=reel,
                ecart_percent=round(calculer_ecart(reel, theorique), 2),
            ))

        ecart = calculer_ecart(total_reel, total_theorique)
        return RIAnomalyResult(
            siret=siret,
            denomination=sous_traitant.name if sous_traitant else "",
            total_missions_du=len(missions),
            ri_theorique=round(total_theorique, 2),
            ri_reel=total_reel,
            ecart_percent=round(ecart, 2),
            status=classifier(ecart, seuils),
            details_by_assureur=details,
            status_reseau=(sous_traitant.status_reseau or None) if sous_traitant else None,
        )

    def analyser_sirets(self, sirets: list, seuils: RIThresholds = None) -> dict:
        """Mode 'siret' : liste explicite, les SIRET sans mission sont signales a part."""
        seuils = seuils or RIThresholds()
        nettoyes = nettoyer_sirets(sirets)
        if not nettoyes:
            raise ValidationError("SIRETs array is required and must not be empty")

        assureurs, missions_par_siret = self._charger()
        sous_traitants = self._index_sous_traitants()

        resultats = []
        sans_mission = []
        for siret in nettoyes:
            missions = missions_par_siret.get(siret)
            if not missions:
                sans_mission.append(siret)
                continue
            resultats.append(self.analyser_siret(
                siret, missions, assureurs, seuils, sous_traitants.get(siret),
            ))

        logger.info(
            "Anomalies RI : %d SIRET analyses, %d sans mission", len(resultats), len(sans_mission),
        )
        return {
            "results": [r.to_dict() for r in classer(resultats)],
            "mode": "siret",
            "totalAnalyzed": len(nettoyes),
            "siretsSansMission": sans_mission,
            "thresholds": seuils.to_dict(),
        }

    def analyser_batch(
        self,
        min_missions: int = MIN_MISSIONS_DEFAUT,
        enabled_statuses: dict = None,
        seuils: RIThresholds = None,
    ) -> dict:
        """Mode 'batch' : toute la base filtree par statut (U3/U4 toujours exclus)."""
        seuils = seuils or RIThresholds()
        if min_missions is None:
            min_missions = MIN_MISSIONS_DEFAUT
        if isinstance(min_missions, bool) or not isinstance(min_missions, int) or min_missions < 0:
            raise ValidationError("minMissions doit être un entier positif")
        actifs = parser_statuts_actifs(enabled_statuses)

        assureurs, missions_par_siret = self._charger()

        analyses = 0
        resultats = []
        vus = set()
        for st in self.store.charger_sous_traitants():
            if not st.siret or st.siret in vus:
                continue
            if not st.status_reseau or st.status_reseau in STATUTS_EXCLUS_RI:
                continue
            if not actifs.get(st.status_reseau):
                continue
            vus.add(st.siret)
            analyses += 1

            missions = missions_par_siret.get(st.siret, [])
            if not missions or len(missions) < min_missions:
                continue
            resultats.append(self.analyser_siret(st.siret, missions, assureurs, seuils, st))

        logger.info(
            "Anomalies RI (batch) : %d intervenants analyses, %d retenus (>= %d missions)",
            analyses, len(resultats), min_missions,
        )
        return {
            "results": [r.to_dict() for r in classer(resultats)],
            "mode": "batch",
            "minMissions": min_missions,
            "totalAnalyzed": analyses,
            "totalFiltered": len(resultats),
            "thresholds": seuils.to_dict(),
        }

    def _index_sous_traitants(self) -> dict[str, SousTraitant]:
        index = {}
        try:
            sous_traitants = self.store.charger_sous_traitants()
        except (AnalyzerError, OSError) as e:
            logger.warning("Base sous-traitants indisponible: %s", e)
            return index
        for st in sous_traitants:
            if st.siret and st.siret not in index:
                index[st.siret] = st
        return index
