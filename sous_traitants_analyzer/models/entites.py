"""Modeles de donnees : lignes CSV et resultats derives."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from sous_traitants_analyzer.config.constants import (
    ProcedureType, ProcedureStatus, RIStatus,
    SEUIL_WARNING_DEFAUT, SEUIL_EXCELLENT_DEFAUT,
)


# --- Lignes des tables CSV ---

@dataclass
class SousTraitant:
    """Intervenant reseau de la base sous-traitants."""
    siret: str = ""
    name: str = ""
    phone_mobile: str = ""
    phone_secretary: str = ""
    status: Optional[int] = None
    status_reseau: str = ""  # libelle U1P, U1, ..., TR
    email: str = ""
    extra: dict = field(default_factory=dict)


@dataclass
class Mission:
    """Mission d'urgence ; has_ri si la commande SERVICE_B2CSDU a un external_id."""
    prescriber_id: int
    company_id: int
    siret: str
    has_ri: bool = False


@dataclass
class Assureur:
    """Prescripteur / assureur et son pourcentage RI attendu."""
    id: int
    name: str
    ri_percentage: float

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "ri_percentage": self.ri_percentage}


# --- Statut administratif (INSEE + BODACC) ---

@dataclass
class CompanyStatus:
    """Etat administratif d'un etablissement, jamais persiste."""
    siret: str
    denomination: Optional[str] = None
    est_radiee: bool = False
    date_cessation: Optional[str] = None
    phone: Optional[str] = None
    error: Optional[str] = None
    procedure: Optional[str] = None
    procedure_type: Optional[str] = None
    has_active_procedures: bool = False
    bodacc_error: Optional[str] = None
    montant: Optional[float] = None

    def to_dict(self) -> dict:
        data = {
            "siret": self.siret,
            "denomination": self.denomination,
            "estRadiee": self.est_radiee,
            "dateCessation": self.date_cessation,
            "hasActiveProcedures": self.has_active_procedures,
        }
        optionnels = {
            "phone": self.phone,
            "error": self.error,
            "procedure": self.procedure,
            "procedureType": self.procedure_type,
            "bodaccError": self.bodacc_error,
            "montant": self.montant,
        }
        data.update({k: v for k, v in optionnels.items() if v is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "CompanyStatus":
        return cls(
            siret=data.get("siret", ""),
            denomination=data.get("denomination"),
            est_radiee=bool(data.get("estRadiee")),
            date_cessation=data.get("dateCessation"),
            phone=data.get("phone"),
            error=data.get("error"),
            procedure=data.get("procedure"),
            procedure_type=data.get("procedureType"),
            has_active_procedures=bool(data.get("hasActiveProcedures")),
            bodacc_error=data.get("bodaccError"),
            montant=data.get("montant"),
        )


@dataclass
class BodaccProcedure:
    type: ProcedureType
    name: str
    status: ProcedureStatus
    date_debut: Optional[str] = None
    tribunal: Optional[str] = None
    typeavis: Optional[str] = None
    typeavis_lib: Optional[str] = None
    dateparution: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "name": self.name,
            "status": self.status.value,
            "dateDebut": self.date_debut,
            "tribunal": self.tribunal,
            "typeavis": self.typeavis,
            "typeavis_lib": self.typeavis_lib,
            "dateparution": self.dateparution,
        }


@dataclass
class BodaccResult:
    siren: str
    procedures: list[BodaccProcedure] = field(default_factory=list)
    has_procedures: bool = False
    has_active_procedures: bool = False
    last_update: Optional[str] = None
    error: Optional[str] = None

    @property
    def derniere_procedure(self) -> Optional[BodaccProcedure]:
        return self.procedures[0] if self.procedures else None

    def to_dict(self) -> dict:
        return {
            "siren": self.siren,
            "procedures": [p.to_dict() for p in self.procedures],
            "hasProcedures": self.has_procedures,
            "hasActiveProcedures": self.has_active_procedures,
            "lastUpdate": self.last_update,
            "error": self.error,
        }


# --- Anomalies RI ---

@dataclass
class RIThresholds:
    warning_threshold: float = SEUIL_WARNING_DEFAUT
    excellent_threshold: float = SEUIL_EXCELLENT_DEFAUT

    def to_dict(self) -> dict:
        return {
            "warningThreshold": self.warning_threshold,
            "excellentThreshold": self.excellent_threshold,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RIThresholds":
        return cls(
            warning_threshold=float(data.get("warningThreshold", SEUIL_WARNING_DEFAUT)),
            excellent_threshold=float(data.get("excellentThreshold", SEUIL_EXCELLENT_DEFAUT)),
        )


@dataclass
class DetailAssureur:
    assureur_id: int
    assureur_name: str
    missions_du: int
    ri_theorique: float
    ri_reel: int
    ecart_percent: float

    def to_dict(self) -> dict:
        return {
            "assureurId": self.assureur_id,
            "assureurName": self.assureur_name,
            "missionsDU": self.missions_du,
            "riTheorique": self.ri_theorique,
            "riReel": self.ri_reel,
            "ecartPercent": self.ecart_percent,
        }


@dataclass
class RIAnomalyResult:
    siret: str
    denomination: str
    total_missions_du: int
    ri_theorique: float
    ri_reel: int
    ecart_percent: float
    status: RIStatus
    details_by_assureur: list[DetailAssureur] = field(default_factory=list)
    status_reseau: Optional[str] = None
    ranking: Optional[int] = None

    def to_dict(self) -> dict:
        data = {
            "siret": self.siret,
            "denomination": self.denomination,
            "totalMissionsDU": self.total_missions_du,
            "riTheorique": self.ri_theorique,
            "riReel": self.ri_reel,
            "ecartPercent": self.ecart_percent,
            "status": self.status.value,
            "detailsByAssureur": [d.to_dict() for d in self.details_by_assureur],
        }
        if self.status_reseau is not None:
            data["status_reseau"] = self.status_reseau
        if self.ranking is not None:
            data["ranking"] = self.ranking
        return data
