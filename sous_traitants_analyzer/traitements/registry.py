"""Registre des traitements applicables a une liste de SIRET."""

from dataclasses import dataclass, field

from sous_traitants_analyzer.config.constants import TreatmentType
from sous_traitants_analyzer.core.exceptions import ValidationError


@dataclass
class TreatmentMetadata:
    id: TreatmentType
    name: str
    description: str
    enabled: bool = True
    incompatible_with: list[TreatmentType] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id.value,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "incompatibleWith": [t.value for t in self.incompatible_with],
        }


TREATMENT_REGISTRY = {
    TreatmentType.RADIATION_CHECK: TreatmentMetadata(
        id=TreatmentType.RADIATION_CHECK,
        name="Identifier les radiations / procédures",
        description="Vérifie le statut administratif des entreprises (radiées, en procédure collective)",
    ),
    TreatmentType.RI_ANOMALIES: TreatmentMetadata(
        id=TreatmentType.RI_ANOMALIES,
        name="Détecter les anomalies de déclarations de RI",
        description="Compare les RI déclarées aux RI attendues selon les pourcentages des assureurs",
    ),
}

# Point d'entree et mode d'execution de chaque traitement
PLANS_EXECUTION = {
    TreatmentType.RADIATION_CHECK: {"endpoint": "/api/check-siret/stream", "method": "streaming"},
    TreatmentType.RI_ANOMALIES: {"endpoint": "/api/treatments/ri-anomalies", "method": "standard"},
}


def get_treatment(treatment) -> TreatmentMetadata:
    return TREATMENT_REGISTRY[TreatmentType(treatment)]


def get_all_treatments() -> list[TreatmentMetadata]:
    return list(TREATMENT_REGISTRY.values())


def get_enabled_treatments() -> list[TreatmentMetadata]:
    return [t for t in get_all_treatments() if t.enabled]


def sont_compatibles(treatments: list[TreatmentType]) -> bool:
    for treatment in treatments:
        for incompatible in TREATMENT_REGISTRY[treatment].incompatible_with:
            if incompatible in treatments:
                return False
    return True


def plan_execution(treatments, sirets) -> dict:
    """Valide la demande et retourne, par traitement, la route a appeler."""
    if not isinstance(treatments, list) or not treatments:
        raise ValidationError("At least one treatment must be specified", code="treatments_required")
    if not isinstance(sirets, list) or not sirets:
        raise ValidationError("SIRETs array is required and must not be empty", code="sirets_required")

    connus = []
    plan = []
    for treatment in treatments:
        try:
            type_traitement = TreatmentType(treatment)
        except (TypeError, ValueError):
            plan.append({"treatment": treatment, "error": "Unknown treatment type"})
            continue
        connus.append(type_traitement)
        plan.append({"treatment": type_traitement.value, **PLANS_EXECUTION[type_traitement]})

    if not sont_compatibles(connus):
        raise ValidationError(
            "Selected treatments are incompatible with each other", code="incompatible_treatments",
        )

    return {
        "success": True,
        "executionPlan": plan,
        "siretCount": len(sirets),
        "treatmentCount": len(treatments),
    }
