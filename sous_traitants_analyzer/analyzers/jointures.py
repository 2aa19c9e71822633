"""Jointures d'une liste de SIRET ou de telephones avec la base sous-traitants."""

import logging

from sous_traitants_analyzer.config.constants import (
    SOURCE_BASE, SOURCE_FICHIER_ENTREPRISE, STATUS_MAPPING, VALID_STATUSES,
)
from sous_traitants_analyzer.core.exceptions import ValidationError
from sous_traitants_analyzer.parsers.csv_parser import lire_csv
from sous_traitants_analyzer.utils.normalisation import (
    chiffres, est_siret_valide, est_telephone_valide, nettoyer_sirets, normaliser_telephone,
)

logger = logging.getLogger("sous_traitants_analyzer.analyzers.jointures")


# --- Validation des parametres ---

def valider_sirets(sirets) -> list[str]:
    """Liste obligatoire ; une liste vide signifie 'toute la base'."""
    if not isinstance(sirets, list):
        raise ValidationError("sirets must be an array")
    return [s for s in sirets if isinstance(s, str) and est_siret_valide(s)]


def valider_telephones(telephones) -> list[str]:
    if not isinstance(telephones, list):
        raise ValidationError("phones must be an array")
    if not telephones:
        raise ValidationError("phones array cannot be empty")
    return [t for t in telephones if est_telephone_valide(t)]


def valider_statuts(enabled_statuses) -> dict[str, bool]:
    if not enabled_statuses or not isinstance(enabled_statuses, dict):
        raise ValidationError("enabledStatuses must be an object")
    resultat = {statut: bool(enabled_statuses.get(statut)) for statut in VALID_STATUSES}
    if not any(resultat.values()):
        raise ValidationError("At least one status must be enabled")
    return resultat


def _statut_ligne(row: dict) -> str:
    try:
        code = int((row.get("status") or "-1").strip())
    except ValueError:
        return ""
    return STATUS_MAPPING.get(code, "")


def _source(fichier_fourni: bool) -> str:
    return SOURCE_FICHIER_ENTREPRISE if fichier_fourni else SOURCE_BASE


# --- Jointures ---

def jointure_sirets(
    contenu_csv: str,
    sirets: list,
    statuts_actifs: dict[str, bool],
    fichier_fourni: bool = False,
) -> dict:
    """Lignes de la base dont le SIRET est demande (toutes si la liste est vide)."""
    cibles = nettoyer_sirets(sirets)
    ensemble = set(cibles) if cibles else None

    matched = []
    par_statut: dict[str, int] = {}
    for row in lire_csv(contenu_csv):
        statut = _statut_ligne(row)
        if not statut or not statuts_actifs.get(statut):
            continue
        siret = chiffres(row.get("siret"))
        if not siret or (ensemble is not None and siret not in ensemble):
            continue
        matched.append({**row, "status_reseau": statut, "fichier_source": _source(fichier_fourni)})
        par_statut[statut] = par_statut.get(statut, 0) + 1

    unmatched = []
    if cibles:
        trouves = {chiffres(m.get("siret")) for m in matched}
        unmatched = [{"siret": s} for s in cibles if s not in trouves]

    logger.info("Jointure SIRET : %d trouves, %d non trouves", len(matched), len(unmatched))
    return {
        "matched": matched,
        "unmatched": unmatched,
        "stats": {
            "totalSirets": len(cibles),
            "matchedCount": len(matched),
            "unmatchedCount": len(unmatched),
            "byStatus": par_statut,
        },
    }


def jointure_telephones(
    contenu_csv: str,
    telephones: list[str],
    statuts_actifs: dict[str, bool],
    fichier_fourni: bool = False,
) -> dict:
    """Lignes de la base dont le mobile (puis le secretariat) correspond."""
    normalises = [
        t for t in (normaliser_telephone(p) for p in telephones)
        if t.startswith("+33") and len(t) == 12
    ]
    logger.info("Telephones normalises : %d sur %d", len(normalises), len(telephones))

    if not normalises:
        return {
            "matched": [],
            "unmatched": [{"phone": p, "error": "Numéro invalide"} for p in telephones],
            "stats": {
                "totalPhones": len(telephones),
                "matchedCount": 0,
                "unmatchedCount": len(telephones),
                "byStatus": {},
            },
        }

    ensemble = set(normalises)
    matched = []
    par_statut: dict[str, int] = {}
    for row in lire_csv(contenu_csv):
        statut = _statut_ligne(row)
        if not statut or not statuts_actifs.get(statut):
            continue

        mobile = normaliser_telephone(row.get("phone_mobile") or "")
        secretariat = normaliser_telephone(row.get("phone_secretary") or "")
        if mobile and mobile in ensemble:
            trouve = mobile
        elif secretariat and secretariat in ensemble:
            trouve = secretariat
        else:
            continue

        matched.append({
            **row,
            "siret": row.get("siret") or row.get("SIRET") or row.get("Siret"),
            "name": row.get("name") or row.get("denomination") or row.get("Denomination"),
            "status_reseau": statut,
            "fichier_source": _source(fichier_fourni),
            "matched_phone": trouve,
        })
        par_statut[statut] = par_statut.get(statut, 0) + 1

    trouves = {m["matched_phone"] for m in matched}
    unmatched = [
        {"phone": p, "error": "Non trouvé dans la base"} for p in normalises if p not in trouves
    ]
    logger.info("Jointure telephone : %d correspondances sur %d numeros", len(matched), len(normalises))
    return {
        "matched": matched,
        "unmatched": unmatched,
        "stats": {
            "totalPhones": len(normalises),
            "matchedCount": len(matched),
            "unmatchedCount": len(unmatched),
            "byStatus": par_statut,
        },
    }
