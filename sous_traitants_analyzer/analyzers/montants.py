"""Montants associes aux intervenants d'un fichier importe."""

from typing import Optional, Union

from sous_traitants_analyzer.models.entites import CompanyStatus
from sous_traitants_analyzer.utils.normalisation import (
    chiffres, formater_montant, normaliser_telephone, parser_montant,
)

Colonne = Union[str, int]


def _valeur(row, colonne: Optional[Colonne]) -> str:
    if colonne is None:
        return ""
    if isinstance(row, dict):
        return row.get(colonne) or ""
    return row[colonne] if 0 <= colonne < len(row) else ""


def creer_map_montants(
    lignes: list,
    colonne_montant: Optional[Colonne],
    colonne_cle: Optional[Colonne] = None,
    mode: str = "siret",
) -> dict[str, float]:
    """Montant par SIRET (ou telephone normalise en mode 'phone'), plus 'index_<i>'.

    Les lignes peuvent etre des dicts (fichier avec en-tetes) ou des listes
    (fichier sans en-tetes, colonnes par index).
    """
    if colonne_montant is None or not lignes:
        return {}

    montants = {}
    for index, row in enumerate(lignes):
        brut = _valeur(row, colonne_montant)
        if not brut:
            continue
        montant = parser_montant(brut)

        cle = _valeur(row, colonne_cle)
        if cle and mode == "phone":
            telephone = normaliser_telephone(cle)
            if telephone:
                montants[telephone] = montant
        elif cle:
            siret = chiffres(cle)
            if siret:
                montants[siret] = montant

        montants[f"index_{index}"] = montant
    return montants


def enrichir_montants(resultats: list[CompanyStatus], montants: dict[str, float]) -> list[CompanyStatus]:
    """Affecte un montant a chaque resultat (telephone, puis SIRET, puis position).

    Un montant deja renseigne et non nul est conserve.
    """
    if not montants:
        return resultats

    for index, resultat in enumerate(resultats):
        if resultat.montant:
            continue
        montant = 0.0
        if resultat.phone:
            montant = montants.get(normaliser_telephone(resultat.phone), 0.0)
        elif resultat.siret:
            montant = montants.get(chiffres(resultat.siret), 0.0)
        else:
            montant = montants.get(f"index_{index}", 0.0)
        resultat.montant = montant
    return resultats


def total_radiees(resultats: list[CompanyStatus]) -> float:
    """Somme des montants des intervenants radies."""
    return sum(r.montant or 0.0 for r in resultats if r.est_radiee)


def total_radiees_formate(resultats: list[CompanyStatus]) -> str:
    return formater_montant(total_radiees(resultats))
