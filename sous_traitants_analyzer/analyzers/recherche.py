"""Recherche d'intervenants par SIRET, nom (tolerance aux fautes) ou email."""

import math

from sous_traitants_analyzer.utils.normalisation import (
    chiffres, distance_levenshtein, normaliser_chaine,
)

MAX_RESULTATS = 15
LONGUEUR_MIN_REQUETE = 2
CHIFFRES_MIN_SIRET = 9

SCORE_SIRET_EXACT = 0.0
SCORE_SIRET_PREFIXE = 0.5
SCORE_EMAIL = 100.0


def mot_correspond(mot_requete: str, mot_nom: str) -> bool:
    """Egalite, prefixe, ou Levenshtein <= 1 (mots <= 5 lettres) / <= 2."""
    if mot_nom == mot_requete or mot_nom.startswith(mot_requete):
        return True
    seuil = 1 if len(mot_requete) <= 5 else 2
    return distance_levenshtein(mot_requete, mot_nom) <= seuil


def score_nom(mots_requete: list[str], mots_nom: list[str]):
    """Distance moyenne des meilleurs appariements, None si un mot ne matche pas."""
    if not mots_requete:
        return None
    total = 0
    for mot in mots_requete:
        meilleur = math.inf
        for mot_nom in mots_nom:
            if mot_correspond(mot, mot_nom):
                meilleur = min(meilleur, distance_levenshtein(mot, mot_nom))
        if meilleur == math.inf:
            return None
        total += meilleur
    return total / len(mots_requete)


def rechercher_sous_traitants(lignes: list[dict], requete: str) -> list[dict]:
    """Retourne au plus 15 {name, siret}, les plus pertinents en premier."""
    requete = (requete or "").strip()
    if len(requete) < LONGUEUR_MIN_REQUETE:
        return []

    requete_normalisee = normaliser_chaine(requete)
    chiffres_requete = chiffres(requete)
    mots_requete = requete_normalisee.split()

    resultats = []
    vus = set()
    for row in lignes:
        nom, siret_brut = row.get("name"), row.get("siret")
        if not nom or not siret_brut or siret_brut in vus:
            continue

        siret = chiffres(siret_brut)
        score = None

        if len(chiffres_requete) >= CHIFFRES_MIN_SIRET:
            if siret == chiffres_requete:
                score = SCORE_SIRET_EXACT
            elif siret.startswith(chiffres_requete):
                score = SCORE_SIRET_PREFIXE

        if score is None:
            distance = score_nom(mots_requete, normaliser_chaine(nom).split())
            if distance is not None:
                score = 1 + distance

        if score is None:
            email = normaliser_chaine(row.get("email") or "")
            if email and requete_normalisee in email:
                score = SCORE_EMAIL

        if score is not None:
            resultats.append((score, {"name": nom, "siret": siret}))
            vus.add(siret_brut)

    resultats.sort(key=lambda r: r[0])
    return [r for _, r in resultats[:MAX_RESULTATS]]
