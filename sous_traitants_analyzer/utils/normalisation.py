"""Utilitaires de normalisation : SIRET, telephones, montants, chaines."""

import re
import unicodedata
from typing import Iterable


_NON_CHIFFRES = re.compile(r"[^0-9]")
_NON_TELEPHONE = re.compile(r"[^0-9+]")
_TELEPHONE_FR = re.compile(r"^(\+33|33|0)[1-9]\d{8}$")
_TELEPHONE_9 = re.compile(r"^[1-9]\d{8}$")


# --- SIRET / SIREN ---

def chiffres(valeur) -> str:
    """Ne garde que les chiffres d'une valeur quelconque."""
    if valeur is None:
        return ""
    return _NON_CHIFFRES.sub("", str(valeur))


def est_siret_valide(valeur) -> bool:
    """Un SIRET valide compte exactement 14 chiffres apres nettoyage."""
    return len(chiffres(valeur)) == 14


def nettoyer_sirets(sirets: Iterable) -> list[str]:
    """Nettoie, valide et dedoublonne une liste de SIRET (ordre conserve)."""
    vus = set()
    resultat = []
    for s in sirets or []:
        if not isinstance(s, str):
            continue
        siret = chiffres(s)
        if len(siret) != 14 or siret in vus:
            continue
        vus.add(siret)
        resultat.append(siret)
    return resultat


def extraire_siren(siret: str) -> str:
    """SIREN = 9 premiers chiffres du SIRET."""
    nettoye = chiffres(siret)
    return nettoye[:9] if len(nettoye) >= 9 else nettoye


# --- Telephones ---

def est_telephone_valide(valeur) -> bool:
    """Format francais : +33XXXXXXXXX, 33XXXXXXXXX, 0XXXXXXXXX ou 9 chiffres."""
    if not isinstance(valeur, str):
        return False
    nettoye = _NON_TELEPHONE.sub("", valeur)
    return bool(_TELEPHONE_FR.match(nettoye) or _TELEPHONE_9.match(nettoye))


def normaliser_telephone(telephone) -> str:
    """Convertit un numero francais au format +33XXXXXXXXX ('' si inconnu)."""
    if not telephone:
        return ""
    nettoye = _NON_TELEPHONE.sub("", str(telephone))

    if nettoye.startswith("+33") and len(nettoye) == 12:
        return nettoye
    if nettoye.startswith("33") and len(nettoye) == 11:
        return "+" + nettoye
    if nettoye.startswith("0") and len(nettoye) == 10:
        return "+33" + nettoye[1:]
    if _TELEPHONE_9.match(nettoye):
        return "+33" + nettoye
    return ""


# --- Montants ---

def parser_montant(valeur) -> float:
    """Parse un montant ('1234,56', '12.5 EUR', ...) ; 0 si illisible."""
    if valeur is None:
        return 0.0
    if isinstance(valeur, (int, float)):
        return 0.0 if valeur != valeur else float(valeur)  # NaN
    texte = str(valeur).strip()
    if not texte:
        return 0.0
    nettoye = re.sub(r"[^\d.,-]", "", texte).replace(",", ".", 1)
    match = re.match(r"^-?\d*\.?\d+", nettoye)
    if not match:
        return 0.0
    try:
        return float(match.group(0))
    except ValueError:
        return 0.0


def formater_montant(montant: float) -> str:
    """Formate un montant en format francais : 1 234,56."""
    signe = "-" if montant < 0 else ""
    texte = f"{abs(montant):,.2f}"
    entier, decimales = texte.split(".")
    return f"{signe}{entier.replace(',', ' ')},{decimales}"


# --- Chaines ---

def normaliser_chaine(texte: str) -> str:
    """Minuscules, sans accents, uniquement alphanumeriques et espaces."""
    decompose = unicodedata.normalize("NFD", (texte or "").lower())
    sans_accents = "".join(c for c in decompose if not unicodedata.combining(c))
    return re.sub(r"[^a-z0-9\s]", "", sans_accents)


def distance_levenshtein(a: str, b: str) -> int:
    """Distance d'edition entre deux chaines."""
    if not a:
        return len(b)
    if not b:
        return len(a)
    precedente = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        courante = [i]
        for j, cb in enumerate(b, start=1):
            cout = 0 if ca == cb else 1
            courante.append(min(
                precedente[j] + 1,
                courante[j - 1] + 1,
                precedente[j - 1] + cout,
            ))
        precedente = courante
    return precedente[-1]
