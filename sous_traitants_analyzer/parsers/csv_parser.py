"""Lecture / ecriture des fichiers CSV et detection automatique des colonnes."""

import csv
import io
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sous_traitants_analyzer.core.exceptions import ParseError
from sous_traitants_analyzer.utils.normalisation import chiffres, est_telephone_valide

TAILLE_ECHANTILLON = 10

MESSAGE_AUCUNE_COLONNE = (
    "Trop d'informations : Impossible d'identifier automatiquement une colonne "
    "SIRET ou téléphone. Veuillez vérifier que votre fichier contient une colonne "
    "avec des SIRETs (14 chiffres) ou des numéros de téléphone français "
    "(+33XXXXXXXXX, 33XXXXXXXXX, ou 0XXXXXXXXX)."
)

_SEPARATEURS = ",;\t"
_TELEPHONE_DANS_MONTANT = re.compile(r"^(33|0)\d{9}$")
_MONTANT = re.compile(r"^\d+[.,]\d{1,2}$|^\d+$")


@dataclass
class Detection:
    """Resultat de la detection d'une colonne SIRET ou telephone."""
    type: str  # "siret" | "phone" | "error"
    message: str
    column: Optional[str] = None
    column_index: Optional[int] = None

    def to_dict(self) -> dict:
        data = {"type": self.type, "message": self.message}
        if self.column is not None:
            data["column"] = self.column
        if self.column_index is not None:
            data["columnIndex"] = self.column_index
        return data


# --- Lecture ---

def _dialecte(contenu: str):
    try:
        return csv.Sniffer().sniff(contenu[:4096], delimiters=_SEPARATEURS)
    except csv.Error:
        # Detecter manuellement le separateur
        first_line = contenu.split("\n", 1)[0]
        dialect = csv.excel
        if ";" in first_line:
            class PointVirgule(csv.excel):
                delimiter = ";"
            dialect = PointVirgule
        elif "\t" in first_line:
            dialect = csv.excel_tab
        return dialect


def lire_csv(contenu: str) -> list[dict]:
    """Parse un CSV avec en-tetes ; les lignes vides sont ignorees."""
    if not contenu or not contenu.strip():
        return []
    contenu = contenu.lstrip("\ufeff")
    try:
        reader = csv.DictReader(io.StringIO(contenu), dialect=_dialecte(contenu))
        lignes = []
        for row in reader:
            if not any((v or "").strip() for k, v in row.items() if k is not None):
                continue
            lignes.append({
                (k or "").strip(): (v if isinstance(v, str) else "")
                for k, v in row.items() if k is not None
            })
        return lignes
    except csv.Error as e:
        raise ParseError(f"CSV illisible : {e}") from e


def lire_csv_sans_entete(contenu: str) -> list[list[str]]:
    """Parse un CSV sans en-tetes en liste de lignes."""
    if not contenu or not contenu.strip():
        return []
    contenu = contenu.lstrip("\ufeff")
    try:
        reader = csv.reader(io.StringIO(contenu), dialect=_dialecte(contenu))
        return [row for row in reader if any(cell.strip() for cell in row)]
    except csv.Error as e:
        raise ParseError(f"CSV illisible : {e}") from e


def colonnes_csv(contenu: str) -> list[str]:
    """Retourne les noms de colonnes d'un CSV."""
    if not contenu or not contenu.strip():
        return []
    contenu = contenu.lstrip("\ufeff")
    reader = csv.reader(io.StringIO(contenu), dialect=_dialecte(contenu))
    return [c.strip() for c in next(reader, [])]


def lire_fichier(chemin: Path) -> str:
    """Lit un fichier texte (UTF-8 puis latin-1 en repli)."""
    try:
        with open(chemin, "r", encoding="utf-8-sig") as f:
            return f.read()
    except UnicodeDecodeError:
        with open(chemin, "r", encoding="latin-1") as f:
            return f.read()


# --- Ecriture ---

def ecrire_csv(lignes: list[dict], colonnes: Optional[list[str]] = None) -> str:
    """Serialise des lignes en CSV (union des colonnes, ordre d'apparition)."""
    if colonnes is None:
        colonnes = []
        for ligne in lignes:
            for k in ligne:
                if k not in colonnes:
                    colonnes.append(k)
    sortie = io.StringIO()
    writer = csv.DictWriter(sortie, fieldnames=colonnes, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for ligne in lignes:
        writer.writerow({k: "" if ligne.get(k) is None else ligne.get(k) for k in colonnes})
    return sortie.getvalue()


# --- Detection des colonnes ---

def _sirets_valides(valeurs) -> list:
    return [v for v in valeurs if len(chiffres(v)) == 14]


def _telephones_valides(valeurs) -> list:
    return [v for v in valeurs if v and est_telephone_valide(str(v))]


def detecter_colonne_siret_ou_telephone(lignes: list[dict]) -> Detection:
    """Detecte la colonne SIRET (prioritaire) ou telephone d'un CSV avec en-tetes."""
    if not lignes:
        return Detection("error", "Aucune donnée trouvée dans le fichier")

    entetes = list(lignes[0].keys())
    echantillon = lignes[:TAILLE_ECHANTILLON]

    candidats_siret = [
        h for h in entetes
        if any(mot in h.lower() for mot in ("siret", "numero", "num", "id"))
    ]
    for candidat in candidats_siret:
        valides = _sirets_valides(row.get(candidat) for row in echantillon)
        if valides:
            return Detection(
                "siret",
                f"Colonne SIRET détectée: {candidat} ({len(valides)} SIRETs valides trouvés)",
                column=candidat,
            )

    candidats_tel = [
        h for h in entetes
        if any(mot in h.lower().strip() for mot in ("tel", "phone", "mobile"))
    ]
    for candidat in candidats_tel:
        valides = _telephones_valides(row.get(candidat) for row in echantillon)
        if valides:
            return Detection(
                "phone",
                f"Colonne téléphone détectée: {candidat} ({len(valides)} numéros "
                "français trouvés). La jointure avec la base entreprise sera "
                "effectuée pour enrichir avec les SIRETs.",
                column=candidat,
            )

    return Detection("error", MESSAGE_AUCUNE_COLONNE)


def detecter_colonne_sans_entete(lignes: list[list[str]]) -> Detection:
    """Meme detection, colonne par colonne, pour un fichier sans en-tetes."""
    if not lignes:
        return Detection("error", "Aucune donnée trouvée dans le fichier")
    nb_colonnes = len(lignes[0])
    if nb_colonnes == 0:
        return Detection("error", "Aucune colonne trouvée dans le fichier")

    echantillon = lignes[:TAILLE_ECHANTILLON]
    for index in range(nb_colonnes):
        valeurs = [
            row[index] for row in echantillon
            if index < len(row) and row[index].strip()
        ]
        if not valeurs:
            continue

        sirets = _sirets_valides(valeurs)
        if sirets:
            return Detection(
                "siret",
                f"Colonne SIRET détectée (colonne {index + 1}) : "
                f"{len(sirets)} SIRETs valides trouvés",
                column_index=index,
            )

        telephones = _telephones_valides(valeurs)
        if telephones:
            return Detection(
                "phone",
                f"Colonne téléphone détectée (colonne {index + 1}) : "
                f"{len(telephones)} numéros français trouvés.",
                column_index=index,
            )

    return Detection("error", MESSAGE_AUCUNE_COLONNE)


def detecter_colonne_montant(lignes: list[list[str]], exclure: Optional[int] = None) -> Optional[int]:
    """Index de la premiere colonne contenant des montants, en ignorant les telephones.

    `exclure` ecarte la colonne deja identifiee comme SIRET ou telephone.
    """
    if not lignes:
        return None
    echantillon = lignes[:TAILLE_ECHANTILLON]
    for index in range(len(lignes[0])):
        if index == exclure:
            continue
        valeurs = [
            row[index] for row in echantillon
            if index < len(row) and row[index].strip()
        ]
        if not valeurs:
            continue
        if all(_TELEPHONE_DANS_MONTANT.match(chiffres(v)) for v in valeurs):
            continue
        for v in valeurs:
            nettoye = re.sub(r"[^\d.,]", "", v)
            if _MONTANT.match(nettoye) and not _TELEPHONE_DANS_MONTANT.match(nettoye):
                return index
    return None
