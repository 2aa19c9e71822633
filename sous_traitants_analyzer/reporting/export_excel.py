"""Exports XLSX des resultats de verification et d'anomalies RI."""

import io
from typing import Optional

from dateutil import parser as date_parser
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill

from sous_traitants_analyzer.config.constants import RIStatus

_ENTETE_FONT = Font(bold=True, color="FFFFFF")
_ENTETE_FILL = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")

_FILLS_STATUT = {
    RIStatus.WARNING.value: PatternFill(start_color="F8CBAD", end_color="F8CBAD", fill_type="solid"),
    RIStatus.EXCELLENT.value: PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid"),
}

LIBELLES_STATUT_RI = {
    RIStatus.WARNING.value: "Alerte",
    RIStatus.OK.value: "Conforme",
    RIStatus.EXCELLENT.value: "Excellent",
}


def formater_date(valeur) -> str:
    """'2023-05-31' -> '31/05/2023' ; valeur vide ou illisible inchangee."""
    if not valeur:
        return ""
    try:
        return date_parser.isoparse(str(valeur)).strftime("%d/%m/%Y")
    except (ValueError, OverflowError):
        return str(valeur)


def _ecrire_entetes(ws, entetes: list[str]):
    for col, titre in enumerate(entetes, start=1):
        cell = ws.cell(row=1, column=col, value=titre)
        cell.font = _ENTETE_FONT
        cell.fill = _ENTETE_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    ws.freeze_panes = "A2"


def _ajuster_colonnes(ws, largeur_max: int = 50):
    for colonne in ws.columns:
        longueur = max(len(str(c.value)) if c.value is not None else 0 for c in colonne)
        ws.column_dimensions[colonne[0].column_letter].width = min(largeur_max, longueur + 2)


def _en_octets(wb: Workbook) -> bytes:
    sortie = io.BytesIO()
    wb.save(sortie)
    return sortie.getvalue()


def exporter_verification(resultats: list[dict], total_montant: Optional[float] = None) -> bytes:
    """Resultats de verification (dicts camelCase) -> classeur XLSX."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Vérification"
    entetes = [
        "SIRET", "Dénomination", "Statut", "Date de cessation", "Procédure",
        "Procédure active", "Téléphone", "Montant", "Erreur",
    ]
    _ecrire_entetes(ws, entetes)

    for ligne, r in enumerate(resultats, start=2):
        ws.cell(row=ligne, column=1, value=r.get("siret"))
        ws.cell(row=ligne, column=2, value=r.get("denomination") or "")
        ws.cell(row=ligne, column=3, value="Radiée" if r.get("estRadiee") else "Active")
        ws.cell(row=ligne, column=4, value=formater_date(r.get("dateCessation")))
        ws.cell(row=ligne, column=5, value=r.get("procedure") or "")
        ws.cell(row=ligne, column=6, value="Oui" if r.get("hasActiveProcedures") else "Non")
        ws.cell(row=ligne, column=7, value=r.get("phone") or "")
        ws.cell(row=ligne, column=8, value=r.get("montant"))
        ws.cell(row=ligne, column=9, value=r.get("error") or r.get("bodaccError") or "")

    if total_montant is not None:
        ligne = len(resultats) + 3
        ws.cell(row=ligne, column=7, value="Total radiées").font = Font(bold=True)
        ws.cell(row=ligne, column=8, value=round(total_montant, 2)).font = Font(bold=True)

    _ajuster_colonnes(ws)
    return _en_octets(wb)


def exporter_anomalies_ri(resultats: list[dict]) -> bytes:
    """Synthese par intervenant + detail par assureur."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Synthèse"
    _ecrire_entetes(ws, [
        "Rang", "SIRET", "Dénomination", "Statut réseau", "Missions DU",
        "RI théorique", "RI réel", "Écart (%)", "Statut",
    ])
    for ligne, r in enumerate(resultats, start=2):
        ws.cell(row=ligne, column=1, value=r.get("ranking"))
        ws.cell(row=ligne, column=2, value=r.get("siret"))
        ws.cell(row=ligne, column=3, value=r.get("denomination") or "")
        ws.cell(row=ligne, column=4, value=r.get("status_reseau") or "")
        ws.cell(row=ligne, column=5, value=r.get("totalMissionsDU"))
        ws.cell(row=ligne, column=6, value=r.get("riTheorique"))
        ws.cell(row=ligne, column=7, value=r.get("riReel"))
        ws.cell(row=ligne, column=8, value=r.get("ecartPercent"))
        cell = ws.cell(row=ligne, column=9, value=LIBELLES_STATUT_RI.get(r.get("status"), r.get("status")))
        fill = _FILLS_STATUT.get(r.get("status"))
        if fill is not None:
            cell.fill = fill
    _ajuster_colonnes(ws)

    detail = wb.create_sheet("Détail assureurs")
    _ecrire_entetes(detail, [
        "SIRET", "Dénomination", "Assureur", "Missions DU", "RI théorique", "RI réel", "Écart (%)",
    ])
    ligne = 2
    for r in resultats:
        for d in r.get("detailsByAssureur", []):
            detail.cell(row=ligne, column=1, value=r.get("siret"))
            detail.cell(row=ligne, column=2, value=r.get("denomination") or "")
            detail.cell(row=ligne, column=3, value=d.get("assureurName"))
            detail.cell(row=ligne, column=4, value=d.get("missionsDU"))
            detail.cell(row=ligne, column=5, value=d.get("riTheorique"))
            detail.cell(row=ligne, column=6, value=d.get("riReel"))
            detail.cell(row=ligne, column=7, value=d.get("ecartPercent"))
            ligne += 1
    _ajuster_colonnes(detail)

    return _en_octets(wb)
