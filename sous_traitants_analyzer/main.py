"""Point d'entree CLI pour SuiviReseau.

Usage :
    sous-traitants-analyzer verifier fichier.csv [--profil stream|rapide] [--format xlsx|json] [--output DIR]
    sous-traitants-analyzer ri-anomalies [--min-missions N] [--siret SIRET ...]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from sous_traitants_analyzer import __version__
from sous_traitants_analyzer.analyzers.jointures import jointure_telephones
from sous_traitants_analyzer.analyzers.montants import (
    creer_map_montants, enrichir_montants, total_radiees, total_radiees_formate,
)
from sous_traitants_analyzer.analyzers.ri_anomalies import RIAnomalyDetector
from sous_traitants_analyzer.config.constants import (
    DEFAULT_ENABLED_STATUSES, DatasetType, EventType,
)
from sous_traitants_analyzer.config.settings import (
    AppConfig, PROFIL_RAPIDE, PROFIL_STREAM, profil_pipeline,
)
from sous_traitants_analyzer.core.exceptions import AnalyzerError
from sous_traitants_analyzer.database.csv_store import CSVDataStore
from sous_traitants_analyzer.database.persistence import ThresholdsStore
from sous_traitants_analyzer.models.entites import CompanyStatus
from sous_traitants_analyzer.parsers.csv_parser import (
    detecter_colonne_montant, detecter_colonne_sans_entete, lire_csv_sans_entete, lire_fichier,
)
from sous_traitants_analyzer.reporting.export_excel import (
    exporter_anomalies_ri, exporter_verification,
)
from sous_traitants_analyzer.verification.pipeline import VerificationPipeline, calculer_stats
from sous_traitants_analyzer.veille.bodacc_client import BodaccClient
from sous_traitants_analyzer.veille.insee_client import InseeClient

logger = logging.getLogger("sous_traitants_analyzer")


def configurer_logging(verbose: bool = False) -> None:
    """Configure le logging de l'application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)-7s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def creer_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sous-traitants-analyzer",
        description="Suivi administratif et qualite declarative d'un reseau de sous-traitants.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Mode verbeux (debug)",
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Repertoire des tables CSV (defaut: $DATA_DIR ou ./data/csv-files)",
    )
    commandes = parser.add_subparsers(dest="commande", required=True)

    verifier = commandes.add_parser("verifier", help="Verifier les SIRET d'un fichier CSV")
    verifier.add_argument("fichier", type=Path, help="Fichier CSV contenant des SIRET ou telephones")
    verifier.add_argument(
        "--profil",
        choices=[PROFIL_STREAM, PROFIL_RAPIDE],
        default=PROFIL_STREAM,
        help="Profil de traitement (defaut: stream)",
    )
    verifier.add_argument(
        "--format", "-f",
        choices=["xlsx", "json"],
        default="xlsx",
        help="Format du rapport de sortie (defaut: xlsx)",
    )
    verifier.add_argument(
        "--output", "-o",
        type=Path,
        default=Path.cwd(),
        help="Repertoire de sortie du rapport",
    )

    ri = commandes.add_parser("ri-anomalies", help="Detecter les anomalies de declaration de RI")
    ri.add_argument(
        "--min-missions",
        type=int,
        default=None,
        help="Nombre minimum de missions en mode batch (defaut: 5)",
    )
    ri.add_argument(
        "--siret",
        nargs="+",
        default=None,
        help="Analyser uniquement ces SIRET",
    )
    ri.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="Export XLSX des resultats",
    )
    return parser


# --- Verification ---

def lire_entree(fichier: Path, store: CSVDataStore) -> tuple[list[str], dict, dict]:
    """(SIRET, telephones par SIRET, montants) a partir d'un fichier importe."""
    lignes = lire_csv_sans_entete(lire_fichier(fichier))
    detection = detecter_colonne_sans_entete(lignes)
    if detection.type == "error":
        raise AnalyzerError(detection.message)
    logger.info(detection.message)

    index = detection.column_index
    colonne_montant = detecter_colonne_montant(lignes, exclure=index)
    if colonne_montant is not None:
        logger.info("Colonne montant detectee (colonne %d)", colonne_montant + 1)
    montants = creer_map_montants(lignes, colonne_montant, index, mode=detection.type)

    valeurs = [row[index] for row in lignes if index < len(row) and row[index].strip()]
    if detection.type == "siret":
        return valeurs, {}, montants

    jointure = jointure_telephones(
        store.lire_texte(DatasetType.SOUS_TRAITANTS), valeurs, DEFAULT_ENABLED_STATUSES,
    )
    logger.info(
        "%d telephones rattaches a la base, %d non trouves",
        jointure["stats"]["matchedCount"], jointure["stats"]["unmatchedCount"],
    )
    sirets = [m["siret"] for m in jointure["matched"] if m.get("siret")]
    telephones = {m["siret"]: m["matched_phone"] for m in jointure["matched"] if m.get("siret")}
    # Les positions du fichier ne correspondent plus apres la jointure
    return sirets, telephones, {k: v for k, v in montants.items() if not k.startswith("index_")}


def executer_verification(args, config: AppConfig) -> int:
    if not args.fichier.exists():
        logger.error("Fichier introuvable : %s", args.fichier)
        return 1

    store = CSVDataStore(config)
    insee = InseeClient(config.insee)
    if not insee.configure:
        logger.error("Cle API INSEE non configuree (INSEE_INTEGRATION_KEY ou SIRENE_KEY/SIRENE_SECRET)")
        return 1

    sirets, telephones, montants = lire_entree(args.fichier, store)
    if not sirets:
        logger.error("Aucun SIRET a verifier.")
        return 1

    pipeline = VerificationPipeline(insee, bodacc=BodaccClient(), config=profil_pipeline(args.profil))
    resultats: list[dict] = []
    try:
        for evenement in pipeline.executer(sirets, telephones):
            if evenement["type"] == EventType.PROGRESS.value:
                logger.info(evenement["message"])
            elif evenement["type"] == EventType.RESULT.value:
                resultats.append(evenement["result"])
            elif evenement["type"] == EventType.COMPLETE.value:
                resultats = evenement["results"]
            elif evenement["type"] == EventType.ERROR.value:
                logger.error(evenement["message"])
                resultats = evenement.get("results", resultats)
                break
    except KeyboardInterrupt:
        pipeline.annuler()
        logger.warning("Verification interrompue, %d resultats conserves", len(resultats))

    statuts = enrichir_montants([CompanyStatus.from_dict(r) for r in resultats], montants)
    stats = calculer_stats(statuts)

    args.output.mkdir(parents=True, exist_ok=True)
    nom = f"verification-{args.fichier.stem}.{args.format}"
    chemin = args.output / nom
    donnees = [s.to_dict() for s in statuts]
    if args.format == "json":
        chemin.write_text(
            json.dumps({"results": donnees, "stats": stats}, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
    else:
        total = total_radiees(statuts) if montants else None
        chemin.write_bytes(exporter_verification(donnees, total))

    print(f"\n{'='*60}")
    print(f"  VERIFICATION TERMINEE")
    print(f"  Rapport : {chemin}")
    print(f"  SIRET verifies : {stats['total']}")
    print(f"  Radiees : {stats['radiees']}  |  En procedure : {stats['enProcedure']}")
    print(f"  Erreurs : {stats['errors']}")
    if montants:
        print(f"  Montant des radiees : {total_radiees_formate(statuts)}")
    print(f"{'='*60}\n")
    return 0


# --- Anomalies RI ---

def executer_ri_anomalies(args, config: AppConfig) -> int:
    detector = RIAnomalyDetector(CSVDataStore(config))
    seuils = ThresholdsStore(config.chemin_seuils_ri).load()
    if args.siret:
        analyse = detector.analyser_sirets(args.siret, seuils)
    else:
        analyse = detector.analyser_batch(args.min_missions, seuils=seuils)

    print(f"\n{'='*60}")
    print(f"  ANOMALIES RI ({analyse['mode']})")
    print(f"  Seuils : alerte < {seuils.warning_threshold:g}%  |  excellent > {seuils.excellent_threshold:g}%")
    print(f"{'='*60}")
    for r in analyse["results"]:
        print(
            f"  #{r['ranking']:<4} {r['siret']}  {(r.get('denomination') or '')[:30]:<30}"
            f"  {r['ecartPercent']:>8.2f}%  {r['status']}"
        )
    if analyse.get("siretsSansMission"):
        print(f"  Sans mission : {', '.join(analyse['siretsSansMission'])}")
    print(f"{'='*60}\n")

    if args.output:
        args.output.write_bytes(exporter_anomalies_ri(analyse["results"]))
        logger.info("Export ecrit : %s", args.output)
    return 0


def main(argv=None) -> int:
    """Point d'entree principal."""
    parser = creer_argument_parser()
    args = parser.parse_args(argv)

    configurer_logging(args.verbose)
    config = AppConfig(data_dir=args.data_dir) if args.data_dir else AppConfig()

    try:
        if args.commande == "verifier":
            return executer_verification(args, config)
        return executer_ri_anomalies(args, config)
    except AnalyzerError as e:
        logger.error("Erreur : %s", e.message)
        return 1
    except Exception as e:
        logger.exception("Erreur inattendue : %s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
