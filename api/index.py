"""SuiviReseau - Suivi administratif d'un reseau de sous-traitants.

Point d'entree web : authentification par lien magique, verification des
SIRET (INSEE + BODACC) en flux SSE, jointures avec la base sous-traitants,
tables CSV et detection des anomalies de declaration de RI.
"""

import logging
import math
import threading
import time
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response, StreamingResponse
from pydantic import BaseModel
from starlette.concurrency import iterate_in_threadpool

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from sous_traitants_analyzer import __version__
from sous_traitants_analyzer.analyzers.jointures import (
    jointure_sirets, jointure_telephones, valider_sirets, valider_statuts, valider_telephones,
)
from sous_traitants_analyzer.analyzers.recherche import rechercher_sous_traitants
from sous_traitants_analyzer.analyzers.ri_anomalies import RIAnomalyDetector
from sous_traitants_analyzer.config.constants import DatasetType, TreatmentType
from sous_traitants_analyzer.config.settings import (
    AppConfig, PROFIL_RAPIDE, PROFIL_STREAM, profil_pipeline,
)
from sous_traitants_analyzer.core.exceptions import AnalyzerError, ConfigError, ValidationError
from sous_traitants_analyzer.database.csv_store import CSVDataStore
from sous_traitants_analyzer.database.persistence import ThresholdsStore, valider_seuils
from sous_traitants_analyzer.models.entites import Assureur
from sous_traitants_analyzer.notifications.email import ResendMailer
from sous_traitants_analyzer.reporting.export_excel import exporter_anomalies_ri
from sous_traitants_analyzer.security.audit_logger import AuditLogger
from sous_traitants_analyzer.security.auth import (
    MagicLinkAuth, clear_session_cookie, est_chemin_public, get_current_session,
    set_session_cookie,
)
from sous_traitants_analyzer.traitements.registry import plan_execution
from sous_traitants_analyzer.verification.pipeline import (
    SSE_HEADERS, VerificationPipeline, calculer_stats, construire_map_telephones,
    formater_sse, traiter_par_chunks, verifier_sirets,
)
from sous_traitants_analyzer.veille.bodacc_client import BodaccClient
from sous_traitants_analyzer.veille.insee_client import InseeClient

logger = logging.getLogger("sous_traitants_analyzer.api")

MESSAGE_SIRETS_REQUIS = "SIRETs array is required and must not be empty"


# ==============================
# MODELES DE REQUETE
# ==============================
# Champs volontairement permissifs : la validation metier produit les
# messages d'erreur attendus par le frontend.

class VerificationRequest(BaseModel):
    sirets: Any = None
    data: Any = None


class BodaccRequest(BaseModel):
    companies: Any = None


class JointureSiretRequest(BaseModel):
    sirets: Any = None
    enabledStatuses: Any = None
    csvData: Optional[str] = None


class JointureTelephoneRequest(BaseModel):
    phones: Any = None
    enabledStatuses: Any = None
    csvData: Optional[str] = None


class TraitementRequest(BaseModel):
    treatments: Any = None
    sirets: Any = None


class AnomaliesRIRequest(BaseModel):
    sirets: Any = None
    mode: str = "siret"
    minMissions: Any = None
    enabledStatuses: Any = None
    thresholds: Any = None


class SeuilsRequest(BaseModel):
    thresholds: Any = None


class AssureursRequest(BaseModel):
    assureurs: Any = None


class UploadRequest(BaseModel):
    datasetType: Optional[str] = None
    csvContent: Optional[str] = None


class MagicLinkRequest(BaseModel):
    email: Any = None


# ==============================
# APPLICATION
# ==============================

def creer_app(
    config: AppConfig = None,
    insee: InseeClient = None,
    bodacc: BodaccClient = None,
    mailer=None,
    sleep=time.sleep,
) -> FastAPI:
    """Construit l'application et ses services (injectables pour les tests)."""
    config = config or AppConfig()
    store = CSVDataStore(config)

    app = FastAPI(
        title="SuiviReseau",
        description="Suivi administratif et qualite declarative d'un reseau de sous-traitants",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.store = store
    app.state.seuils = ThresholdsStore(config.chemin_seuils_ri)
    app.state.insee = insee or InseeClient(config.insee)
    app.state.bodacc = bodacc or BodaccClient()
    app.state.auth = MagicLinkAuth(
        config.auth,
        store.charger_emails_autorises,
        mailer=mailer or ResendMailer(config.auth.resend_api_key, config.auth.expediteur),
    )
    app.state.audit = AuditLogger(config.audit_log_path)
    app.state.sleep = sleep

    _enregistrer_gestionnaires(app)
    _enregistrer_routes(app)
    return app


def _enregistrer_gestionnaires(app: FastAPI):

    @app.exception_handler(AnalyzerError)
    async def analyzer_error_handler(request: Request, exc: AnalyzerError):
        if exc.status_code >= 500:
            logger.error("%s %s : %s", request.method, request.url.path, exc.message)
        else:
            logger.warning("%s %s : %s", request.method, request.url.path, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            {"error": "invalid_request", "message": "Corps de requete invalide"},
            status_code=400,
        )

    @app.middleware("http")
    async def auth_middleware(request: Request, call_next):
        config: AppConfig = request.app.state.config
        path = request.url.path
        if config.est_developpement or est_chemin_public(path):
            return await call_next(request)

        auth: MagicLinkAuth = request.app.state.auth
        token = request.cookies.get(config.auth.nom_cookie)
        if token and auth.verifier_token_session(token):
            return await call_next(request)

        if path.startswith("/api/"):
            return JSONResponse({"error": "UNAUTHORIZED"}, status_code=401)
        return RedirectResponse("/login", status_code=307)


def _exiger_sirets(sirets) -> list:
    if not isinstance(sirets, list) or not sirets:
        raise ValidationError(MESSAGE_SIRETS_REQUIS, code="sirets_required")
    return sirets


def _exiger_insee(insee: InseeClient):
    if not insee.configure:
        raise ConfigError("INSEE API integration key not configured", code="NO_API_CONFIGURED")


def _flux_verification(request: Request, body: VerificationRequest, profil: str) -> StreamingResponse:
    """Reponse SSE ; la deconnexion du client annule le pipeline."""
    sirets = _exiger_sirets(body.sirets)
    state = request.app.state
    _exiger_insee(state.insee)

    annulation = threading.Event()
    pipeline = VerificationPipeline(
        state.insee,
        bodacc=state.bodacc,
        config=profil_pipeline(profil),
        sleep=state.sleep,
        annulation=annulation,
    )
    evenements = pipeline.executer(sirets, construire_map_telephones(body.data))
    logger.info("Flux de verification '%s' ouvert pour %d SIRET", profil, len(sirets))

    async def flux():
        try:
            async for evenement in iterate_in_threadpool(evenements):
                if await request.is_disconnected():
                    logger.info("Client deconnecte, annulation du traitement")
                    break
                yield formater_sse(evenement)
        finally:
            annulation.set()

    return StreamingResponse(flux(), media_type="text/event-stream", headers=SSE_HEADERS)


def _seuils_requete(app_state, thresholds):
    if thresholds is None:
        return app_state.seuils.load()
    return valider_seuils(thresholds)


def _anomalies_ri(app_state, body: AnomaliesRIRequest) -> dict:
    detector = RIAnomalyDetector(app_state.store)
    seuils = _seuils_requete(app_state, body.thresholds)
    if body.mode == "batch":
        return detector.analyser_batch(body.minMissions, body.enabledStatuses, seuils)
    return detector.analyser_sirets(_exiger_sirets(body.sirets), seuils)


def _enregistrer_routes(app: FastAPI):

    # ==============================
    # AUTHENTIFICATION
    # ==============================

    @app.post("/api/auth/send-magic-link")
    def auth_send_magic_link(body: MagicLinkRequest):
        try:
            return app.state.auth.envoyer_lien(body.email)
        except AnalyzerError as e:
            return JSONResponse({"success": False, "message": e.message}, status_code=e.status_code)

    @app.get("/api/auth/verify-magic-link")
    async def auth_verify_magic_link(token: Optional[str] = Query(None)):
        session, erreur = app.state.auth.ouvrir_session(token)
        if erreur:
            logger.warning("Lien de connexion refuse : %s", erreur)
            return RedirectResponse(f"/login?error={erreur}", status_code=307)

        payload = app.state.auth.verifier_token_session(session)
        app.state.audit.log_connexion(payload["email"])
        response = RedirectResponse("/", status_code=307)
        set_session_cookie(
            response, session, app.state.config.auth,
            secure=not app.state.config.est_developpement,
        )
        return response

    @app.get("/api/auth/check")
    async def auth_check(request: Request):
        try:
            session = get_current_session(request)
        except HTTPException:
            return JSONResponse({"authenticated": False}, status_code=401)
        return {"authenticated": True, "email": session["email"], "name": session.get("name")}

    @app.api_route("/api/auth/logout", methods=["GET", "POST"])
    async def auth_logout():
        response = RedirectResponse("/login", status_code=303)
        clear_session_cookie(response, app.state.config.auth)
        return response

    # ==============================
    # VERIFICATION DES SIRET
    # ==============================

    @app.post("/api/check-siret")
    def check_siret(body: VerificationRequest):
        sirets = valider_sirets(body.sirets)
        _exiger_insee(app.state.insee)
        resultats = verifier_sirets(
            app.state.insee, sirets, construire_map_telephones(body.data), sleep=app.state.sleep,
        )
        return {"results": [r.to_dict() for r in resultats]}

    @app.post("/api/check-siret/stream")
    async def check_siret_stream(request: Request, body: VerificationRequest):
        return _flux_verification(request, body, PROFIL_STREAM)

    @app.post("/api/check-siret/websocket")
    async def check_siret_rapide(request: Request, body: VerificationRequest):
        return _flux_verification(request, body, PROFIL_RAPIDE)

    @app.post("/api/process-chunks")
    def process_chunks(body: VerificationRequest):
        _exiger_insee(app.state.insee)
        return traiter_par_chunks(
            app.state.insee,
            body.sirets if isinstance(body.sirets, list) else [],
            chunks=app.state.config.chunks,
            sleep=app.state.sleep,
        )

    @app.post("/api/enrich-bodacc")
    def enrich_bodacc(body: BodaccRequest):
        if not isinstance(body.companies, list):
            raise ValidationError("Invalid request: companies array required")
        entreprises = [c for c in body.companies if isinstance(c, dict)]
        return {"success": True, **app.state.bodacc.enrichir_entreprises(entreprises)}

    # ==============================
    # TABLES CSV
    # ==============================

    @app.get("/api/csv-last-modified")
    async def csv_last_modified():
        return app.state.store.derniere_modification_base()

    @app.get("/api/data/assureurs")
    async def get_assureurs():
        return {"assureurs": [a.to_dict() for a in app.state.store.charger_assureurs()]}

    @app.put("/api/data/assureurs")
    async def put_assureurs(request: Request, body: AssureursRequest):
        if not isinstance(body.assureurs, list):
            raise ValidationError("Missing or invalid assureurs array")
        try:
            assureurs = [
                Assureur(int(a["id"]), str(a["name"]), float(a["ri_percentage"]))
                for a in body.assureurs
            ]
            if not all(math.isfinite(a.ri_percentage) for a in assureurs):
                raise ValueError("ri_percentage non fini")
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError("Missing or invalid assureurs array") from e

        count = app.state.store.enregistrer_assureurs(assureurs)
        app.state.audit.log_assureurs(_utilisateur(request), count)
        return {"success": True, "count": count}

    @app.get("/api/data/list-datasets")
    async def list_datasets():
        return {"datasets": app.state.store.lister_datasets()}

    @app.get("/api/data/metiers")
    async def get_metiers():
        return {"success": True, "metiers": app.state.store.charger_metiers()}

    @app.get("/api/data/ri-thresholds")
    async def get_ri_thresholds():
        return {"success": True, "thresholds": app.state.seuils.load().to_dict()}

    @app.put("/api/data/ri-thresholds")
    async def put_ri_thresholds(request: Request, body: SeuilsRequest):
        seuils = app.state.seuils.save(body.thresholds)
        app.state.audit.log_seuils(_utilisateur(request), seuils.to_dict())
        return {
            "success": True,
            "thresholds": seuils.to_dict(),
            "message": "Seuils RI mis à jour avec succès",
        }

    @app.get("/api/data/subcontractors")
    async def search_subcontractors(query: Optional[str] = Query(None)):
        requete = (query or "").strip()
        if len(requete) < 2:
            return {"results": []}
        lignes = app.state.store.lire_lignes(DatasetType.SOUS_TRAITANTS)
        return {"results": rechercher_sous_traitants(lignes, requete)}

    @app.post("/api/data/upload-dataset")
    async def upload_dataset(request: Request, body: UploadRequest):
        if not body.datasetType or not body.csvContent:
            raise ValidationError("Missing datasetType or csvContent")
        resultat = app.state.store.enregistrer_dataset(body.datasetType, body.csvContent)
        app.state.audit.log_import(_utilisateur(request), resultat["dataset"], resultat["lineCount"])
        return resultat

    # ==============================
    # JOINTURES
    # ==============================

    @app.post("/api/join/simple-join")
    async def simple_join(body: JointureSiretRequest):
        sirets = valider_sirets(body.sirets)
        statuts = valider_statuts(body.enabledStatuses)
        contenu = body.csvData or app.state.store.lire_texte(DatasetType.SOUS_TRAITANTS)
        return {"result": jointure_sirets(contenu, sirets, statuts, bool(body.csvData))}

    @app.post("/api/join/phone-join")
    async def phone_join(body: JointureTelephoneRequest):
        telephones = valider_telephones(body.phones)
        statuts = valider_statuts(body.enabledStatuses)
        contenu = body.csvData or app.state.store.lire_texte(DatasetType.SOUS_TRAITANTS)
        return {"result": jointure_telephones(contenu, telephones, statuts, bool(body.csvData))}

    @app.get("/api/join/subcontractors")
    async def join_subcontractors():
        return app.state.store.base_par_statut()

    @app.get("/api/join/schema")
    async def join_schema():
        return app.state.store.schemas_par_statut()

    # ==============================
    # TRAITEMENTS
    # ==============================

    @app.post("/api/treatments/execute")
    async def treatments_execute(body: TraitementRequest):
        return plan_execution(body.treatments, body.sirets)

    @app.post("/api/treatments/radiation-check")
    def treatment_radiation_check(body: VerificationRequest):
        sirets = _exiger_sirets(body.sirets)
        _exiger_insee(app.state.insee)
        resultats = verifier_sirets(
            app.state.insee, sirets, construire_map_telephones(body.data), sleep=app.state.sleep,
        )
        return {
            "success": True,
            "treatmentType": TreatmentType.RADIATION_CHECK.value,
            "siretCount": len(sirets),
            "results": [r.to_dict() for r in resultats],
            "stats": calculer_stats(resultats),
        }

    @app.post("/api/treatments/ri-anomalies")
    def treatment_ri_anomalies(body: AnomaliesRIRequest):
        return {
            "success": True,
            "treatmentType": TreatmentType.RI_ANOMALIES.value,
            **_anomalies_ri(app.state, body),
        }

    @app.post("/api/treatments/ri-anomalies/export")
    def treatment_ri_anomalies_export(body: AnomaliesRIRequest):
        analyse = _anomalies_ri(app.state, body)
        contenu = exporter_anomalies_ri(analyse["results"])
        return Response(
            content=contenu,
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
            headers={"Content-Disposition": 'attachment; filename="anomalies-ri.xlsx"'},
        )

    # ==============================
    # SANTE
    # ==============================

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "version": __version__,
            "inseeConfigured": app.state.insee.configure,
        }


def _utilisateur(request: Request) -> str:
    """Email de la session courante, vide hors session (mode developpement)."""
    auth: MagicLinkAuth = request.app.state.auth
    token = request.cookies.get(auth.config.nom_cookie)
    payload = auth.verifier_token_session(token) if token else None
    return payload["email"] if payload else ""


app = creer_app()
