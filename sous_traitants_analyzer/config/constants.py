"""
Constantes metier : statuts reseau, jeux de donnees, API externes.

Sources :
- api.insee.fr : API Sirene 3.11 (limite 30 requetes/minute)
- bodacc.fr : API Explore v2.1, jeu annonces-commerciales
"""

from enum import Enum


# --- Statuts reseau des intervenants ---

# Code numerique du CSV sous-traitants -> libelle
STATUS_MAPPING = {
    5: "TR",
    4: "U3",
    3: "U4",
    2: "U2",
    1: "U1",
    0: "U1P",
}

VALID_STATUSES = ["TR", "U1", "U1P", "U2", "U3", "U4"]

DEFAULT_ENABLED_STATUSES = {statut: True for statut in VALID_STATUSES}

# Statuts jamais inclus dans l'analyse des anomalies RI
STATUTS_EXCLUS_RI = ("U3", "U4")


# --- Jeux de donnees CSV ---

class DatasetType(str, Enum):
    """Tables CSV gerees par l'application."""
    SOUS_TRAITANTS = "sous-traitants"
    MISSIONS = "missions"
    ASSUREURS = "assureurs"


DATASET_FICHIERS = {
    DatasetType.SOUS_TRAITANTS: ("base-sous-traitants", "sous-traitants.csv"),
    DatasetType.MISSIONS: ("missions", "missions.csv"),
    DatasetType.ASSUREURS: ("assureurs", "assureurs.csv"),
}

FICHIER_SEUILS_RI = ("config", "ri-thresholds.json")
FICHIER_METIERS = ("config", "metier.csv")
FICHIER_EMAILS_AUTORISES = ("config", "authorized-emails.csv")

SOURCE_BASE = "Base sous-traitants"
SOURCE_FICHIER_ENTREPRISE = "Fichier entreprise"


# --- INSEE ---

INSEE_TOKEN_URL = "https://api.insee.fr/token"
INSEE_SIRET_URL = "https://api.insee.fr/api-sirene/3.11/siret/{siret}"
INSEE_MAX_REQUETES_MINUTE = 25  # INSEE autorise 30/min

# Erreurs INSEE retournees dans CompanyStatus.error
ERREUR_SIRET_INTROUVABLE = "SIRET_NOT_FOUND"
ERREUR_RATE_LIMIT = "RATE_LIMIT_EXCEEDED"
ERREUR_REPONSE_INVALIDE = "INVALID_RESPONSE"
ERREUR_RESEAU = "NETWORK_ERROR"
ERREUR_QUOTA = "QUOTA_EXCEEDED"

# Erreurs qui comptent comme critiques pour l'arret du pipeline
ERREURS_CRITIQUES = (ERREUR_RESEAU, ERREUR_QUOTA)


# --- BODACC ---

BODACC_URL = (
    "https://www.bodacc.fr/api/explore/v2.1/catalog/datasets/"
    "annonces-commerciales/records"
)
BODACC_USER_AGENT = "Etat-Administratif-App/1.0"
BODACC_CACHE_SECONDES = 24 * 60 * 60
BODACC_TAILLE_LOT = 5
BODACC_PAUSE_LOT = 1.0


class ProcedureType(str, Enum):
    """Types de procedures collectives publiees au BODACC."""
    REDRESSEMENT_JUDICIAIRE = "REDRESSEMENT_JUDICIAIRE"
    LIQUIDATION_JUDICIAIRE = "LIQUIDATION_JUDICIAIRE"
    SAUVEGARDE = "SAUVEGARDE"
    CONCORDAT = "CONCORDAT"
    PLAN_DE_REDRESSEMENT = "PLAN_DE_REDRESSEMENT"
    LIQUIDATION_AMIABLE = "LIQUIDATION_AMIABLE"
    AUTRE = "AUTRE"


LIBELLES_PROCEDURES = {
    ProcedureType.REDRESSEMENT_JUDICIAIRE: "Redressement judiciaire",
    ProcedureType.LIQUIDATION_JUDICIAIRE: "Liquidation judiciaire",
    ProcedureType.SAUVEGARDE: "Sauvegarde",
    ProcedureType.CONCORDAT: "Concordat",
    ProcedureType.PLAN_DE_REDRESSEMENT: "Plan de redressement",
    ProcedureType.LIQUIDATION_AMIABLE: "Liquidation amiable",
    ProcedureType.AUTRE: "Autre procédure",
}


class ProcedureStatus(str, Enum):
    EN_COURS = "EN_COURS"
    TERMINEE = "TERMINEE"


# --- Pipeline de verification ---

class EventType(str, Enum):
    """Types d'evenements emis dans le flux SSE."""
    PROGRESS = "progress"
    RESULT = "result"
    COMPLETE = "complete"
    ERROR = "error"
    HEARTBEAT = "heartbeat"


TAILLE_LOT_MIN = 1
TAILLE_LOT_MAX = 250


# --- Anomalies RI ---

class RIStatus(str, Enum):
    WARNING = "warning"
    OK = "ok"
    EXCELLENT = "excellent"


SEUIL_WARNING_DEFAUT = -20.0
SEUIL_EXCELLENT_DEFAUT = 10.0
MIN_MISSIONS_DEFAUT = 5


# --- Traitements ---

class TreatmentType(str, Enum):
    RADIATION_CHECK = "radiation-check"
    RI_ANOMALIES = "ri-anomalies"
