"""Configuration globale de l'application."""

import os
from pathlib import Path
from dataclasses import dataclass, field

from sous_traitants_analyzer.config.constants import (
    DATASET_FICHIERS, DatasetType, FICHIER_SEUILS_RI, FICHIER_METIERS,
    FICHIER_EMAILS_AUTORISES, INSEE_MAX_REQUETES_MINUTE,
    TAILLE_LOT_MIN, TAILLE_LOT_MAX,
)


def _env(nom: str, defaut: str = "") -> str:
    return os.getenv(nom, defaut)


@dataclass
class InseeConfig:
    """Acces a l'API Sirene."""
    integration_key: str = field(default_factory=lambda: _env("INSEE_INTEGRATION_KEY"))
    client_id: str = field(default_factory=lambda: _env("SIRENE_KEY"))
    client_secret: str = field(default_factory=lambda: _env("SIRENE_SECRET"))
    timeout: float = 15.0
    max_retries: int = 3

    @property
    def configuree(self) -> bool:
        return bool(self.integration_key or (self.client_id and self.client_secret))


@dataclass
class RateLimitConfig:
    """Limites de debit vers l'INSEE."""
    max_requetes_par_minute: int = INSEE_MAX_REQUETES_MINUTE

    @property
    def delai_entre_requetes(self) -> float:
        return 60.0 / self.max_requetes_par_minute


@dataclass
class PipelineConfig:
    """Parametres d'un passage du pipeline de verification."""
    taille_lot: int = 20
    pause_entre_lots: float = 90.0
    delai_entre_requetes: float = RateLimitConfig().delai_entre_requetes
    delai_supplementaire_erreur: float = 1.0
    max_erreurs_consecutives: int = 10
    intervalle_heartbeat: float = 30.0
    enrichir_bodacc: bool = False
    # False : toute erreur INSEE compte pour l'arret du traitement
    erreurs_critiques_seulement: bool = True

    def __post_init__(self):
        self.taille_lot = max(TAILLE_LOT_MIN, min(TAILLE_LOT_MAX, int(self.taille_lot)))
        self.intervalle_heartbeat = max(0.1, float(self.intervalle_heartbeat))


# Profils utilises par les routes de verification
PROFIL_STREAM = "stream"
PROFIL_RAPIDE = "rapide"


def profil_pipeline(nom: str) -> PipelineConfig:
    """Retourne la configuration d'un profil nomme."""
    if nom == PROFIL_RAPIDE:
        return PipelineConfig(
            taille_lot=25,
            pause_entre_lots=15.0,
            delai_supplementaire_erreur=0.0,
            max_erreurs_consecutives=5,
            enrichir_bodacc=True,
            erreurs_critiques_seulement=False,
        )
    return PipelineConfig()


@dataclass
class ChunkConfig:
    """Decoupage des tres grosses listes en sous-traitements."""
    taille_chunk: int = 200
    pause_entre_chunks: float = 120.0


@dataclass
class AuthConfig:
    """Configuration de l'authentification par lien magique."""
    jwt_secret: str = field(
        default_factory=lambda: _env("JWT_SECRET", "your-secret-key-change-in-production")
    )
    app_url: str = field(default_factory=lambda: _env("APP_URL", "http://localhost:3000"))
    resend_api_key: str = field(default_factory=lambda: _env("RESEND_API_KEY"))
    expediteur: str = field(
        default_factory=lambda: _env("MAIL_FROM", "Gilet Conseils <noreply@giletconseils.fr>")
    )
    expiration_lien_minutes: int = 15
    expiration_session_jours: int = 7
    nom_cookie: str = "session"
    max_liens_par_heure: int = 3

    @property
    def secret_par_defaut(self) -> bool:
        return not self.jwt_secret or self.jwt_secret == "your-secret-key-change-in-production"


@dataclass
class AppConfig:
    """Configuration principale de l'application."""
    data_dir: Path = field(default=None)
    audit_log_path: Path = field(default=None)
    environnement: str = field(default_factory=lambda: _env("APP_ENV", "production"))

    insee: InseeConfig = field(default_factory=InseeConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    chunks: ChunkConfig = field(default_factory=ChunkConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)

    def __post_init__(self):
        if self.data_dir is None:
            self.data_dir = Path(_env("DATA_DIR", str(Path.cwd() / "data" / "csv-files")))
        self.data_dir = Path(self.data_dir)
        if self.audit_log_path is None:
            self.audit_log_path = self.data_dir / "logs" / "audit.log"

        # Creer les repertoires si necessaire
        for d in [self.data_dir, self.config_dir]:
            d.mkdir(parents=True, exist_ok=True)

    @property
    def config_dir(self) -> Path:
        return self.data_dir / "config"

    @property
    def est_developpement(self) -> bool:
        return self.environnement == "development"

    def chemin_dataset(self, dataset: DatasetType) -> Path:
        dossier, fichier = DATASET_FICHIERS[dataset]
        return self.data_dir / dossier / fichier

    @property
    def chemin_seuils_ri(self) -> Path:
        return self.data_dir.joinpath(*FICHIER_SEUILS_RI)

    @property
    def chemin_metiers(self) -> Path:
        return self.data_dir.joinpath(*FICHIER_METIERS)

    @property
    def chemin_emails_autorises(self) -> Path:
        return self.data_dir.joinpath(*FICHIER_EMAILS_AUTORISES)
