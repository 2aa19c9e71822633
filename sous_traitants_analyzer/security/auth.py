"""Authentification par lien magique.

JWT (HMAC-SHA256) en stdlib : token 'magic' de courte duree envoye par email,
puis token 'session' stocke dans un cookie httpOnly.
"""

import base64
import hashlib
import hmac
import json
import logging
import re
import time
from typing import Callable, Optional

from fastapi import HTTPException, Request, Response

from sous_traitants_analyzer.config.settings import AuthConfig
from sous_traitants_analyzer.core.exceptions import AnalyzerError, ConfigError, ValidationError

logger = logging.getLogger("sous_traitants_analyzer.security.auth")

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

TYPE_MAGIC = "magic"
TYPE_SESSION = "session"

MESSAGE_GENERIQUE = "Si votre email est autorisé, vous recevrez un lien de connexion."
MESSAGE_ENVOYE = "Un lien de connexion a été envoyé à votre adresse email."

# Routes accessibles sans session
PUBLIC_PATHS = (
    "/login",
    "/api/auth/send-magic-link",
    "/api/auth/verify-magic-link",
    "/api/health",
)


# =========================================
# JWT (HMAC-SHA256, stdlib)
# =========================================

def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64url_decode(s: str) -> bytes:
    s += "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s)


def jwt_encode(payload: dict, secret: str) -> str:
    header = {"alg": "HS256", "typ": "JWT"}
    h = _b64url_encode(json.dumps(header, separators=(",", ":")).encode())
    p = _b64url_encode(json.dumps(payload, separators=(",", ":"), default=str).encode())
    sig = hmac.new(secret.encode(), f"{h}.{p}".encode(), hashlib.sha256).digest()
    return f"{h}.{p}.{_b64url_encode(sig)}"


def jwt_decode(token: str, secret: str, maintenant: float = None) -> Optional[dict]:
    """Payload si la signature est valide et le token non expire, sinon None."""
    try:
        parts = token.split(".")
        if len(parts) != 3:
            return None
        expected = hmac.new(secret.encode(), f"{parts[0]}.{parts[1]}".encode(), hashlib.sha256).digest()
        if not hmac.compare_digest(expected, _b64url_decode(parts[2])):
            return None
        payload = json.loads(_b64url_decode(parts[1]))
    except (AttributeError, ValueError, TypeError):
        return None
    if not isinstance(payload, dict):
        return None
    maintenant = time.time() if maintenant is None else maintenant
    if payload.get("exp") and payload["exp"] < maintenant:
        return None
    return payload


def email_valide(email) -> bool:
    return isinstance(email, str) and bool(_EMAIL_RE.match(email))


# =========================================
# LIENS MAGIQUES
# =========================================

class MagicLinkAuth:
    """Emission et verification des tokens, limitation des demandes de lien."""

    def __init__(
        self,
        config: AuthConfig,
        emails_autorises: Callable[[], dict],
        mailer=None,
        horloge: Callable[[], float] = time.time,
    ):
        self.config = config
        self._emails_autorises = emails_autorises
        self.mailer = mailer
        self._horloge = horloge
        self._limites: dict[str, dict] = {}

    # --- Emails autorises ---

    def est_autorise(self, email: str) -> bool:
        return email.strip().lower() in self._emails_autorises()

    def nom_pour_email(self, email: str) -> Optional[str]:
        return self._emails_autorises().get(email.strip().lower()) or None

    # --- Tokens ---

    def _signer(self, payload: dict, duree: int) -> str:
        maintenant = int(self._horloge())
        return jwt_encode({**payload, "iat": maintenant, "exp": maintenant + duree}, self.config.jwt_secret)

    def generer_token_magique(self, email: str) -> str:
        return self._signer(
            {"email": email.strip().lower(), "type": TYPE_MAGIC},
            self.config.expiration_lien_minutes * 60,
        )

    def generer_token_session(self, email: str) -> str:
        email = email.strip().lower()
        return self._signer(
            {"email": email, "name": self.nom_pour_email(email), "type": TYPE_SESSION},
            self.config.expiration_session_jours * 24 * 3600,
        )

    def _verifier(self, token: str, type_attendu: str) -> Optional[dict]:
        payload = jwt_decode(token or "", self.config.jwt_secret, self._horloge())
        if not payload or payload.get("type") != type_attendu:
            return None
        return payload

    def verifier_token_magique(self, token: str) -> Optional[dict]:
        return self._verifier(token, TYPE_MAGIC)

    def verifier_token_session(self, token: str) -> Optional[dict]:
        return self._verifier(token, TYPE_SESSION)

    # --- Limitation ---

    def verifier_limite(self, email: str) -> bool:
        """3 liens par email et par heure."""
        maintenant = self._horloge()
        for cle in [c for c, l in self._limites.items() if maintenant > l["reset_at"]]:
            del self._limites[cle]
        limite = self._limites.get(email)
        if not limite:
            self._limites[email] = {"count": 1, "reset_at": maintenant + 3600}
            return True
        if limite["count"] >= self.config.max_liens_par_heure:
            return False
        limite["count"] += 1
        return True

    # --- Parcours complet ---

    def envoyer_lien(self, email) -> dict:
        """Demande de lien : la reponse ne revele pas si l'email est autorise."""
        if not self.config.resend_api_key:
            logger.error("RESEND_API_KEY is not configured")
            raise ConfigError("Service email non configuré. Contactez l'administrateur.")
        if self.config.secret_par_defaut:
            logger.error("JWT_SECRET is not configured properly")
            raise ConfigError("Service d'authentification non configuré. Contactez l'administrateur.")
        if isinstance(email, str):
            email = email.strip().lower()
        if not email_valide(email):
            raise ValidationError("Email invalide")

        if not self.verifier_limite(email):
            raise AnalyzerError(
                "Trop de tentatives. Veuillez réessayer dans une heure.",
                status_code=429, code="RATE_LIMITED",
            )

        if not self.est_autorise(email):
            logger.info("Demande de lien pour un email non autorise")
            return {"success": True, "message": MESSAGE_GENERIQUE}

        token = self.generer_token_magique(email)
        lien = f"{self.config.app_url.rstrip('/')}/login/verify?token={token}"
        self.mailer.envoyer_lien_magique(
            email, lien, self.nom_pour_email(email), self.config.expiration_lien_minutes,
        )
        logger.info("Lien de connexion envoye")
        return {"success": True, "message": MESSAGE_ENVOYE}

    def ouvrir_session(self, token: Optional[str]) -> tuple[Optional[str], Optional[str]]:
        """(token de session, None) ou (None, code d'erreur pour /login?error=...)."""
        if not token:
            return None, "missing-token"
        payload = self.verifier_token_magique(token)
        if not payload:
            return None, "invalid-token"
        if not self.est_autorise(payload["email"]):
            return None, "unauthorized"
        return self.generer_token_session(payload["email"]), None


# =========================================
# COOKIES / DEPENDANCES FASTAPI
# =========================================

def set_session_cookie(response: Response, token: str, config: AuthConfig, secure: bool = True):
    response.set_cookie(
        key=config.nom_cookie,
        value=token,
        httponly=True,
        samesite="lax",
        max_age=config.expiration_session_jours * 24 * 3600,
        path="/",
        secure=secure,
    )


def clear_session_cookie(response: Response, config: AuthConfig):
    response.delete_cookie(key=config.nom_cookie, path="/")


def est_chemin_public(path: str) -> bool:
    if any(path.startswith(p) for p in PUBLIC_PATHS):
        return True
    # Assets statiques
    derniere = path.rsplit("/", 1)[-1]
    return "." in derniere


def get_current_session(request: Request) -> dict:
    """Payload de session depuis le cookie, 401 sinon."""
    auth: MagicLinkAuth = request.app.state.auth
    token = request.cookies.get(auth.config.nom_cookie)
    if not token:
        raise HTTPException(401, "Non authentifie")
    payload = auth.verifier_token_session(token)
    if not payload:
        raise HTTPException(401, "Session expiree ou invalide")
    return payload
