"""Envoi des emails de connexion via l'API Resend."""

import json
import logging
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from jinja2 import Environment, select_autoescape

from sous_traitants_analyzer.core.exceptions import ApiError, ConfigError

logger = logging.getLogger("sous_traitants_analyzer.notifications.email")

RESEND_URL = "https://api.resend.com/emails"
SUJET_LIEN_MAGIQUE = "Connexion à votre espace"

_TEMPLATE_LIEN_MAGIQUE = """\
<!DOCTYPE html>
<html lang="fr">
<body style="font-family: Arial, sans-serif; color: #1f2937;">
  <h1 style="font-size: 20px;">Connexion à votre espace</h1>
  <p>Bonjour{% if name %} {{ name }}{% endif %},</p>
  <p>Cliquez sur le bouton ci-dessous pour vous connecter :</p>
  <p>
    <a href="{{ magic_link }}"
       style="background: #2563eb; color: #ffffff; padding: 12px 24px;
              border-radius: 6px; text-decoration: none;">Se connecter</a>
  </p>
  <p style="font-size: 13px; color: #6b7280;">
    Ce lien expire dans {{ expiry_minutes }} minutes et ne peut être utilisé
    que pour vous connecter.
  </p>
  <p style="font-size: 13px; color: #6b7280;">
    Si vous n'avez pas demandé cette connexion, ignorez cet email.
  </p>
</body>
</html>
"""

_env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))


def rendre_lien_magique(magic_link: str, name: str = None, expiry_minutes: int = 15) -> str:
    template = _env.from_string(_TEMPLATE_LIEN_MAGIQUE)
    return template.render(magic_link=magic_link, name=name, expiry_minutes=expiry_minutes)


class ResendMailer:
    """Client minimal de l'API Resend."""

    def __init__(self, api_key: str, expediteur: str, timeout: float = 15.0):
        self.api_key = api_key
        self.expediteur = expediteur
        self.timeout = timeout

    def envoyer(self, destinataire: str, sujet: str, html: str) -> dict:
        if not self.api_key:
            raise ConfigError("RESEND_API_KEY is not configured")

        data = json.dumps({
            "from": self.expediteur,
            "to": [destinataire],
            "subject": sujet,
            "html": html,
        }).encode("utf-8")
        req = Request(RESEND_URL, data=data, method="POST")
        req.add_header("Authorization", f"Bearer {self.api_key}")
        req.add_header("Content-Type", "application/json")

        try:
            with urlopen(req, timeout=self.timeout) as resp:
                return json.loads(resp.read() or b"{}")
        except HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            logger.error("API Resend %s : %s", e.code, body[:200])
            raise ApiError("Erreur lors de l'envoi de l'email", status_code=500) from e
        except URLError as e:
            logger.error("Erreur reseau Resend: %s", e)
            raise ApiError("Erreur lors de l'envoi de l'email", status_code=500) from e

    def envoyer_lien_magique(self, destinataire: str, magic_link: str, name: str = None,
                             expiry_minutes: int = 15) -> dict:
        html = rendre_lien_magique(magic_link, name, expiry_minutes)
        return self.envoyer(destinataire, SUJET_LIEN_MAGIQUE, html)
