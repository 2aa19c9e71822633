"""Exceptions personnalisees pour SuiviReseau."""


class AnalyzerError(Exception):
    """Exception de base."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "", status_code: int = None, code: str = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(AnalyzerError):
    """Parametres d'entree invalides."""
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AnalyzerError):
    """Ressource introuvable."""
    status_code = 404
    code = "NOT_FOUND"


class ApiError(AnalyzerError):
    """Erreur d'une API externe (INSEE, BODACC, Resend)."""
    status_code = 502
    code = "API_ERROR"


class ConfigError(AnalyzerError):
    """Erreur de configuration."""
    code = "NO_API_CONFIGURED"


class DatasetError(AnalyzerError):
    """Erreur de lecture ou d'ecriture d'une table CSV."""
    code = "DATASET_ERROR"


class ParseError(DatasetError):
    """Contenu CSV illisible."""
    status_code = 400
    code = "PARSE_ERROR"
