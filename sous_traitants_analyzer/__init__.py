"""SuiviReseau - suivi administratif des intervenants reseau et anomalies RI."""

__version__ = "1.0.0"
