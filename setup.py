"""Setup pour SuiviReseau (sous_traitants_analyzer)."""

from setuptools import setup, find_packages

setup(
    name="sous_traitants_analyzer",
    version="1.0.0",
    description="Suivi administratif et qualite declarative d'un reseau de sous-traitants",
    author="AJ",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    entry_points={
        "console_scripts": [
            "sous-traitants-analyzer=sous_traitants_analyzer.main:main",
        ],
    },
    install_requires=[
        "fastapi>=0.110.0",
        "uvicorn>=0.27.0",
        "pydantic>=2.0",
        "openpyxl>=3.1.0",
        "jinja2>=3.1.0",
        "python-dateutil>=2.8.0",
    ],
    extras_require={
        "server": [
            "gunicorn>=21.2.0",
        ],
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "httpx>=0.25.0",
        ],
    },
)
