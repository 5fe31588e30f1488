import sys
from pathlib import Path

from setuptools import setup

if sys.version_info[0:2] < (3, 8):
    raise RuntimeError("This package requires Python 3.8+.")

setup(
    name="asyncrecord",
    use_scm_version={
        "version_scheme": "guess-next-dev",
        "local_scheme": "dirty-tag",
        "fallback_version": "0.1.0",
    },
    packages=[
        "asyncrecord",
        "asyncrecord.orm",
        # namespace packages yay
        "asyncrecord.backends",
        # postgres backend
        "asyncrecord.backends.postgresql",
        # mysql backend
        "asyncrecord.backends.mysql",
        # sqlite3 backend
        "asyncrecord.backends.sqlite3"
    ],
    license="MIT",
    author="asyncrecord contributors",
    description="An asyncio active record ORM for Python 3",
    long_description=Path(__file__).with_name("README.rst").read_text(encoding="utf-8"),
    setup_requires=[
        "setuptools_scm",
    ],
    install_requires=[
        "cached_property>=1.3.0",
        "aiosqlite>=0.17.0",
    ],
    extras_require={
        "docs": [
            "sphinx>=1.5.0",
            "sphinxcontrib-asyncio",
            "guzzle_sphinx_theme"
        ],
        "postgresql": [
            "asyncpg>=0.12.0"
        ],
        "mysql": [
            "aiomysql>=0.0.9",
        ],
        "test": [
            "pytest",
            "pytest-asyncio>=0.21",
            "pytest-cov",
        ]
    },
    python_requires=">=3.8",
)
