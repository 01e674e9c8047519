import os
import sys
sys.path.insert(0, os.path.abspath('../..'))  # repo root, so rental_service and common import

# Sphinx configuration for the vehicle rental service API reference.
# https://www.sphinx-doc.org/en/master/usage/configuration.html

# -- Project information -----------------------------------------------------

project = 'Vehicle Rental Service'
copyright = '2025, Vehicle Rental Service contributors'
author = 'Vehicle Rental Service contributors'
release = '1.0.0'

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",   # numpy style docstrings
    "sphinx.ext.viewcode",
    "sphinx.ext.autosummary",
]
autosummary_generate = True

# Importing rental_service.main creates tables; keep docs builds off the real database.
os.environ.setdefault("DATABASE_URL", "sqlite:///./docs_build.db")

templates_path = ['_templates']
exclude_patterns = []

# -- Options for HTML output -------------------------------------------------

html_theme = 'alabaster'
html_static_path = ['_static']
