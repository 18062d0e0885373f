# docs/conf.py
import os
import sys
import datetime

# Add the project root directory to the Python path so Sphinx can find the package
sys.path.insert(0, os.path.abspath('..'))

# Project information
project = 'JAX-PK'
copyright = f'2025-{datetime.datetime.now().year}, JAX-PK developers'
author = 'Vincent Schacknies'

# The full version, including alpha/beta/rc tags
from jaxpk import __version__
release = __version__

# Add any Sphinx extension module names here, as strings
extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.mathjax',
    'sphinx.ext.intersphinx',
    'sphinx.ext.autosummary',
    'numpydoc',
]

templates_path = ['_templates']
exclude_patterns = ['_build', 'Thumbs.db', '.DS_Store']
html_theme = 'sphinx_rtd_theme'
html_static_path = ['_static']

# Document the public engine and configuration, not the jitted kernels
autodoc_default_options = {
    'members': True,
    'undoc-members': False,
    'private-members': False,
    'special-members': '__init__',
    'exclude-members': 'splint,delta_ratio_core,halofit_core,sigma_tophat_core,gaussian_sigma_integrals'
}

numpydoc_show_class_members = False

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'numpy': ('https://numpy.org/doc/stable', None),
    'scipy': ('https://docs.scipy.org/doc/scipy', None),
    'jax': ('https://jax.readthedocs.io/en/latest', None),
}
