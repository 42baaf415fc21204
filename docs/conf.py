# Sphinx configuration for the flow orchestrator API docs

import os
import sys
sys.path.insert(0, os.path.abspath('../src'))

from agent_flow_orchestrator import __version__  # noqa: E402

project = 'Agent Flow Orchestrator'
copyright = '2024, Trickl'
author = 'Trickl'
release = __version__
version = '.'.join(__version__.split('.')[:2])

extensions = [
    'sphinx.ext.autodoc',
    'sphinx.ext.napoleon',
    'sphinx.ext.viewcode',
    'sphinx.ext.intersphinx',
    'sphinx_autodoc_typehints',
]

root_doc = 'index'
exclude_patterns = ['_build']

html_theme = 'sphinx_rtd_theme'
html_title = f'{project} {release}'

# Flow models are pydantic; skip the generated validator plumbing.
autodoc_default_options = {
    'members': True,
    'member-order': 'bysource',
    'undoc-members': False,
    'exclude-members': 'model_config,model_fields,model_computed_fields',
}
autodoc_typehints = 'description'
typehints_use_signature_return = True

# The provider SDKs are optional at doc-build time.
autodoc_mock_imports = ['llama_cpp']

napoleon_google_docstring = True
napoleon_numpy_docstring = False

intersphinx_mapping = {
    'python': ('https://docs.python.org/3', None),
    'pydantic': ('https://docs.pydantic.dev/latest', None),
}
