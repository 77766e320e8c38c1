"""Model layer for the form engine.

This package hosts option sources, field rules, session state, the
cascading School/Class/Division selector and the YAML configuration under
``scm_forms/ui/model/config``.
"""
