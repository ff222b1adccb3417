"""Local Library - catalog package

This package contains the catalog core:
- Entity models and derived values (models.py)
- Document store backends (database.py)
- Reference resolution (references.py)
- Form validation (validators.py)
- Duplicate resolution and delete guard (policies.py)
- Create/update/delete workflows (pipeline.py)
- Page data aggregation (aggregator.py)
- CLI output formatting (ui_helpers.py)
"""
