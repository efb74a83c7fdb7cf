# ============================================================================
# src/medical_processing/core/__init__.py
# ============================================================================
"""
Core components for the medical document processing pipeline.

Import from the submodules directly (core.orchestrator, core.record_store, ...);
utils.exceptions depends on core.context, so this package stays import-free.
"""
