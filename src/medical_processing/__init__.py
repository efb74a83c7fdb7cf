# ============================================================================
# src/medical_processing/__init__.py
# ============================================================================
"""
Medical document processing.

Entry point: core.orchestrator.ProcessingController
"""
