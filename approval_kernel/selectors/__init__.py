"""Selectors for the approval kernel (read side)."""

from approval_kernel.selectors.document_selector import DocumentSelector

__all__ = ["DocumentSelector"]
