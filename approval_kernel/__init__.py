"""
Approval Kernel

Role-gated, multi-stage document approval for payment orders, exit permits
and warehouse dispatch notes:
- Pure state machine shared by every document kind
- Mirror-image void workflow for rejected documents
- Deterministic role to capability resolution
- Conditional writes that detect concurrent approvals
"""

__version__ = "0.1.0"
