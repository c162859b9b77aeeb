"""
Consignment Kernel

The financial/state core of a multi-level consignment distribution network:
- Batch and tranche lifecycle with no-regression state machines
- Trigger-driven settlements between sellers and the operator
- Optimistic version control on every financial mutation
- Exact Decimal arithmetic, rounded only at persistence boundaries
"""

__version__ = "0.1.0"
