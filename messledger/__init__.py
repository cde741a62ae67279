"""
Mess Ledger - Source Package

Real-time settlement engine for a small residential mess (guest house).
Participants record meals, the manager records costs and deposits, and
every participant's balance for the month is kept live as records change.

DESIGN PRINCIPLES:
1. The settlement is always recomputed from scratch, never patched
2. A summary is delivered fully formed or not at all
3. One failing record stream never stops the others
4. Every write is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Mess Ledger Team"
