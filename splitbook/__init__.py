"""
Splitbook - Source Package

Tracks shared group expenses: members upload receipts, the system splits
each receipt's cost among group members and keeps per-member totals.

DESIGN PRINCIPLES:
1. AI suggests → Human reviews → System verifies
2. Money is integer minor units, never floats
3. No silent corrections
4. Expense splits are replaced whole or not at all
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Splitbook Team"
