"""
Loan Amortization Engine

Installment schedule generation, payment reconciliation and safe schedule
regeneration for clinic loans. All money arithmetic uses Decimal.
"""

__version__ = "1.0.0"
