# =============================================================================
# FINPLAN ENGINE - CALCULATION PACKAGE
# =============================================================================
# This package contains the calculation engines for business plan projections.
#
# Modules:
# - inputs: Typed project inputs (products, sales, opex, capex, loans)
# - assumptions: YAML loading, settings merge and input validation
# - amortization: Loan annuity and straight-line depreciation
# - projection: Month-by-month financial statement series
# - valuation: NPV, IRR, payback, DRCI and ratio analysis
# - risk: Risk indicators and dashboard alerts
# - scenario: Scenario runs, comparison, sensitivity and stress tests
# - store: Persistence of monthly outputs
# - service: Calculation service (trigger, status, delete)
# - validation_report: Model validation rules and report
# =============================================================================

__version__ = "0.1.0"
