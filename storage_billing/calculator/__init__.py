"""
Calculator Module

Pure billing math: loading help, storage, access and early termination.
"""

from .calculations import (
    AccessChargesCalculation,
    BillingPreview,
    BreakdownItem,
    EarlyTerminationCalculation,
    LoadingHelpCalculation,
    PricingInputs,
    StorageChargesCalculation,
    StoragePeriod,
)
from .calculator import (
    BillingCalculator,
    billing_calculator,
    calculate_access_charges,
    calculate_early_termination_fee,
    calculate_loading_help,
    calculate_storage_charges,
    calculate_storage_period,
    from_minor_units,
    generate_billing_preview,
    to_minor_units,
    validate_pricing_inputs,
)

__all__ = [
    'AccessChargesCalculation',
    'BillingPreview',
    'BreakdownItem',
    'EarlyTerminationCalculation',
    'LoadingHelpCalculation',
    'PricingInputs',
    'StorageChargesCalculation',
    'StoragePeriod',
    'BillingCalculator',
    'billing_calculator',
    'calculate_access_charges',
    'calculate_early_termination_fee',
    'calculate_loading_help',
    'calculate_storage_charges',
    'calculate_storage_period',
    'from_minor_units',
    'generate_billing_preview',
    'to_minor_units',
    'validate_pricing_inputs',
]
