# Services module

from stockcore.services.unit_conversion import (
    ConversionMethod,
    ConversionResult,
    UnitConversionError,
    convert,
    convert_units,
)
from stockcore.services.recipe_lookup import find_active_recipe
from stockcore.services.transaction_log import TransactionLog, build_reference_id
from stockcore.services.stock_deduction_service import (
    StockDeductionService,
    get_stock_deduction_service,
)
