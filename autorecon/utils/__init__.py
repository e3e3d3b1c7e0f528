from autorecon.utils.money import to_decimal, sum_amounts, quantize_amount
from autorecon.utils.date_utils import utc_now, hours_between, within_period

__all__ = ["to_decimal", "sum_amounts", "quantize_amount", "utc_now", "hours_between", "within_period"]
