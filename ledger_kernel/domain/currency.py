"""Currency -- ISO 4217 registry, minor units, and base-currency reconciliation."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar

# Maximum allowed drift between an account-currency amount and the
# transaction-currency amount multiplied by its exchange rate.
RECONCILIATION_EPSILON = Decimal("0.005")


@dataclass(frozen=True)
class CurrencyInfo:
    """Minor-unit information for a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def minor_unit(self) -> Decimal:
        """Smallest representable amount (0.01 for USD, 1 for JPY)."""
        return Decimal(1).scaleb(-self.decimal_places)

    @property
    def quantize_string(self) -> str:
        """String for Decimal.quantize() to round to this currency's precision."""
        if self.decimal_places == 0:
            return "1"
        return "0." + "0" * self.decimal_places


class CurrencyRegistry:
    """Registry of supported ISO 4217 currencies and their minor units."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        # Currencies the ledger is provisioned with
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "MYR": CurrencyInfo("MYR", 2, "Malaysian Ringgit"),
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "AUD": CurrencyInfo("AUD", 2, "Australian Dollar"),
        "SGD": CurrencyInfo("SGD", 2, "Singapore Dollar"),
        "CNY": CurrencyInfo("CNY", 2, "Chinese Yuan"),
        "INR": CurrencyInfo("INR", 2, "Indian Rupee"),
        # Regional currencies used by localization packs
        "AED": CurrencyInfo("AED", 2, "UAE Dirham"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "HKD": CurrencyInfo("HKD", 2, "Hong Kong Dollar"),
        "IDR": CurrencyInfo("IDR", 2, "Indonesian Rupiah"),
        "NZD": CurrencyInfo("NZD", 2, "New Zealand Dollar"),
        "PHP": CurrencyInfo("PHP", 2, "Philippine Peso"),
        "SAR": CurrencyInfo("SAR", 2, "Saudi Riyal"),
        "THB": CurrencyInfo("THB", 2, "Thai Baht"),
        "KRW": CurrencyInfo("KRW", 0, "South Korean Won"),
        "VND": CurrencyInfo("VND", 0, "Vietnamese Dong"),
        "BHD": CurrencyInfo("BHD", 3, "Bahraini Dinar"),
        "KWD": CurrencyInfo("KWD", 3, "Kuwaiti Dinar"),
        "OMR": CurrencyInfo("OMR", 3, "Omani Rial"),
    }

    DEFAULT_DECIMAL_PLACES: ClassVar[int] = 2

    @classmethod
    def is_valid(cls, code: str) -> bool:
        """Check if a currency code is a supported ISO 4217 code."""
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        if not code or not isinstance(code, str):
            return None
        return cls._CURRENCIES.get(code.upper().strip())

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        info = cls.get_info(code)
        return info.decimal_places if info else cls.DEFAULT_DECIMAL_PLACES

    @classmethod
    def get_minor_unit(cls, code: str) -> Decimal:
        return Decimal(1).scaleb(-cls.get_decimal_places(code))

    @classmethod
    def validate(cls, code: str) -> str:
        """Validate and normalize a currency code."""
        if not code or not isinstance(code, str):
            raise ValueError(f"Invalid currency code: {code!r}")

        normalized = code.upper().strip()
        if len(normalized) != 3:
            raise ValueError(f"Currency code must be 3 characters: {code!r}")
        if normalized not in cls._CURRENCIES:
            raise ValueError(f"Unsupported ISO 4217 currency code: {code!r}")
        return normalized

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        return frozenset(cls._CURRENCIES.keys())


def to_minor_unit(amount: Decimal, currency: str) -> Decimal:
    """Quantize ``amount`` to the minor unit of ``currency`` (ROUND_HALF_UP)."""
    return amount.quantize(
        CurrencyRegistry.get_minor_unit(currency), rounding=ROUND_HALF_UP
    )


def convert_to_base(amount: Decimal, rate: Decimal, base_currency: str) -> Decimal:
    """Convert a transaction amount into the base currency, rounded to its minor unit."""
    return to_minor_unit(amount * rate, base_currency)


def amounts_reconcile(
    account_amount: Decimal,
    transaction_amount: Decimal,
    rate: Decimal,
    epsilon: Decimal = RECONCILIATION_EPSILON,
) -> bool:
    """True when ``account_amount`` equals ``transaction_amount * rate`` within epsilon."""
    return abs(account_amount - transaction_amount * rate) <= epsilon
