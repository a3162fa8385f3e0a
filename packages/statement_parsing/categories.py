"""Transaction category codes and prompt hints per country.

The taxonomy is flat (one level) and keyed by ISO country code. Unknown
countries fall back to the US list. ``other`` is always present and is the
fallback for anything the model returns outside the allow-list.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

DEFAULT_COUNTRY = "US"
FALLBACK_CATEGORY = "other"


@dataclass(frozen=True, slots=True)
class Category:
    code: str
    display_name: str


def _cats(*pairs: tuple[str, str]) -> tuple[Category, ...]:
    return tuple(Category(code=c, display_name=n) for c, n in pairs)


_SHARED_HEAD = (
    ("food_dining", "Food & Dining"),
    ("groceries", "Groceries"),
    ("shopping", "Shopping"),
)
_SHARED_TAIL = (
    ("entertainment", "Entertainment"),
    ("travel", "Travel"),
    ("healthcare", "Healthcare"),
    ("personal_care", "Personal Care & Fitness"),
    ("gifts", "Gifts & Flowers"),
    ("education", "Education"),
    ("insurance", "Insurance"),
    ("investment", "Investment"),
    ("software", "Software & Services"),
    ("transfer", "Transfer"),
    ("atm_withdrawal", "ATM Withdrawal"),
)
_SHARED_INCOME = (
    ("refund", "Refund"),
    ("cashback", "Cashback / Rewards"),
    ("tax", "Tax Payment"),
)
_SHARED_END = (
    ("charity", "Charity / Donations"),
    ("dividend", "Dividend"),
    ("interest", "Interest"),
    ("credit_card_payment", "Credit Card Payment"),
    ("bank_charges", "Bank Charges / Fees"),
    ("forex", "Foreign Exchange"),
    (FALLBACK_CATEGORY, "Other"),
)

TRANSACTION_CATEGORIES: dict[str, tuple[Category, ...]] = {
    "IN": _cats(
        *_SHARED_HEAD,
        ("utilities", "Utilities (Electricity, Water, Gas)"),
        ("mobile_internet", "Mobile & Internet"),
        ("emi", "EMI / Loan Payment"),
        ("rent", "Rent"),
        ("fuel", "Fuel"),
        *_SHARED_TAIL,
        ("salary", "Salary / Income"),
        *_SHARED_INCOME,
        ("government", "Government Services"),
        *_SHARED_END,
    ),
    "US": _cats(
        *_SHARED_HEAD,
        ("utilities", "Utilities"),
        ("phone_internet", "Phone & Internet"),
        ("mortgage", "Mortgage"),
        ("rent", "Rent"),
        ("gas", "Gas / Fuel"),
        *_SHARED_TAIL,
        ("paycheck", "Paycheck / Income"),
        *_SHARED_INCOME,
        ("childcare", "Childcare"),
        ("pet", "Pet Expenses"),
        *_SHARED_END,
    ),
}

_COUNTRY_HINTS: dict[str, str] = {
    "IN": (
        "CATEGORY DETECTION (India):\n"
        "- Salary arrives via NEFT/RTGS/IMPS from an employer, never via UPI; UPI credits "
        "from individuals are transfer even when recurring\n"
        "- Swiggy, Zomato, restaurants = food_dining; BigBasket, Zepto, Blinkit, DMart = "
        "groceries\n"
        "- Amazon, Flipkart, Myntra, Ajio = shopping; Netflix, Hotstar, Spotify = "
        "entertainment\n"
        "- CRED or card bill payments = credit_card_payment; ATM/CWDR = atm_withdrawal\n"
        "- BESCOM, Tata Power, gas, water = utilities; Airtel, Jio, Vi, broadband = "
        "mobile_internet\n"
        "- Zerodha, Groww, SIP, mutual fund = investment; LIC, insurance premium = insurance\n"
        "- EMI, loan payment, Bajaj Finance = emi; petrol/diesel stations = fuel"
    ),
    "US": (
        "CATEGORY DETECTION (USA):\n"
        "- Regular same-amount payroll/direct deposits = paycheck\n"
        "- Rent, landlord, property management = rent; home loan servicers = mortgage\n"
        "- DoorDash, Uber Eats, restaurants = food_dining; Whole Foods, Kroger = groceries\n"
        "- Amazon, Target, Costco, Best Buy = shopping; Netflix, Spotify, Hulu = entertainment\n"
        "- Card payments = credit_card_payment; Venmo/Zelle/Cash App to people = transfer\n"
        "- PG&E, ConEd, water = utilities; Verizon, AT&T, Comcast = phone_internet\n"
        "- Fidelity, Schwab, Vanguard, 401k, IRA = investment; Geico, State Farm = insurance\n"
        "- Shell, Chevron, Exxon = gas; daycare, nanny = childcare; Petco, vet = pet"
    ),
}

_ACCOUNT_TYPE_HINTS: dict[str, str] = {
    "credit_card": (
        "CREDIT CARD STATEMENT CONTEXT:\n"
        "- Credits are refunds, cashback, rewards or bill payments received, never salary\n"
        '- "PAYMENT RECEIVED" / "PAYMENT THANK YOU" = credit_card_payment\n'
        "- Debits are purchases made with the card"
    ),
    "savings_account": (
        "BANK ACCOUNT (SAVINGS) CONTEXT:\n"
        "- Large regular same-amount credits are likely salary\n"
        "- Debits to card issuers = credit_card_payment; transfers to individuals = transfer"
    ),
    "current_account": (
        "BANK ACCOUNT (CURRENT) CONTEXT:\n"
        "- Large regular credits may be salary or business income\n"
        "- Debits to card issuers = credit_card_payment"
    ),
    "checking_account": (
        "BANK ACCOUNT (CHECKING) CONTEXT:\n"
        "- Large regular credits may be a paycheck or business income\n"
        "- Debits to card issuers = credit_card_payment"
    ),
}


def _country(country: str | None) -> str:
    code = (country or DEFAULT_COUNTRY).strip().upper()
    return code if code in TRANSACTION_CATEGORIES else DEFAULT_COUNTRY


def categories_for_country(country: str | None) -> tuple[Category, ...]:
    return TRANSACTION_CATEGORIES[_country(country)]


def allowed_codes(country: str | None) -> tuple[str, ...]:
    return tuple(c.code for c in categories_for_country(country))


def country_hints(country: str | None) -> str:
    return _COUNTRY_HINTS[_country(country)]


def account_type_hint(account_type: str | None) -> str | None:
    if not account_type:
        return None
    return _ACCOUNT_TYPE_HINTS.get(account_type.strip().lower())


def render_category_list(categories: Sequence[Category]) -> str:
    return "\n".join(f"- {c.code}: {c.display_name}" for c in categories)


__all__ = [
    "Category",
    "DEFAULT_COUNTRY",
    "FALLBACK_CATEGORY",
    "TRANSACTION_CATEGORIES",
    "account_type_hint",
    "allowed_codes",
    "categories_for_country",
    "country_hints",
    "render_category_list",
]
