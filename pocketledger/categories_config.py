# pocketledger/categories_config.py
# Central knobs: default category lists, sheet defaults, reconciliation thresholds.

# --------------------------
# Default category lists (users can add / rename / reorder via the API)
# --------------------------
DEFAULT_EXPENSE_CATEGORIES = [
    "Family Allowance", "Lunch", "Entertainment", "Dinner", "Balancing Figure",
    "Subscription (HK Career)", "Transportation", "Clothing", "My Treat",
    "Snacks and Coffee", "Donation", "Sports", "Others", "Breakfast",
    "Personal Care", "Health", "Personal Investment", "Entertainment Subscription", "Traveling",
]

DEFAULT_INCOME_CATEGORIES = [
    "Employment", "Side Hustle", "Dividends", "My Sweat Money", "Capital Gain (Stock)",
]

DEFAULT_INVESTMENT_CATEGORIES = [
    "Long-Term Stock", "SPY", "Day Trading Stocks", "Retirement Account", "Emergency Fund",
]

TRANSACTION_TYPES = ("expense", "income", "investment")

# Where rows come from
SOURCE_SHORTCUT = "IOS shortcut"
SOURCE_APP = "app input"
SOURCE_PDF = "PDF file"

# --------------------------
# Remote sheet defaults
# --------------------------
DEFAULT_SHEET_ID = "1BScmi-6DI1Cj7VRMaKdpSVYyo2ibtHfkV3icz1OYBdM"
DEFAULT_GID = "78662654"

# Rows per addBulk POST to the Apps Script endpoint
BULK_BATCH_SIZE = 50

# Legacy single monthly budget figure
DEFAULT_MONTHLY_BUDGET = 3000

# --------------------------
# Reconciliation thresholds
# --------------------------
AMOUNT_EPSILON = 0.01
MATCH_WINDOW_DAYS = 10

# --------------------------
# Statement uploads
# --------------------------
MAX_UPLOAD_BYTES = 4 * 1024 * 1024
GEMINI_MODEL = "gemini-2.5-flash"

# Chart buckets
TOP_N = 5
OTHERS_LABEL = "Others"


def get_transaction_type(category, income_categories, investment_categories) -> str:
    if category in (income_categories or []):
        return "income"
    if category in (investment_categories or []):
        return "investment"
    return "expense"


def categories_key(tx_type: str) -> str:
    """'income' -> 'income_categories' (Settings attribute name)."""
    if tx_type not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown transaction type: {tx_type!r}")
    return f"{tx_type}_categories"
