"""Status and type vocabularies shared by models and services."""

# =============================================================================
# INVENTORY MOVEMENTS
# =============================================================================

MOVEMENT_PURCHASE = "PURCHASE"
MOVEMENT_SALE = "SALE"
MOVEMENT_RETURN_IN = "RETURN_IN"
MOVEMENT_RETURN_OUT = "RETURN_OUT"
MOVEMENT_LOSS = "LOSS"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_INITIAL = "INITIAL"
MOVEMENT_TRANSFER = "TRANSFER"

MOVEMENT_TYPES = (
    MOVEMENT_PURCHASE,
    MOVEMENT_SALE,
    MOVEMENT_RETURN_IN,
    MOVEMENT_RETURN_OUT,
    MOVEMENT_LOSS,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_INITIAL,
    MOVEMENT_TRANSFER,
)

# Direction of every movement type. Callers always send a positive quantity.
# ADJUSTMENT is a counted surplus (shortfalls are LOSS); TRANSFER is stock
# leaving this location.
MOVEMENT_SIGNS = {
    MOVEMENT_PURCHASE: 1,
    MOVEMENT_RETURN_IN: 1,
    MOVEMENT_INITIAL: 1,
    MOVEMENT_ADJUSTMENT: 1,
    MOVEMENT_SALE: -1,
    MOVEMENT_RETURN_OUT: -1,
    MOVEMENT_LOSS: -1,
    MOVEMENT_TRANSFER: -1,
}

if set(MOVEMENT_SIGNS) != set(MOVEMENT_TYPES):
    raise RuntimeError("MOVEMENT_SIGNS must cover every movement type")

# =============================================================================
# SALES
# =============================================================================

FLOW_DRAFT = "DRAFT"
FLOW_COMPLETED = "COMPLETED"
FLOW_CANCELLED = "CANCELLED"

SALE_PENDING = "PENDING"
SALE_PARTIAL = "PARTIAL"
SALE_COMPLETED = "COMPLETED"
SALE_CANCELLED = "CANCELLED"

# =============================================================================
# PURCHASES
# =============================================================================

PURCHASE_PENDING = "PENDING"
PURCHASE_PARTIAL = "PARTIAL"
PURCHASE_PAID = "PAID"
PURCHASE_CANCELLED = "CANCELLED"

DELIVERY_PENDING = "PENDING"
DELIVERY_RECEIVED = "RECEIVED"
DELIVERY_CANCELLED = "CANCELLED"

# =============================================================================
# PAYMENTS
# =============================================================================

METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_TRANSFER = "TRANSFER"
METHOD_CHECK = "CHECK"
# Returned goods applied against an open balance; system generated only
METHOD_RETURN_CREDIT = "RETURN_CREDIT"

PAYMENT_METHODS = [METHOD_CASH, METHOD_CARD, METHOD_TRANSFER, METHOD_CHECK]

# =============================================================================
# CASH SHIFTS
# =============================================================================

SHIFT_OPEN = "OPEN"
SHIFT_CLOSED = "CLOSED"
SHIFT_AUDIT_REQUIRED = "AUDIT_REQUIRED"

CASH_MANUAL_ADD = "MANUAL_ADD"
CASH_MANUAL_WITHDRAW = "MANUAL_WITHDRAW"
CASH_SALE_INCOME = "SALE_INCOME"
CASH_CREDIT_PAYMENT = "CREDIT_PAYMENT"
CASH_PURCHASE_PAYMENT = "PURCHASE_PAYMENT"
CASH_EXPENSE = "EXPENSE"
CASH_REFUND_IN = "REFUND_IN"
CASH_REFUND_OUT = "REFUND_OUT"

CASH_INFLOW_TYPES = frozenset({CASH_MANUAL_ADD, CASH_SALE_INCOME, CASH_CREDIT_PAYMENT, CASH_REFUND_IN})
CASH_OUTFLOW_TYPES = frozenset({CASH_MANUAL_WITHDRAW, CASH_EXPENSE, CASH_PURCHASE_PAYMENT, CASH_REFUND_OUT})
CASH_TRANSACTION_TYPES = CASH_INFLOW_TYPES | CASH_OUTFLOW_TYPES

# Only these may be registered by hand; the rest are written by the engines
CASH_MANUAL_TYPES = frozenset({CASH_MANUAL_ADD, CASH_MANUAL_WITHDRAW, CASH_EXPENSE})
