from .errors import (
    DomainError,
    ValidationError,
    NotFoundError,
    ClientNotFoundError,
    InvoiceNotFoundError,
    StockItemNotFoundError,
    CategoryNotFoundError,
    ExpenseNotFoundError,
    InsufficientStockError,
    OverpaymentError,
    ConstraintViolationError,
    DatabaseNotReadyError,
)
from .categories_repo import CategoriesRepo, Category
from .stock_repo import StockRepo, StockItem, StockMovement, LowStockAlert, StockValue, CategoryStockValue
from .clients_repo import ClientsRepo, Client, LedgerEntry, LedgerItem, BalanceAudit, ReceivablesSummary
from .invoices_repo import (
    InvoicesRepo,
    Invoice,
    InvoiceItem,
    InvoiceLine,
    PaymentAllocation,
    PaymentReceipt,
)
from .expenses_repo import ExpensesRepo, Expense, ExpenseCategory
from .settings_repo import SettingsRepo, AppSettings
from .reporting_repo import ReportingRepo, FinancialSummary, MonthlyEarnings
