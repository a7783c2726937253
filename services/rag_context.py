"""
Context assembly for the assistant.

Every chat turn gets a fresh bundle built from the caller's own rows: books,
active categories, the most recent active expenses, plus a fixed set of rule
documents that teach the model the schema conventions (valid currencies,
payment methods, required columns, response formats, SQL scoping). Nothing is
cached between requests.
"""
from typing import Any, Optional

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import RAG_RECENT_EXPENSES, SUGGESTION_RECENT_EXPENSES
from db.models import Book, Category, Expense
from services.currency import PAYMENT_METHODS, VALID_CURRENCIES


REQUIRED_FIELDS = {
    "books": ["name", "user_id", "currency"],
    "categories": ["name", "book_id"],
    "expenses": ["amount", "date", "category_id", "payment_method"],
}


class ValidationRules(BaseModel):
    currencies: list[str] = Field(default_factory=lambda: list(VALID_CURRENCIES))
    payment_methods: list[str] = Field(default_factory=lambda: list(PAYMENT_METHODS))
    required_fields: dict[str, list[str]] = Field(
        default_factory=lambda: {k: list(v) for k, v in REQUIRED_FIELDS.items()}
    )


class RagDocument(BaseModel):
    id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class RagContext(BaseModel):
    relevant_docs: list[RagDocument] = Field(default_factory=list)
    user_context: dict[str, Any] = Field(default_factory=dict)
    query: str = ""
    validation_rules: Optional[ValidationRules] = None

    @property
    def is_empty(self) -> bool:
        return not self.relevant_docs and not self.user_context


VALIDATION_RULES = ValidationRules()


# ------------------------------------------------------------------
# Rule documents (static, identical for every user)
# ------------------------------------------------------------------
def validation_documents(rules: ValidationRules = VALIDATION_RULES) -> list[RagDocument]:
    return [
        RagDocument(
            id="validation-currencies",
            content=(
                f"VALID CURRENCIES: {', '.join(rules.currencies)}. These are the only valid "
                "ISO 4217 currency codes you can use when generating SQL queries for books. "
                'Do NOT use invalid codes like "LB" or abbreviations.'
            ),
            metadata={"type": "validation", "table": "books", "field": "currency"},
        ),
        RagDocument(
            id="validation-payment-methods",
            content=(
                f"VALID PAYMENT METHODS: {', '.join(rules.payment_methods)}. These are the only "
                "valid payment methods you can use when generating SQL queries for expenses. "
                "Do NOT use abbreviations or variations."
            ),
            metadata={"type": "validation", "table": "expenses", "field": "payment_method"},
        ),
        RagDocument(
            id="validation-required-fields",
            content=(
                "REQUIRED FIELDS: Books need "
                + ", ".join(rules.required_fields["books"])
                + ". Categories need "
                + ", ".join(rules.required_fields["categories"])
                + ". Expenses need "
                + ", ".join(rules.required_fields["expenses"])
                + ". Always include these when generating INSERT queries."
            ),
            metadata={"type": "validation", "rule": "required-fields"},
        ),
        RagDocument(
            id="response-format-insert",
            content=(
                "RESPONSE FORMAT FOR INSERT OPERATIONS: When generating SQL INSERT queries, the "
                "system will extract and display only the record values. For example: "
                '"✅ Successfully added: amount: 300.00, date: 2024-05-01, description: Lunch, '
                'category: Groceries, payment_method: Other". The response should be concise and '
                "show only the added record values without row counts or query type information."
            ),
            metadata={"type": "response-format", "operation": "insert"},
        ),
        RagDocument(
            id="response-format-select",
            content=(
                "RESPONSE FORMAT FOR SELECT OPERATIONS: When executing SELECT queries, the system "
                "displays results as: 📊 Found X record(s): followed by one line per row. "
                "Keep responses clean and data-focused."
            ),
            metadata={"type": "response-format", "operation": "select"},
        ),
        RagDocument(
            id="response-format-user-preference",
            content=(
                "USER PREFERRED RESPONSE FORMAT: The user expects responses that show NAMES instead "
                "of IDs and use natural language, not JSON. For example: "
                '"✅ Successfully added: $300.00 expense to Groceries category in B1 book" instead '
                "of showing raw database IDs. Always use book names, category names and "
                "user-friendly descriptions. Avoid showing UUIDs, raw column names or JSON "
                "structures. YOU must resolve IDs to names using the user's data from the context."
            ),
            metadata={"type": "response-format", "user_preference": True},
        ),
        RagDocument(
            id="response-format-examples",
            content=(
                "RESPONSE FORMAT EXAMPLES:\n"
                '- GOOD: "✅ Successfully added: $300.00 expense to Groceries category in B1 book"\n'
                '- GOOD: "📊 Found 1 book: B1 with currency LBP"\n'
                '- GOOD: "✅ Successfully added: C5 category to B1 book"\n'
                "- GOOD: \"📊 Found 1 expense: $50.00 for 'Weekly groceries' in Groceries category in B1 book\"\n"
                '- BAD: "✅ Successfully added: amount: 300.00, category_id: 43108e76-f1ed-11f0-9c01-20bd1d505f09"\n'
                "- BAD: Showing raw UUIDs like 43108e76-f1ed-11f0-9c01-20bd1d505f09\n"
                '- BAD: Showing column names like "category_id", "book_id", "is_disabled"\n'
                "\n"
                "SQL QUERY GUIDELINES:\n"
                "- For expenses: JOIN through categories to books for user filtering\n"
                "- Example: SELECT SUM(e.amount) FROM expenses e JOIN categories c ON e.category_id = c.id "
                "JOIN books b ON c.book_id = b.id WHERE b.user_id = 'user-id'\n"
                "- For categories: JOIN through books for user filtering\n"
                "- Example: SELECT c.* FROM categories c JOIN books b ON c.book_id = b.id WHERE b.user_id = 'user-id'\n"
                "- For books: direct WHERE clause on user_id\n"
                "- Example: SELECT * FROM books WHERE user_id = 'user-id'\n"
                "\n"
                "CRITICAL: resolve IDs to names using the user context provided. Never show raw "
                "database IDs or column names."
            ),
            metadata={"type": "response-format", "examples": True},
        ),
        RagDocument(
            id="response-format-natural-language",
            content=(
                "NATURAL LANGUAGE REQUIREMENT: Responses must be conversational and informative. "
                "Never output raw JSON arrays, database records or code blocks as the main "
                "response. Use complete sentences and explain what was done or found in plain "
                'English. For example: "I found 1 book named B1 with currency LBP".'
            ),
            metadata={"type": "response-format", "natural_language": True},
        ),
        RagDocument(
            id="ai-response-formatting-responsibility",
            content=(
                "AI RESPONSE FORMATTING RESPONSIBILITY: When you generate SQL queries, you are also "
                "responsible for how the final response reads. The system executes your SQL and "
                "shows results, but YOU must make sure the reply uses names instead of IDs. If you "
                "see a book_id in the context, refer to the book by its name."
            ),
            metadata={"type": "response-format", "ai_responsibility": True},
        ),
        RagDocument(
            id="sql-query-generation-rules",
            content=(
                "SQL QUERY GENERATION RULES: SELECT queries for user data MUST filter by user_id. "
                "The expenses table has no user_id column, JOIN through categories to books. "
                "Example: SELECT SUM(e.amount) FROM expenses e JOIN categories c ON e.category_id = c.id "
                "JOIN books b ON c.book_id = b.id WHERE b.user_id = 'user-id'. For categories: "
                "SELECT COUNT(*) FROM categories c JOIN books b ON c.book_id = b.id WHERE "
                "b.user_id = 'user-id'. For books: SELECT * FROM books WHERE user_id = 'user-id'. "
                "The system scopes simple queries itself, but you should generate correct queries "
                "from the start."
            ),
            metadata={"type": "sql-generation", "rules": True},
        ),
        RagDocument(
            id="duplicate-book-validation",
            content=(
                "DUPLICATE BOOK VALIDATION: Before creating a new book, check whether a book with the "
                "same name already exists for the user. The system refuses duplicate book names. If "
                'the book exists, respond with "Book already exists" instead of generating SQL. '
                "Always check the YOUR BOOKS section first."
            ),
            metadata={"type": "validation", "rule": "duplicate-book"},
        ),
    ]


# ------------------------------------------------------------------
# Loaders
# ------------------------------------------------------------------
async def load_user_books(db: AsyncSession, user_id: str) -> list[Book]:
    res = await db.execute(
        select(Book)
        .where(Book.user_id == user_id, Book.is_archived.is_(False))
        .order_by(Book.created_at)
    )
    return list(res.scalars().all())


async def load_user_categories(db: AsyncSession, books: list[Book]) -> list[Category]:
    book_ids = [b.id for b in books]
    if not book_ids:
        return []

    res = await db.execute(
        select(Category)
        .options(selectinload(Category.book))
        .where(Category.book_id.in_(book_ids), Category.is_disabled.is_(False))
        .order_by(Category.name)
    )
    return list(res.scalars().all())


async def load_recent_expenses(
    db: AsyncSession,
    categories: list[Category],
    limit: int,
) -> list[Expense]:
    category_ids = [c.id for c in categories]
    if not category_ids:
        return []

    res = await db.execute(
        select(Expense)
        .options(selectinload(Expense.category))
        .where(Expense.category_id.in_(category_ids), Expense.is_disabled.is_(False))
        .order_by(Expense.date.desc(), Expense.created_at.desc())
        .limit(limit)
    )
    return list(res.scalars().all())


def spending_by_category(expenses: list[Expense]) -> dict[str, float]:
    breakdown: dict[str, float] = {}
    for e in expenses:
        name = e.category.name if e.category else "Uncategorized"
        breakdown[name] = breakdown.get(name, 0.0) + e.amount
    return breakdown


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------
async def get_context(db: AsyncSession, user_id: str, query: str) -> RagContext:
    """
    Build the per-request context bundle for ``user_id``.

    Failures never propagate: the error is logged and an empty context
    (no documents, no user data) is returned so the chat can still answer.
    """
    try:
        books = await load_user_books(db, user_id)
        categories = await load_user_categories(db, books)
        expenses = await load_recent_expenses(db, categories, RAG_RECENT_EXPENSES)

        total_spending = sum(e.amount for e in expenses)
        avg_expense = total_spending / len(expenses) if expenses else 0.0
        breakdown = spending_by_category(expenses)

        summary_docs = [
            RagDocument(
                id="expenses-summary",
                content=(
                    f"Recent expenses: {len(expenses)} items, total spending: "
                    f"${total_spending:.2f}, average: ${avg_expense:.2f}"
                ),
                metadata={"type": "summary", "count": len(expenses)},
            ),
            RagDocument(
                id="category-breakdown",
                content="Category breakdown: " + ", ".join(
                    f"{name}: {total:.2f}" for name, total in breakdown.items()
                ),
                metadata={"type": "analysis"},
            ),
        ]

        return RagContext(
            relevant_docs=summary_docs + validation_documents(),
            user_context={
                "total_expenses": len(expenses),
                "total_spending": total_spending,
                "avg_expense": avg_expense,
                "categories": len(categories),
                "books": len(books),
                "category_breakdown": breakdown,
            },
            query=query,
            validation_rules=VALIDATION_RULES,
        )
    except Exception as e:
        logger.exception(f"RAG context error for user {user_id}: {e}")
        return RagContext(query=query)


def build_user_data_block(books: list[Book], categories: list[Category]) -> str:
    """The "YOUR BOOKS / YOUR CATEGORIES" listing injected into the SQL prompt."""
    lines = ["YOUR BOOKS:"]
    if books:
        for b in books:
            lines.append(f'- "{b.name}" (id: {b.id}, currency: {b.currency})')
    else:
        lines.append("- (no books yet)")

    book_names = {b.id: b.name for b in books}
    lines.append("")
    lines.append("YOUR CATEGORIES:")
    if categories:
        for c in categories:
            book_name = book_names.get(c.book_id, "unknown book")
            lines.append(f'- "{c.name}" (id: {c.id}, book: "{book_name}", book_id: {c.book_id})')
    else:
        lines.append("- (no categories yet)")

    return "\n".join(lines)


STARTER_TIPS = [
    "Start by adding your first expense to track your spending.",
    "Create categories to organize your expenses better.",
    "Set up a budget to monitor your spending limits.",
]

GENERIC_TIPS = [
    "Keep up the good work with your expense tracking!",
    "Consider setting up specific budget goals for different categories.",
    "Regular review of your expenses helps maintain financial awareness.",
]


def suggestions_from_expenses(expenses: list[Expense]) -> list[str]:
    if not expenses:
        return list(STARTER_TIPS)

    tips: list[str] = []
    total = sum(e.amount for e in expenses)
    avg = total / len(expenses)

    if avg > 100:
        tips.append(
            f"Your average expense (${avg:.2f}) is relatively high. "
            "Consider reviewing your spending categories."
        )

    small = sum(1 for e in expenses if e.amount < 10)
    if small > len(expenses) * 0.5:
        tips.append(
            "You have many small expenses. These can add up over time. "
            "Consider tracking them more carefully."
        )

    breakdown = spending_by_category(expenses)
    if breakdown:
        name, amount = max(breakdown.items(), key=lambda kv: kv[1])
        tips.append(f'Your highest spending category is "{name}" at ${amount:.2f}.')

    if total > 0:
        weekly = total / max(len(expenses) / 7, 1)
        tips.append(
            f"Based on your spending, a weekly budget of around ${weekly:.2f} might be appropriate."
        )

    return tips or list(GENERIC_TIPS)


async def get_expense_suggestions(db: AsyncSession, user_id: str) -> list[str]:
    try:
        books = await load_user_books(db, user_id)
        categories = await load_user_categories(db, books)
        expenses = await load_recent_expenses(db, categories, SUGGESTION_RECENT_EXPENSES)
        return suggestions_from_expenses(expenses)
    except Exception as e:
        logger.exception(f"Suggestion generation error for user {user_id}: {e}")
        return ["Add some expenses to get personalized suggestions."]
