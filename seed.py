"""
Populate the database with sample users, books and one open loan.

    python seed.py

Existing users, books and transactions are removed first.
"""

import logging
import sys
from datetime import datetime

import bcrypt
from pymongo.database import Database

import database
from config import settings
from errors import RentalError
from rental import RentalEngine
from schemas import Book, User
from stores import CatalogStore, LedgerStore, UserStore

logger = logging.getLogger(__name__)

USERS = [
    {"username": "alice", "email": "alice@example.com", "password": "password123", "role": "member"},
    {"username": "bob", "email": "bob@example.com", "password": "password123", "role": "member"},
    {"username": "charlie", "email": "charlie@example.com", "password": "password123", "role": "admin"},
    {"username": "diana", "email": "diana@example.com", "password": "password123", "role": "member"},
    {"username": "edward", "email": "edward@example.com", "password": "password123", "role": "member"},
]

BOOKS = [
    ("The Great Gatsby", "Fiction", 2.5, "F. Scott Fitzgerald", 1925),
    ("To Kill a Mockingbird", "Fiction", 3, "Harper Lee", 1960),
    ("1984", "Dystopian", 2, "George Orwell", 1949),
    ("A Brief History of Time", "Science", 4, "Stephen Hawking", 1988),
    ("The Art of Computer Programming", "Technology", 5, "Donald Knuth", 1968),
    ("The Catcher in the Rye", "Fiction", 2.5, "J.D. Salinger", 1951),
    ("Sapiens", "History", 3.5, "Yuval Noah Harari", 2011),
    ("The Lord of the Rings", "Fantasy", 4.5, "J.R.R. Tolkien", 1954),
    ("The Hobbit", "Fantasy", 3.5, "J.R.R. Tolkien", 1937),
    ("Clean Code", "Technology", 4, "Robert C. Martin", 2008),
    ("The Pragmatic Programmer", "Technology", 4.5, "Andrew Hunt", 1999),
    ("Harry Potter and the Sorcerer's Stone", "Fantasy", 3, "J.K. Rowling", 1997),
    ("The Alchemist", "Fiction", 2.5, "Paulo Coelho", 1988),
    ("The Lean Startup", "Business", 3.5, "Eric Ries", 2011),
    ("Thinking, Fast and Slow", "Psychology", 3, "Daniel Kahneman", 2011),
    ("Introduction to Algorithms", "Technology", 5, "Thomas H. Cormen", 1990),
    ("The Chronicles of Narnia", "Fantasy", 3.5, "C.S. Lewis", 1950),
    ("Pride and Prejudice", "Romance", 2.5, "Jane Austen", 1813),
    ("The Da Vinci Code", "Thriller", 3, "Dan Brown", 2003),
    ("Brave New World", "Dystopian", 2, "Aldous Huxley", 1932),
]

# Alice holds "1984" since New Year
OPEN_LOAN = ("alice", "1984", datetime(2024, 1, 1))


def hash_password(password: str, salt: bytes) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def run(db: Database) -> dict:
    """Reset the collections and insert the sample data; return the seeded ids."""
    for name in (database.USER, database.BOOK, database.TRANSACTION):
        db[name].delete_many({})
    logger.info("Cleared existing users, books and transactions")

    catalog, users, ledger = CatalogStore(db), UserStore(db), LedgerStore(db)

    salt = bcrypt.gensalt(rounds=10)
    user_ids = users.insert_users(
        User(**{**u, "password": hash_password(u["password"], salt)}) for u in USERS
    )
    logger.info(f"Inserted {len(user_ids)} users")

    book_ids = catalog.insert_books(
        Book(name=name, category=category, rent_per_day=rate, author=author, published_year=year)
        for name, category, rate, author, year in BOOKS
    )
    logger.info(f"Inserted {len(book_ids)} books")

    by_username = dict(zip((u["username"] for u in USERS), user_ids))
    by_name = dict(zip((b[0] for b in BOOKS), book_ids))
    username, book_name, issued_at = OPEN_LOAN
    engine = RentalEngine(catalog, users, ledger)
    transaction = engine.issue_book(by_name[book_name], by_username[username], issue_date=issued_at)
    logger.info(f"Issued '{book_name}' to {username}")

    return {"users": by_username, "books": by_name, "transaction": str(transaction["_id"])}


def main() -> int:
    logging.basicConfig(level=settings.log_level)
    db = database.connect(settings)
    try:
        database.ensure_indexes(db)
        run(db)
    except RentalError as e:
        logger.error(f"Seeding failed: {e}")
        return 1
    finally:
        database.close(db)
    logger.info("Seeding completed and connection closed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
