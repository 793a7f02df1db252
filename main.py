import logging
import re
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Optional

from bson import ObjectId
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import database
from config import Settings, settings
from errors import NotFound, RentalError, StoreUnavailable, ValidationError
from rental import RentalEngine
from schemas import Book as BookSchema, IssueRequest, ReturnRequest, Transaction as TransactionSchema, User as UserSchema
from stores import CatalogStore, LedgerStore, UserStore, to_object_id

logger = logging.getLogger(__name__)

# ----------------------
# Utility helpers
# ----------------------

def parse_id(id_str: str, label: str) -> ObjectId:
    oid = to_object_id(id_str)
    if oid is None:
        raise ValidationError(f"Invalid {label} format")
    return oid

def serialize(doc: dict) -> dict:
    if not doc:
        return doc
    d = {**doc}
    if d.get("_id") is not None:
        d["id"] = str(d.pop("_id"))
    for k, v in list(d.items()):
        # Convert ObjectId references and datetime/date to JSON-friendly strings
        if isinstance(v, ObjectId):
            d[k] = str(v)
        elif isinstance(v, (datetime, date)):
            d[k] = v.isoformat()
    d.pop("password", None)
    return d

def error_body(code: str, message: str) -> dict:
    return {"error": code, "message": message}

def parse_rent_bound(raw: Optional[str], name: str) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"Invalid {name} value.")

# ----------------------
# Wiring
# ----------------------

def attach_database(app: FastAPI, db: Database) -> None:
    app.state.db = db
    app.state.catalog = CatalogStore(db)
    app.state.users = UserStore(db)
    app.state.ledger = LedgerStore(db)
    app.state.engine = RentalEngine(app.state.catalog, app.state.users, app.state.ledger)

def get_state(request: Request, name: str):
    """An object wired by attach_database; 503 until the database is attached."""
    if getattr(request.app.state, "db", None) is None:
        raise StoreUnavailable()
    return getattr(request.app.state, name)

def get_engine(request: Request) -> RentalEngine:
    return get_state(request, "engine")

def get_catalog(request: Request) -> CatalogStore:
    return get_state(request, "catalog")

def get_users(request: Request) -> UserStore:
    return get_state(request, "users")


def create_app(db: Optional[Database] = None, app_settings: Optional[Settings] = None) -> FastAPI:
    """Build the API. A ready database handle skips connecting in the lifespan."""
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "db", None) is None:
            owned = database.connect(app_settings)
            database.ensure_indexes(owned)
            attach_database(app, owned)
        try:
            yield
        finally:
            database.close(owned)

    app = FastAPI(title="Bookstore Rental API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if db is not None:
        attach_database(app, db)

    @app.exception_handler(RentalError)
    async def rental_error_handler(request: Request, exc: RentalError):
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err["loc"] if p != "body") for err in exc.errors()]
        message = "Missing or invalid fields: " + (", ".join(f for f in fields if f) or "request body")
        return JSONResponse(status_code=400, content=error_body(ValidationError.code, message))

    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:
    # ----------------------
    # Health & Schema
    # ----------------------

    @app.get("/")
    def read_root():
        return {
            "success": True,
            "message": "Server is working fine",
            "endpoints": [
                {"method": "GET", "path": "/api/books", "description": "List books, filtered by name, category, rentMin, rentMax."},
                {"method": "GET", "path": "/api/books/{id}", "description": "Retrieve a single book."},
                {"method": "GET", "path": "/api/user", "description": "List users."},
                {"method": "POST", "path": "/api/transactions", "description": "Issue a book: {bookId, userId}."},
                {"method": "GET", "path": "/api/transactions/{id}", "description": "Retrieve a transaction."},
                {"method": "PUT", "path": "/api/transactions/{id}/return", "description": "Return a book: {returnDate?}."},
            ],
        }

    @app.get("/test")
    def test_database(request: Request):
        response = {
            "backend": "Running",
            "database": "Not Available",
            "database_name": None,
            "connection_status": "Not Connected",
            "collections": [],
        }
        db = getattr(request.app.state, "db", None)
        if db is None:
            return response
        response["database_name"] = db.name
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "Connected & Working"
            response["connection_status"] = "Connected"
        except Exception as e:
            logger.warning(f"Database probe failed: {e}")
            response["database"] = "Connected but Error"
        return response

    @app.get("/schema")
    def get_schema():
        return {
            "book": BookSchema.model_json_schema(by_alias=True),
            "user": UserSchema.model_json_schema(by_alias=True),
            "transaction": TransactionSchema.model_json_schema(by_alias=True),
        }

    # ----------------------
    # Books Endpoints
    # ----------------------

    @app.get("/api/books")
    def list_books(
        name: Optional[str] = Query(None, description="Case-insensitive name match"),
        category: Optional[str] = Query(None, description="Case-insensitive category match"),
        rent_min: Optional[str] = Query(None, alias="rentMin"),
        rent_max: Optional[str] = Query(None, alias="rentMax"),
        catalog: CatalogStore = Depends(get_catalog),
    ):
        filter_dict = {}
        if name:
            filter_dict["name"] = {"$regex": re.escape(name), "$options": "i"}
        if category:
            filter_dict["category"] = {"$regex": re.escape(category), "$options": "i"}
        low = parse_rent_bound(rent_min, "rentMin")
        high = parse_rent_bound(rent_max, "rentMax")
        if low is not None or high is not None:
            filter_dict["rentPerDay"] = {}
            if low is not None:
                filter_dict["rentPerDay"]["$gte"] = low
            if high is not None:
                filter_dict["rentPerDay"]["$lte"] = high
        books = [serialize(b) for b in catalog.find_books(filter_dict)]
        return {"totalBooks": len(books), "books": books}

    @app.get("/api/books/{book_id}")
    def get_book(book_id: str, catalog: CatalogStore = Depends(get_catalog)):
        book = catalog.find_book_by_id(parse_id(book_id, "book id"))
        if not book:
            raise NotFound("Book not found")
        return serialize(book)

    # ----------------------
    # Users Endpoints
    # ----------------------

    @app.get("/api/user")
    def list_users(users: UserStore = Depends(get_users)):
        docs = [serialize(u) for u in users.list_users()]
        return {"totalUsers": len(docs), "users": docs}

    # ----------------------
    # Transactions Endpoints
    # ----------------------

    @app.post("/api/transactions", status_code=201)
    def issue_book(payload: IssueRequest, engine: RentalEngine = Depends(get_engine)):
        book_id = parse_id(payload.book_id, "bookId")
        user_id = parse_id(payload.user_id, "userId")
        return serialize(engine.issue_book(book_id, user_id))

    @app.get("/api/transactions/{transaction_id}")
    def get_transaction(transaction_id: str, engine: RentalEngine = Depends(get_engine)):
        return serialize(engine.get_transaction(parse_id(transaction_id, "transaction id")))

    @app.put("/api/transactions/{transaction_id}/return")
    def return_book(
        transaction_id: str,
        payload: Optional[ReturnRequest] = None,
        engine: RentalEngine = Depends(get_engine),
    ):
        return_date = payload.return_date if payload else None
        transaction = engine.return_book(parse_id(transaction_id, "transaction id"), return_date)
        return serialize(transaction)


app = create_app()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host=settings.host, port=settings.port)
