import hashlib
import math
import re
import secrets
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import quote

from bson import ObjectId
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from loguru import logger
from passlib.context import CryptContext
from pydantic import BaseModel, Field, StrictBool
from pydantic import ValidationError as SchemaValidationError
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import settings
from database import create_document, db, ensure_indexes, get_documents, update_document
from errors import (
    AppError,
    ConflictError,
    ErrorResponse,
    ForbiddenError,
    NotFoundError,
    ServerError,
    UnauthorizedError,
    ValidationError,
)
from logging_config import setup_logging
from schemas import (
    Availability,
    Booking,
    BookingStatus,
    Car,
    Favorite,
    Message,
    Notification,
    Payment,
    PaymentStatus,
    Review,
    User,
)

setup_logging()

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# App lifecycle
def create_indexes():
    if db is None:
        logger.warning("Database not configured, skipping index creation")
        return
    try:
        ensure_indexes(db)
    except Exception as e:
        logger.error("Index creation failed: {}", e)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_indexes()
    yield


app = FastAPI(title="Car Rental Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Fields shown on car and booking cards; placeholders share the same keys
CAR_CARD_FIELDS = ("id", "make", "model", "year", "images", "price_per_day", "location", "rating", "total_reviews")
BOOKING_CARD_FIELDS = ("id", "car", "start_date", "end_date", "total_days", "total_price", "status", "payment_status")
USER_SUMMARY_FIELDS = ("id", "name", "avatar")
PRIVATE_USER_FIELDS = ("password_hash", "reset_token_hash", "reset_token_expires")

ACTIVE_BOOKING_STATUSES = ["pending", "confirmed"]


# Error handlers
def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


def _first_error_message(errors: List[Dict[str, Any]]) -> str:
    if not errors:
        return "Invalid request"
    err = errors[0]
    loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header")]
    return f"{'.'.join(loc)}: {err.get('msg')}" if loc else str(err.get("msg"))


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return error_response(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(400, _first_error_message(exc.errors()))


@app.exception_handler(SchemaValidationError)
async def schema_validation_handler(request: Request, exc: SchemaValidationError):
    return error_response(400, _first_error_message(exc.errors()))


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    return error_response(ConflictError.status_code, "Resource already exists")


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on {} {}", request.method, request.url.path)
    return error_response(500, str(exc) or "Server error")


# Utilities
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive UTC datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id")) if doc.get("_id") else None
    for k, v in list(doc.items()):
        if isinstance(v, ObjectId):
            doc[k] = str(v)
        elif isinstance(v, datetime):
            doc[k] = _as_utc(v).isoformat()
    return doc


def public_user(doc: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(doc)
    for field in PRIVATE_USER_FIELDS:
        user.pop(field, None)
    return user


def pick(doc: Optional[Dict[str, Any]], fields: Iterable[str]) -> Optional[Dict[str, Any]]:
    if doc is None:
        return None
    return {f: doc.get(f) for f in fields}


def collection(name: str) -> Collection:
    if db is None:
        raise ServerError("Database not available")
    return db[name]


def to_object_id(value: str, label: str = "id") -> ObjectId:
    if not value or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {label}")
    return ObjectId(value)


def get_or_404(collection_name: str, doc_id: str, label: str) -> Dict[str, Any]:
    oid = to_object_id(doc_id, f"{label.lower()} id")
    doc = collection(collection_name).find_one({"_id": oid})
    if not doc:
        raise NotFoundError(f"{label} not found")
    return doc


def current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, set by the upstream auth provider."""
    if not x_user_id:
        raise UnauthorizedError("Unauthorized")
    if not ObjectId.is_valid(x_user_id):
        raise ValidationError("Invalid user id")
    return x_user_id


def user_summaries(user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    oids = [ObjectId(u) for u in set(user_ids) if ObjectId.is_valid(u)]
    if not oids:
        return {}
    docs = collection("user").find({"_id": {"$in": oids}})
    return {str(d["_id"]): pick(serialize_doc(d), USER_SUMMARY_FIELDS) for d in docs}


def car_cards(car_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    oids = [ObjectId(c) for c in set(car_ids) if ObjectId.is_valid(c)]
    if not oids:
        return {}
    docs = collection("car").find({"_id": {"$in": oids}})
    return {str(d["_id"]): pick(serialize_doc(d), CAR_CARD_FIELDS) for d in docs}


def booking_parties(booking: Dict[str, Any]) -> Dict[str, str]:
    """Renter and host ids of a booking."""
    car = collection("car").find_one({"_id": ObjectId(booking["car_id"])})
    if not car:
        raise NotFoundError("Car not found")
    return {"renter": booking["renter_id"], "host": car["owner_id"]}


def notify(user_id: str, type: str, title: str, message: Optional[str] = None, link: Optional[str] = None) -> str:
    notification = Notification(user_id=user_id, type=type, title=title, message=message, link=link)
    return create_document("notification", notification)


def date_range(start: date, end: date) -> List[date]:
    """Days from start up to, but not including, end."""
    return [start + timedelta(days=i) for i in range((end - start).days)]


# Health + DB test
@app.get("/")
def read_root():
    return {"message": "Car Rental Marketplace Backend Running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available" if db is None else "✅ Connected & Working",
        "database_url": "✅ Set" if settings.database_url else "❌ Not Set",
        "database_name": db.name if db is not None else None,
        "collections": []
    }
    if db is not None:
        try:
            response["collections"] = db.list_collection_names()
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


# Auth
class RegisterInput(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginInput(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordInput(BaseModel):
    email: Optional[str] = None


class ResetPasswordInput(BaseModel):
    email: Optional[str] = None
    token: Optional[str] = None
    password: Optional[str] = None


RESET_REQUESTED_MESSAGE = "If an account exists with this email, a password reset link has been sent."


@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterInput):
    if not (payload.name or "").strip() or not (payload.email or "").strip() or not payload.password:
        raise ValidationError("Please provide name, email and password")

    email = payload.email.strip().lower()
    if collection("user").find_one({"email": email}):
        raise ConflictError("User already exists")

    # role is never taken from the request
    user = User(name=payload.name, email=email, password_hash=hash_password(payload.password))
    try:
        user_id = create_document("user", user)
    except DuplicateKeyError:
        raise ConflictError("User already exists")

    logger.info("User registered: {} ({})", user_id, user.email)
    return {
        "message": "User created successfully",
        "user": {"id": user_id, "name": user.name, "email": user.email, "role": user.role},
    }


@app.post("/api/auth/login")
def login(payload: LoginInput):
    """Check credentials and return the account the session layer should carry."""
    if not (payload.email or "").strip() or not payload.password:
        raise ValidationError("Please provide email and password")

    user = collection("user").find_one({"email": payload.email.strip().lower()})
    if not user or not verify_password(payload.password, user["password_hash"]):
        raise UnauthorizedError("Invalid credentials")

    logger.info("User signed in: {}", user["_id"])
    return {"user": {"id": str(user["_id"]), "email": user["email"], "name": user["name"], "role": user["role"]}}


@app.post("/api/auth/forgot-password")
def forgot_password(payload: ForgotPasswordInput):
    if not (payload.email or "").strip():
        raise ValidationError("Email is required")

    email = payload.email.strip().lower()
    user = collection("user").find_one({"email": email})
    if user:
        token = secrets.token_hex(32)
        expires = datetime.now(timezone.utc) + timedelta(minutes=settings.password_reset_ttl_minutes)
        update_document("user", {"_id": user["_id"]}, {
            "reset_token_hash": _token_digest(token),
            "reset_token_expires": expires,
        })
        link = f"{settings.app_url}/auth/reset-password?token={token}&email={quote(email)}"
        # Delivery is handled outside this service
        logger.info("Password reset requested for {}: {}", email, link)

    return {"message": RESET_REQUESTED_MESSAGE}


@app.post("/api/auth/reset-password")
def reset_password(payload: ResetPasswordInput):
    if not payload.token or not payload.password:
        raise ValidationError("Token and password are required")
    if len(payload.password) < 6:
        raise ValidationError("Password must be at least 6 characters")
    if not (payload.email or "").strip():
        raise ValidationError("Email is required")

    users = collection("user")
    user = users.find_one({"email": payload.email.strip().lower()})
    stored = (user or {}).get("reset_token_hash")
    expires = (user or {}).get("reset_token_expires")
    if (
        not stored
        or not expires
        or not secrets.compare_digest(stored, _token_digest(payload.token))
        or _as_utc(expires) < datetime.now(timezone.utc)
    ):
        raise ValidationError("Invalid reset token or user not found")

    users.update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": hash_password(payload.password)},
            "$unset": {"reset_token_hash": "", "reset_token_expires": ""},
        },
    )
    logger.info("Password reset completed for {}", user["email"])
    return {"message": "Password reset successfully"}


# Profile
class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None


@app.get("/api/users/profile")
def get_profile(user_id: str = Depends(current_user_id)):
    return {"user": public_user(get_or_404("user", user_id, "User"))}


@app.put("/api/users/profile")
def update_profile(payload: ProfileUpdate, user_id: str = Depends(current_user_id)):
    current = get_or_404("user", user_id, "User")
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if not changes["name"]:
            raise ValidationError("Name cannot be empty")
    if not changes:
        return {"user": public_user(current)}

    updated = update_document("user", {"_id": current["_id"]}, changes)
    return {"user": public_user(updated)}


# Cars
class CarIn(BaseModel):
    make: str
    model: str
    year: int
    type: str
    transmission: str
    fuel_type: str
    seats: int
    price_per_day: float
    location: str
    description: str
    images: List[str] = []
    features: List[str] = []
    available: bool = True


class CarUpdate(BaseModel):
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    type: Optional[str] = None
    transmission: Optional[str] = None
    fuel_type: Optional[str] = None
    seats: Optional[int] = None
    price_per_day: Optional[float] = None
    location: Optional[str] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None
    features: Optional[List[str]] = None
    available: Optional[bool] = None


def get_owned_car(car_id: str, user_id: str) -> Dict[str, Any]:
    car = get_or_404("car", car_id, "Car")
    if car["owner_id"] != user_id:
        raise ForbiddenError("Forbidden")
    return car


@app.get("/api/cars")
def list_cars(
    search: Optional[str] = None,
    type: Optional[str] = None,
    transmission: Optional[str] = None,
    fuel_type: Optional[str] = None,
    location: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    owner_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
):
    filt: Dict[str, Any] = {"available": True}
    if owner_id:
        filt["owner_id"] = owner_id
    if search:
        pattern = re.escape(search)
        filt["$or"] = [
            {"make": {"$regex": pattern, "$options": "i"}},
            {"model": {"$regex": pattern, "$options": "i"}},
            {"location": {"$regex": pattern, "$options": "i"}},
        ]
    if type:
        filt["type"] = type
    if transmission:
        filt["transmission"] = transmission
    if fuel_type:
        filt["fuel_type"] = fuel_type
    if location:
        filt["location"] = {"$regex": re.escape(location), "$options": "i"}
    if min_price is not None or max_price is not None:
        price_cond: Dict[str, Any] = {}
        if min_price is not None:
            price_cond["$gte"] = min_price
        if max_price is not None:
            price_cond["$lte"] = max_price
        filt["price_per_day"] = price_cond

    cars = collection("car")
    total = cars.count_documents(filt)
    cursor = cars.find(filt).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    return {
        "cars": [serialize_doc(d) for d in cursor],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)},
    }


@app.get("/api/cars/{car_id}")
def get_car(car_id: str):
    car = serialize_doc(get_or_404("car", car_id, "Car"))
    car["owner"] = user_summaries([car["owner_id"]]).get(car["owner_id"])
    return {"car": car}


@app.post("/api/cars", status_code=201)
def create_car(payload: CarIn, user_id: str = Depends(current_user_id)):
    car = Car(owner_id=user_id, **payload.model_dump())
    car_id = create_document("car", car)
    logger.info("Car listed: {} by {}", car_id, user_id)
    return {"car": serialize_doc(collection("car").find_one({"_id": ObjectId(car_id)}))}


@app.put("/api/cars/{car_id}")
def update_car(car_id: str, payload: CarUpdate, user_id: str = Depends(current_user_id)):
    car = get_owned_car(car_id, user_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("Nothing to update")

    # Re-validate the merged document against the schema
    merged = Car(**{**car, **changes})
    changes = {k: v for k, v in merged.model_dump(mode="json").items() if k in changes}
    updated = update_document("car", {"_id": car["_id"]}, changes)
    return {"car": serialize_doc(updated)}


@app.delete("/api/cars/{car_id}")
def delete_car(car_id: str, user_id: str = Depends(current_user_id)):
    car = get_owned_car(car_id, user_id)
    collection("car").delete_one({"_id": car["_id"]})
    logger.info("Car deleted: {} by {}", car_id, user_id)
    return {"message": "Car deleted successfully"}


@app.get("/api/cars/{car_id}/booked-dates")
def booked_dates(car_id: str):
    to_object_id(car_id, "car id")
    today = date.today().isoformat()
    bookings = get_documents("booking", {
        "car_id": car_id,
        "status": {"$in": ACTIVE_BOOKING_STATUSES},
        "end_date": {"$gte": today},
    })

    days = set()
    for b in bookings:
        start = date.fromisoformat(b["start_date"])
        end = date.fromisoformat(b["end_date"])
        days.update(d.isoformat() for d in date_range(start, end + timedelta(days=1)))
    return {"booked_dates": sorted(days)}


# Availability calendar
class AvailabilityIn(BaseModel):
    date: date
    is_available: bool = True
    price_override: Optional[float] = None


class AvailabilityUpdate(BaseModel):
    is_available: Optional[bool] = None
    price_override: Optional[float] = Field(None, ge=0)


@app.get("/api/cars/{car_id}/availability")
def list_availability(car_id: str, start: Optional[date] = None, end: Optional[date] = None):
    get_or_404("car", car_id, "Car")
    filt: Dict[str, Any] = {"car_id": car_id}
    if start or end:
        day_cond: Dict[str, Any] = {}
        if start:
            day_cond["$gte"] = start.isoformat()
        if end:
            day_cond["$lte"] = end.isoformat()
        filt["date"] = day_cond
    rows = get_documents("availability", filt, sort=[("date", 1)])
    return {"availability": [serialize_doc(r) for r in rows]}


@app.post("/api/cars/{car_id}/availability", status_code=201)
def set_availability(car_id: str, payload: AvailabilityIn, user_id: str = Depends(current_user_id)):
    get_owned_car(car_id, user_id)
    row = Availability(car_id=car_id, **payload.model_dump())
    try:
        row_id = create_document("availability", row)
    except DuplicateKeyError:
        raise ConflictError("Availability already set for this date")
    return {"availability": serialize_doc(collection("availability").find_one({"_id": ObjectId(row_id)}))}


@app.patch("/api/availability/{availability_id}")
def update_availability(availability_id: str, payload: AvailabilityUpdate, user_id: str = Depends(current_user_id)):
    row = get_or_404("availability", availability_id, "Availability")
    get_owned_car(row["car_id"], user_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("Nothing to update")
    merged = Availability(**{**row, **changes})
    changes = {k: v for k, v in merged.model_dump(mode="json").items() if k in changes}
    updated = update_document("availability", {"_id": row["_id"]}, changes)
    return {"availability": serialize_doc(updated)}


# Booking endpoints
class BookingIn(BaseModel):
    car_id: str
    start_date: date
    end_date: date


class BookingUpdate(BaseModel):
    status: Optional[BookingStatus] = None
    payment_status: Optional[PaymentStatus] = None


def booking_card(doc: Dict[str, Any], cars: Dict[str, Dict[str, Any]], people: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    booking = serialize_doc(doc)
    booking["car"] = cars.get(booking["car_id"])
    booking["renter"] = people.get(booking["renter_id"])
    return booking


@app.post("/api/bookings", status_code=201)
def create_booking(payload: BookingIn, user_id: str = Depends(current_user_id)):
    car = get_or_404("car", payload.car_id, "Car")
    if car["owner_id"] == user_id:
        raise ValidationError("You cannot book your own car")

    days = date_range(payload.start_date, payload.end_date)
    if not days:
        raise ValidationError("Invalid date range")

    start_iso = payload.start_date.isoformat()
    end_iso = payload.end_date.isoformat()
    overlap = collection("booking").find_one({
        "car_id": payload.car_id,
        "status": {"$in": ACTIVE_BOOKING_STATUSES},
        "start_date": {"$lte": end_iso},
        "end_date": {"$gte": start_iso},
    })
    if overlap:
        raise ConflictError("Car is already booked for these dates")

    calendar = {
        row["date"]: row
        for row in get_documents("availability", {
            "car_id": payload.car_id,
            "date": {"$gte": start_iso, "$lt": end_iso},
        })
    }
    blocked = sorted(d for d, row in calendar.items() if not row.get("is_available", True))
    if blocked:
        raise ConflictError(f"Car is not available on {blocked[0]}")

    base_price = float(car.get("price_per_day", 0))
    total_price = 0.0
    for day in days:
        override = calendar.get(day.isoformat(), {}).get("price_override")
        total_price += float(override) if override is not None else base_price

    booking = Booking(
        renter_id=user_id,
        car_id=payload.car_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
        total_days=len(days),
        total_price=round(total_price, 2),
    )
    booking_id = create_document("booking", booking)
    notify(
        car["owner_id"],
        "booking_request",
        "New booking request",
        f"{car['make']} {car['model']} requested for {start_iso} to {end_iso}",
        f"/bookings/{booking_id}",
    )
    logger.info("Booking created: {} for car {} ({} days, {})", booking_id, payload.car_id, len(days), booking.total_price)

    doc = collection("booking").find_one({"_id": ObjectId(booking_id)})
    return {"booking": booking_card(doc, car_cards([payload.car_id]), user_summaries([user_id]))}


@app.get("/api/bookings")
def list_bookings(role: str = Query("renter", pattern="^(renter|host)$"), user_id: str = Depends(current_user_id)):
    filt: Dict[str, Any]
    if role == "renter":
        filt = {"renter_id": user_id}
    else:
        owned = [str(c["_id"]) for c in collection("car").find({"owner_id": user_id}, {"_id": 1})]
        filt = {"car_id": {"$in": owned}}

    docs = get_documents("booking", filt, sort=[("created_at", -1), ("_id", -1)])
    cars = car_cards(d["car_id"] for d in docs)
    people = user_summaries(d["renter_id"] for d in docs)
    return {"bookings": [booking_card(d, cars, people) for d in docs]}


@app.put("/api/bookings/{booking_id}")
def update_booking(booking_id: str, payload: BookingUpdate, user_id: str = Depends(current_user_id)):
    booking = get_or_404("booking", booking_id, "Booking")
    parties = booking_parties(booking)
    if user_id not in parties.values():
        raise ForbiddenError("Forbidden")

    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("Nothing to update")

    updated = update_document("booking", {"_id": booking["_id"]}, changes)
    other = parties["host"] if user_id == parties["renter"] else parties["renter"]
    notify(
        other,
        "booking_status",
        "Booking updated",
        ", ".join(f"{k.replace('_', ' ')}: {v}" for k, v in changes.items()),
        f"/bookings/{booking_id}",
    )
    return {"booking": booking_card(updated, car_cards([updated["car_id"]]), user_summaries([updated["renter_id"]]))}


# Payments
class PaymentIn(BaseModel):
    booking_id: Optional[str] = None


@app.post("/api/payments", status_code=201)
def create_payment(payload: PaymentIn, user_id: str = Depends(current_user_id)):
    """Record a payment for the caller's booking and confirm it.

    No card processor is contacted; the payment is stored as completed with
    a generated transaction id.
    """
    if not payload.booking_id:
        raise ValidationError("Please provide booking_id")
    booking = get_or_404("booking", payload.booking_id, "Booking")
    if booking["renter_id"] != user_id:
        raise ForbiddenError("Forbidden")
    if booking["status"] == "cancelled":
        raise ValidationError("Cannot pay for a cancelled booking")

    payments = collection("payment")
    if booking.get("payment_status") == "paid" or payments.find_one({"booking_id": payload.booking_id}):
        raise ConflictError("Booking is already paid")

    payment = Payment(
        booking_id=payload.booking_id,
        amount=booking["total_price"],
        status="completed",
        transaction_id=f"txn_{secrets.token_hex(12)}",
    )
    try:
        payment_id = create_document("payment", payment)
    except DuplicateKeyError:
        raise ConflictError("Booking is already paid")

    update_document("booking", {"_id": booking["_id"]}, {"payment_status": "paid", "status": "confirmed"})
    host_id = booking_parties(booking)["host"]
    notify(host_id, "booking_status", "Booking paid", "payment status: paid, status: confirmed", f"/bookings/{payload.booking_id}")
    logger.info("Payment recorded: {} for booking {} ({} {})", payment_id, payload.booking_id, payment.amount, payment.currency)

    return {
        "message": "Payment processed successfully",
        "payment": serialize_doc(payments.find_one({"_id": ObjectId(payment_id)})),
    }


# Favorites
class FavoriteIn(BaseModel):
    car_id: Optional[str] = None


@app.get("/api/favorites")
def list_favorites(user_id: str = Depends(current_user_id)):
    docs = get_documents("favorite", {"user_id": user_id}, sort=[("created_at", -1), ("_id", -1)])
    cars = car_cards(d["car_id"] for d in docs)
    favorites = []
    for d in docs:
        fav = serialize_doc(d)
        fav["car"] = cars.get(fav["car_id"])
        favorites.append(fav)
    return {"favorites": favorites}


@app.post("/api/favorites", status_code=201)
def add_favorite(payload: FavoriteIn, user_id: str = Depends(current_user_id)):
    if not payload.car_id:
        raise ValidationError("Please provide car_id")
    get_or_404("car", payload.car_id, "Car")

    if collection("favorite").find_one({"user_id": user_id, "car_id": payload.car_id}):
        raise ConflictError("Car is already in favorites")
    try:
        fav_id = create_document("favorite", Favorite(user_id=user_id, car_id=payload.car_id))
    except DuplicateKeyError:
        raise ConflictError("Car is already in favorites")

    fav = serialize_doc(collection("favorite").find_one({"_id": ObjectId(fav_id)}))
    fav["car"] = car_cards([payload.car_id]).get(payload.car_id)
    return {"favorite": fav}


@app.delete("/api/favorites")
def remove_favorite(car_id: Optional[str] = None, user_id: str = Depends(current_user_id)):
    if not car_id:
        raise ValidationError("Please provide car_id")
    removed = collection("favorite").find_one_and_delete({"user_id": user_id, "car_id": car_id})
    if not removed:
        raise NotFoundError("Favorite not found")
    return {"message": "Favorite removed successfully"}


# Messages
class MessageIn(BaseModel):
    booking_id: Optional[str] = None
    message_text: Optional[str] = None


def message_with_people(doc: Dict[str, Any], people: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    msg = serialize_doc(doc)
    msg["sender"] = people.get(msg["sender_id"])
    msg["receiver"] = people.get(msg["receiver_id"])
    return msg


def get_booking_for_party(booking_id: Optional[str], user_id: str) -> Dict[str, Any]:
    booking = get_or_404("booking", booking_id, "Booking")
    parties = booking_parties(booking)
    if user_id not in parties.values():
        raise ForbiddenError("Forbidden")
    booking["parties"] = parties
    return booking


@app.get("/api/messages")
def list_messages(booking_id: Optional[str] = None, user_id: str = Depends(current_user_id)):
    if not booking_id:
        raise ValidationError("Please provide booking_id")
    get_booking_for_party(booking_id, user_id)

    docs = get_documents("message", {"booking_id": booking_id}, sort=[("created_at", 1), ("_id", 1)])
    people = user_summaries([d["sender_id"] for d in docs] + [d["receiver_id"] for d in docs])
    return {"messages": [message_with_people(d, people) for d in docs]}


@app.post("/api/messages", status_code=201)
def send_message(payload: MessageIn, user_id: str = Depends(current_user_id)):
    if not payload.booking_id or not (payload.message_text or "").strip():
        raise ValidationError("Please provide booking_id and message_text")
    booking = get_booking_for_party(payload.booking_id, user_id)
    parties = booking["parties"]
    receiver_id = parties["host"] if user_id == parties["renter"] else parties["renter"]

    message = Message(
        booking_id=payload.booking_id,
        sender_id=user_id,
        receiver_id=receiver_id,
        message_text=payload.message_text,
    )
    message_id = create_document("message", message)
    notify(
        receiver_id,
        "new_message",
        "New message",
        message.message_text[:120],
        f"/messages?booking={payload.booking_id}",
    )

    doc = collection("message").find_one({"_id": ObjectId(message_id)})
    return {"message": message_with_people(doc, user_summaries([user_id, receiver_id]))}


@app.patch("/api/messages/{message_id}/read")
def mark_message_read(message_id: str, user_id: str = Depends(current_user_id)):
    msg = get_or_404("message", message_id, "Message")
    if msg["receiver_id"] != user_id:
        raise ForbiddenError("Forbidden")
    updated = update_document("message", {"_id": msg["_id"]}, {"is_read": True})
    return {"message": serialize_doc(updated)}


# Notifications
class NotificationUpdate(BaseModel):
    notification_id: Optional[str] = None
    is_read: Optional[StrictBool] = None


@app.get("/api/notifications")
def list_notifications(unread_only: bool = False, user_id: str = Depends(current_user_id)):
    filt: Dict[str, Any] = {"user_id": user_id}
    if unread_only:
        filt["is_read"] = False
    docs = get_documents("notification", filt, limit=50, sort=[("created_at", -1), ("_id", -1)])
    return {"notifications": [serialize_doc(d) for d in docs]}


@app.patch("/api/notifications")
def update_notification(payload: NotificationUpdate, user_id: str = Depends(current_user_id)):
    if not payload.notification_id or payload.is_read is None:
        raise ValidationError("Please provide notification_id and is_read")
    notification = get_or_404("notification", payload.notification_id, "Notification")
    if notification["user_id"] != user_id:
        raise ForbiddenError("Forbidden")
    updated = update_document("notification", {"_id": notification["_id"]}, {"is_read": payload.is_read})
    return {"notification": serialize_doc(updated)}


# Reviews
class ReviewIn(BaseModel):
    car_id: Optional[str] = None
    booking_id: Optional[str] = None
    rating: Optional[int] = None
    comment: Optional[str] = None


def review_with_user(doc: Dict[str, Any], people: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    review = serialize_doc(doc)
    review["user"] = people.get(review["user_id"])
    return review


@app.get("/api/reviews")
def list_reviews(car_id: Optional[str] = None):
    if not car_id:
        raise ValidationError("Please provide car_id")
    docs = get_documents("review", {"car_id": car_id}, sort=[("created_at", -1), ("_id", -1)])
    people = user_summaries(d["user_id"] for d in docs)
    return {"reviews": [review_with_user(d, people) for d in docs]}


@app.post("/api/reviews", status_code=201)
def add_review(payload: ReviewIn, user_id: str = Depends(current_user_id)):
    if not payload.car_id or not payload.booking_id or payload.rating is None or not (payload.comment or "").strip():
        raise ValidationError("Please provide all required fields")

    review = Review(
        user_id=user_id,
        car_id=payload.car_id,
        booking_id=payload.booking_id,
        rating=payload.rating,
        comment=payload.comment,
    )

    booking = get_or_404("booking", payload.booking_id, "Booking")
    if booking["renter_id"] != user_id:
        raise ForbiddenError("You can only review your own bookings")
    if booking["car_id"] != payload.car_id:
        raise ValidationError("Booking does not match this car")
    if booking["status"] != "completed":
        raise ValidationError("You can only review completed bookings")

    reviews = collection("review")
    if reviews.find_one({"car_id": payload.car_id, "user_id": user_id}):
        raise ConflictError("You have already reviewed this car")
    try:
        review_id = create_document("review", review)
    except DuplicateKeyError:
        raise ConflictError("You have already reviewed this car")

    ratings = [r["rating"] for r in reviews.find({"car_id": payload.car_id}, {"rating": 1})]
    update_document("car", {"_id": ObjectId(payload.car_id)}, {
        "rating": round(sum(ratings) / len(ratings), 2),
        "total_reviews": len(ratings),
    })
    logger.info("Review posted: {} for car {} (rating {})", review_id, payload.car_id, review.rating)

    doc = reviews.find_one({"_id": ObjectId(review_id)})
    return {"review": review_with_user(doc, user_summaries([user_id]))}


# Pages
SKELETON_LAYOUTS = {
    "car-card": CAR_CARD_FIELDS,
    "booking-card": BOOKING_CARD_FIELDS,
}


@app.get("/my-account")
def my_account():
    return RedirectResponse(url="/my-cars", status_code=307)


@app.get("/api/skeletons/{card}")
def get_skeletons(card: str, count: int = Query(3, ge=1, le=12)):
    fields = SKELETON_LAYOUTS.get(card)
    if fields is None:
        raise NotFoundError("Unknown card type")
    return {"card": card, "skeletons": [dict.fromkeys(fields) for _ in range(count)]}


if __name__ == "__main__":
    import os

    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
