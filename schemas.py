"""
Database Schemas for the Car Rental Marketplace

Each Pydantic model below represents a MongoDB collection. The collection
name is the lowercase of the class name (e.g., Car -> "car").
References to other documents are stored as ObjectId hex strings and
calendar dates as ISO "YYYY-MM-DD" strings. Indexes live in
database.INDEXES.
"""

from datetime import date
from typing import Annotated, List, Literal, Optional

from bson import ObjectId
from pydantic import AfterValidator, BaseModel, EmailStr, Field, StringConstraints, field_validator


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise ValueError("Invalid ObjectId")
    return value


NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]

UserRole = Literal["renter", "host", "both"]
BookingStatus = Literal["pending", "confirmed", "cancelled", "completed"]
PaymentStatus = Literal["pending", "paid", "refunded"]
PaymentRecordStatus = Literal["pending", "completed", "failed", "refunded"]


class User(BaseModel):
    name: NonEmptyStr = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercased")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: UserRole = Field("renter", description="renter | host | both")
    phone: Optional[str] = Field(None, description="Phone number")
    avatar: Optional[str] = Field(None, description="Avatar image URL")


class Car(BaseModel):
    owner_id: ObjectIdStr = Field(..., description="Listing host user id")
    make: NonEmptyStr = Field(..., description="Car make, e.g., Toyota")
    model: NonEmptyStr = Field(..., description="Model name, e.g., Camry")
    year: int = Field(..., ge=1900, description="Manufacturing year")
    type: NonEmptyStr = Field(..., description="Type: sedan, suv, coupe, hatchback, van")
    transmission: Literal["automatic", "manual"]
    fuel_type: Literal["petrol", "diesel", "electric", "hybrid"]
    seats: int = Field(..., ge=2, le=20, description="Seating capacity")
    price_per_day: float = Field(..., ge=0, description="Rental price per day")
    location: NonEmptyStr = Field(..., description="Pickup city or area")
    description: NonEmptyStr
    images: List[str] = Field(default_factory=list, description="Image URLs")
    features: List[str] = Field(default_factory=list)
    available: bool = Field(True, description="Whether the car is listed")
    rating: float = Field(0, ge=0, le=5)
    total_reviews: int = Field(0, ge=0)

    @field_validator("year")
    @classmethod
    def year_not_in_future(cls, v: int) -> int:
        if v > date.today().year + 1:
            raise ValueError("Year cannot be in the future")
        return v


class Booking(BaseModel):
    renter_id: ObjectIdStr = Field(..., description="Renting user id")
    car_id: ObjectIdStr = Field(..., description="Car id")
    start_date: date = Field(..., description="Pickup date")
    end_date: date = Field(..., description="Return date")
    total_days: int = Field(..., ge=1)
    total_price: float = Field(..., ge=0)
    status: BookingStatus = "pending"
    payment_status: PaymentStatus = "pending"


class Availability(BaseModel):
    car_id: ObjectIdStr
    date: date
    is_available: bool = True
    price_override: Optional[float] = Field(None, ge=0, description="Replaces price_per_day for this date")


class Favorite(BaseModel):
    user_id: ObjectIdStr
    car_id: ObjectIdStr


class Message(BaseModel):
    booking_id: ObjectIdStr
    sender_id: ObjectIdStr
    receiver_id: ObjectIdStr
    message_text: NonEmptyStr
    is_read: bool = False


class Notification(BaseModel):
    user_id: ObjectIdStr
    type: NonEmptyStr = Field(..., description="booking_request, booking_status, new_message, ...")
    title: NonEmptyStr
    message: Optional[str] = None
    link: Optional[str] = None
    is_read: bool = False


class Review(BaseModel):
    user_id: ObjectIdStr = Field(..., description="Reviewer id")
    car_id: ObjectIdStr
    booking_id: ObjectIdStr
    rating: int = Field(..., ge=1, le=5)
    comment: NonEmptyStr


class Payment(BaseModel):
    booking_id: ObjectIdStr = Field(..., description="Paid booking id, one payment per booking")
    amount: float = Field(..., ge=0)
    currency: str = "INR"
    status: PaymentRecordStatus = "pending"
    payment_method: str = "razorpay"
    transaction_id: Optional[str] = None
