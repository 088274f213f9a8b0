"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for the
controller handlers; a body that fails validation is rejected by FastAPI
with a 422 before any service code runs.
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import (
    ActivityLevel,
    Gender,
    GoalCategory,
    MealType,
    PaymentStatus,
    WalletTransactionType,
    WorkoutType,
)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class SignupIn(BaseModel):
    """Payload for email/password registration."""
    email: str = Field(pattern=EMAIL_PATTERN, max_length=254)
    username: str = Field(min_length=3, max_length=50)
    password: str = Field(min_length=6)
    referral_code: Optional[str] = None


class LoginIn(BaseModel):
    """Credentials: a password plus either `email` or `telegram_id`."""
    email: Optional[str] = None
    telegram_id: Optional[str] = None
    password: str

    @model_validator(mode="after")
    def _identifier_required(self):
        if not self.email and not self.telegram_id:
            raise ValueError("email or telegram_id is required")
        return self


class TelegramAuthIn(BaseModel):
    """Login widget payload; extra keys are kept because they are signed too."""
    model_config = ConfigDict(extra="allow")

    id: int
    auth_date: int
    hash: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None
    photo_url: Optional[str] = None


class EmergencyContactIn(BaseModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    relationship: str = Field(min_length=1)


class ProfileUpdateIn(BaseModel):
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    height: Optional[float] = Field(default=None, gt=0)
    activity_level: Optional[ActivityLevel] = None
    fitness_goals: Optional[List[str]] = None
    medical_conditions: Optional[List[str]] = None
    emergency_contact: Optional[EmergencyContactIn] = None
    profile_picture: Optional[str] = None


class OnboardingIn(BaseModel):
    """Everything needed to finish onboarding in one request."""
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    date_of_birth: date
    gender: Gender
    height: float = Field(gt=0)
    weight: float = Field(gt=0)
    activity_level: ActivityLevel
    fitness_goals: List[str] = Field(min_length=1)
    medical_conditions: List[str] = Field(default_factory=list)
    phone: str = Field(min_length=1)
    emergency_contact: EmergencyContactIn
    agreed_to_terms: bool

    @field_validator("agreed_to_terms")
    @classmethod
    def _must_agree(cls, v: bool) -> bool:
        if not v:
            raise ValueError("terms must be accepted")
        return v


class LanguageIn(BaseModel):
    language: str = Field(min_length=2, max_length=5)


class BMIIn(BaseModel):
    """Weight in kg and height in cm."""
    weight: float = Field(ge=20, le=500)
    height: float = Field(ge=100, le=250)


class WeightIn(BaseModel):
    weight: float = Field(gt=0)
    notes: Optional[str] = None


class WeightUpdateIn(BaseModel):
    weight: Optional[float] = Field(default=None, gt=0)
    notes: Optional[str] = None


class NutritionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entry_date: date = Field(alias="date")
    meal_type: MealType
    food_name: str = Field(min_length=1, max_length=100)
    quantity: float = Field(ge=0.1)
    unit: str = Field(min_length=1, max_length=20)
    calories: float = Field(ge=0)
    protein: Optional[float] = Field(default=None, ge=0)
    carbs: Optional[float] = Field(default=None, ge=0)
    fat: Optional[float] = Field(default=None, ge=0)
    fiber: Optional[float] = Field(default=None, ge=0)
    sugar: Optional[float] = Field(default=None, ge=0)
    sodium: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=200)


class NutritionUpdateIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    entry_date: Optional[date] = Field(default=None, alias="date")
    meal_type: Optional[MealType] = None
    food_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    quantity: Optional[float] = Field(default=None, ge=0.1)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=20)
    calories: Optional[float] = Field(default=None, ge=0)
    protein: Optional[float] = Field(default=None, ge=0)
    carbs: Optional[float] = Field(default=None, ge=0)
    fat: Optional[float] = Field(default=None, ge=0)
    fiber: Optional[float] = Field(default=None, ge=0)
    sugar: Optional[float] = Field(default=None, ge=0)
    sodium: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=200)


class ExerciseIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    sets: Optional[int] = Field(default=None, ge=1)
    reps: Optional[int] = Field(default=None, ge=1)
    weight: Optional[float] = Field(default=None, ge=0)
    duration: Optional[int] = Field(default=None, ge=0)
    distance: Optional[float] = Field(default=None, ge=0)
    rest_time: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)
    order: Optional[int] = Field(default=None, ge=1)


class ExerciseUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    sets: Optional[int] = Field(default=None, ge=1)
    reps: Optional[int] = Field(default=None, ge=1)
    weight: Optional[float] = Field(default=None, ge=0)
    duration: Optional[int] = Field(default=None, ge=0)
    distance: Optional[float] = Field(default=None, ge=0)
    rest_time: Optional[int] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)
    order: Optional[int] = Field(default=None, ge=1)


class ExerciseOrderItem(BaseModel):
    id: int
    order: int = Field(ge=1)


class ExerciseReorderIn(BaseModel):
    exercises: List[ExerciseOrderItem] = Field(min_length=1)


class WorkoutIn(BaseModel):
    """A workout with its exercises; exercises are numbered in list order."""
    name: str = Field(min_length=1, max_length=100)
    type: WorkoutType
    duration: int = Field(ge=1, le=600)
    calories_burned: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)
    completed_at: Optional[datetime] = None
    exercises: List[ExerciseIn] = Field(default_factory=list)


class WorkoutUpdateIn(BaseModel):
    """Partial update; a supplied `exercises` list replaces the existing one."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[WorkoutType] = None
    duration: Optional[int] = Field(default=None, ge=1, le=600)
    calories_burned: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)
    completed_at: Optional[datetime] = None
    exercises: Optional[List[ExerciseIn]] = None


class GoalIn(BaseModel):
    category: GoalCategory
    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    target_value: Optional[float] = Field(default=None, gt=0)
    current_value: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None
    target_date: Optional[datetime] = None


class GoalUpdateIn(BaseModel):
    category: Optional[GoalCategory] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    target_value: Optional[float] = Field(default=None, gt=0)
    current_value: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = None
    target_date: Optional[datetime] = None
    status: Optional[Literal["active", "completed", "paused", "cancelled"]] = None


class GoalProgressIn(BaseModel):
    value: float = Field(ge=0)
    notes: Optional[str] = None


class SubscriptionIn(BaseModel):
    program_id: int
    payment_receipt_url: str = Field(min_length=1)
    payment_amount: float = Field(gt=0)


class PaymentIn(BaseModel):
    program_id: int
    amount: float = Field(gt=0)
    currency: Optional[str] = Field(default=None, pattern=r"^[A-Za-z]{3}$")
    receipt_url: Optional[str] = None
    notes: Optional[str] = None


class PaymentStatusIn(BaseModel):
    status: PaymentStatus
    admin_notes: Optional[str] = None


class BulkPaymentStatusIn(BaseModel):
    payment_ids: List[int] = Field(min_length=1)
    status: PaymentStatus
    admin_notes: Optional[str] = None


class PaymentExportIn(BaseModel):
    payment_ids: Optional[List[int]] = None
    status: Optional[PaymentStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    format: Literal["csv", "json"] = "csv"
    include_user_details: bool = True
    include_program_details: bool = True


class WithdrawalIn(BaseModel):
    amount: float = Field(gt=0)
    method: Literal["BANK_TRANSFER", "MOBILE_MONEY", "PAYPAL"]
    account_details: str = Field(min_length=1)
    notes: Optional[str] = None


class WalletTransactionIn(BaseModel):
    type: WalletTransactionType
    amount: float = Field(gt=0)
    receipt_url: Optional[str] = None
    card_number: Optional[str] = None
    card_holder_name: Optional[str] = None


class WalletTransactionActionIn(BaseModel):
    action: Literal["APPROVE", "REJECT"]
    admin_notes: Optional[str] = None


class ReferralValidateIn(BaseModel):
    referral_code: str = Field(min_length=1)


class UserReferralIn(BaseModel):
    referred_email: str = Field(pattern=EMAIL_PATTERN)
    referred_name: Optional[str] = None


class FriendRequestIn(BaseModel):
    user_id: int


class FriendActionIn(BaseModel):
    action: Literal["accept", "reject", "remove"]


class ProgramIn(BaseModel):
    """Admin program payload; `discounted_price` with `discount_percentage` applies a discount."""
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1)
    price: float = Field(ge=0)
    duration: int = Field(ge=1)
    category: Optional[str] = None
    level: Optional[str] = None
    features: List[str] = Field(default_factory=list)
    is_active: bool = True
    discount_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    discounted_price: Optional[float] = Field(default=None, ge=0)


class ProgramUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, min_length=1)
    price: Optional[float] = Field(default=None, ge=0)
    duration: Optional[int] = Field(default=None, ge=1)
    category: Optional[str] = None
    level: Optional[str] = None
    features: Optional[List[str]] = None
    is_active: Optional[bool] = None
    discount_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    discounted_price: Optional[float] = Field(default=None, ge=0)
