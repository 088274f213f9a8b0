"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table; relationships are only declared where the
application navigates them (workouts to exercises, goals to progress).
Rows that point at two users (referrals, friendships) keep plain foreign
keys and are joined through the repositories.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import List, Optional

from sqlmodel import SQLModel, Field, Relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


ADMIN_ROLES = (Role.ADMIN, Role.SUPER_ADMIN)


class Gender(str, Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"
    OTHER = "OTHER"


class ActivityLevel(str, Enum):
    SEDENTARY = "SEDENTARY"
    LIGHTLY_ACTIVE = "LIGHTLY_ACTIVE"
    MODERATELY_ACTIVE = "MODERATELY_ACTIVE"
    VERY_ACTIVE = "VERY_ACTIVE"
    EXTREMELY_ACTIVE = "EXTREMELY_ACTIVE"


class WorkoutType(str, Enum):
    STRENGTH = "strength"
    CARDIO = "cardio"
    FLEXIBILITY = "flexibility"
    SPORTS = "sports"
    OTHER = "other"


class GoalCategory(str, Enum):
    WEIGHT_LOSS = "WEIGHT_LOSS"
    WEIGHT_GAIN = "WEIGHT_GAIN"
    MUSCLE_GAIN = "MUSCLE_GAIN"
    ENDURANCE = "ENDURANCE"
    STRENGTH = "STRENGTH"
    MAINTENANCE = "MAINTENANCE"
    CUSTOM = "CUSTOM"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class LedgerType(str, Enum):
    CREDIT = "CREDIT"
    DEBIT = "DEBIT"


class WalletTransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"


class WalletTransactionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class MealType(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"
    SNACK = "snack"


class FriendshipStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    BLOCKED = "BLOCKED"


class User(SQLModel, table=True):
    """A registered member or administrator.

    Fields:
    - `email`: unique login identifier
    - `password_hash`: hashed password string; empty for Telegram-only accounts
    - `referral_code`: the code this user hands out, generated on demand
    - `referred_by`: the code this user signed up with, if any
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    username: Optional[str] = Field(default=None, index=True, unique=True)
    password_hash: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    telegram_id: Optional[str] = Field(default=None, index=True, unique=True)
    role: Role = Field(default=Role.USER)
    is_active: bool = True
    language: str = "en"
    referral_code: Optional[str] = Field(default=None, index=True, unique=True)
    referred_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.username or self.email


class Profile(SQLModel, table=True):
    """Fitness profile collected during onboarding.

    `fitness_goals` and `medical_history` are stored comma-joined and
    `emergency_contact` as a JSON object string.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', unique=True)
    age: Optional[int] = None
    gender: Optional[Gender] = None
    height: Optional[float] = None
    activity_level: Optional[ActivityLevel] = None
    fitness_goals: Optional[str] = None
    medical_history: Optional[str] = None
    emergency_contact: Optional[str] = None
    profile_picture: Optional[str] = None
    is_onboarded: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Weight(SQLModel, table=True):
    """A single body-weight measurement in kilograms."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    weight: float
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class NutritionEntry(SQLModel, table=True):
    """One logged food item; macros in grams, sodium in milligrams."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    entry_date: date = Field(index=True)
    meal_type: MealType
    food_name: str
    quantity: float
    unit: str
    calories: float
    protein: Optional[float] = None
    carbs: Optional[float] = None
    fat: Optional[float] = None
    fiber: Optional[float] = None
    sugar: Optional[float] = None
    sodium: Optional[float] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Workout(SQLModel, table=True):
    """A logged workout session; `duration` is in minutes."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    name: str
    type: WorkoutType = Field(index=True)
    duration: int
    calories_burned: Optional[float] = None
    notes: Optional[str] = None
    completed_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    exercises: List['Exercise'] = Relationship(
        back_populates='workout',
        sa_relationship_kwargs={"cascade": "all, delete-orphan", "order_by": "Exercise.order"},
    )


class Exercise(SQLModel, table=True):
    """An exercise inside a `Workout`.

    `order` is 1-based and contiguous within a workout; `duration` and
    `rest_time` are in seconds.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    workout_id: int = Field(foreign_key='workout.id', index=True)
    name: str
    sets: Optional[int] = None
    reps: Optional[int] = None
    weight: Optional[float] = None
    duration: Optional[int] = None
    distance: Optional[float] = None
    rest_time: Optional[int] = None
    notes: Optional[str] = None
    order: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    workout: Optional[Workout] = Relationship(back_populates='exercises')


class FitnessGoal(SQLModel, table=True):
    """A per-user fitness goal with an optional numeric target."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    category: GoalCategory
    title: str
    description: Optional[str] = None
    target_value: Optional[float] = None
    current_value: Optional[float] = None
    unit: Optional[str] = None
    target_date: Optional[datetime] = None
    status: str = "active"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    progress_entries: List['GoalProgress'] = Relationship(
        back_populates='goal',
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )


class GoalProgress(SQLModel, table=True):
    """A recorded value for a `FitnessGoal`, kept as history."""
    id: Optional[int] = Field(default=None, primary_key=True)
    goal_id: int = Field(foreign_key='fitnessgoal.id', index=True)
    value: float
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    goal: Optional[FitnessGoal] = Relationship(back_populates='progress_entries')


class Program(SQLModel, table=True):
    """A purchasable training program; `duration` is in days.

    When a discount is applied `price` holds the discounted price and
    `original_price` the price before the discount.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: str
    price: float
    original_price: Optional[float] = None
    discount_percentage: Optional[float] = None
    duration: int
    category: Optional[str] = Field(default=None, index=True)
    level: Optional[str] = None
    features: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Payment(SQLModel, table=True):
    """An off-platform payment submitted for a program, awaiting review."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    program_id: int = Field(foreign_key='program.id', index=True)
    amount: float
    currency: str = "IRT"
    receipt_url: Optional[str] = None
    admin_notes: Optional[str] = None
    status: PaymentStatus = Field(default=PaymentStatus.PENDING, index=True)
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Wallet(SQLModel, table=True):
    """Per-user balance. Only changed together with a `WalletLedger` row."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', unique=True)
    balance: float = 0
    currency: str = "IRT"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WalletLedger(SQLModel, table=True):
    """Immutable audit row for a credit or debit applied to a wallet.

    `amount` is the signed balance change; `reference_type` and
    `reference_id` point at whatever caused it (referral, payment,
    withdrawal, wallet_transaction).
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    wallet_id: int = Field(foreign_key='wallet.id', index=True)
    amount: float
    type: LedgerType = Field(index=True)
    description: str
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class WalletTransaction(SQLModel, table=True):
    """A user-requested deposit or withdrawal awaiting admin processing."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    type: WalletTransactionType
    amount: float
    status: WalletTransactionStatus = Field(default=WalletTransactionStatus.PENDING, index=True)
    receipt_url: Optional[str] = None
    card_number: Optional[str] = None
    card_holder_name: Optional[str] = None
    admin_notes: Optional[str] = None
    processed_by: Optional[int] = Field(default=None, foreign_key='user.id')
    processed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)


class Referral(SQLModel, table=True):
    """Links a referring user to a referred user.

    Signup referrals start `active` and become `completed` once the referred
    user's first approved payment pays the referrer. Referrals recorded by
    hand after signup stay `pending` and never earn a payment bonus.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    referrer_id: int = Field(foreign_key='user.id', index=True)
    referred_user_id: int = Field(foreign_key='user.id', index=True)
    referral_code: str
    cashback_amount: float = 0
    cashback_paid: bool = False
    status: str = Field(default="active", index=True)
    created_at: datetime = Field(default_factory=utcnow)


class Friendship(SQLModel, table=True):
    """A directed friend request; ACCEPTED rows form the friends graph."""
    id: Optional[int] = Field(default=None, primary_key=True)
    requester_id: int = Field(foreign_key='user.id', index=True)
    receiver_id: int = Field(foreign_key='user.id', index=True)
    status: FriendshipStatus = Field(default=FriendshipStatus.PENDING)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class AdminAudit(SQLModel, table=True):
    """Record of an administrative decision; `details` is a JSON string."""
    id: Optional[int] = Field(default=None, primary_key=True)
    admin_id: int = Field(foreign_key='user.id')
    action: str
    target: str
    target_id: str
    details: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
