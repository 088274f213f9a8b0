"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and auxiliary logic. Services perform validation, execute domain logic
and persist aggregates via repositories; writes spanning several rows go
through `database.atomic` so they commit together.

Failures are raised as `ServiceError` (or its 404/403 subclasses) and
rendered by a single exception handler in `main`.
"""

import json
import logging
import math
import secrets
import string
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import atomic
from .utils import bmi as bmi_utils
from .utils import export as export_utils
from .utils import telegram

logger = logging.getLogger("fitclub.services")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
REFERRAL_CODE_ALPHABET = string.ascii_uppercase + string.digits
REFERRAL_CODE_LENGTH = 8


class ServiceError(Exception):
    """A request the service refuses; rendered as `{"detail": message}`."""
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(ServiceError):
    status_code = 404


class ForbiddenError(ServiceError):
    status_code = 403


# -- helpers -----------------------------------------------------------------

def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Return `dt` as an aware UTC datetime (SQLite hands back naive values)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def day_start(d: Optional[date]) -> Optional[datetime]:
    return datetime.combine(d, time.min, tzinfo=timezone.utc) if d else None


def day_end(d: Optional[date]) -> Optional[datetime]:
    return datetime.combine(d, time.max, tzinfo=timezone.utc) if d else None


def offset_pagination(total: int, limit: int, offset: int) -> dict:
    return {"total": total, "limit": limit, "offset": offset, "has_more": offset + limit < total}


def page_pagination(total: int, page: int, limit: int) -> dict:
    return {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit) if limit else 0}


def row_dict(obj, exclude: Iterable[str] = ()) -> dict:
    """Column values of a table model; attribute access reloads expired rows."""
    skip = set(exclude)
    return {name: getattr(obj, name) for name in type(obj).model_fields if name not in skip}


def apply_partial(obj, data: dict, required: Iterable[str] = (), optional: Iterable[str] = ()) -> None:
    """Copy supplied fields onto `obj`; `None` clears optional columns and is ignored for required ones."""
    for field in required:
        if data.get(field) is not None:
            setattr(obj, field, data[field])
    for field in optional:
        if field in data:
            setattr(obj, field, data[field])


def _split(value: Optional[str]) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()] if value else []


def _join(values: Optional[List[str]]) -> Optional[str]:
    return ", ".join(values) if values else None


def user_summary(user: Optional[models.User]) -> Optional[dict]:
    if user is None:
        return None
    return {
        "id": user.id,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "name": user.display_name,
    }


def user_dict(user: models.User) -> dict:
    out = row_dict(user, exclude=("password_hash",))
    out["name"] = user.display_name
    return out


def profile_dict(profile: Optional[models.Profile]) -> Optional[dict]:
    if profile is None:
        return None
    out = row_dict(profile)
    out["fitness_goals"] = _split(profile.fitness_goals)
    out["medical_history"] = _split(profile.medical_history)
    out["emergency_contact"] = json.loads(profile.emergency_contact) if profile.emergency_contact else None
    return out


def weight_dict(weight: models.Weight, height: Optional[float] = None) -> dict:
    out = row_dict(weight)
    out["bmi"] = None
    out["bmi_category"] = None
    if height:
        out["bmi"] = bmi_utils.calculate_bmi(weight.weight, height)
        out["bmi_category"] = bmi_utils.bmi_category(out["bmi"])
    return out


def exercise_metrics(exercise: models.Exercise) -> dict:
    """Training volume and a rough calorie estimate for one exercise."""
    volume = None
    if exercise.sets and exercise.reps and exercise.weight:
        volume = exercise.sets * exercise.reps * exercise.weight
    if exercise.duration:
        calories = round(exercise.duration / 60 * 7.5)
    elif exercise.sets and exercise.reps:
        calories = round(exercise.sets * exercise.reps * 0.5)
    else:
        calories = 0
    return {"total_volume": volume, "estimated_calories": calories}


def workout_dict(workout: models.Workout) -> dict:
    out = row_dict(workout)
    out["exercises"] = [row_dict(e) for e in sorted(workout.exercises, key=lambda e: (e.order, e.id))]
    return out


def goal_progress(goal: models.FitnessGoal) -> Optional[int]:
    if goal.current_value is None or not goal.target_value:
        return None
    return min(round(goal.current_value / goal.target_value * 100), 100)


def goal_state(progress: Optional[int], target_date: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Derived progress state: not_started, completed, overdue, at_risk or in_progress."""
    if progress is None:
        return "not_started"
    if progress >= 100:
        return "completed"
    if target_date is not None:
        now = now or models.utcnow()
        target = as_utc(target_date)
        if now > target:
            return "overdue"
        days_left = math.ceil((target - now).total_seconds() / 86400)
        if days_left <= 7 and progress < 80:
            return "at_risk"
    return "in_progress"


def goal_dict(goal: models.FitnessGoal, now: Optional[datetime] = None) -> dict:
    now = now or models.utcnow()
    out = row_dict(goal)
    progress = goal_progress(goal)
    out["progress"] = progress
    out["progress_status"] = goal_state(progress, goal.target_date, now)
    out["days_left"] = None
    if goal.target_date is not None:
        out["days_left"] = math.ceil((as_utc(goal.target_date) - now).total_seconds() / 86400)
    return out


def program_dict(program: models.Program) -> dict:
    out = row_dict(program)
    out["features"] = json.loads(program.features) if program.features else []
    return out


def payment_dict(payment: models.Payment, program: Optional[models.Program] = None, user: Optional[models.User] = None) -> dict:
    out = row_dict(payment)
    if program is not None:
        out["program"] = program_dict(program)
    if user is not None:
        out["user"] = {**user_summary(user), "email": user.email, "telegram_id": user.telegram_id}
    return out


def wallet_dict(wallet: models.Wallet) -> dict:
    return row_dict(wallet)


def record_movement(wallet_repo: repositories.WalletRepository, wallet: models.Wallet, amount: float,
                    description: str, reference_type: str, reference_id) -> models.WalletLedger:
    """Change a wallet balance with its ledger row; the caller commits."""
    entry = wallet_repo.apply(wallet, amount, description, reference_type, reference_id)
    logger.info(
        "ledger_%s wallet=%s user=%s amount=%s balance=%s ref=%s:%s",
        entry.type.value.lower(), wallet.id, wallet.user_id, amount, wallet.balance, reference_type, reference_id,
    )
    return entry


# -- auth --------------------------------------------------------------------

class AuthService:
    """Registration, credential checks, Telegram login and token issuing."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)
        self.wallet_repo = repositories.WalletRepository(session)
        self.referral_repo = repositories.ReferralRepository(session)

    def signup(self, email: str, username: str, password: str, referral_code: Optional[str] = None) -> models.User:
        """Create a user with profile and wallet, paying any referral bonus.

        A valid `referral_code` creates an active `Referral` and credits the
        referrer's wallet with the signup bonus in the same commit.
        """
        if self.user_repo.get_by_email(email):
            raise ServiceError("User with this email already exists")
        if self.user_repo.get_by_username(username):
            raise ServiceError("Username is already taken")
        referrer = None
        code = referral_code.strip().upper() if referral_code and referral_code.strip() else None
        if code:
            referrer = self.user_repo.get_by_referral_code(code)
            if referrer is None:
                raise ServiceError("Invalid referral code")
        with atomic(self.session):
            user = self.user_repo.add(models.User(
                email=email.lower(),
                username=username,
                password_hash=PWD_CTX.hash(password),
                referred_by=code,
            ), commit=False)
            self.profile_repo.add(models.Profile(user_id=user.id), commit=False)
            self.wallet_repo.get_or_create(user.id, settings.DEFAULT_CURRENCY)
            if referrer is not None:
                bonus = settings.REFERRAL_SIGNUP_BONUS
                self.referral_repo.add(models.Referral(
                    referrer_id=referrer.id,
                    referred_user_id=user.id,
                    referral_code=code,
                    cashback_amount=bonus,
                    cashback_paid=True,
                    status="active",
                ), commit=False)
                wallet = self.wallet_repo.get_or_create(referrer.id, settings.DEFAULT_CURRENCY)
                record_movement(self.wallet_repo, wallet, bonus, f"Referral bonus for inviting {username}", "referral", user.id)
        self.session.refresh(user)
        logger.info("user_signup user=%s referred_by=%s", user.id, referrer.id if referrer else None)
        return user

    def authenticate(self, password: str, email: Optional[str] = None, telegram_id: Optional[str] = None) -> Optional[models.User]:
        """Return the active user matching the credentials, else `None`."""
        user = self.user_repo.get_by_email(email) if email else self.user_repo.get_by_telegram_id(telegram_id)
        if not user or not user.is_active or not user.password_hash:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return user

    def issue_token(self, user: models.User) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "role": user.role.value, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def telegram_login(self, data: dict, now: Optional[float] = None) -> models.User:
        """Verify a Telegram widget payload and find or create its user."""
        try:
            telegram.verify_login(data, settings.TELEGRAM_BOT_TOKEN, now=now)
        except ValueError as e:
            raise ServiceError(str(e), status_code=401)
        telegram_id = str(data["id"])
        user = self.user_repo.get_by_telegram_id(telegram_id)
        if user is not None:
            if not user.is_active:
                raise ServiceError("Account is disabled", status_code=401)
            return user
        username = data.get("username")
        if not username or self.user_repo.get_by_username(username):
            username = f"tg_{telegram_id}"
        with atomic(self.session):
            user = self.user_repo.add(models.User(
                email=f"telegram_{telegram_id}@telegram.local",
                username=username,
                telegram_id=telegram_id,
                first_name=data.get("first_name"),
                last_name=data.get("last_name"),
            ), commit=False)
            self.profile_repo.add(models.Profile(user_id=user.id, profile_picture=data.get("photo_url")), commit=False)
            self.wallet_repo.get_or_create(user.id, settings.DEFAULT_CURRENCY)
        self.session.refresh(user)
        logger.info("user_signup_telegram user=%s", user.id)
        return user


# -- profile & weight --------------------------------------------------------

class ProfileService:
    """Profile editing, onboarding, language preference and BMI."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)
        self.weight_repo = repositories.WeightRepository(session)

    def _profile(self, user: models.User, create: bool = False) -> Optional[models.Profile]:
        profile = self.profile_repo.get_for_user(user.id)
        if profile is None and create:
            profile = self.profile_repo.add(models.Profile(user_id=user.id), commit=False)
        return profile

    def get(self, user: models.User) -> dict:
        return {"user": user_dict(user), "profile": profile_dict(self._profile(user))}

    def _apply_profile_fields(self, user: models.User, profile: models.Profile, data: dict) -> None:
        for field in ("first_name", "last_name", "phone"):
            if data.get(field) is not None:
                setattr(user, field, data[field])
        if data.get("date_of_birth") is not None:
            profile.age = date.today().year - data["date_of_birth"].year
        for field in ("gender", "height", "activity_level", "profile_picture"):
            if data.get(field) is not None:
                setattr(profile, field, data[field])
        if data.get("fitness_goals") is not None:
            profile.fitness_goals = _join(data["fitness_goals"])
        if data.get("medical_conditions") is not None:
            profile.medical_history = _join(data["medical_conditions"])
        if data.get("emergency_contact") is not None:
            profile.emergency_contact = json.dumps(data["emergency_contact"])
        now = models.utcnow()
        user.updated_at = now
        profile.updated_at = now
        self.session.add(user)
        self.session.add(profile)

    def update(self, user: models.User, data: dict) -> dict:
        """Partially update user and profile fields, creating the profile if needed."""
        with atomic(self.session):
            profile = self._profile(user, create=True)
            self._apply_profile_fields(user, profile, data)
        return self.get(user)

    @staticmethod
    def is_complete(profile: Optional[models.Profile]) -> bool:
        if profile is None:
            return False
        return all([profile.age, profile.gender, profile.height, profile.activity_level, profile.fitness_goals])

    def onboarding_status(self, user: models.User) -> dict:
        profile = self._profile(user)
        return {
            "is_complete": self.is_complete(profile),
            "profile": profile_dict(profile),
            "has_weight_entry": self.weight_repo.count_for_user(user.id) > 0,
        }

    def complete_onboarding(self, user: models.User, data: dict) -> dict:
        """Store the onboarding answers and the first weight entry together."""
        with atomic(self.session):
            profile = self._profile(user, create=True)
            fields = dict(data)
            if user.first_name:
                fields.pop("first_name", None)
            if user.last_name:
                fields.pop("last_name", None)
            self._apply_profile_fields(user, profile, fields)
            profile.is_onboarded = True
            weight = self.weight_repo.add(models.Weight(user_id=user.id, weight=data["weight"], notes="Initial weight"), commit=False)
        logger.info("onboarding_complete user=%s", user.id)
        return {
            "message": "Onboarding completed successfully",
            "profile": profile_dict(profile),
            "weight": weight_dict(weight, profile.height),
        }

    def set_language(self, user: models.User, language: str) -> dict:
        user.language = language
        user.updated_at = models.utcnow()
        self.user_repo.add(user)
        return {"language": user.language}

    @staticmethod
    def calculate_bmi(weight: float, height: float) -> dict:
        """BMI report for an ad-hoc weight (kg) and height (cm)."""
        bmi = bmi_utils.calculate_bmi(weight, height)
        goal, difference = bmi_utils.weight_goal(weight, height)
        return {
            "bmi": bmi,
            **bmi_utils.bmi_info(bmi),
            "ideal_weight_range": bmi_utils.ideal_weight_range(height),
            "weight_goal": goal,
            "weight_difference": difference,
            "inputs": {"weight": weight, "height": height},
        }

    def bmi_history(self, user: models.User, limit: int = 30, offset: int = 0) -> dict:
        """BMI of each weight entry (newest first) with the recent trend."""
        profile = self._profile(user)
        if profile is None or not profile.height:
            raise ServiceError("Height not set in profile. Please update your profile with height information.")
        height = profile.height
        entries = self.weight_repo.list_for_user(user.id, limit=limit, offset=offset)
        history = []
        for entry in entries:
            bmi = bmi_utils.calculate_bmi(entry.weight, height)
            info = bmi_utils.bmi_info(bmi)
            history.append({
                "id": entry.id,
                "date": entry.created_at,
                "weight": entry.weight,
                "bmi": bmi,
                "category": info["category"],
                "color_code": info["color_code"],
                "notes": entry.notes,
            })
        trend, change = bmi_utils.bmi_trend([h["bmi"] for h in history])
        current = bmi_utils.bmi_info(history[0]["bmi"]) if history else None
        total = self.weight_repo.count_for_user(user.id)
        return {
            "current_bmi": history[0]["bmi"] if history else None,
            "current_category": current["category"] if current else None,
            "current_health_status": current["health_status"] if current else None,
            "bmi_trend": trend,
            "bmi_change": change,
            "ideal_weight_range": bmi_utils.ideal_weight_range(height),
            "user_height": height,
            "bmi_history": history,
            "recommendations": current["recommendations"] if current else [],
            "pagination": offset_pagination(total, limit, offset),
        }


class WeightService:
    """Owner-scoped CRUD for weight entries."""
    def __init__(self, session: Session):
        self.session = session
        self.weight_repo = repositories.WeightRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)

    def _height(self, user_id: int) -> Optional[float]:
        profile = self.profile_repo.get_for_user(user_id)
        return profile.height if profile else None

    def _owned(self, user: models.User, weight_id: int) -> models.Weight:
        w = self.weight_repo.get_owned(weight_id, user.id)
        if w is None:
            raise NotFoundError("Weight entry not found")
        return w

    def list(self, user: models.User, limit: int = 30, offset: int = 0) -> dict:
        height = self._height(user.id)
        entries = self.weight_repo.list_for_user(user.id, limit=limit, offset=offset)
        total = self.weight_repo.count_for_user(user.id)
        return {
            "weights": [weight_dict(w, height) for w in entries],
            "pagination": offset_pagination(total, limit, offset),
        }

    def create(self, user: models.User, weight: float, notes: Optional[str] = None) -> dict:
        w = self.weight_repo.add(models.Weight(user_id=user.id, weight=weight, notes=notes))
        return weight_dict(w, self._height(user.id))

    def get(self, user: models.User, weight_id: int) -> dict:
        return weight_dict(self._owned(user, weight_id), self._height(user.id))

    def update(self, user: models.User, weight_id: int, data: dict) -> dict:
        w = self._owned(user, weight_id)
        apply_partial(w, data, required=("weight",), optional=("notes",))
        w.updated_at = models.utcnow()
        self.weight_repo.add(w)
        return weight_dict(w, self._height(user.id))

    def delete(self, user: models.User, weight_id: int) -> None:
        self.weight_repo.delete(self._owned(user, weight_id))


# -- nutrition ---------------------------------------------------------------

NUTRITION_FIELDS = (
    "entry_date", "meal_type", "food_name", "quantity", "unit", "calories",
    "protein", "carbs", "fat", "fiber", "sugar", "sodium", "notes",
)
MACROS = ("protein", "carbs", "fat")
CALORIES_PER_GRAM = {"protein": 4, "carbs": 4, "fat": 9}


def nutrition_dict(entry: models.NutritionEntry) -> dict:
    out = row_dict(entry, exclude=("entry_date",))
    out["date"] = entry.entry_date
    return out


def _total(entries, field: str) -> float:
    return round(sum(getattr(e, field) or 0 for e in entries), 1)


def daily_totals(entries: List[models.NutritionEntry], breakdown: bool = False) -> dict:
    """Calorie and macro sums for one day's entries."""
    out = {
        "total_calories": _total(entries, "calories"),
        "total_protein": _total(entries, "protein"),
        "total_carbs": _total(entries, "carbs"),
        "total_fat": _total(entries, "fat"),
    }
    if breakdown:
        out["total_fiber"] = _total(entries, "fiber")
        out["total_sugar"] = _total(entries, "sugar")
        out["total_sodium"] = _total(entries, "sodium")
        out["meal_breakdown"] = {
            meal.value: _total([e for e in entries if e.meal_type == meal], "calories")
            for meal in models.MealType
        }
    return out


def macro_breakdown(entry: models.NutritionEntry) -> dict:
    """Macro share of the entry in percent and the calories implied by its macros."""
    grams = {m: getattr(entry, m) or 0 for m in MACROS}
    total = sum(grams.values())
    ratios = None
    if total > 0:
        ratios = {f"{m}_ratio": round(grams[m] / total * 100) for m in MACROS}
    calculated = {f"from_{m}": grams[m] * CALORIES_PER_GRAM[m] for m in MACROS}
    calculated["total"] = sum(calculated.values())
    return {"macro_ratios": ratios, "calculated_calories": calculated}


class NutritionService:
    """Food log with per-day totals and a rolling weekly average."""
    def __init__(self, session: Session):
        self.session = session
        self.nutrition_repo = repositories.NutritionRepository(session)

    def _owned(self, user: models.User, entry_id: int) -> models.NutritionEntry:
        e = self.nutrition_repo.get_owned(entry_id, user.id)
        if e is None:
            raise NotFoundError("Nutrition entry not found")
        return e

    def _day_totals(self, user: models.User, day: date, breakdown: bool = False) -> dict:
        return daily_totals(self.nutrition_repo.for_day(user.id, day), breakdown)

    def weekly_stats(self, user: models.User, today: Optional[date] = None) -> dict:
        """Per-day averages over the last seven days; the divisor is always 7."""
        today = today or models.utcnow().date()
        entries = self.nutrition_repo.since(user.id, today - timedelta(days=7))
        out = {
            f"average_{field}": round(sum(getattr(e, field) or 0 for e in entries) / 7)
            for field in ("calories",) + MACROS
        }
        out["total_entries"] = len(entries)
        return out

    def list(self, user: models.User, limit: int = 50, offset: int = 0, day: Optional[date] = None,
             meal_type=None, start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
        # a specific day wins over a date range
        if day is not None:
            start_date = end_date = None
        entries = self.nutrition_repo.list_for_user(user.id, day, meal_type, start_date, end_date, limit=limit, offset=offset)
        total = self.nutrition_repo.count_for_user(user.id, day, meal_type, start_date, end_date)
        return {
            "nutrition_entries": [nutrition_dict(e) for e in entries],
            "daily_totals": self._day_totals(user, day, breakdown=True) if day is not None else None,
            "weekly_stats": self.weekly_stats(user),
            "pagination": offset_pagination(total, limit, offset),
        }

    def create(self, user: models.User, data: dict) -> dict:
        entry = self.nutrition_repo.add(models.NutritionEntry(
            user_id=user.id, **{f: data.get(f) for f in NUTRITION_FIELDS}
        ))
        logger.info("nutrition_entry_created user=%s entry=%s calories=%s", user.id, entry.id, entry.calories)
        return {
            "message": "Nutrition entry created successfully",
            "nutrition_entry": nutrition_dict(entry),
            "daily_totals": self._day_totals(user, entry.entry_date),
        }

    def get(self, user: models.User, entry_id: int) -> dict:
        entry = self._owned(user, entry_id)
        out = nutrition_dict(entry)
        out.update(macro_breakdown(entry))
        return {"nutrition_entry": out}

    def update(self, user: models.User, entry_id: int, data: dict) -> dict:
        """Apply a partial update; totals cover the old day and, if it moved, the new one."""
        entry = self._owned(user, entry_id)
        affected = [entry.entry_date]
        for field in NUTRITION_FIELDS:
            if field in data and data[field] is not None:
                setattr(entry, field, data[field])
        if "notes" in data:
            entry.notes = data["notes"]
        if entry.entry_date != affected[0]:
            affected.append(entry.entry_date)
        entry.updated_at = models.utcnow()
        self.nutrition_repo.add(entry)
        return {
            "message": "Nutrition entry updated successfully",
            "nutrition_entry": nutrition_dict(entry),
            "daily_totals": [dict(date=d, **self._day_totals(user, d)) for d in affected],
        }

    def delete(self, user: models.User, entry_id: int) -> dict:
        entry = self._owned(user, entry_id)
        day = entry.entry_date
        self.nutrition_repo.delete(entry)
        return {
            "message": "Nutrition entry deleted successfully",
            "daily_totals": dict(date=day, **self._day_totals(user, day)),
        }


# -- workouts ----------------------------------------------------------------

EXERCISE_FIELDS = ("name", "sets", "reps", "weight", "duration", "distance", "rest_time", "notes")


class WorkoutService:
    """Workouts and their ordered exercises."""
    def __init__(self, session: Session):
        self.session = session
        self.workout_repo = repositories.WorkoutRepository(session)
        self.exercise_repo = repositories.ExerciseRepository(session)

    def _owned(self, user: models.User, workout_id: int) -> models.Workout:
        w = self.workout_repo.get_owned(workout_id, user.id)
        if w is None:
            raise NotFoundError("Workout not found")
        return w

    def _exercise(self, workout: models.Workout, exercise_id: int) -> models.Exercise:
        ex = self.exercise_repo.get_in_workout(exercise_id, workout.id)
        if ex is None:
            raise NotFoundError("Exercise not found")
        return ex

    def stats(self, user: models.User) -> dict:
        """Totals, average duration, type distribution and last-7-days figures."""
        workouts = self.workout_repo.list_for_user(user.id)
        total_duration = sum(w.duration for w in workouts)
        distribution = {}
        for w in workouts:
            distribution[w.type.value] = distribution.get(w.type.value, 0) + 1
        week_ago = models.utcnow() - timedelta(days=7)
        recent = [w for w in workouts if as_utc(w.completed_at) >= week_ago]
        return {
            "total_workouts": len(workouts),
            "total_duration": total_duration,
            "total_calories": sum(w.calories_burned or 0 for w in workouts),
            "average_duration": round(total_duration / len(workouts)) if workouts else 0,
            "type_distribution": distribution,
            "last_7_days": {
                "workouts": len(recent),
                "duration": sum(w.duration for w in recent),
                "calories": sum(w.calories_burned or 0 for w in recent),
            },
        }

    def list(self, user: models.User, limit: int = 20, offset: int = 0, workout_type=None,
             start_date: Optional[date] = None, end_date: Optional[date] = None) -> dict:
        start, end = day_start(start_date), day_end(end_date)
        workouts = self.workout_repo.list_for_user(user.id, workout_type, start, end, limit=limit, offset=offset)
        total = self.workout_repo.count_for_user(user.id, workout_type, start, end)
        return {
            "workouts": [workout_dict(w) for w in workouts],
            "pagination": offset_pagination(total, limit, offset),
            "stats": self.stats(user),
        }

    def _build_exercises(self, workout: models.Workout, exercises: List[dict]) -> None:
        for idx, data in enumerate(exercises, start=1):
            ex = models.Exercise(workout_id=workout.id, order=idx, **{f: data.get(f) for f in EXERCISE_FIELDS})
            self.exercise_repo.add(ex, commit=False)

    def create(self, user: models.User, data: dict) -> dict:
        """Create a workout with its exercises numbered 1..n in list order."""
        with atomic(self.session):
            workout = self.workout_repo.add(models.Workout(
                user_id=user.id,
                name=data["name"],
                type=data["type"],
                duration=data["duration"],
                calories_burned=data.get("calories_burned"),
                notes=data.get("notes"),
                completed_at=as_utc(data.get("completed_at")) or models.utcnow(),
            ), commit=False)
            self._build_exercises(workout, data.get("exercises") or [])
        self.session.refresh(workout)
        return workout_dict(workout)

    def get(self, user: models.User, workout_id: int) -> dict:
        return workout_dict(self._owned(user, workout_id))

    def update(self, user: models.User, workout_id: int, data: dict) -> dict:
        """Partial update; an `exercises` list replaces the current exercises."""
        workout = self._owned(user, workout_id)
        with atomic(self.session):
            apply_partial(workout, data, required=("name", "type", "duration"), optional=("calories_burned", "notes"))
            if data.get("completed_at") is not None:
                workout.completed_at = as_utc(data["completed_at"])
            workout.updated_at = models.utcnow()
            self.session.add(workout)
            if data.get("exercises") is not None:
                for ex in self.exercise_repo.list_for_workout(workout.id):
                    self.exercise_repo.delete(ex, commit=False)
                self._build_exercises(workout, data["exercises"])
        self.session.refresh(workout)
        return workout_dict(workout)

    def delete(self, user: models.User, workout_id: int) -> None:
        self.workout_repo.delete(self._owned(user, workout_id))

    def list_exercises(self, user: models.User, workout_id: int) -> dict:
        workout = self._owned(user, workout_id)
        return {"exercises": [row_dict(e) for e in self.exercise_repo.list_for_workout(workout.id)]}

    def add_exercise(self, user: models.User, workout_id: int, data: dict) -> dict:
        workout = self._owned(user, workout_id)
        order = data.get("order") or self.exercise_repo.max_order(workout.id) + 1
        ex = models.Exercise(workout_id=workout.id, order=order, **{f: data.get(f) for f in EXERCISE_FIELDS})
        return row_dict(self.exercise_repo.add(ex))

    def reorder_exercises(self, user: models.User, workout_id: int, items: List[dict]) -> dict:
        """Apply `[{id, order}]` to the workout's exercises."""
        workout = self._owned(user, workout_id)
        with atomic(self.session):
            for item in items:
                ex = self._exercise(workout, item["id"])
                ex.order = item["order"]
                ex.updated_at = models.utcnow()
                self.session.add(ex)
        return {"exercises": [row_dict(e) for e in self.exercise_repo.list_for_workout(workout.id)]}

    def get_exercise(self, user: models.User, workout_id: int, exercise_id: int) -> dict:
        ex = self._exercise(self._owned(user, workout_id), exercise_id)
        return {**row_dict(ex), "metrics": exercise_metrics(ex)}

    def update_exercise(self, user: models.User, workout_id: int, exercise_id: int, data: dict) -> dict:
        ex = self._exercise(self._owned(user, workout_id), exercise_id)
        apply_partial(ex, data, required=("name", "order"), optional=EXERCISE_FIELDS[1:])
        ex.updated_at = models.utcnow()
        return row_dict(self.exercise_repo.add(ex))

    def delete_exercise(self, user: models.User, workout_id: int, exercise_id: int) -> None:
        """Delete an exercise and renumber the remaining ones 1..n."""
        workout = self._owned(user, workout_id)
        ex = self._exercise(workout, exercise_id)
        with atomic(self.session):
            self.exercise_repo.delete(ex, commit=False)
            for idx, remaining in enumerate(self.exercise_repo.list_for_workout(workout.id), start=1):
                if remaining.order != idx:
                    remaining.order = idx
                    self.session.add(remaining)


# -- goals -------------------------------------------------------------------

class GoalService:
    """Manage fitness goals and compute progress summaries."""
    def __init__(self, session: Session):
        self.session = session
        self.goal_repo = repositories.GoalRepository(session)

    def _owned(self, user: models.User, goal_id: int) -> models.FitnessGoal:
        g = self.goal_repo.get_owned(goal_id, user.id)
        if g is None:
            raise NotFoundError("Goal not found")
        return g

    def list(self, user: models.User, category=None, is_active: Optional[bool] = None, limit: int = 20, offset: int = 0) -> dict:
        now = models.utcnow()
        goals = [goal_dict(g, now) for g in self.goal_repo.list_for_user(user.id, category, is_active, limit=limit, offset=offset)]
        total = self.goal_repo.count_for_user(user.id, category, is_active)
        active = [goal_dict(g, now) for g in self.goal_repo.list_for_user(user.id, is_active=True)]
        completed = sum(1 for g in active if g["progress_status"] == "completed")
        return {
            "goals": goals,
            "pagination": offset_pagination(total, limit, offset),
            "summary": {
                "total_active": len(active),
                "completed": completed,
                "in_progress": sum(1 for g in active if g["progress_status"] == "in_progress"),
                "at_risk": sum(1 for g in active if g["progress_status"] == "at_risk"),
                "overdue": sum(1 for g in active if g["progress_status"] == "overdue"),
                "completion_rate": round(completed / len(active) * 100) if active else 0,
            },
        }

    def create(self, user: models.User, data: dict) -> dict:
        goal = models.FitnessGoal(user_id=user.id, **data)
        goal.target_date = as_utc(goal.target_date)
        return goal_dict(self.goal_repo.add(goal))

    def get(self, user: models.User, goal_id: int) -> dict:
        goal = self._owned(user, goal_id)
        out = goal_dict(goal)
        out["recent_progress"] = [row_dict(p) for p in self.goal_repo.list_progress(goal.id)[:10]]
        return out

    def update(self, user: models.User, goal_id: int, data: dict) -> dict:
        goal = self._owned(user, goal_id)
        if "target_date" in data:
            data = {**data, "target_date": as_utc(data["target_date"])}
        apply_partial(
            goal, data,
            required=("category", "title", "status"),
            optional=("description", "target_value", "current_value", "unit", "target_date"),
        )
        goal.updated_at = models.utcnow()
        return goal_dict(self.goal_repo.add(goal))

    def delete(self, user: models.User, goal_id: int) -> None:
        self.goal_repo.delete(self._owned(user, goal_id))

    def record_progress(self, user: models.User, goal_id: int, value: float, notes: Optional[str] = None) -> dict:
        """Store a progress value; reaching 100% completes the goal."""
        goal = self._owned(user, goal_id)
        if goal.status != "active":
            raise ServiceError("Cannot update progress for inactive goal")
        with atomic(self.session):
            entry = models.GoalProgress(goal_id=goal.id, value=value, notes=notes)
            self.session.add(entry)
            goal.current_value = value
            goal.updated_at = models.utcnow()
            progress = goal_progress(goal)
            if progress is not None and progress >= 100:
                goal.status = "completed"
            self.session.add(goal)
        self.session.refresh(entry)
        out = goal_dict(goal)
        if goal.status == "completed":
            logger.info("goal_completed user=%s goal=%s", user.id, goal.id)
        return {"goal": out, "progress_entry": row_dict(entry), "progress": out["progress"], "status": out["progress_status"]}

    def progress_history(self, user: models.User, goal_id: int) -> dict:
        goal = self._owned(user, goal_id)
        out = goal_dict(goal)
        return {
            "goal": out,
            "progress_history": [row_dict(p) for p in self.goal_repo.list_progress(goal.id)],
            "current_progress": out["progress"],
            "status": out["progress_status"],
        }


# -- programs & payments -----------------------------------------------------

class ProgramService:
    """Public program catalog and member subscriptions."""
    def __init__(self, session: Session):
        self.session = session
        self.program_repo = repositories.ProgramRepository(session)
        self.payment_repo = repositories.PaymentRepository(session)

    def catalog(self, category=None, level=None, include_inactive: bool = False, limit: int = 20, offset: int = 0) -> dict:
        programs = self.program_repo.list(category, level, include_inactive, limit=limit, offset=offset)
        total = self.program_repo.count(category, level, include_inactive)
        return {"programs": [program_dict(p) for p in programs], "pagination": offset_pagination(total, limit, offset)}

    def get_active(self, program_id: int) -> models.Program:
        program = self.program_repo.get(program_id)
        if program is None or not program.is_active:
            raise NotFoundError("Program not found")
        return program

    def subscriptions(self, user: models.User, status=None) -> dict:
        payments = self.payment_repo.list(user_id=user.id, status=status)
        return {"subscriptions": [payment_dict(p, self.program_repo.get(p.program_id)) for p in payments]}

    def subscribe(self, user: models.User, program_id: int, receipt_url: str, amount: float) -> dict:
        """Enrol by submitting a payment for review; one pending payment per program."""
        program = self.program_repo.get(program_id)
        if program is None or not program.is_active:
            raise NotFoundError("Program not found or inactive")
        if self.payment_repo.find_pending(user.id, program.id):
            raise ServiceError("You already have a pending payment for this program")
        payment = self.payment_repo.add(models.Payment(
            user_id=user.id,
            program_id=program.id,
            amount=amount,
            currency=settings.DEFAULT_CURRENCY,
            receipt_url=receipt_url,
        ))
        logger.info("payment_submitted payment=%s user=%s program=%s amount=%s", payment.id, user.id, program.id, amount)
        return payment_dict(payment, program)


class PaymentService:
    """Payment submission, member cancellation and the approval flow."""
    def __init__(self, session: Session):
        self.session = session
        self.payment_repo = repositories.PaymentRepository(session)
        self.program_repo = repositories.ProgramRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.wallet_repo = repositories.WalletRepository(session)
        self.referral_repo = repositories.ReferralRepository(session)
        self.audit_repo = repositories.AdminAuditRepository(session)

    def list_for_user(self, user: models.User, page: int = 1, limit: int = 10, status=None) -> dict:
        offset = (page - 1) * limit
        payments = self.payment_repo.list(offset=offset, limit=limit, user_id=user.id, status=status)
        total = self.payment_repo.count(user_id=user.id, status=status)
        return {
            "payments": [payment_dict(p, self.program_repo.get(p.program_id)) for p in payments],
            "pagination": page_pagination(total, page, limit),
        }

    def create(self, user: models.User, program_id: int, amount: float, currency: Optional[str] = None,
               receipt_url: Optional[str] = None, notes: Optional[str] = None) -> dict:
        program = self.program_repo.get(program_id)
        if program is None or not program.is_active:
            raise NotFoundError("Program not found or inactive")
        payment = self.payment_repo.add(models.Payment(
            user_id=user.id,
            program_id=program.id,
            amount=amount,
            currency=(currency or settings.DEFAULT_CURRENCY).upper(),
            receipt_url=receipt_url,
            admin_notes=notes,
        ))
        logger.info("payment_submitted payment=%s user=%s program=%s amount=%s", payment.id, user.id, program.id, amount)
        return payment_dict(payment, program)

    def get_for_user(self, user: models.User, payment_id: int) -> dict:
        payment = self.payment_repo.get_owned(payment_id, user.id)
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment_dict(payment, self.program_repo.get(payment.program_id))

    def cancel(self, user: models.User, payment_id: int) -> dict:
        payment = self.payment_repo.get_owned(payment_id, user.id)
        if payment is None:
            raise NotFoundError("Payment not found")
        if payment.status != models.PaymentStatus.PENDING:
            raise ServiceError("Only pending payments can be cancelled")
        payment.status = models.PaymentStatus.REJECTED
        payment.admin_notes = "Cancelled by user"
        payment.updated_at = models.utcnow()
        self.payment_repo.add(payment)
        logger.info("payment_cancelled payment=%s user=%s", payment.id, user.id)
        return payment_dict(payment)

    def _pay_referral_bonus(self, payment: models.Payment) -> Optional[models.WalletLedger]:
        referral = self.referral_repo.active_for_referred(payment.user_id)
        if referral is None:
            return None
        bonus = round(payment.amount * settings.REFERRAL_PAYMENT_RATE, 2)
        if bonus <= 0:
            return None
        payer = self.user_repo.get(payment.user_id)
        wallet = self.wallet_repo.get_or_create(referral.referrer_id, settings.DEFAULT_CURRENCY)
        entry = record_movement(
            self.wallet_repo, wallet, bonus,
            f"Referral bonus for {payer.display_name if payer else 'referred user'}'s payment",
            "payment", payment.id,
        )
        referral.cashback_amount = (referral.cashback_amount or 0) + bonus
        referral.cashback_paid = True
        referral.status = "completed"
        self.session.add(referral)
        return entry

    def _apply_status(self, payment: models.Payment, status: models.PaymentStatus, admin_notes: Optional[str], admin: Optional[models.User]) -> None:
        """Stage a status change; moving into APPROVED pays the referral bonus."""
        previous = payment.status
        now = models.utcnow()
        payment.status = status
        if admin_notes is not None:
            payment.admin_notes = admin_notes
        payment.updated_at = now
        if status != models.PaymentStatus.PENDING:
            payment.processed_at = now
        self.session.add(payment)
        if status == models.PaymentStatus.APPROVED and previous != models.PaymentStatus.APPROVED:
            self._pay_referral_bonus(payment)
        if admin is not None:
            self.audit_repo.add(models.AdminAudit(
                admin_id=admin.id,
                action=f"PAYMENT_{status.value}",
                target="Payment",
                target_id=str(payment.id),
                details=json.dumps({"previous_status": previous.value, "amount": payment.amount, "admin_notes": admin_notes}),
            ), commit=False)
        logger.info("payment_status payment=%s %s->%s by=%s", payment.id, previous.value, status.value, admin.id if admin else None)

    def set_status(self, payment_id: int, status: models.PaymentStatus, admin_notes: Optional[str] = None,
                   admin: Optional[models.User] = None) -> dict:
        payment = self.payment_repo.get(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        with atomic(self.session):
            self._apply_status(payment, status, admin_notes, admin)
        return payment_dict(payment, self.program_repo.get(payment.program_id), self.user_repo.get(payment.user_id))

    def bulk_set_status(self, payment_ids: List[int], status: models.PaymentStatus, admin_notes: Optional[str] = None,
                        admin: Optional[models.User] = None) -> dict:
        """Apply one status to several payments in a single commit."""
        ids = list(dict.fromkeys(payment_ids))
        payments = self.payment_repo.get_many(ids)
        missing = sorted(set(ids) - {p.id for p in payments})
        if missing:
            raise NotFoundError(f"Payments not found: {', '.join(str(i) for i in missing)}")
        with atomic(self.session):
            for payment in payments:
                self._apply_status(payment, status, admin_notes, admin)
        return {"message": f"{len(payments)} payments updated", "updated_count": len(payments)}


# -- wallet & referrals ------------------------------------------------------

class WalletService:
    """Wallet balance, ledger, withdrawals and deposit/withdrawal requests."""
    def __init__(self, session: Session):
        self.session = session
        self.wallet_repo = repositories.WalletRepository(session)
        self.tx_repo = repositories.WalletTransactionRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.audit_repo = repositories.AdminAuditRepository(session)

    def _wallet(self, user_id: int) -> models.Wallet:
        wallet = self.wallet_repo.get_for_user(user_id)
        if wallet is None:
            with atomic(self.session):
                wallet = self.wallet_repo.get_or_create(user_id, settings.DEFAULT_CURRENCY)
            self.session.refresh(wallet)
        return wallet

    def summary(self, wallet: models.Wallet) -> dict:
        return {
            "total_earnings": self.wallet_repo.ledger_total(wallet.id, models.LedgerType.CREDIT),
            "total_withdrawals": abs(self.wallet_repo.ledger_total(wallet.id, models.LedgerType.DEBIT)),
            "available_balance": wallet.balance,
        }

    def overview(self, user: models.User, limit: int = 20, offset: int = 0, entry_type=None) -> dict:
        wallet = self._wallet(user.id)
        entries = self.wallet_repo.list_ledger(wallet.id, entry_type, limit=limit, offset=offset)
        total = self.wallet_repo.count_ledger(wallet.id, entry_type)
        return {
            "wallet": wallet_dict(wallet),
            "transactions": [row_dict(e) for e in entries],
            "summary": self.summary(wallet),
            "pagination": offset_pagination(total, limit, offset),
        }

    def withdraw(self, user: models.User, amount: float, method: str, account_details: str, notes: Optional[str] = None) -> dict:
        """Debit the wallet for a withdrawal request."""
        wallet = self._wallet(user.id)
        if wallet.balance < amount:
            raise ServiceError("Insufficient balance")
        if amount < settings.MIN_WITHDRAWAL:
            raise ServiceError(f"Minimum withdrawal amount is {settings.MIN_WITHDRAWAL:g}")
        with atomic(self.session):
            entry = record_movement(self.wallet_repo, wallet, -amount, f"Withdrawal request via {method}", "withdrawal", user.id)
        self.session.refresh(wallet)
        return {
            "message": "Withdrawal request submitted successfully",
            "transaction": row_dict(entry),
            "new_balance": wallet.balance,
            "method": method,
            "account_details": account_details,
            "notes": notes,
        }

    def list_requests(self, user: models.User) -> dict:
        return {"transactions": [row_dict(t) for t in self.tx_repo.list(user_id=user.id)]}

    def create_request(self, user: models.User, tx_type: models.WalletTransactionType, amount: float,
                       receipt_url: Optional[str] = None, card_number: Optional[str] = None,
                       card_holder_name: Optional[str] = None) -> dict:
        """Queue a deposit or withdrawal for admin review."""
        if tx_type == models.WalletTransactionType.DEPOSIT and not receipt_url:
            raise ServiceError("Receipt URL is required for deposits")
        if tx_type == models.WalletTransactionType.WITHDRAWAL:
            if not card_number or not card_holder_name:
                raise ServiceError("Card number and card holder name are required for withdrawals")
            if self._wallet(user.id).balance < amount:
                raise ServiceError("Insufficient balance")
        tx = self.tx_repo.add(models.WalletTransaction(
            user_id=user.id,
            type=tx_type,
            amount=amount,
            receipt_url=receipt_url,
            card_number=card_number,
            card_holder_name=card_holder_name,
        ))
        logger.info("wallet_request tx=%s user=%s type=%s amount=%s", tx.id, user.id, tx_type.value, amount)
        return row_dict(tx)

    def list_all_requests(self, status=None) -> dict:
        out = []
        for tx in self.tx_repo.list(status=status):
            item = row_dict(tx)
            user = self.user_repo.get(tx.user_id)
            item["user"] = {**user_summary(user), "email": user.email} if user else None
            out.append(item)
        return {"transactions": out}

    def process_request(self, admin: models.User, tx_id: int, action: str, admin_notes: Optional[str] = None) -> dict:
        """Approve or reject a pending request; approval moves the balance."""
        tx = self.tx_repo.get(tx_id)
        if tx is None:
            raise NotFoundError("Transaction not found")
        if tx.status != models.WalletTransactionStatus.PENDING:
            raise ServiceError("Transaction already processed")
        approve = action == "APPROVE"
        with atomic(self.session):
            if approve:
                wallet = self.wallet_repo.get_or_create(tx.user_id, settings.DEFAULT_CURRENCY)
                if tx.type == models.WalletTransactionType.DEPOSIT:
                    record_movement(self.wallet_repo, wallet, tx.amount, f"{tx.type.value} - Deposit approved", "wallet_transaction", tx.id)
                else:
                    if wallet.balance < tx.amount:
                        raise ServiceError("Insufficient balance")
                    record_movement(self.wallet_repo, wallet, -tx.amount, f"{tx.type.value} - Withdrawal approved", "wallet_transaction", tx.id)
            tx.status = models.WalletTransactionStatus.APPROVED if approve else models.WalletTransactionStatus.REJECTED
            tx.admin_notes = admin_notes
            tx.processed_by = admin.id
            tx.processed_at = models.utcnow()
            self.session.add(tx)
            self.audit_repo.add(models.AdminAudit(
                admin_id=admin.id,
                action=f"WALLET_TRANSACTION_{action}",
                target="WalletTransaction",
                target_id=str(tx.id),
                details=json.dumps({"type": tx.type.value, "amount": tx.amount, "user_id": tx.user_id, "admin_notes": admin_notes}),
            ), commit=False)
        logger.info("wallet_request_processed tx=%s action=%s admin=%s", tx.id, action, admin.id)
        return {"message": f"Transaction {tx.status.value.lower()} successfully", "transaction": row_dict(tx)}


class ReferralService:
    """Referral codes, code validation and referral statistics."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.referral_repo = repositories.ReferralRepository(session)
        self.wallet_repo = repositories.WalletRepository(session)

    def _new_code(self) -> str:
        while True:
            code = "".join(secrets.choice(REFERRAL_CODE_ALPHABET) for _ in range(REFERRAL_CODE_LENGTH))
            if self.user_repo.get_by_referral_code(code) is None:
                return code

    def ensure_code(self, user: models.User) -> dict:
        """Return the user's referral code, generating one on first use."""
        if not user.referral_code:
            user.referral_code = self._new_code()
            user.updated_at = models.utcnow()
            self.user_repo.add(user)
        return {"referral_code": user.referral_code, "message": "Referral code ready"}

    def _stats(self, referrals: List[models.Referral]) -> dict:
        return {
            "total_referrals": len(referrals),
            "total_cashback": sum(r.cashback_amount or 0 for r in referrals),
            "paid_cashback": sum(r.cashback_amount or 0 for r in referrals if r.cashback_paid),
            "pending_cashback": sum(r.cashback_amount or 0 for r in referrals if not r.cashback_paid),
        }

    def _referral_rows(self, referrals: List[models.Referral]) -> List[dict]:
        rows = []
        for r in referrals:
            referred = self.user_repo.get(r.referred_user_id)
            item = row_dict(r)
            item["referred_user"] = {**user_summary(referred), "email": referred.email} if referred else None
            rows.append(item)
        return rows

    def _referrer_of(self, user: models.User) -> Optional[dict]:
        if not user.referred_by:
            return None
        referrer = self.user_repo.get_by_referral_code(user.referred_by)
        return user_summary(referrer) if referrer else None

    def overview(self, user: models.User) -> dict:
        referrals = self.referral_repo.list_for_referrer(user.id)
        return {
            "referral_code": user.referral_code,
            "referred_by": user.referred_by,
            "stats": self._stats(referrals),
            "referrals": self._referral_rows(referrals),
        }

    def validate(self, code: str) -> dict:
        referrer = self.user_repo.get_by_referral_code(code.strip())
        if referrer is None or not referrer.is_active:
            raise NotFoundError("Invalid referral code")
        name = f"{referrer.first_name or ''} {referrer.last_name or ''}".strip() or referrer.username
        return {
            "valid": True,
            "referrer": {"id": referrer.id, "name": name, "username": referrer.username},
            "message": f"Valid referral code from {name}",
        }

    def user_referrals(self, user: models.User) -> dict:
        wallet = self.wallet_repo.get_for_user(user.id)
        referrals = self.referral_repo.list_for_referrer(user.id)
        return {
            "wallet": wallet_dict(wallet) if wallet else {"balance": 0, "currency": settings.DEFAULT_CURRENCY},
            "stats": self._stats(referrals),
            "referrals": self._referral_rows(referrals),
            "referred_by": self._referrer_of(user),
        }

    def refer(self, user: models.User, referred_email: str) -> dict:
        """Record that `user` referred an existing member."""
        if referred_email.lower() == user.email.lower():
            raise ServiceError("You cannot refer yourself")
        referred = self.user_repo.get_by_email(referred_email)
        if referred is None:
            raise NotFoundError("User with this email not found")
        if self.referral_repo.find(user.id, referred.id):
            raise ServiceError("You have already referred this user")
        if not user.referral_code:
            user.referral_code = self._new_code()
            self.session.add(user)
        referral = self.referral_repo.add(models.Referral(
            referrer_id=user.id,
            referred_user_id=referred.id,
            referral_code=user.referral_code,
            status="pending",
        ))
        logger.info("referral_created referrer=%s referred=%s", user.id, referred.id)
        return {**row_dict(referral), "referred_user": user_summary(referred)}


# -- friends -----------------------------------------------------------------

class FriendService:
    """Friend requests, friend lists, user search and friend profiles."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.friend_repo = repositories.FriendshipRepository(session)
        self.weight_repo = repositories.WeightRepository(session)
        self.workout_repo = repositories.WorkoutRepository(session)
        self.goal_repo = repositories.GoalRepository(session)

    def overview(self, user: models.User) -> dict:
        friends = []
        for f in self.friend_repo.list_accepted(user.id):
            other_id = f.receiver_id if f.requester_id == user.id else f.requester_id
            friends.append({"friendship_id": f.id, "since": f.updated_at, "user": user_summary(self.user_repo.get(other_id))})
        received = [
            {"id": f.id, "user": user_summary(self.user_repo.get(f.requester_id)), "created_at": f.created_at}
            for f in self.friend_repo.list_pending_received(user.id)
        ]
        sent = [
            {"id": f.id, "user": user_summary(self.user_repo.get(f.receiver_id)), "created_at": f.created_at}
            for f in self.friend_repo.list_pending_sent(user.id)
        ]
        return {"friends": friends, "received_requests": received, "sent_requests": sent}

    def send_request(self, user: models.User, target_id: int) -> dict:
        if target_id == user.id:
            raise ServiceError("Cannot add yourself as friend")
        target = self.user_repo.get(target_id)
        if target is None or not target.is_active:
            raise NotFoundError("User not found")
        existing = self.friend_repo.between(user.id, target.id)
        if existing is not None:
            if existing.status == models.FriendshipStatus.ACCEPTED:
                raise ServiceError("Already friends")
            if existing.status == models.FriendshipStatus.PENDING:
                raise ServiceError("Friend request already sent")
            if existing.status == models.FriendshipStatus.BLOCKED:
                raise ServiceError("Cannot send friend request")
            # a rejected request may be sent again
            existing.requester_id = user.id
            existing.receiver_id = target.id
            existing.status = models.FriendshipStatus.PENDING
            existing.updated_at = models.utcnow()
            friendship = self.friend_repo.add(existing)
        else:
            friendship = self.friend_repo.add(models.Friendship(requester_id=user.id, receiver_id=target.id))
        return {**row_dict(friendship), "user": user_summary(target)}

    def _participant(self, user: models.User, friendship_id: int) -> models.Friendship:
        friendship = self.friend_repo.get(friendship_id)
        if friendship is None:
            raise NotFoundError("Friendship not found")
        if user.id not in (friendship.requester_id, friendship.receiver_id):
            raise ForbiddenError("You are not part of this friendship")
        return friendship

    def act(self, user: models.User, friendship_id: int, action: str) -> dict:
        """Accept, reject or remove a friendship on behalf of a participant."""
        friendship = self._participant(user, friendship_id)
        if action in ("accept", "reject"):
            if friendship.receiver_id != user.id:
                raise ForbiddenError(f"Only the receiver can {action} a friend request")
            if friendship.status != models.FriendshipStatus.PENDING:
                raise ServiceError("Friend request is not pending")
            friendship.status = models.FriendshipStatus.ACCEPTED if action == "accept" else models.FriendshipStatus.REJECTED
            friendship.updated_at = models.utcnow()
            self.friend_repo.add(friendship)
            return {"message": f"Friend request {action}ed", "friendship": row_dict(friendship)}
        if friendship.status != models.FriendshipStatus.ACCEPTED:
            raise ServiceError("Can only remove accepted friendships")
        self.friend_repo.delete(friendship)
        return {"message": "Friend removed"}

    def delete(self, user: models.User, friendship_id: int) -> None:
        self.friend_repo.delete(self._participant(user, friendship_id))

    def _status_for(self, user_id: int, other_id: int) -> str:
        f = self.friend_repo.between(user_id, other_id)
        if f is None:
            return "none"
        if f.status == models.FriendshipStatus.PENDING:
            return "sent" if f.requester_id == user_id else "received"
        return f.status.value.lower()

    def search(self, user: models.User, query: str, limit: int = 10) -> dict:
        query = (query or "").strip()
        if len(query) < 2:
            raise ServiceError("Search query must be at least 2 characters")
        users = self.user_repo.search(query, exclude_id=user.id, limit=limit)
        return {"users": [{**user_summary(u), "friendship_status": self._status_for(user.id, u.id)} for u in users]}

    def profile(self, user: models.User, user_id: int) -> dict:
        """Profile with statistics for the caller or one of their friends."""
        target = self.user_repo.get(user_id)
        if target is None:
            raise NotFoundError("User not found")
        status = "self"
        if target.id != user.id:
            status = self._status_for(user.id, target.id)
            if status != "accepted":
                raise ForbiddenError("You can only view profiles of friends")
        workouts = self.workout_repo.list_for_user(target.id)
        latest = self.weight_repo.list_for_user(target.id, limit=5)
        oldest = self.weight_repo.oldest_for_user(target.id)
        active_goals = self.goal_repo.list_for_user(target.id, is_active=True)
        return {
            "user": {**user_summary(target), "created_at": target.created_at},
            "friendship_status": status,
            "statistics": {
                "total_workouts": len(workouts),
                "total_calories": sum(w.calories_burned or 0 for w in workouts),
                "total_workout_time": sum(w.duration for w in workouts),
                "current_weight": latest[0].weight if latest else None,
                "weight_progress": round(latest[0].weight - oldest.weight, 1) if latest and oldest else None,
                "active_goals": len(active_goals),
            },
            "recent_weights": [row_dict(w) for w in latest],
            "recent_workouts": [workout_dict(w) for w in workouts[:5]],
            "active_goals": [goal_dict(g) for g in active_goals[:3]],
        }


# -- admin -------------------------------------------------------------------

class AdminService:
    """Back-office listings, program management, exports and usage stats."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)
        self.wallet_repo = repositories.WalletRepository(session)
        self.workout_repo = repositories.WorkoutRepository(session)
        self.program_repo = repositories.ProgramRepository(session)
        self.payment_repo = repositories.PaymentRepository(session)
        self.tx_repo = repositories.WalletTransactionRepository(session)

    # users

    def list_users(self, page: int = 1, limit: int = 10, search: Optional[str] = None, role=None, status: Optional[str] = None) -> dict:
        is_active = None if not status else status == "active"
        users, total = self.user_repo.list_admin(search, role, is_active, offset=(page - 1) * limit, limit=limit)
        rows = []
        for u in users:
            profile = self.profile_repo.get_for_user(u.id)
            wallet = self.wallet_repo.get_for_user(u.id)
            item = user_dict(u)
            item["profile"] = profile_dict(profile)
            item["counts"] = {
                "payments": self.payment_repo.count(user_id=u.id),
                "workouts": self.workout_repo.count_for_user(u.id),
            }
            item["wallet"] = {"balance": wallet.balance} if wallet else None
            rows.append(item)
        total_payments = self.payment_repo.count()
        return {
            "users": rows,
            "pagination": page_pagination(total, page, limit),
            "stats": {
                "total": self.user_repo.count(),
                "active": self.user_repo.count(models.User.is_active == True),  # noqa: E712
                "inactive": self.user_repo.count(models.User.is_active == False),  # noqa: E712
                "admins": self.user_repo.count(models.User.role.in_(models.ADMIN_ROLES)),
                "total_payments": total_payments,
                "total_subscriptions": total_payments,
            },
        }

    # programs

    def _program(self, program_id: int) -> models.Program:
        program = self.program_repo.get(program_id)
        if program is None:
            raise NotFoundError("Program not found")
        return program

    def _program_row(self, program: models.Program) -> dict:
        out = program_dict(program)
        out["subscription_count"] = self.payment_repo.count(program_id=program.id)
        return out

    def list_programs(self) -> dict:
        rows = [self._program_row(p) for p in self.program_repo.list(include_inactive=True)]
        active = sum(1 for r in rows if r["is_active"])
        return {
            "programs": rows,
            "stats": {
                "total": len(rows),
                "active": active,
                "inactive": len(rows) - active,
                "total_subscriptions": sum(r["subscription_count"] for r in rows),
                "total_revenue": sum(r["price"] * r["subscription_count"] for r in rows),
            },
        }

    @staticmethod
    def _apply_pricing(program: models.Program, data: dict) -> None:
        """Discounted price plus percentage applies a discount; a plain price clears it."""
        if data.get("discounted_price") is not None and data.get("discount_percentage") is not None:
            program.original_price = program.original_price or program.price
            program.price = data["discounted_price"]
            program.discount_percentage = data["discount_percentage"]
        elif data.get("price") is not None:
            program.price = data["price"]
            program.original_price = None
            program.discount_percentage = None

    def create_program(self, admin: models.User, data: dict) -> dict:
        if self.program_repo.get_by_name(data["name"]):
            raise ServiceError("Program with this name already exists")
        program = models.Program(
            name=data["name"],
            description=data["description"],
            price=data["price"],
            duration=data["duration"],
            category=data.get("category"),
            level=data.get("level"),
            features=json.dumps(data.get("features") or []),
            is_active=data.get("is_active", True),
        )
        self._apply_pricing(program, data)
        self.program_repo.add(program)
        logger.info("program_created program=%s admin=%s", program.id, admin.id)
        return self._program_row(program)

    def get_program(self, program_id: int) -> dict:
        program = self._program(program_id)
        out = self._program_row(program)
        out["stats"] = {
            "pending": self.payment_repo.count(program_id=program.id, status=models.PaymentStatus.PENDING),
            "approved": self.payment_repo.count(program_id=program.id, status=models.PaymentStatus.APPROVED),
            "revenue": self.payment_repo.sum_amount(program_id=program.id, status=models.PaymentStatus.APPROVED),
        }
        return out

    def update_program(self, admin: models.User, program_id: int, data: dict) -> dict:
        program = self._program(program_id)
        if data.get("name") and data["name"] != program.name and self.program_repo.get_by_name(data["name"], exclude_id=program.id):
            raise ServiceError("Program with this name already exists")
        for field in ("name", "description", "duration", "category", "level", "is_active"):
            if data.get(field) is not None:
                setattr(program, field, data[field])
        if data.get("features") is not None:
            program.features = json.dumps(data["features"])
        self._apply_pricing(program, data)
        program.updated_at = models.utcnow()
        self.program_repo.add(program)
        logger.info("program_updated program=%s admin=%s", program.id, admin.id)
        return self._program_row(program)

    def delete_program(self, admin: models.User, program_id: int) -> None:
        program = self._program(program_id)
        if self.payment_repo.count(program_id=program.id):
            raise ServiceError("Cannot delete program with existing payments/subscriptions")
        self.program_repo.delete(program)
        logger.info("program_deleted program=%s admin=%s", program_id, admin.id)

    def program_subscriptions(self, program_id: int, status=None) -> dict:
        program = self._program(program_id)
        rows = []
        for p in self.payment_repo.list(program_id=program.id, status=status):
            item = payment_dict(p, user=self.user_repo.get(p.user_id))
            item["start_date"] = p.created_at
            item["end_date"] = p.created_at + timedelta(days=program.duration)
            rows.append(item)
        return {"program": program_dict(program), "subscriptions": rows}

    # payments

    def list_payments(self, page: int = 1, limit: int = 10, status=None, program_id=None, user_id=None,
                      sort_by: str = "created_at", sort_order: str = "desc") -> dict:
        filters = {"status": status, "program_id": program_id, "user_id": user_id}
        payments = self.payment_repo.list(offset=(page - 1) * limit, limit=limit, sort_by=sort_by, sort_order=sort_order, **filters)
        total = self.payment_repo.count(**filters)
        totals = self.payment_repo.totals_by_status(**filters)
        pending = totals.get(models.PaymentStatus.PENDING, (0, 0.0))
        approved = totals.get(models.PaymentStatus.APPROVED, (0, 0.0))
        rejected = totals.get(models.PaymentStatus.REJECTED, (0, 0.0))
        return {
            "payments": [payment_dict(p, self.program_repo.get(p.program_id), self.user_repo.get(p.user_id)) for p in payments],
            "pagination": page_pagination(total, page, limit),
            "summary": {
                "total": sum(c for c, _ in totals.values()),
                "pending": pending[0],
                "approved": approved[0],
                "rejected": rejected[0],
                "total_amount": sum(a for _, a in totals.values()),
                "pending_amount": pending[1],
                "approved_amount": approved[1],
            },
        }

    def get_payment(self, payment_id: int) -> dict:
        payment = self.payment_repo.get(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        return payment_dict(payment, self.program_repo.get(payment.program_id), self.user_repo.get(payment.user_id))

    def delete_payment(self, admin: models.User, payment_id: int) -> dict:
        """Hard-delete a pending payment; otherwise mark it rejected."""
        payment = self.payment_repo.get(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")
        if payment.status == models.PaymentStatus.PENDING:
            self.payment_repo.delete(payment)
            logger.info("payment_deleted payment=%s admin=%s", payment_id, admin.id)
            return {"message": "Payment deleted successfully"}
        payment.status = models.PaymentStatus.REJECTED
        payment.admin_notes = "Payment cancelled by admin"
        payment.updated_at = models.utcnow()
        self.payment_repo.add(payment)
        logger.info("payment_cancelled payment=%s admin=%s", payment_id, admin.id)
        return {"message": "Payment cancelled successfully", "payment": payment_dict(payment)}

    def _export_rows(self, status=None, start_date=None, end_date=None, payment_ids=None):
        payments = self.payment_repo.list(status=status, start=day_start(start_date), end=day_end(end_date), payment_ids=payment_ids)
        users = {uid: self.user_repo.get(uid) for uid in {p.user_id for p in payments}}
        programs = {pid: self.program_repo.get(pid) for pid in {p.program_id for p in payments}}
        return payments, users, programs

    def export_json(self, status=None, start_date=None, end_date=None, payment_ids=None) -> dict:
        payments, users, programs = self._export_rows(status, start_date, end_date, payment_ids)
        return {
            "payments": [payment_dict(p, programs.get(p.program_id), users.get(p.user_id)) for p in payments],
            "exported_at": models.utcnow(),
            "total_records": len(payments),
            "filters": {"status": status, "start_date": start_date, "end_date": end_date},
        }

    def export_csv(self, status=None, start_date=None, end_date=None) -> tuple:
        """Return `(filename, csv_text)` for the standard export."""
        payments, users, programs = self._export_rows(status, start_date, end_date)
        text = export_utils.render_csv(export_utils.STANDARD_HEADERS, export_utils.standard_rows(payments, users, programs))
        return f"payments_export_{date.today().isoformat()}.csv", text

    def export_custom_csv(self, payment_ids=None, status=None, start_date=None, end_date=None,
                          include_user_details: bool = True, include_program_details: bool = True) -> tuple:
        payments, users, programs = self._export_rows(status, start_date, end_date, payment_ids)
        headers = export_utils.custom_headers(include_user_details, include_program_details)
        rows = export_utils.custom_rows(payments, users, programs, include_user_details, include_program_details)
        return f"payments_custom_export_{date.today().isoformat()}.csv", export_utils.render_csv(headers, rows)

    # stats

    @staticmethod
    def _growth(recent: int, previous: int) -> float:
        return round((recent - previous) / previous * 100, 2) if previous > 0 else 0

    def usage_stats(self) -> dict:
        """Usage overview with 30-day growth against the 30 days before."""
        now = models.utcnow()
        thirty, sixty = now - timedelta(days=30), now - timedelta(days=60)
        approved = models.PaymentStatus.APPROVED
        total_users = self.user_repo.count()
        recent_users = self.user_repo.count_created_between(thirty)
        previous_users = self.user_repo.count_created_between(sixty, thirty)
        recent_payments = self.payment_repo.count(status=approved, start=thirty)
        previous_payments = self.payment_repo.count(status=approved, start=sixty, end=thirty)
        total_payments = self.payment_repo.count()
        pending_payments = self.payment_repo.count(status=models.PaymentStatus.PENDING)
        total_programs = self.program_repo.count(include_inactive=True)
        active_programs = self.program_repo.count()
        approved_tx = self.tx_repo.count(models.WalletTransactionStatus.APPROVED)
        revenue = self.payment_repo.sum_amount(status=approved)
        return {
            "users": {"total": total_users, "growth": self._growth(recent_users, previous_users), "recent": recent_users},
            "payments": {
                "total": total_payments,
                "pending": pending_payments,
                "approved": self.payment_repo.count(status=approved),
                "rejected": self.payment_repo.count(status=models.PaymentStatus.REJECTED),
                "growth": self._growth(recent_payments, previous_payments),
            },
            "programs": {"total": total_programs, "active": active_programs, "inactive": total_programs - active_programs},
            "transactions": {
                "total": self.tx_repo.count(),
                "approved": approved_tx,
                "pending": self.tx_repo.count(models.WalletTransactionStatus.PENDING),
            },
            "revenue": {
                "total": revenue,
                "pending": self.payment_repo.sum_amount(status=models.PaymentStatus.PENDING),
                "currency": settings.DEFAULT_CURRENCY,
            },
            "overview": {
                "total_users": total_users,
                "total_payments": total_payments,
                "total_programs": total_programs,
                "total_revenue": revenue,
                "pending_payments": pending_payments,
                "active_programs": active_programs,
            },
        }
