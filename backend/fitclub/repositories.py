"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
profiles, workouts, programs, payments, wallets, referrals, friendships).
Repositories return SQLModel objects. Plain CRUD helpers commit and
refresh; helpers that take part in a multi-row write accept
`commit=False` and only flush, leaving the commit to the calling service.
"""

from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func, or_
from sqlmodel import Session, select

from . import models


def contains_pattern(text: str) -> str:
    """Substring `ilike` pattern with the LIKE wildcards in `text` escaped by backslash."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class _Repository:
    """Shared add/delete helpers; subclasses set `model`."""
    model = None

    def __init__(self, session: Session):
        self.session = session

    def get(self, obj_id: int):
        """Fetch a row by primary key or return `None`."""
        return self.session.get(self.model, obj_id)

    def add(self, obj, commit: bool = True):
        """Stage `obj`; commit and refresh it unless `commit` is False."""
        self.session.add(obj)
        if commit:
            self.session.commit()
            self.session.refresh(obj)
        else:
            self.session.flush()
        return obj

    def delete(self, obj, commit: bool = True):
        self.session.delete(obj)
        if commit:
            self.session.commit()
        else:
            self.session.flush()

    def _count(self, *conditions) -> int:
        stmt = select(func.count()).select_from(self.model)
        if conditions:
            stmt = stmt.where(*conditions)
        return self.session.exec(stmt).one()


class UserRepository(_Repository):
    """Lookups and listings for `User` objects."""
    model = models.User

    def get_by_email(self, email: str) -> Optional[models.User]:
        stmt = select(models.User).where(func.lower(models.User.email) == email.lower())
        return self.session.exec(stmt).first()

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get_by_telegram_id(self, telegram_id: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.telegram_id == str(telegram_id))
        return self.session.exec(stmt).first()

    def get_by_referral_code(self, code: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.referral_code == code.upper())
        return self.session.exec(stmt).first()

    def search(self, query: str, exclude_id: int, limit: int = 10) -> List[models.User]:
        """Active users other than `exclude_id` matching by id or name substring."""
        pattern = contains_pattern(query)
        matches = [
            models.User.username.ilike(pattern, escape="\\"),
            models.User.first_name.ilike(pattern, escape="\\"),
            models.User.last_name.ilike(pattern, escape="\\"),
        ]
        if query.isdigit():
            matches.append(models.User.id == int(query))
        stmt = (
            select(models.User)
            .where(models.User.id != exclude_id, models.User.is_active == True, or_(*matches))  # noqa: E712
            .order_by(models.User.username)
            .limit(limit)
        )
        return self.session.exec(stmt).all()

    def _admin_filters(self, search: Optional[str], role: Optional[models.Role], is_active: Optional[bool]) -> list:
        conditions = []
        if search:
            pattern = contains_pattern(search)
            conditions.append(or_(
                models.User.first_name.ilike(pattern, escape="\\"),
                models.User.last_name.ilike(pattern, escape="\\"),
                models.User.username.ilike(pattern, escape="\\"),
                models.User.email.ilike(pattern, escape="\\"),
                models.User.telegram_id.ilike(pattern, escape="\\"),
            ))
        if role is not None:
            conditions.append(models.User.role == role)
        if is_active is not None:
            conditions.append(models.User.is_active == is_active)
        return conditions

    def list_admin(self, search=None, role=None, is_active=None, offset: int = 0, limit: int = 10) -> Tuple[List[models.User], int]:
        """Return one page of users, newest first, and the filtered total."""
        conditions = self._admin_filters(search, role, is_active)
        stmt = select(models.User).order_by(models.User.created_at.desc(), models.User.id.desc())
        if conditions:
            stmt = stmt.where(*conditions)
        rows = self.session.exec(stmt.offset(offset).limit(limit)).all()
        return rows, self._count(*conditions)

    def count(self, *conditions) -> int:
        return self._count(*conditions)

    def count_created_between(self, start: datetime, end: Optional[datetime] = None) -> int:
        conditions = [models.User.created_at >= start]
        if end is not None:
            conditions.append(models.User.created_at < end)
        return self._count(*conditions)


class ProfileRepository(_Repository):
    model = models.Profile

    def get_for_user(self, user_id: int) -> Optional[models.Profile]:
        stmt = select(models.Profile).where(models.Profile.user_id == user_id)
        return self.session.exec(stmt).first()


class WeightRepository(_Repository):
    """Weight entries, always listed newest first."""
    model = models.Weight

    def get_owned(self, weight_id: int, user_id: int) -> Optional[models.Weight]:
        w = self.session.get(models.Weight, weight_id)
        if w is None or w.user_id != user_id:
            return None
        return w

    def list_for_user(self, user_id: int, limit: Optional[int] = None, offset: int = 0) -> List[models.Weight]:
        stmt = (
            select(models.Weight)
            .where(models.Weight.user_id == user_id)
            .order_by(models.Weight.created_at.desc(), models.Weight.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count_for_user(self, user_id: int) -> int:
        return self._count(models.Weight.user_id == user_id)

    def oldest_for_user(self, user_id: int) -> Optional[models.Weight]:
        stmt = (
            select(models.Weight)
            .where(models.Weight.user_id == user_id)
            .order_by(models.Weight.created_at.asc(), models.Weight.id.asc())
        )
        return self.session.exec(stmt).first()


class NutritionRepository(_Repository):
    model = models.NutritionEntry

    def get_owned(self, entry_id: int, user_id: int) -> Optional[models.NutritionEntry]:
        e = self.session.get(models.NutritionEntry, entry_id)
        if e is None or e.user_id != user_id:
            return None
        return e

    def _filters(self, user_id: int, day: Optional[date] = None, meal_type=None, start: Optional[date] = None, end: Optional[date] = None) -> list:
        conditions = [models.NutritionEntry.user_id == user_id]
        if day is not None:
            conditions.append(models.NutritionEntry.entry_date == day)
        if meal_type is not None:
            conditions.append(models.NutritionEntry.meal_type == meal_type)
        if start is not None:
            conditions.append(models.NutritionEntry.entry_date >= start)
        if end is not None:
            conditions.append(models.NutritionEntry.entry_date <= end)
        return conditions

    def list_for_user(self, user_id: int, day=None, meal_type=None, start=None, end=None, limit: Optional[int] = None, offset: int = 0) -> List[models.NutritionEntry]:
        """Entries matching the filters, latest day first."""
        stmt = (
            select(models.NutritionEntry)
            .where(*self._filters(user_id, day, meal_type, start, end))
            .order_by(
                models.NutritionEntry.entry_date.desc(),
                models.NutritionEntry.created_at.desc(),
                models.NutritionEntry.id.desc(),
            )
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count_for_user(self, user_id: int, day=None, meal_type=None, start=None, end=None) -> int:
        return self._count(*self._filters(user_id, day, meal_type, start, end))

    def for_day(self, user_id: int, day: date) -> List[models.NutritionEntry]:
        stmt = select(models.NutritionEntry).where(*self._filters(user_id, day=day)).order_by(models.NutritionEntry.id)
        return self.session.exec(stmt).all()

    def since(self, user_id: int, start: date) -> List[models.NutritionEntry]:
        stmt = select(models.NutritionEntry).where(*self._filters(user_id, start=start))
        return self.session.exec(stmt).all()


class WorkoutRepository(_Repository):
    model = models.Workout

    def get_owned(self, workout_id: int, user_id: int) -> Optional[models.Workout]:
        w = self.session.get(models.Workout, workout_id)
        if w is None or w.user_id != user_id:
            return None
        return w

    def _filters(self, user_id: int, workout_type=None, start: Optional[datetime] = None, end: Optional[datetime] = None) -> list:
        conditions = [models.Workout.user_id == user_id]
        if workout_type is not None:
            conditions.append(models.Workout.type == workout_type)
        if start is not None:
            conditions.append(models.Workout.completed_at >= start)
        if end is not None:
            conditions.append(models.Workout.completed_at <= end)
        return conditions

    def list_for_user(self, user_id: int, workout_type=None, start=None, end=None, limit: Optional[int] = None, offset: int = 0) -> List[models.Workout]:
        """Workouts matching the filters, most recently completed first."""
        stmt = (
            select(models.Workout)
            .where(*self._filters(user_id, workout_type, start, end))
            .order_by(models.Workout.completed_at.desc(), models.Workout.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count_for_user(self, user_id: int, workout_type=None, start=None, end=None) -> int:
        return self._count(*self._filters(user_id, workout_type, start, end))


class ExerciseRepository(_Repository):
    model = models.Exercise

    def list_for_workout(self, workout_id: int) -> List[models.Exercise]:
        stmt = (
            select(models.Exercise)
            .where(models.Exercise.workout_id == workout_id)
            .order_by(models.Exercise.order, models.Exercise.id)
        )
        return self.session.exec(stmt).all()

    def get_in_workout(self, exercise_id: int, workout_id: int) -> Optional[models.Exercise]:
        ex = self.session.get(models.Exercise, exercise_id)
        if ex is None or ex.workout_id != workout_id:
            return None
        return ex

    def max_order(self, workout_id: int) -> int:
        stmt = select(func.max(models.Exercise.order)).where(models.Exercise.workout_id == workout_id)
        return self.session.exec(stmt).one() or 0


class GoalRepository(_Repository):
    """Fitness goals and their progress history."""
    model = models.FitnessGoal

    def get_owned(self, goal_id: int, user_id: int) -> Optional[models.FitnessGoal]:
        g = self.session.get(models.FitnessGoal, goal_id)
        if g is None or g.user_id != user_id:
            return None
        return g

    def _filters(self, user_id: int, category=None, is_active: Optional[bool] = None) -> list:
        conditions = [models.FitnessGoal.user_id == user_id]
        if category is not None:
            conditions.append(models.FitnessGoal.category == category)
        if is_active is True:
            conditions.append(models.FitnessGoal.status == "active")
        elif is_active is False:
            conditions.append(models.FitnessGoal.status != "active")
        return conditions

    def list_for_user(self, user_id: int, category=None, is_active=None, limit: Optional[int] = None, offset: int = 0) -> List[models.FitnessGoal]:
        stmt = (
            select(models.FitnessGoal)
            .where(*self._filters(user_id, category, is_active))
            .order_by(models.FitnessGoal.created_at.desc(), models.FitnessGoal.id.desc())
            .offset(offset)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count_for_user(self, user_id: int, category=None, is_active=None) -> int:
        return self._count(*self._filters(user_id, category, is_active))

    def list_progress(self, goal_id: int) -> List[models.GoalProgress]:
        stmt = (
            select(models.GoalProgress)
            .where(models.GoalProgress.goal_id == goal_id)
            .order_by(models.GoalProgress.created_at.desc(), models.GoalProgress.id.desc())
        )
        return self.session.exec(stmt).all()


class ProgramRepository(_Repository):
    model = models.Program

    def get_by_name(self, name: str, exclude_id: Optional[int] = None) -> Optional[models.Program]:
        stmt = select(models.Program).where(models.Program.name == name)
        if exclude_id is not None:
            stmt = stmt.where(models.Program.id != exclude_id)
        return self.session.exec(stmt).first()

    def _filters(self, category=None, level=None, include_inactive: bool = False) -> list:
        conditions = []
        if not include_inactive:
            conditions.append(models.Program.is_active == True)  # noqa: E712
        if category:
            conditions.append(models.Program.category == category)
        if level:
            conditions.append(models.Program.level == level)
        return conditions

    def list(self, category=None, level=None, include_inactive: bool = False, limit: Optional[int] = None, offset: int = 0) -> List[models.Program]:
        """Catalog listing, newest first."""
        stmt = select(models.Program).order_by(models.Program.created_at.desc(), models.Program.id.desc())
        conditions = self._filters(category, level, include_inactive)
        if conditions:
            stmt = stmt.where(*conditions)
        stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count(self, category=None, level=None, include_inactive: bool = False) -> int:
        return self._count(*self._filters(category, level, include_inactive))


class PaymentRepository(_Repository):
    """Payment queries for members, reviewers and exports."""
    model = models.Payment

    SORTABLE = ("created_at", "updated_at", "amount", "status")

    def get_owned(self, payment_id: int, user_id: int) -> Optional[models.Payment]:
        p = self.session.get(models.Payment, payment_id)
        if p is None or p.user_id != user_id:
            return None
        return p

    def get_many(self, payment_ids: Sequence[int]) -> List[models.Payment]:
        stmt = select(models.Payment).where(models.Payment.id.in_(list(payment_ids)))
        return self.session.exec(stmt).all()

    def find_pending(self, user_id: int, program_id: int) -> Optional[models.Payment]:
        stmt = select(models.Payment).where(
            models.Payment.user_id == user_id,
            models.Payment.program_id == program_id,
            models.Payment.status == models.PaymentStatus.PENDING,
        )
        return self.session.exec(stmt).first()

    def _filters(self, status=None, user_id=None, program_id=None, start: Optional[datetime] = None, end: Optional[datetime] = None, payment_ids=None) -> list:
        conditions = []
        if status is not None:
            conditions.append(models.Payment.status == status)
        if user_id is not None:
            conditions.append(models.Payment.user_id == user_id)
        if program_id is not None:
            conditions.append(models.Payment.program_id == program_id)
        if start is not None:
            conditions.append(models.Payment.created_at >= start)
        if end is not None:
            conditions.append(models.Payment.created_at <= end)
        if payment_ids is not None:
            conditions.append(models.Payment.id.in_(list(payment_ids)))
        return conditions

    def list(self, offset: int = 0, limit: Optional[int] = None, sort_by: str = "created_at", sort_order: str = "desc", **filters) -> List[models.Payment]:
        column = getattr(models.Payment, sort_by if sort_by in self.SORTABLE else "created_at")
        ordering = column.asc() if sort_order == "asc" else column.desc()
        stmt = select(models.Payment).order_by(ordering, models.Payment.id.desc())
        conditions = self._filters(**filters)
        if conditions:
            stmt = stmt.where(*conditions)
        stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count(self, **filters) -> int:
        return self._count(*self._filters(**filters))

    def totals_by_status(self, **filters) -> dict:
        """Map each status to `(count, amount sum)` for the filtered payments."""
        stmt = select(models.Payment.status, func.count(models.Payment.id), func.sum(models.Payment.amount)).group_by(models.Payment.status)
        conditions = self._filters(**filters)
        if conditions:
            stmt = stmt.where(*conditions)
        return {status: (cnt, float(total or 0)) for status, cnt, total in self.session.exec(stmt).all()}

    def sum_amount(self, **filters) -> float:
        stmt = select(func.sum(models.Payment.amount))
        conditions = self._filters(**filters)
        if conditions:
            stmt = stmt.where(*conditions)
        return float(self.session.exec(stmt).one() or 0)


class WalletRepository(_Repository):
    """Wallets and their ledger.

    `apply` is the only code path that changes a balance; it always writes
    the matching `WalletLedger` row and never commits.
    """
    model = models.Wallet

    def get_for_user(self, user_id: int) -> Optional[models.Wallet]:
        stmt = select(models.Wallet).where(models.Wallet.user_id == user_id)
        return self.session.exec(stmt).first()

    def get_or_create(self, user_id: int, currency: str) -> models.Wallet:
        wallet = self.get_for_user(user_id)
        if wallet is None:
            wallet = self.add(models.Wallet(user_id=user_id, currency=currency), commit=False)
        return wallet

    def apply(self, wallet: models.Wallet, amount: float, description: str, reference_type: str, reference_id) -> models.WalletLedger:
        """Add the signed `amount` to the balance and record the ledger row."""
        entry = models.WalletLedger(
            wallet_id=wallet.id,
            amount=amount,
            type=models.LedgerType.CREDIT if amount >= 0 else models.LedgerType.DEBIT,
            description=description,
            reference_type=reference_type,
            reference_id=str(reference_id) if reference_id is not None else None,
        )
        wallet.balance = (wallet.balance or 0) + amount
        wallet.updated_at = models.utcnow()
        self.session.add(wallet)
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_ledger(self, wallet_id: int, entry_type=None, limit: Optional[int] = None, offset: int = 0) -> List[models.WalletLedger]:
        stmt = select(models.WalletLedger).where(models.WalletLedger.wallet_id == wallet_id)
        if entry_type is not None:
            stmt = stmt.where(models.WalletLedger.type == entry_type)
        stmt = stmt.order_by(models.WalletLedger.created_at.desc(), models.WalletLedger.id.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.exec(stmt).all()

    def count_ledger(self, wallet_id: int, entry_type=None) -> int:
        stmt = select(func.count()).select_from(models.WalletLedger).where(models.WalletLedger.wallet_id == wallet_id)
        if entry_type is not None:
            stmt = stmt.where(models.WalletLedger.type == entry_type)
        return self.session.exec(stmt).one()

    def ledger_total(self, wallet_id: int, entry_type: models.LedgerType) -> float:
        stmt = select(func.sum(models.WalletLedger.amount)).where(
            models.WalletLedger.wallet_id == wallet_id,
            models.WalletLedger.type == entry_type,
        )
        return float(self.session.exec(stmt).one() or 0)


class WalletTransactionRepository(_Repository):
    model = models.WalletTransaction

    def list(self, user_id: Optional[int] = None, status=None) -> List[models.WalletTransaction]:
        stmt = select(models.WalletTransaction).order_by(models.WalletTransaction.created_at.desc(), models.WalletTransaction.id.desc())
        if user_id is not None:
            stmt = stmt.where(models.WalletTransaction.user_id == user_id)
        if status is not None:
            stmt = stmt.where(models.WalletTransaction.status == status)
        return self.session.exec(stmt).all()

    def count(self, status=None) -> int:
        if status is None:
            return self._count()
        return self._count(models.WalletTransaction.status == status)


class ReferralRepository(_Repository):
    model = models.Referral

    def list_for_referrer(self, referrer_id: int) -> List[models.Referral]:
        stmt = (
            select(models.Referral)
            .where(models.Referral.referrer_id == referrer_id)
            .order_by(models.Referral.created_at.desc(), models.Referral.id.desc())
        )
        return self.session.exec(stmt).all()

    def find(self, referrer_id: int, referred_user_id: int) -> Optional[models.Referral]:
        stmt = select(models.Referral).where(
            models.Referral.referrer_id == referrer_id,
            models.Referral.referred_user_id == referred_user_id,
        )
        return self.session.exec(stmt).first()

    def active_for_referred(self, referred_user_id: int) -> Optional[models.Referral]:
        """The oldest still-active referral that brought this user in."""
        stmt = (
            select(models.Referral)
            .where(models.Referral.referred_user_id == referred_user_id, models.Referral.status == "active")
            .order_by(models.Referral.created_at.asc(), models.Referral.id.asc())
        )
        return self.session.exec(stmt).first()


class FriendshipRepository(_Repository):
    model = models.Friendship

    def between(self, user_a: int, user_b: int) -> Optional[models.Friendship]:
        """Friendship row in either direction, if any."""
        stmt = select(models.Friendship).where(or_(
            (models.Friendship.requester_id == user_a) & (models.Friendship.receiver_id == user_b),
            (models.Friendship.requester_id == user_b) & (models.Friendship.receiver_id == user_a),
        ))
        return self.session.exec(stmt).first()

    def list_accepted(self, user_id: int) -> List[models.Friendship]:
        stmt = (
            select(models.Friendship)
            .where(
                models.Friendship.status == models.FriendshipStatus.ACCEPTED,
                or_(models.Friendship.requester_id == user_id, models.Friendship.receiver_id == user_id),
            )
            .order_by(models.Friendship.updated_at.desc())
        )
        return self.session.exec(stmt).all()

    def list_pending_received(self, user_id: int) -> List[models.Friendship]:
        stmt = (
            select(models.Friendship)
            .where(models.Friendship.receiver_id == user_id, models.Friendship.status == models.FriendshipStatus.PENDING)
            .order_by(models.Friendship.created_at.desc())
        )
        return self.session.exec(stmt).all()

    def list_pending_sent(self, user_id: int) -> List[models.Friendship]:
        stmt = (
            select(models.Friendship)
            .where(models.Friendship.requester_id == user_id, models.Friendship.status == models.FriendshipStatus.PENDING)
            .order_by(models.Friendship.created_at.desc())
        )
        return self.session.exec(stmt).all()


class AdminAuditRepository(_Repository):
    model = models.AdminAudit
