"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the fitclub backend. Controllers
are intentionally thin: they accept requests, delegate to services, and
return JSON responses. Service failures (`services.ServiceError` and its
subclasses) are rendered by one exception handler as `{"detail": ...}`.

Endpoint groups (all under `/api`):
- auth: signup, login, Telegram login
- user: profile, onboarding, language, BMI, weight, nutrition, workouts, exercises,
  goals, subscriptions, wallet, referrals
- programs, payments, uploads, wallet transactions, referral codes
- friends and user search
- admin: users, programs, payments, exports, wallet transactions, stats
"""

from datetime import date
import json
import logging
import os
import time
from typing import Optional
import uuid

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from sqlmodel import Session

from . import models, schemas, services
from .auth import get_current_user, require_admin
from .config import settings
from .database import create_db_and_tables, get_session
from .utils import uploads
from .utils.rate_limit import SlidingWindowLimiter

app = FastAPI(title="Fitclub API")
logger = logging.getLogger("fitclub.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
auth_rate_limiter = SlidingWindowLimiter()

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

settings.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

create_db_and_tables()


def _log_request(level: int, event: str, request: Request, req_id: str, started: float, status_code: Optional[int] = None):
    fields = {
        "request_id": req_id,
        "path": request.url.path,
        "method": request.method,
        "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
        "client": request.client.host if request.client else "unknown",
    }
    if status_code is not None:
        fields["status_code"] = status_code
    logger.log(level, "%s %s", event, json.dumps(fields, ensure_ascii=True), exc_info=level >= logging.ERROR)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        if request.url.path.startswith("/api"):
            _log_request(logging.ERROR, "request_failed", request, req_id, started)
        raise
    response.headers["X-Request-ID"] = req_id
    if request.url.path.startswith("/api"):
        _log_request(logging.INFO, "request_done", request, req_id, started, response.status_code)
    return response


@app.exception_handler(services.ServiceError)
async def service_error_handler(request: Request, exc: services.ServiceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def _enforce_rate_limit(request: Request) -> None:
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    allowed, retry_after = auth_rate_limiter.hit(key, settings.AUTH_RATE_LIMIT_PER_MIN, 60)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


def _read_upload(file: Optional[UploadFile]) -> bytes:
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    payload = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(payload) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File size too large. Maximum 5MB allowed.")
    return payload


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


# -- auth ---------------------------------------------------------------------

@app.post('/api/auth/signup', status_code=201)
def signup(payload: schemas.SignupIn, request: Request, db: Session = Depends(get_session)):
    """Register a new user, paying the referrer when a referral code is given."""
    _enforce_rate_limit(request)
    user = services.AuthService(db).signup(payload.email, payload.username, payload.password, payload.referral_code)
    return {
        'message': 'User created successfully',
        'user': {'id': user.id, 'email': user.email, 'username': user.username, 'created_at': user.created_at},
    }


@app.post('/api/auth/login')
def login(payload: schemas.LoginIn, request: Request, db: Session = Depends(get_session)):
    """Authenticate by email or Telegram id and return a JWT access token."""
    _enforce_rate_limit(request)
    auth = services.AuthService(db)
    user = auth.authenticate(payload.password, email=payload.email, telegram_id=payload.telegram_id)
    if not user:
        raise HTTPException(status_code=401, detail='Invalid credentials')
    return {'access_token': auth.issue_token(user), 'token_type': 'bearer', 'user': services.user_dict(user)}


@app.post('/api/auth/telegram')
def telegram_login(payload: schemas.TelegramAuthIn, request: Request, db: Session = Depends(get_session)):
    """Log in (or sign up) with a signed Telegram login widget payload."""
    _enforce_rate_limit(request)
    auth = services.AuthService(db)
    user = auth.telegram_login(payload.model_dump())
    return {'access_token': auth.issue_token(user), 'token_type': 'bearer', 'user': services.user_dict(user)}


# -- profile ------------------------------------------------------------------

@app.get('/api/user/profile')
def get_profile(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.ProfileService(db).get(user)


@app.put('/api/user/profile')
def update_profile(payload: schemas.ProfileUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Partially update the profile; omitted fields are left untouched."""
    return services.ProfileService(db).update(user, payload.model_dump(exclude_unset=True))


@app.get('/api/user/onboarding')
def onboarding_status(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.ProfileService(db).onboarding_status(user)


@app.post('/api/user/onboarding')
def complete_onboarding(payload: schemas.OnboardingIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Finish onboarding: profile fields plus the first weight entry."""
    return services.ProfileService(db).complete_onboarding(user, payload.model_dump())


@app.get('/api/user/language')
def get_language(user: models.User = Depends(get_current_user)):
    return {'language': user.language}


@app.put('/api/user/language')
def set_language(payload: schemas.LanguageIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.ProfileService(db).set_language(user, payload.language)


@app.post('/api/user/bmi')
def calculate_bmi(payload: schemas.BMIIn, user: models.User = Depends(get_current_user)):
    """Calculate BMI, category and healthy range for the given weight/height."""
    return services.ProfileService.calculate_bmi(payload.weight, payload.height)


@app.get('/api/user/bmi')
def bmi_history(
    limit: int = Query(30, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """BMI history computed from weight entries and the profile height."""
    return services.ProfileService(db).bmi_history(user, limit, offset)


# -- weight -------------------------------------------------------------------

@app.get('/api/user/weight')
def list_weights(
    limit: int = Query(30, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return services.WeightService(db).list(user, limit, offset)


@app.post('/api/user/weight', status_code=201)
def create_weight(payload: schemas.WeightIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WeightService(db).create(user, payload.weight, payload.notes)


@app.get('/api/user/weight/{weight_id}')
def get_weight(weight_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WeightService(db).get(user, weight_id)


@app.put('/api/user/weight/{weight_id}')
def update_weight(weight_id: int, payload: schemas.WeightUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WeightService(db).update(user, weight_id, payload.model_dump(exclude_unset=True))


@app.delete('/api/user/weight/{weight_id}')
def delete_weight(weight_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.WeightService(db).delete(user, weight_id)
    return {'message': 'Weight entry deleted successfully'}


# -- nutrition ----------------------------------------------------------------

@app.get('/api/user/nutrition')
def list_nutrition(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    day: Optional[date] = Query(None, alias='date'),
    meal_type: Optional[models.MealType] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Food log with totals for `date` (when given) and last-7-days averages."""
    return services.NutritionService(db).list(user, limit, offset, day, meal_type, start_date, end_date)


@app.post('/api/user/nutrition', status_code=201)
def create_nutrition(payload: schemas.NutritionIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.NutritionService(db).create(user, payload.model_dump())


@app.get('/api/user/nutrition/{entry_id}')
def get_nutrition(entry_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.NutritionService(db).get(user, entry_id)


@app.put('/api/user/nutrition/{entry_id}')
def update_nutrition(entry_id: int, payload: schemas.NutritionUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.NutritionService(db).update(user, entry_id, payload.model_dump(exclude_unset=True))


@app.delete('/api/user/nutrition/{entry_id}')
def delete_nutrition(entry_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.NutritionService(db).delete(user, entry_id)


# -- workouts & exercises -----------------------------------------------------

@app.get('/api/user/workouts')
def list_workouts(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    workout_type: Optional[models.WorkoutType] = Query(None, alias='type'),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """List workouts with pagination and overall workout statistics."""
    return services.WorkoutService(db).list(user, limit, offset, workout_type, start_date, end_date)


@app.post('/api/user/workouts', status_code=201)
def create_workout(payload: schemas.WorkoutIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WorkoutService(db).create(user, payload.model_dump())


@app.get('/api/user/workouts/{workout_id}')
def get_workout(workout_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WorkoutService(db).get(user, workout_id)


@app.put('/api/user/workouts/{workout_id}')
def update_workout(workout_id: int, payload: schemas.WorkoutUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WorkoutService(db).update(user, workout_id, payload.model_dump(exclude_unset=True))


@app.delete('/api/user/workouts/{workout_id}')
def delete_workout(workout_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.WorkoutService(db).delete(user, workout_id)
    return {'message': 'Workout deleted successfully'}


@app.get('/api/user/workouts/{workout_id}/exercises')
def list_exercises(workout_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WorkoutService(db).list_exercises(user, workout_id)


@app.post('/api/user/workouts/{workout_id}/exercises', status_code=201)
def add_exercise(workout_id: int, payload: schemas.ExerciseIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Add an exercise; without an explicit `order` it goes last."""
    return services.WorkoutService(db).add_exercise(user, workout_id, payload.model_dump())


@app.put('/api/user/workouts/{workout_id}/exercises')
def reorder_exercises(workout_id: int, payload: schemas.ExerciseReorderIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    items = [item.model_dump() for item in payload.exercises]
    return services.WorkoutService(db).reorder_exercises(user, workout_id, items)


@app.get('/api/user/workouts/{workout_id}/exercises/{exercise_id}')
def get_exercise(workout_id: int, exercise_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WorkoutService(db).get_exercise(user, workout_id, exercise_id)


@app.put('/api/user/workouts/{workout_id}/exercises/{exercise_id}')
def update_exercise(workout_id: int, exercise_id: int, payload: schemas.ExerciseUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WorkoutService(db).update_exercise(user, workout_id, exercise_id, payload.model_dump(exclude_unset=True))


@app.delete('/api/user/workouts/{workout_id}/exercises/{exercise_id}')
def delete_exercise(workout_id: int, exercise_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.WorkoutService(db).delete_exercise(user, workout_id, exercise_id)
    return {'message': 'Exercise deleted successfully'}


# -- goals --------------------------------------------------------------------

@app.get('/api/user/goals')
def list_goals(
    category: Optional[models.GoalCategory] = None,
    is_active: Optional[bool] = None,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return services.GoalService(db).list(user, category, is_active, limit, offset)


@app.post('/api/user/goals', status_code=201)
def create_goal(payload: schemas.GoalIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.GoalService(db).create(user, payload.model_dump())


@app.get('/api/user/goals/{goal_id}')
def get_goal(goal_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.GoalService(db).get(user, goal_id)


@app.put('/api/user/goals/{goal_id}')
def update_goal(goal_id: int, payload: schemas.GoalUpdateIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.GoalService(db).update(user, goal_id, payload.model_dump(exclude_unset=True))


@app.delete('/api/user/goals/{goal_id}')
def delete_goal(goal_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.GoalService(db).delete(user, goal_id)
    return {'message': 'Goal deleted successfully'}


@app.post('/api/user/goals/{goal_id}/progress', status_code=201)
def record_goal_progress(goal_id: int, payload: schemas.GoalProgressIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Record a new current value for an active goal."""
    return services.GoalService(db).record_progress(user, goal_id, payload.value, payload.notes)


@app.get('/api/user/goals/{goal_id}/progress')
def goal_progress_history(goal_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.GoalService(db).progress_history(user, goal_id)


# -- programs & subscriptions -------------------------------------------------

@app.get('/api/programs')
def list_programs(
    category: Optional[str] = None,
    level: Optional[str] = None,
    include_inactive: bool = False,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_session),
):
    """Public program catalog, newest first."""
    return services.ProgramService(db).catalog(category, level, include_inactive, limit, offset)


@app.get('/api/programs/{program_id}')
def get_program(program_id: int, db: Session = Depends(get_session)):
    return services.program_dict(services.ProgramService(db).get_active(program_id))


@app.get('/api/user/subscriptions')
def list_subscriptions(status: Optional[models.PaymentStatus] = None, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.ProgramService(db).subscriptions(user, status)


@app.post('/api/user/subscriptions', status_code=201)
def subscribe(payload: schemas.SubscriptionIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Enrol in a program by submitting a payment receipt for review."""
    payment = services.ProgramService(db).subscribe(user, payload.program_id, payload.payment_receipt_url, payload.payment_amount)
    return {'message': 'Subscription request submitted successfully', 'payment': payment}


# -- payments -----------------------------------------------------------------

@app.get('/api/payments')
def list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[models.PaymentStatus] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return services.PaymentService(db).list_for_user(user, page, limit, status)


@app.post('/api/payments', status_code=201)
def create_payment(payload: schemas.PaymentIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.PaymentService(db).create(
        user, payload.program_id, payload.amount, payload.currency, payload.receipt_url, payload.notes
    )


@app.get('/api/payments/{payment_id}')
def get_payment(payment_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.PaymentService(db).get_for_user(user, payment_id)


@app.put('/api/payments/{payment_id}')
def review_payment(payment_id: int, payload: schemas.PaymentStatusIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Admin status change; approving pays any pending referral bonus."""
    return services.PaymentService(db).set_status(payment_id, payload.status, payload.admin_notes, admin)


@app.delete('/api/payments/{payment_id}')
def cancel_payment(payment_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    payment = services.PaymentService(db).cancel(user, payment_id)
    return {'message': 'Payment cancelled successfully', 'payment': payment}


# -- uploads ------------------------------------------------------------------

@app.get('/api/upload/receipt')
def receipt_guidelines():
    return {
        'max_file_size': settings.MAX_UPLOAD_BYTES,
        'allowed_types': uploads.ALLOWED_CONTENT_TYPES,
        'guidelines': uploads.GUIDELINES,
    }


@app.post('/api/upload/receipt')
def upload_receipt(receipt: Optional[UploadFile] = File(default=None), user: models.User = Depends(get_current_user)):
    """Store a payment receipt (JPEG, PNG, WebP or PDF) and return its URL."""
    payload = _read_upload(receipt)
    try:
        content_type, ext = uploads.sniff(payload)
    except uploads.UnsupportedUpload as e:
        raise HTTPException(status_code=400, detail=str(e))
    name = uploads.receipt_name(user.id, ext)
    url = uploads.save(settings.UPLOAD_DIR, name, payload)
    logger.info("receipt_uploaded user=%s file=%s size=%s", user.id, name, len(payload))
    return {'url': url, 'filename': name, 'size': len(payload), 'type': content_type}


@app.post('/api/upload')
def upload_image(file: Optional[UploadFile] = File(default=None), user: models.User = Depends(get_current_user)):
    """Store an image upload under a random name and return its URL."""
    payload = _read_upload(file)
    try:
        content_type, ext = uploads.sniff(payload, allow_pdf=False)
    except uploads.UnsupportedUpload as e:
        raise HTTPException(status_code=400, detail=str(e))
    name = uploads.random_name(ext)
    url = uploads.save(settings.UPLOAD_DIR, name, payload)
    return {'url': url, 'filename': name, 'size': len(payload), 'type': content_type}


# -- wallet -------------------------------------------------------------------

@app.get('/api/user/wallet')
def get_wallet(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    entry_type: Optional[models.LedgerType] = Query(None, alias='type'),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Wallet balance with its ledger and earnings/withdrawals summary."""
    return services.WalletService(db).overview(user, limit, offset, entry_type)


@app.post('/api/user/wallet')
def request_withdrawal(payload: schemas.WithdrawalIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WalletService(db).withdraw(user, payload.amount, payload.method, payload.account_details, payload.notes)


@app.get('/api/wallet/transactions')
def list_wallet_requests(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.WalletService(db).list_requests(user)


@app.post('/api/wallet/transactions', status_code=201)
def create_wallet_request(payload: schemas.WalletTransactionIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Queue a deposit (with receipt) or withdrawal (to a card) for review."""
    return services.WalletService(db).create_request(
        user, payload.type, payload.amount, payload.receipt_url, payload.card_number, payload.card_holder_name
    )


# -- referrals ----------------------------------------------------------------

@app.post('/api/referral')
def generate_referral_code(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.ReferralService(db).ensure_code(user)


@app.get('/api/referral')
def referral_overview(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.ReferralService(db).overview(user)


@app.post('/api/referral/validate')
def validate_referral_code(payload: schemas.ReferralValidateIn, request: Request, db: Session = Depends(get_session)):
    """Check a referral code before signup; unknown codes answer 404."""
    _enforce_rate_limit(request)
    try:
        return services.ReferralService(db).validate(payload.referral_code)
    except services.NotFoundError as e:
        return JSONResponse(status_code=404, content={'valid': False, 'detail': e.message})


@app.get('/api/user/referrals')
def user_referrals(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.ReferralService(db).user_referrals(user)


@app.post('/api/user/referrals', status_code=201)
def create_user_referral(payload: schemas.UserReferralIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    referral = services.ReferralService(db).refer(user, payload.referred_email)
    return {'message': 'Referral created successfully', 'referral': referral}


# -- friends ------------------------------------------------------------------

@app.get('/api/friends')
def list_friends(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return services.FriendService(db).overview(user)


@app.post('/api/friends', status_code=201)
def send_friend_request(payload: schemas.FriendRequestIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    friendship = services.FriendService(db).send_request(user, payload.user_id)
    return {'message': 'Friend request sent', 'friendship': friendship}


@app.patch('/api/friends/{friendship_id}')
def update_friendship(friendship_id: int, payload: schemas.FriendActionIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Accept/reject a pending request (receiver only) or remove a friend."""
    return services.FriendService(db).act(user, friendship_id, payload.action)


@app.delete('/api/friends/{friendship_id}')
def delete_friendship(friendship_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.FriendService(db).delete(user, friendship_id)
    return {'message': 'Friendship deleted'}


@app.get('/api/users/search')
def search_users(
    q: str = '',
    limit: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return services.FriendService(db).search(user, q, limit)


@app.get('/api/users/{user_id}')
def view_user_profile(user_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Own profile or a friend's profile with workout/weight statistics."""
    return services.FriendService(db).profile(user, user_id)


# -- admin --------------------------------------------------------------------

@app.get('/api/admin/users')
def admin_list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    role: Optional[models.Role] = None,
    status: Optional[str] = Query(None, pattern='^(active|inactive)$'),
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    return services.AdminService(db).list_users(page, limit, search, role, status)


@app.get('/api/admin/programs')
def admin_list_programs(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.AdminService(db).list_programs()


@app.post('/api/admin/programs', status_code=201)
def admin_create_program(payload: schemas.ProgramIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.AdminService(db).create_program(admin, payload.model_dump())


@app.get('/api/admin/programs/{program_id}')
def admin_get_program(program_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.AdminService(db).get_program(program_id)


@app.put('/api/admin/programs/{program_id}')
def admin_update_program(program_id: int, payload: schemas.ProgramUpdateIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Update a program; `discounted_price` + `discount_percentage` apply a discount."""
    return services.AdminService(db).update_program(admin, program_id, payload.model_dump(exclude_unset=True))


@app.delete('/api/admin/programs/{program_id}')
def admin_delete_program(program_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    services.AdminService(db).delete_program(admin, program_id)
    return {'message': 'Program deleted successfully'}


@app.get('/api/admin/programs/{program_id}/subscriptions')
def admin_program_subscriptions(
    program_id: int,
    status: Optional[models.PaymentStatus] = None,
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    return services.AdminService(db).program_subscriptions(program_id, status)


@app.get('/api/admin/payments')
def admin_list_payments(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[models.PaymentStatus] = None,
    program_id: Optional[int] = None,
    user_id: Optional[int] = None,
    sort_by: str = Query('created_at', pattern='^(created_at|updated_at|amount|status)$'),
    sort_order: str = Query('desc', pattern='^(asc|desc)$'),
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    return services.AdminService(db).list_payments(page, limit, status, program_id, user_id, sort_by, sort_order)


@app.put('/api/admin/payments')
def admin_bulk_update_payments(payload: schemas.BulkPaymentStatusIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Set one status on many payments; approvals run the referral bonus flow."""
    return services.PaymentService(db).bulk_set_status(payload.payment_ids, payload.status, payload.admin_notes, admin)


def _csv_response(filename: str, text: str) -> Response:
    return Response(
        content=text,
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


@app.get('/api/admin/payments/export')
def admin_export_payments(
    status: Optional[models.PaymentStatus] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    export_format: str = Query('csv', alias='format', pattern='^(csv|json)$'),
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    """Export payments as a CSV attachment or JSON document."""
    svc = services.AdminService(db)
    logger.info("payments_export admin=%s format=%s", admin.id, export_format)
    if export_format == 'json':
        return svc.export_json(status, start_date, end_date)
    return _csv_response(*svc.export_csv(status, start_date, end_date))


@app.post('/api/admin/payments/export')
def admin_custom_export_payments(payload: schemas.PaymentExportIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Export selected payments with optional user/program columns."""
    svc = services.AdminService(db)
    logger.info("payments_export admin=%s format=%s custom=true", admin.id, payload.format)
    if payload.format == 'json':
        return svc.export_json(payload.status, payload.start_date, payload.end_date, payload.payment_ids)
    return _csv_response(*svc.export_custom_csv(
        payload.payment_ids, payload.status, payload.start_date, payload.end_date,
        payload.include_user_details, payload.include_program_details,
    ))


@app.get('/api/admin/payments/{payment_id}')
def admin_get_payment(payment_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.AdminService(db).get_payment(payment_id)


@app.put('/api/admin/payments/{payment_id}')
def admin_update_payment(payment_id: int, payload: schemas.PaymentStatusIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return services.PaymentService(db).set_status(payment_id, payload.status, payload.admin_notes, admin)


@app.delete('/api/admin/payments/{payment_id}')
def admin_delete_payment(payment_id: int, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Delete a pending payment, or cancel (reject) a processed one."""
    return services.AdminService(db).delete_payment(admin, payment_id)


@app.get('/api/admin/wallet-transactions')
def admin_list_wallet_requests(
    status: Optional[models.WalletTransactionStatus] = None,
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    return services.WalletService(db).list_all_requests(status)


@app.put('/api/admin/wallet-transactions/{transaction_id}')
def admin_process_wallet_request(
    transaction_id: int,
    payload: schemas.WalletTransactionActionIn,
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    """Approve or reject a pending deposit/withdrawal request."""
    return services.WalletService(db).process_request(admin, transaction_id, payload.action, payload.admin_notes)


@app.get('/api/admin/usage-stats')
def admin_usage_stats(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return {'stats': services.AdminService(db).usage_stats()}
