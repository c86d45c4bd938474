from fastapi import APIRouter, Depends, HTTPException
from models import User
from schemas import UserCreate, UserRoleUpdate, UserRead
from api_utils import RAListParams, parse_sort, apply_filter_map, paginate_and_respond, respond_item, to_bool
from passlib.hash import bcrypt
from deps import get_current_active_user, require_admin
import logging
import uuid

router = APIRouter(prefix="/users", tags=["users"])
logger = logging.getLogger(__name__)

def to_user_read(m: User) -> UserRead:
    # from_attributes=True lets us validate from ORM objects
    return UserRead.model_validate(m)

@router.get("", response_model=list[UserRead])
async def list_users(params: RAListParams = Depends(), _: User = Depends(require_admin)):
    qs = User.all()
    fmap = {
        "username": lambda q, v: q.filter(username__icontains=str(v)),
        "email":    lambda q, v: q.filter(email__icontains=str(v)),
        "disabled": lambda q, v: q.filter(disabled=to_bool(v)),
        "role":     lambda q, v: q.filter(role=str(v)),
    }
    qs = apply_filter_map(qs, params.filters, fmap)
    order = parse_sort(params.sort, ["username", "email", "disabled", "role"])
    return await paginate_and_respond(qs, params.skip, params.limit, order, to_user_read)

# /me before /{user_id}
@router.get("/me", response_model=UserRead)
async def read_me(current_user: User = Depends(get_current_active_user)):
    return to_user_read(current_user)

@router.post("", response_model=UserRead, status_code=201)
async def create_user(payload: UserCreate, admin: User = Depends(require_admin)):
    if await User.exists(username=payload.username) or await User.exists(email=str(payload.email)):
        raise HTTPException(409, "Username or email already registered")
    obj = await User.create(
        username=payload.username,
        email=str(payload.email),
        hashed_password=bcrypt.hash(payload.password),
        disabled=False,
        role=payload.role,
    )
    logger.info(f"[create_user] {obj.username} ({obj.role}) created by {admin.username}")
    return respond_item(obj, to_user_read, status_code=201)

@router.put("/{user_id:uuid}/role", response_model=UserRead)
async def set_user_role(user_id: uuid.UUID, payload: UserRoleUpdate, admin: User = Depends(require_admin)):
    obj = await User.get_or_none(id=user_id)
    if not obj:
        raise HTTPException(404, "User not found")
    if obj.id == admin.id and payload.role != "admin":
        raise HTTPException(400, "Admins cannot demote themselves")
    obj.role = payload.role
    await obj.save(update_fields=["role"])
    logger.info(f"[set_user_role] {obj.username} -> {obj.role} by {admin.username}")
    return respond_item(obj, to_user_read)
