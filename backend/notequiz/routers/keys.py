from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from ..db import get_db
from ..key_store import get_api_key, store_api_key
from ..schemas import ApiKeyIn, ApiKeyOut
from .auth import User, get_current_user

router = APIRouter(prefix="/keys", tags=["keys"])


@router.get("", response_model=ApiKeyOut)
def read_api_key(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	api_key = get_api_key(db, user.username)
	return ApiKeyOut(api_key=api_key, has_api_key=api_key is not None)


@router.put("", status_code=204)
def save_api_key(req: ApiKeyIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
	store_api_key(db, user.username, req.api_key)
	return Response(status_code=204)
