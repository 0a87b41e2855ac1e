"""Store lookup by public identifier"""
from sqlalchemy.orm import Session

from db_models import Store
from services.integrations.errors import NotFoundError


def get_store_by_public_id(db: Session, public_id: str) -> Store:
    store = db.query(Store).filter(Store.public_id == public_id).first()
    if not store:
        raise NotFoundError("Store not found")
    return store

