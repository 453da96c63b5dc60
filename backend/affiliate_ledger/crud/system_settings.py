from sqlalchemy.orm import Session

from affiliate_ledger.models.system_settings import SystemSetting


def get_setting(db: Session, *, key: str) -> SystemSetting | None:
    return db.query(SystemSetting).filter(SystemSetting.key == key).first()


def get_setting_value(db: Session, *, key: str, default=None):
    record = get_setting(db, key=key)
    if record is None:
        return default
    return record.value


def upsert_setting(db: Session, *, key: str, value) -> SystemSetting:
    record = get_setting(db, key=key)
    if record:
        record.value = value
    else:
        record = SystemSetting(key=key, value=value)
        db.add(record)
    db.flush()
    return record
