"""
帳號相關的共用邏輯

註冊 (auth.py)、管理員建立 / 更新使用者 (users.py)、
個人資料更新 (profiles.py) 都用同一套規則:

1. email 或 phone number 至少要有一個
2. email / phone number / username 不能重複
3. 密碼用 bcrypt 雜湊後才存
4. 資料庫的 unique constraint 是最後防線,
   commit 時的 IntegrityError 會轉成同樣的錯誤訊息
"""

import logging
import re

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from errors import BadRequestError, NotFoundError
from extensions import bcrypt
from models import db, User, UserRole
import storage

logger = logging.getLogger(__name__)

EMAIL_IN_USE = 'Email already in use'
PHONE_IN_USE = 'Phone number already in use'
USERNAME_IN_USE = 'Username already in use'

UNIQUE_COLUMN_MESSAGES = {
    'email': EMAIL_IN_USE,
    'phone_number': PHONE_IN_USE,
    'username': USERNAME_IN_USE,
}
# users.email / users_email_key / 'email'
UNIQUE_COLUMN_PATTERN = re.compile(r'\b(?:users[._])?(email|phone_number|username)(?:_key)?\b')


# ============================================
# 密碼
# ============================================

def hash_password(password):
    # rounds 由 BCRYPT_LOG_ROUNDS 決定
    return bcrypt.generate_password_hash(password).decode('utf-8')


def check_password(user, password):
    if not user or not user.password:
        return False
    return bcrypt.check_password_hash(user.password, password)


# ============================================
# 唯一性檢查
# ============================================

def find_duplicate_message(email=None, phone_number=None, username=None, exclude_id=None):
    """
    用一次查詢檢查 email / phone number / username 是否已被使用

    Returns:
        str|None: 衝突時的錯誤訊息,沒有衝突回傳 None
    """
    conditions = []
    if email:
        conditions.append(User.email == email)
    if phone_number:
        conditions.append(User.phone_number == phone_number)
    if username:
        conditions.append(User.username == username)

    if not conditions:
        return None

    query = User.query.filter(or_(*conditions))
    if exclude_id is not None:
        query = query.filter(User.id != exclude_id)

    existing = query.all()
    if not existing:
        return None

    # 固定順序:email -> phone number -> username
    if email and any(user.email == email for user in existing):
        return EMAIL_IN_USE
    if phone_number and any(user.phone_number == phone_number for user in existing):
        return PHONE_IN_USE
    if username and any(user.username == username for user in existing):
        return USERNAME_IN_USE
    return None


def ensure_unique(email=None, phone_number=None, username=None, exclude_id=None):
    message = find_duplicate_message(email, phone_number, username, exclude_id)
    if message:
        raise BadRequestError(message)


def _constraint_text(error):
    """
    只取錯誤字串裡 constraint / index 名稱那一段,
    PostgreSQL 的 DETAIL 和 MySQL 的 Duplicate entry '<值>' 都含有使用者輸入
    """
    text = str(getattr(error, 'orig', error)).lower()
    lines = text.splitlines()
    first_line = lines[0] if lines else ''
    _, found, key = first_line.rpartition(' for key ')
    return key if found else first_line


def translate_integrity_error(error):
    """
    把 unique constraint 違反轉成使用者看得懂的訊息

    各資料庫的錯誤字串不同:
        SQLite:     UNIQUE constraint failed: users.email
        PostgreSQL: duplicate key value violates unique constraint "users_email_key"
                    DETAIL:  Key (email)=(a@example.com) already exists.
        MySQL:      Duplicate entry 'x' for key 'users.email'
    """
    match = UNIQUE_COLUMN_PATTERN.search(_constraint_text(error))
    if not match:
        return None
    return UNIQUE_COLUMN_MESSAGES[match.group(1)]


def commit_account(user):
    """commit,並把 unique constraint 衝突轉成 400"""
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        message = translate_integrity_error(e)
        if message:
            logger.warning(f"Unique constraint violation for user {user.username}: {message}")
            raise BadRequestError(message) from e
        raise
    return user


# ============================================
# 建立 / 更新 / 刪除
# ============================================

def require_contact(email, phone_number):
    if not email and not phone_number:
        raise BadRequestError('Either email or phone number must be provided')


def create_account(data, role=UserRole.USER):
    """
    建立帳號

    Args:
        data: 驗證過的欄位 (email, phone_number, username, password, first_name, last_name)
        role: 預設 UserRole.USER
    """
    email = data.get('email')
    phone_number = data.get('phone_number')
    username = data['username']

    require_contact(email, phone_number)
    ensure_unique(email, phone_number, username)

    user = User(
        email=email,
        phone_number=phone_number,
        username=username,
        password=hash_password(data['password']),
        first_name=data.get('first_name'),
        last_name=data.get('last_name'),
        role=role or UserRole.USER
    )

    db.session.add(user)
    commit_account(user)

    logger.info(f"Account created: {user.username} (id={user.id}, role={user.role.value})")
    return user


def update_account(user, data):
    """
    更新帳號欄位

    只有有傳的欄位會更新;重複檢查排除自己;有新密碼就重新雜湊
    """
    ensure_unique(
        email=data.get('email'),
        phone_number=data.get('phone_number'),
        username=data.get('username'),
        exclude_id=user.id
    )

    for field, value in data.items():
        if field == 'password':
            value = hash_password(value)
        setattr(user, field, value)

    commit_account(user)

    logger.info(f"Account updated: {user.username} (fields: {', '.join(sorted(data))})")
    return user


def get_account_or_404(user_id, message=None):
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(message or f'User with ID {user_id} not found')
    return user


def delete_account(user):
    """
    刪除帳號 (cascade 刪除任務),
    commit 之後再 best-effort 刪除大頭照和附件檔案
    """
    file_paths = [task.attachment for task in user.tasks if task.attachment]
    if user.profile_picture:
        file_paths.append(user.profile_picture)

    username = user.username
    task_count = len(user.tasks)

    db.session.delete(user)
    db.session.commit()

    for path in file_paths:
        storage.remove_file(path)

    logger.info(f"Account deleted: {username} with {task_count} task(s)")
