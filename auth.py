from functools import wraps

from flask import Blueprint, request, jsonify
from flask_jwt_extended import create_access_token, verify_jwt_in_request
from flask_jwt_extended import get_current_user as get_jwt_user
from marshmallow import Schema, fields, validate, ValidationError
import logging

from accounts import check_password, create_account
from errors import AuthenticationError, BadRequestError, ForbiddenError, RequestValidationError
from extensions import jwt, limiter
from models import db, User

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

PHONE_PATTERN = r'^\+?[0-9]{10,15}$'
PASSWORD_CASE_PATTERN = r'^(?=.*[a-z])(?=.*[A-Z])'


# ============================================
# Input Validation Schemas (用 marshmallow)
# ============================================

def password_field(**kwargs):
    return fields.Str(
        validate=[
            validate.Length(min=8, error='Password must be at least 8 characters long'),
            validate.Regexp(
                PASSWORD_CASE_PATTERN,
                error='Password must contain at least one uppercase and one lowercase letter'
            )
        ],
        **kwargs
    )


def phone_field(**kwargs):
    return fields.Str(
        data_key='phoneNumber',
        validate=validate.Regexp(PHONE_PATTERN, error='Please provide a valid phone number'),
        **kwargs
    )


class RegisterSchema(Schema):
    """註冊輸入驗證 (email 或 phoneNumber 至少一個,在 create_account 檢查)"""
    email = fields.Email(error_messages={'invalid': 'Please provide a valid email address'})
    phone_number = phone_field()
    username = fields.Str(
        required=True,
        validate=validate.Length(min=3, error='Username must be at least 3 characters long'),
        error_messages={'required': 'Username is required'}
    )
    password = password_field(
        required=True,
        error_messages={'required': 'Password is required'}
    )
    first_name = fields.Str(data_key='firstName')
    last_name = fields.Str(data_key='lastName')


class LoginSchema(Schema):
    """登入輸入驗證"""
    username = fields.Str(
        required=True,
        error_messages={'required': 'Username is required'}
    )
    password = fields.Str(
        required=True,
        validate=validate.Length(min=8, error='Password must be at least 8 characters long'),
        error_messages={'required': 'Password is required'}
    )


# ============================================
# Helper Functions
# ============================================

def get_json_body():
    """取得 JSON body,不是 JSON object 就回 400"""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequestError('Request body must be JSON')
    return data


def validate_request_data(schema_class, data):
    """
    統一的輸入驗證函數

    Returns:
        dict: 驗證 (並轉換) 過的資料

    Raises:
        RequestValidationError: 每個欄位的錯誤訊息
    """
    schema = schema_class()
    try:
        return schema.load(data)
    except ValidationError as err:
        raise RequestValidationError(err.messages) from err


def create_token(user):
    """
    產生 JWT

    sub 是 user id (字串),額外帶 username 和 role
    """
    return create_access_token(
        identity=str(user.id),
        additional_claims={
            'username': user.username,
            'role': user.role.value
        }
    )


def build_auth_response(user):
    """回傳 user (不含 password) 和 token"""
    return {
        'user': user.to_dict(),
        'token': create_token(user)
    }


# ============================================
# JWT -> User
# ============================================

@jwt.user_lookup_loader
def load_user_from_token(jwt_header, jwt_data):
    """每個需要登入的 request 都會用 token 的 sub 載入 User"""
    try:
        user_id = int(jwt_data['sub'])
    except (KeyError, TypeError, ValueError):
        return None
    return db.session.get(User, user_id)


@jwt.user_lookup_error_loader
def user_lookup_error_callback(jwt_header, jwt_data):
    """token 合法但使用者已經被刪除"""
    logger.warning(f"Token valid but user not found: {jwt_data.get('sub')}")
    return jsonify({
        'error': 'unauthorized',
        'message': 'User not found',
        'status': 401
    }), 401


def get_current_user():
    """
    取得當前登入的使用者

    必須在 jwt_required() / roles_required() 保護的 route 裡呼叫
    """
    user = get_jwt_user()
    if user is None:
        raise AuthenticationError()
    return user


def roles_required(*roles):
    """
    角色檢查 decorator

    沒有宣告角色 -> 只要有合法 token 就通過
    有宣告角色 -> 使用者的 role 必須在清單裡,否則 403 (跟 401 分開)

    用法:
        @roles_required(UserRole.ADMIN)
    """
    allowed = frozenset(roles)

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            user = get_current_user()

            if allowed and user.role not in allowed:
                logger.warning(
                    f"Forbidden: user {user.id} with role {user.role.value} "
                    f"tried {request.method} {request.path}"
                )
                raise ForbiddenError('Forbidden resource')

            return fn(*args, **kwargs)
        return wrapper
    return decorator


# ============================================
# 註冊 API
# ============================================

@auth_bp.route('/register', methods=['POST'])
@limiter.limit('5 per minute')
def register():
    """
    使用者註冊

    1. marshmallow 驗證輸入
    2. email / phone number 至少一個,且三個欄位都不能重複
    3. bcrypt 雜湊密碼後建立帳號 (role 固定為 User)
    4. 回傳 user + token
    """
    result = validate_request_data(RegisterSchema, get_json_body())

    user = create_account(result)

    logger.info(f"New user registered: {user.username}")
    return jsonify(build_auth_response(user)), 201


# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit('10 per minute')
def login():
    """
    使用者登入

    不區分是 username 錯還是 password 錯,避免帳號枚舉攻擊
    """
    result = validate_request_data(LoginSchema, get_json_body())

    user = User.query.filter_by(username=result['username']).first()

    if not user or not check_password(user, result['password']):
        logger.warning(f"Failed login attempt for username: {result['username']}")
        raise AuthenticationError('Invalid credentials')

    logger.info(f"User logged in: {user.username}")
    return jsonify(build_auth_response(user)), 200

