from flask import Blueprint, request, jsonify, current_app
from marshmallow import Schema, fields, validate
import logging

from accounts import create_account, delete_account, get_account_or_404, update_account
from auth import (
    RegisterSchema, get_current_user, get_json_body, password_field, phone_field,
    roles_required, validate_request_data
)
from errors import BadRequestError
from models import db, User, UserRole

users_bp = Blueprint('users', __name__)
logger = logging.getLogger(__name__)

USERNAME_PATTERN = r'^[a-zA-Z0-9_-]+$'


# ============================================
# Input Validation Schemas
# ============================================

def name_field(data_key, label):
    return fields.Str(
        data_key=data_key,
        validate=validate.Length(max=50, error=f'{label} cannot exceed 50 characters')
    )


class CreateUserSchema(RegisterSchema):
    """管理員建立使用者 (比註冊多了 role,username 規則更嚴格)"""
    username = fields.Str(
        required=True,
        validate=[
            validate.Length(min=3, error='Username must be at least 3 characters long'),
            validate.Length(max=30, error='Username cannot exceed 30 characters'),
            validate.Regexp(
                USERNAME_PATTERN,
                error='Username can only contain letters, numbers, underscores, and hyphens'
            )
        ],
        error_messages={'required': 'Username is required'}
    )
    first_name = name_field('firstName', 'First name')
    last_name = name_field('lastName', 'Last name')
    role = fields.Enum(
        UserRole,
        by_value=True,
        load_default=UserRole.USER,
        error_messages={'unknown': 'Role must be a valid user role'}
    )


class UpdateUserSchema(Schema):
    """管理員更新使用者,全部欄位都是 optional"""
    email = fields.Email(error_messages={'invalid': 'Please provide a valid email address'})
    phone_number = phone_field()
    username = fields.Str(
        validate=[
            validate.Length(min=3, max=30, error='Username must be 3-30 characters'),
            validate.Regexp(
                USERNAME_PATTERN,
                error='Username can only contain letters, numbers, underscores, and hyphens'
            )
        ]
    )
    password = password_field()
    first_name = name_field('firstName', 'First name')
    last_name = name_field('lastName', 'Last name')
    role = fields.Enum(
        UserRole,
        by_value=True,
        error_messages={'unknown': 'Role must be a valid user role'}
    )


class UserQuerySchema(Schema):
    """列表查詢參數"""
    page = fields.Int(
        load_default=1,
        validate=validate.Range(min=1, error='Page must be at least 1')
    )
    limit = fields.Int(
        load_default=lambda: current_app.config['DEFAULT_PAGE_SIZE'],
        validate=validate.Range(min=1, error='Limit must be at least 1')
    )
    username = fields.Str()
    email = fields.Str()
    role = fields.Enum(UserRole, by_value=True)


# ============================================
# 建立使用者
# ============================================

@users_bp.route('', methods=['POST'])
@roles_required(UserRole.ADMIN)
def create_user():
    """建立使用者 (Admin only),可以指定 role"""
    result = validate_request_data(CreateUserSchema, get_json_body())
    role = result.pop('role', UserRole.USER)

    user = create_account(result, role=role)

    logger.info(f"User {user.username} created by admin {get_current_user().username}")
    return jsonify(user.to_dict()), 201


# ============================================
# 使用者列表
# ============================================

@users_bp.route('', methods=['GET'])
@roles_required(UserRole.ADMIN)
def list_users():
    """
    查詢使用者列表 (Admin only)

    篩選: username / email 包含字串 (不分大小寫,% 和 _ 不是萬用字元),role 完全相等
    排序: 最新建立的在前
    """
    query_args = validate_request_data(UserQuerySchema, request.args.to_dict())
    page = query_args['page']
    limit = query_args['limit']

    query = User.query

    if query_args.get('username'):
        query = query.filter(User.username.icontains(query_args['username'], autoescape=True))
    if query_args.get('email'):
        query = query.filter(User.email.icontains(query_args['email'], autoescape=True))
    if query_args.get('role'):
        query = query.filter(User.role == query_args['role'])

    query = query.order_by(User.created_at.desc(), User.id.desc())

    users_paginated = query.paginate(page=page, per_page=limit, error_out=False)

    return jsonify({
        'data': [user.to_dict() for user in users_paginated.items],
        'meta': {
            'total': users_paginated.total,
            'page': page,
            'limit': limit,
            'totalPages': users_paginated.pages
        }
    }), 200


# ============================================
# 單一使用者
# ============================================

@users_bp.route('/<int:user_id>', methods=['GET'])
@roles_required(UserRole.ADMIN)
def get_user(user_id):
    user = get_account_or_404(user_id)
    return jsonify(user.to_dict()), 200


@users_bp.route('/<int:user_id>', methods=['PATCH'])
@roles_required(UserRole.ADMIN)
def update_user(user_id):
    """
    更新使用者 (Admin only)

    email / phone number / username 只跟「其他」使用者比較是否重複,
    有傳 password 就重新雜湊
    """
    user = get_account_or_404(user_id)
    result = validate_request_data(UpdateUserSchema, get_json_body())

    update_account(user, result)

    return jsonify(user.to_dict()), 200


@users_bp.route('/<int:user_id>', methods=['DELETE'])
@roles_required(UserRole.ADMIN)
def delete_user(user_id):
    """刪除使用者,任務會一起被刪除 (cascade)"""
    admin_name = get_current_user().username
    user = get_account_or_404(user_id)

    delete_account(user)

    logger.info(f"User {user_id} deleted by admin {admin_name}")
    return '', 204


# ============================================
# 更新角色
# ============================================

@users_bp.route('/<int:user_id>/role', methods=['PATCH'])
@roles_required(UserRole.ADMIN)
def update_user_role(user_id):
    """更新使用者角色,role 必須是 Admin 或 User"""
    user = get_account_or_404(user_id)

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}

    try:
        role = UserRole(data.get('role'))
    except (TypeError, ValueError):
        raise BadRequestError(
            f"Invalid role. Must be {' or '.join(UserRole.values())}"
        ) from None

    old_role = user.role
    user.role = role
    db.session.commit()

    logger.info(f"Role of user {user.username} changed: {old_role.value} -> {role.value}")
    return jsonify(user.to_dict()), 200
