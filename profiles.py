from flask import Blueprint, request, jsonify, current_app, send_file
from flask_jwt_extended import jwt_required
from marshmallow import Schema, fields, validate
import logging

from accounts import get_account_or_404, update_account
from auth import get_current_user, get_json_body, phone_field, validate_request_data
from errors import BadRequestError, ForbiddenError, NotFoundError
from models import db
import storage

profile_bp = Blueprint('profile', __name__)
logger = logging.getLogger(__name__)


# ============================================
# Input Validation Schemas
# ============================================

class UpdateProfileSchema(Schema):
    """
    個人資料更新驗證

    只能改 email / phoneNumber / firstName / lastName,
    role、username、password 都不能從這裡改 (傳了會被當成 unknown field)
    """
    email = fields.Email(error_messages={'invalid': 'Please provide a valid email address'})
    phone_number = phone_field()
    first_name = fields.Str(
        data_key='firstName',
        validate=validate.Length(max=50, error='First name cannot exceed 50 characters')
    )
    last_name = fields.Str(
        data_key='lastName',
        validate=validate.Length(max=50, error='Last name cannot exceed 50 characters')
    )


def get_own_account():
    """用 token 的使用者 id 重新查一次,確保資料是最新的"""
    return get_account_or_404(get_current_user().id, 'User not found')


# ============================================
# 個人資料
# ============================================

@profile_bp.route('', methods=['GET'])
@jwt_required()
def get_profile():
    user = get_own_account()
    return jsonify(user.to_dict()), 200


@profile_bp.route('', methods=['PATCH'])
@jwt_required()
def update_profile():
    """更新自己的資料,email / phone number 重複檢查會排除自己"""
    user = get_own_account()
    result = validate_request_data(UpdateProfileSchema, get_json_body())

    update_account(user, result)

    return jsonify(user.to_dict()), 200


# ============================================
# 大頭照
# ============================================

@profile_bp.route('/picture', methods=['PATCH'])
@jwt_required()
def update_profile_picture():
    """
    上傳大頭照 (multipart/form-data, 欄位名稱 file)

    1. 只接受 jpg / jpeg / png / gif,最大 5MB
    2. 新檔案存好後才更新資料庫
    3. 舊檔案 best-effort 刪除,失敗不影響結果
    """
    user = get_own_account()

    file = request.files.get('file')
    if not file or not file.filename:
        raise BadRequestError('Profile picture file is required')

    config = current_app.config
    new_path = storage.save_upload(
        file,
        subfolder=config['PROFILE_PICTURE_SUBFOLDER'],
        prefix='profile',
        max_size=config['MAX_PROFILE_PICTURE_SIZE'],
        allowed_extensions=config['PROFILE_PICTURE_EXTENSIONS'],
        invalid_type_message='Only image files are allowed!'
    )

    old_path = user.profile_picture
    user.profile_picture = new_path

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        # 資料庫沒更新成功,剛存的檔案就沒人引用了
        storage.remove_file(new_path)
        raise

    if old_path and old_path != new_path:
        storage.remove_file(old_path)

    logger.info(f"Profile picture updated for user {user.username}")
    return jsonify(user.to_dict()), 200


@profile_bp.route('/picture/<int:user_id>', methods=['GET'])
@jwt_required()
def get_profile_picture(user_id):
    """只有本人可以取得自己的大頭照"""
    user = get_account_or_404(user_id, 'User not found')

    if user.id != get_current_user().id:
        raise ForbiddenError('You can only access your own profile picture')

    if not user.profile_picture or not storage.file_exists(user.profile_picture):
        raise NotFoundError('Profile picture not found')

    return send_file(storage.resolve_path(user.profile_picture))
