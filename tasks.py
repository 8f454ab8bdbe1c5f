from flask import Blueprint, request, jsonify, current_app, send_file
from flask_jwt_extended import jwt_required
from marshmallow import Schema, fields, validate
from sqlalchemy import or_
import logging

from auth import get_current_user, get_json_body, validate_request_data
from errors import BadRequestError, ForbiddenError, NotFoundError
from models import db, Task
import storage

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    'id': Task.id,
    'name': Task.name,
    'createdAt': Task.created_at,
    'updatedAt': Task.updated_at,
}
SORT_ORDERS = ('asc', 'desc')


# ============================================
# Input Validation Schemas
# ============================================

class CreateTaskSchema(Schema):
    """建立任務驗證"""
    name = fields.Str(
        required=True,
        validate=[
            validate.Length(min=1, error='Task name is required'),
            validate.Length(max=100, error='Task name cannot exceed 100 characters')
        ],
        error_messages={
            'required': 'Task name is required',
            'invalid': 'Task name must be a string'
        }
    )
    description = fields.Str(
        allow_none=True,
        error_messages={'invalid': 'Description must be a string'}
    )


class UpdateTaskSchema(Schema):
    """更新任務驗證 (部分更新,全部 optional)"""
    name = fields.Str(
        validate=[
            validate.Length(min=1, error='Task name cannot be empty'),
            validate.Length(max=100, error='Task name cannot exceed 100 characters')
        ],
        error_messages={'invalid': 'Task name must be a string'}
    )
    description = fields.Str(
        allow_none=True,
        error_messages={'invalid': 'Description must be a string'}
    )


class TaskQuerySchema(Schema):
    """列表查詢參數: 分頁 / 排序 / 搜尋"""
    page = fields.Int(
        load_default=1,
        validate=validate.Range(min=1, error='Page must be at least 1'),
        error_messages={'invalid': 'Page must be an integer'}
    )
    limit = fields.Int(
        load_default=lambda: current_app.config['DEFAULT_PAGE_SIZE'],
        validate=validate.Range(min=1, max=100, error='Limit must be between 1 and 100'),
        error_messages={'invalid': 'Limit must be an integer'}
    )
    sort_by = fields.Str(
        data_key='sortBy',
        load_default='createdAt',
        validate=validate.OneOf(list(SORT_COLUMNS), error='Invalid sort field')
    )
    sort_order = fields.Str(
        data_key='sortOrder',
        load_default='desc',
        validate=validate.OneOf(SORT_ORDERS, error='Sort order must be either "asc" or "desc"')
    )
    search = fields.Str()


# ============================================
# 輔助函數
# ============================================

def get_owned_task(task_id, user_id):
    """
    取得使用者自己的任務

    任務不存在 -> 404
    任務存在但不是自己的 -> 403
    """
    task = db.session.get(Task, task_id)

    if not task:
        raise NotFoundError('Task not found')

    if task.user_id != user_id:
        logger.warning(f"User {user_id} tried to access task {task_id} owned by {task.user_id}")
        raise ForbiddenError('You can only access your own tasks')

    return task


# ============================================
# 建立任務
# ============================================

@tasks_bp.route('', methods=['POST'])
@jwt_required()
def create_task():
    current_user = get_current_user()
    result = validate_request_data(CreateTaskSchema, get_json_body())

    task = Task(
        name=result['name'],
        description=result.get('description'),
        user_id=current_user.id
    )

    db.session.add(task)
    db.session.commit()

    logger.info(f"Task created: {task.id} by user {current_user.username}")
    return jsonify(task.to_dict()), 201


# ============================================
# 任務列表
# ============================================

@tasks_bp.route('', methods=['GET'])
@jwt_required()
def list_tasks():
    """
    查詢自己的任務列表

    1. 只會回傳自己的任務
    2. search 不分大小寫,比對 name 或 description
    3. sortBy: id / name / createdAt / updatedAt, sortOrder: asc / desc
    """
    current_user = get_current_user()
    query_args = validate_request_data(TaskQuerySchema, request.args.to_dict())

    page = query_args['page']
    limit = query_args['limit']

    query = Task.query.filter_by(user_id=current_user.id)

    search = query_args.get('search')
    if search:
        # autoescape: % 和 _ 當成一般字元
        query = query.filter(or_(
            Task.name.icontains(search, autoescape=True),
            Task.description.icontains(search, autoescape=True)
        ))

    order_column = SORT_COLUMNS[query_args['sort_by']]
    if query_args['sort_order'] == 'asc':
        query = query.order_by(order_column.asc(), Task.id.asc())
    else:
        query = query.order_by(order_column.desc(), Task.id.desc())

    tasks_paginated = query.paginate(page=page, per_page=limit, error_out=False)

    return jsonify({
        'data': [task.to_dict() for task in tasks_paginated.items],
        'meta': {
            'total': tasks_paginated.total,
            'page': page,
            'limit': limit,
            'totalPages': tasks_paginated.pages,
            'hasNext': page < tasks_paginated.pages,
            'hasPrevious': page > 1
        }
    }), 200


# ============================================
# 單一任務
# ============================================

@tasks_bp.route('/<int:task_id>', methods=['GET'])
@jwt_required()
def get_task(task_id):
    task = get_owned_task(task_id, get_current_user().id)
    return jsonify(task.to_dict()), 200


@tasks_bp.route('/<int:task_id>', methods=['PATCH'])
@jwt_required()
def update_task(task_id):
    current_user = get_current_user()
    task = get_owned_task(task_id, current_user.id)
    result = validate_request_data(UpdateTaskSchema, get_json_body())

    for field in ('name', 'description'):
        if field in result:
            setattr(task, field, result[field])

    db.session.commit()

    logger.info(f"Task {task_id} updated by user {current_user.username}")
    return jsonify(task.to_dict()), 200


@tasks_bp.route('/<int:task_id>', methods=['DELETE'])
@jwt_required()
def delete_task(task_id):
    """刪除任務,附件檔案 best-effort 一起刪除"""
    current_user = get_current_user()
    task = get_owned_task(task_id, current_user.id)
    attachment = task.attachment

    db.session.delete(task)
    db.session.commit()

    storage.remove_file(attachment)

    logger.info(f"Task {task_id} deleted by user {current_user.username}")
    return '', 204


# ============================================
# 附件
# ============================================

@tasks_bp.route('/<int:task_id>/attachment', methods=['POST'])
@jwt_required()
def add_attachment(task_id):
    """
    上傳 / 取代附件 (multipart/form-data, 欄位名稱 file)

    不限檔案類型,最大 10MB;已經有附件的話舊檔案會被刪除
    """
    current_user = get_current_user()

    file = request.files.get('file')
    if not file or not file.filename:
        raise BadRequestError('Attachment file is required')

    task = get_owned_task(task_id, current_user.id)

    config = current_app.config
    new_path = storage.save_upload(
        file,
        subfolder=config['ATTACHMENT_SUBFOLDER'],
        prefix='attachment',
        max_size=config['MAX_ATTACHMENT_SIZE']
    )

    old_path = task.attachment
    task.attachment = new_path

    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        storage.remove_file(new_path)
        raise

    if old_path and old_path != new_path:
        storage.remove_file(old_path)

    logger.info(f"Attachment uploaded for task {task_id} by user {current_user.username}")
    return jsonify(task.to_dict()), 201


@tasks_bp.route('/<int:task_id>/attachment', methods=['GET'])
@jwt_required()
def get_attachment(task_id):
    task = get_owned_task(task_id, get_current_user().id)

    if not task.attachment or not storage.file_exists(task.attachment):
        raise NotFoundError('Attachment not found')

    return send_file(storage.resolve_path(task.attachment), as_attachment=True)


@tasks_bp.route('/<int:task_id>/attachment', methods=['DELETE'])
@jwt_required()
def remove_attachment(task_id):
    current_user = get_current_user()
    task = get_owned_task(task_id, current_user.id)

    if not task.attachment:
        raise NotFoundError('Attachment not found')

    old_path = task.attachment
    task.attachment = None
    db.session.commit()

    storage.remove_file(old_path)

    logger.info(f"Attachment removed from task {task_id} by user {current_user.username}")
    return jsonify(task.to_dict()), 200
