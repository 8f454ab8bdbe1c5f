"""
上傳檔案的磁碟儲存

資料庫只存路徑,檔案本身放在 UPLOAD_FOLDER 底下:
    uploads/profiles/profile-<uuid>.png
    uploads/attachments/attachment-<uuid>.pdf

刪除舊檔案是 best-effort:失敗只記 log,不讓 request 失敗
"""

import logging
import os
import uuid

from flask import current_app
from werkzeug.utils import secure_filename

from errors import BadRequestError

logger = logging.getLogger(__name__)


def get_upload_dir(subfolder):
    """取得 (並建立) 上傳子目錄"""
    path = os.path.join(current_app.config['UPLOAD_FOLDER'], subfolder)
    os.makedirs(path, exist_ok=True)
    return path


def get_extension(filename):
    """'My Photo.PNG' -> '.png'"""
    return os.path.splitext(secure_filename(filename or ''))[1].lower()


def get_file_size(file):
    stream = file.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def save_upload(file, subfolder, prefix, max_size, allowed_extensions=None,
                invalid_type_message='File type is not allowed'):
    """
    驗證並儲存上傳檔案

    Args:
        file: werkzeug FileStorage (request.files['file'])
        subfolder: UPLOAD_FOLDER 底下的子目錄
        prefix: 檔名前綴,例如 'profile' / 'attachment'
        max_size: 單檔大小上限 (bytes)
        allowed_extensions: 允許的副檔名 (不含 '.'),None 代表不限制

    Returns:
        str: 存進資料庫的檔案路徑
    """
    extension = get_extension(file.filename)

    if allowed_extensions is not None and extension.lstrip('.') not in allowed_extensions:
        raise BadRequestError(invalid_type_message)

    size = get_file_size(file)
    if size > max_size:
        raise BadRequestError(
            f'File too large. Maximum size is {max_size // (1024 * 1024)}MB'
        )

    filename = f'{prefix}-{uuid.uuid4()}{extension}'
    path = os.path.join(get_upload_dir(subfolder), filename)
    file.save(path)

    logger.info(f"Saved upload {file.filename!r} as {path} ({size} bytes)")
    return path


def remove_file(path):
    """
    刪除檔案 (best-effort)

    Returns:
        bool: 是否真的刪掉了檔案
    """
    if not path:
        return False

    try:
        if os.path.exists(path):
            os.remove(path)
            logger.info(f"Removed file: {path}")
            return True
        return False
    except OSError as e:
        logger.warning(f"Failed to remove file {path}: {str(e)}")
        return False


def file_exists(path):
    return bool(path) and os.path.isfile(path)


def resolve_path(path):
    """send_file 需要絕對路徑"""
    return os.path.abspath(path)
