from flask import Flask, current_app, request, jsonify
from sqlalchemy import text
from werkzeug.exceptions import HTTPException
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
import os

from config import get_config
from errors import APIError, error_response
from extensions import bcrypt, cors, jwt, limiter
from models import db


# ============================================
# Logging 設定
# ============================================

def _has_file_handler(logger, path):
    return any(
        getattr(handler, 'baseFilename', None) == path
        for handler in logger.handlers
    )


def setup_logging(app):
    """
    設定完整的 logging 系統

    1. 分開 info 和 error logs
    2. 使用 RotatingFileHandler 避免 log 檔案過大
    3. 設定統一的 log format
    4. 各模組的 logging.getLogger(__name__) 也寫進同樣的檔案
    """
    if app.debug or app.testing:
        return

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    # 同一個 process 建立多個 app 時,handler 只掛一次
    if _has_file_handler(logging.getLogger(), os.path.abspath(os.path.join(log_dir, 'app.log'))):
        return

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    # Info log handler (記錄一般資訊)
    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    # Error log handler (只記錄錯誤)
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    level = getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO)

    for logger in (app.logger, logging.getLogger()):
        logger.addHandler(info_handler)
        logger.addHandler(error_handler)
        logger.setLevel(level)

    app.logger.info('Application startup')


# ============================================
# JWT 錯誤處理
# ============================================

def register_jwt_handlers():
    """jwt 是全域的 JWTManager,callback 裡用 current_app"""

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        """處理 token 過期"""
        current_app.logger.warning(f"Expired token attempt from: {request.remote_addr}")
        return jsonify({
            'error': 'token_expired',
            'message': 'The token has expired. Please login again.',
            'status': 401
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        """處理無效的 token"""
        current_app.logger.warning(f"Invalid token attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'error': 'invalid_token',
            'message': 'Token validation failed. Please provide a valid token.',
            'status': 401
        }), 401

    @jwt.unauthorized_loader
    def unauthorized_callback(error):
        """處理缺少 token"""
        current_app.logger.warning(f"Unauthorized access attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'error': 'authorization_required',
            'message': 'Access token is required. Please provide an authorization token.',
            'status': 401
        }), 401


# ============================================
# 全域錯誤處理
# ============================================

def register_error_handlers(app):

    @app.errorhandler(APIError)
    def handle_api_error(error):
        """service / route 裡 raise 的 APIError"""
        if error.status_code >= 500:
            app.logger.error(f"API error: {error.message}", exc_info=True)
        return error_response(error)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({
            'error': 'not_found',
            'message': 'The requested resource does not exist',
            'status': 404
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({
            'error': 'method_not_allowed',
            'message': 'The HTTP method is not allowed for this endpoint',
            'status': 405
        }), 405

    @app.errorhandler(413)
    def payload_too_large(error):
        """超過 MAX_CONTENT_LENGTH"""
        app.logger.warning(f"Payload too large from: {request.remote_addr}")
        return jsonify({
            'error': 'payload_too_large',
            'message': 'The uploaded file is too large',
            'status': 413
        }), 413

    @app.errorhandler(429)
    def rate_limit_exceeded(error):
        """處理 rate limit 超過"""
        app.logger.warning(f"Rate limit exceeded from: {request.remote_addr}")
        return jsonify({
            'error': 'rate_limit_exceeded',
            'message': 'Too many requests. Please try again later.',
            'status': 429
        }), 429

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        """其他 werkzeug HTTP 錯誤 (例如 400 malformed body)"""
        return jsonify({
            'error': error.name.lower().replace(' ', '_'),
            'message': error.description,
            'status': error.code
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        """
        處理所有未預期的錯誤

        不洩漏錯誤細節給前端,完整 stack trace 只寫進 log
        """
        db.session.rollback()

        app.logger.error(f"Unexpected error: {str(error)}", exc_info=True)

        return jsonify({
            'error': 'unexpected_error',
            'message': 'An unexpected error occurred. Please try again later.',
            'status': 500
        }), 500


# ============================================
# Request/Response Logging
# ============================================

def register_request_hooks(app):

    @app.before_request
    def log_request():
        if not app.debug:
            app.logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        if not app.debug:
            app.logger.info(f"Response: {response.status_code} for {request.method} {request.path}")

        # 加上 security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-XSS-Protection'] = '1; mode=block'

        return response


# ============================================
# 一般 routes
# ============================================

def register_core_routes(app):
    from flask_jwt_extended import jwt_required
    from auth import get_current_user

    @app.route('/health', methods=['GET'])
    def health_check():
        """
        健康檢查端點

        用於 load balancer 或監控系統檢查服務是否正常
        """
        try:
            db.session.execute(text('SELECT 1'))

            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'timestamp': datetime.utcnow().isoformat()
            }), 200
        except Exception as e:
            app.logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'error': 'Database connection failed'
            }), 503

    @app.route('/')
    @limiter.limit("10 per minute")
    def home():
        """API 首頁"""
        return jsonify({
            'name': 'Task Management API',
            'version': app.config['API_VERSION'],
            'description': 'API for managing tasks and users',
            'endpoints': {
                'health': '/health',
                'auth': {
                    'register': {'path': '/auth/register', 'methods': ['POST']},
                    'login': {'path': '/auth/login', 'methods': ['POST']}
                },
                'users': {
                    'list': {'path': '/users', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/users/:id', 'methods': ['GET', 'PATCH', 'DELETE']},
                    'role': {'path': '/users/:id/role', 'methods': ['PATCH']}
                },
                'profile': {
                    'me': {'path': '/profile', 'methods': ['GET', 'PATCH']},
                    'picture': {'path': '/profile/picture', 'methods': ['PATCH']},
                    'picture_by_id': {'path': '/profile/picture/:id', 'methods': ['GET']}
                },
                'tasks': {
                    'list': {'path': '/tasks', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/tasks/:id', 'methods': ['GET', 'PATCH', 'DELETE']},
                    'attachment': {'path': '/tasks/:id/attachment', 'methods': ['POST', 'GET', 'DELETE']}
                }
            }
        })

    @app.route('/protected', methods=['GET'])
    @jwt_required()
    def protected():
        """確認 token 是否有效"""
        user = get_current_user()
        return jsonify({
            'message': 'This is a protected route',
            'user': {
                'id': user.id,
                'username': user.username,
                'role': user.role.value
            }
        })


# ============================================
# App Factory
# ============================================

def create_app(config_class=None):
    """
    建立 Flask app

    設定、資料庫、JWT secret 都在這裡明確注入,
    測試時傳入 TestingConfig 即可
    """
    config_class = config_class or get_config()
    config_class.validate()

    app = Flask(__name__)
    app.config.from_object(config_class)
    app.config['SQLALCHEMY_ENGINE_OPTIONS'] = config_class.engine_options()

    setup_logging(app)

    # 擴展初始化
    db.init_app(app)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)
    cors.init_app(
        app,
        supports_credentials=True,
        origins=app.config['CORS_ORIGINS'],
        methods=['GET', 'POST', 'PATCH', 'DELETE', 'OPTIONS'],
        allow_headers=['Content-Type', 'Authorization']
    )

    # 註冊 Blueprints
    from auth import auth_bp
    from users import users_bp
    from profiles import profile_bp
    from tasks import tasks_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(users_bp, url_prefix='/users')
    app.register_blueprint(profile_bp, url_prefix='/profile')
    app.register_blueprint(tasks_bp, url_prefix='/tasks')

    from commands import register_commands
    register_commands(app)

    register_jwt_handlers()
    register_error_handlers(app)
    register_request_hooks(app)
    register_core_routes(app)

    with app.app_context():
        db.create_all()
        app.logger.info('Database tables created')

    return app


# ============================================
# 啟動應用
# ============================================

if __name__ == '__main__':
    # 在 production 環境不要用 Flask 內建的 server
    # 應該用 gunicorn: gunicorn "app:create_app()"
    app = create_app()

    app.run(
        debug=app.config['DEBUG'],
        port=app.config['PORT'],
        host='0.0.0.0'
    )
