from flask import Flask, request, jsonify
from sqlalchemy import text
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
import logging
import os

from config import get_config
from models import db
from extensions import bcrypt, jwt, cors, limiter
from errors import NoToken, register_error_handlers

# ============================================
# Logging 設定
# ============================================


def setup_logging(app):
    """
    設定 logging 系統

    1. 分開 info 和 error logs
    2. 使用 RotatingFileHandler 避免 log 檔案過大
    3. 設定統一的 log format
    """
    log_file = app.config['LOG_FILE']
    log_dir = os.path.dirname(log_file) or '.'

    # 確保 logs 目錄存在
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    info_handler = RotatingFileHandler(
        log_file,
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    # Error log handler (只記錄錯誤)
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    level = getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO)

    # 模組 logger (auth / projects / tasks / references) 也寫到同一份檔案
    # 同一個 process 重複呼叫 create_app 時不重複掛 handler
    root_logger = logging.getLogger()
    existing = {
        handler.baseFilename for handler in root_logger.handlers
        if isinstance(handler, RotatingFileHandler)
    }
    for handler in (info_handler, error_handler):
        if handler.baseFilename in existing:
            handler.close()
        else:
            root_logger.addHandler(handler)
    root_logger.setLevel(level)

    app.logger.setLevel(level)
    app.logger.info('Application startup')

# ============================================
# JWT 錯誤處理
# ============================================


def register_jwt_handlers(app):

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        """處理 token 過期,回傳過期時間"""
        expired_at = datetime.fromtimestamp(jwt_payload['exp'], tz=timezone.utc)
        app.logger.warning(f"Expired token attempt from: {request.remote_addr}")
        return jsonify({
            'status': 403,
            'error': 'token_expired',
            'message': 'Token has expired',
            'expiredAt': expired_at.isoformat()
        }), 403

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        """處理無效的 token (格式錯誤或簽章不符)"""
        app.logger.warning(f"Invalid token attempt from: {request.remote_addr}, error: {error}")
        return jsonify({
            'status': 403,
            'error': 'invalid_token',
            'message': 'Failed to verify the JWT token.'
        }), 403

    @jwt.unauthorized_loader
    def unauthorized_callback(error):
        """處理缺少 token"""
        app.logger.warning(f"Unauthorized access attempt from: {request.remote_addr}, error: {error}")
        return NoToken(payload={'error': 'authorization_required'}).to_response()

# ============================================
# Request/Response Logging
# ============================================


def register_request_hooks(app):

    @app.before_request
    def log_request():
        app.logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        app.logger.info(f"Response: {response.status_code} for {request.method} {request.path}")

        # 加上 security headers
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-XSS-Protection'] = '1; mode=block'

        return response

# ============================================
# Health Check / 首頁
# ============================================


def register_core_routes(app):

    @app.route('/health', methods=['GET'])
    def health_check():
        """檢查資料庫連線,給 load balancer 或監控系統使用"""
        try:
            db.session.execute(text('SELECT 1'))

            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'timestamp': datetime.now(timezone.utc).isoformat()
            }), 200
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'error': 'Database connection failed'
            }), 503

    @app.route('/')
    @limiter.limit("10 per minute")
    def home():
        prefix = app.config['API_PREFIX']
        return jsonify({
            'message': 'Trullo Board API',
            'version': app.config['API_VERSION'],
            'endpoints': {
                'health': {'path': '/health', 'methods': ['GET']},
                'users': {
                    'register': {'path': f'{prefix}/registerUser', 'methods': ['POST']},
                    'login': {'path': f'{prefix}/logInUser', 'methods': ['POST']},
                    'current': {'path': f'{prefix}/currentUser', 'methods': ['GET']},
                    'list': {'path': f'{prefix}/getUsers', 'methods': ['GET']},
                    'delete_current': {'path': f'{prefix}/deleteCurrentUser', 'methods': ['DELETE']},
                    'update': {'path': f'{prefix}/updateUser/:id', 'methods': ['PUT']},
                    'reset_password': {'path': f'{prefix}/resetPassword', 'methods': ['PUT']}
                },
                'projects': {
                    'create': {'path': f'{prefix}/createProject', 'methods': ['POST']},
                    'members': {'path': f'{prefix}/updateMemberForProject/:id', 'methods': ['PUT']},
                    'status': {'path': f'{prefix}/updateProjectStatus/:id', 'methods': ['PUT']},
                    'delete': {'path': f'{prefix}/deleteProject/:id', 'methods': ['DELETE']},
                    'detail': {'path': f'{prefix}/fetchProject/:id', 'methods': ['GET']}
                },
                'tasks': {
                    'create': {'path': f'{prefix}/createTask/:id', 'methods': ['POST']},
                    'detail': {'path': f'{prefix}/task/:id', 'methods': ['GET']},
                    'list': {'path': f'{prefix}/getTasksInProject/:id', 'methods': ['GET']},
                    'edit': {'path': f'{prefix}/editTask/:id', 'methods': ['PUT']},
                    'delete': {'path': f'{prefix}/deleteTask/:id', 'methods': ['DELETE']}
                }
            },
            'rate_limits': {
                'default': '200 per hour, 1000 per day',
                'auth': {
                    'register': '5 per hour',
                    'login': '10 per minute'
                }
            }
        })

# ============================================
# Application Factory
# ============================================


def create_app(config_class=None):
    """
    建立 Flask app

    config_class 決定所有設定 (包含 JWT secret 和資料庫連線),
    沒給的話依 FLASK_ENV 選擇
    """
    config_class = config_class or get_config()
    config_class.validate()

    app = Flask(__name__)
    app.config.from_object(config_class)

    db.init_app(app)
    bcrypt.init_app(app)
    jwt.init_app(app)
    limiter.init_app(app)
    cors.init_app(
        app,
        supports_credentials=True,
        origins=app.config['CORS_ORIGINS'],
        methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'],
        allow_headers=['Content-Type', 'Authorization']
    )

    if not app.debug and not app.testing:
        setup_logging(app)

    register_jwt_handlers(app)
    register_error_handlers(app, db)
    register_request_hooks(app)
    register_core_routes(app)

    # 註冊 Blueprints
    from auth import auth_bp
    from projects import projects_bp
    from tasks import tasks_bp
    from commands import register_commands

    prefix = app.config['API_PREFIX']
    app.register_blueprint(auth_bp, url_prefix=prefix)
    app.register_blueprint(projects_bp, url_prefix=prefix)
    app.register_blueprint(tasks_bp, url_prefix=prefix)

    register_commands(app)

    with app.app_context():
        db.create_all()
        app.logger.info('Database tables created')

    return app


if __name__ == '__main__':
    # 在 production 環境不要用 Flask 內建的 server,應該用 gunicorn
    app = create_app()

    port = int(os.getenv('FLASK_PORT', 8888))

    app.run(
        debug=app.debug,
        port=port,
        host='0.0.0.0'
    )
