from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# ============================================
# Flask 擴展 (在 create_app 裡 init_app)
# ============================================

bcrypt = Bcrypt()
jwt = JWTManager()
cors = CORS()

# storage_uri 由 config 的 RATELIMIT_STORAGE_URI 決定
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["1000 per day", "200 per hour"],
)
