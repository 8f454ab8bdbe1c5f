from flask_bcrypt import Bcrypt
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# ============================================
# Flask 擴展
# 在這裡建立實例,由 create_app() 呼叫 init_app(),
# 讓 blueprints 可以直接 import 而不會循環引用 app.py
# ============================================

jwt = JWTManager()
bcrypt = Bcrypt()
cors = CORS()

# 預設限制與 storage 由 config 的 RATELIMIT_* 設定
limiter = Limiter(key_func=get_remote_address)
