import os
import secrets

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


class Config:
    """Flask configuration with static defaults (a few can be overridden from the environment)."""

    # 课程/视频内容仍然落在两份 JSON 文件里
    DATA_DIR = os.environ.get("COURSE_FEED_DATA_DIR", os.path.join(BASE_DIR, "data"))
    INTRODUCE_TAG = "introduce"

    # 管理员账号、审计日志等安全状态落库
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "COURSE_FEED_DATABASE_URL", "sqlite:///" + os.path.join(BASE_DIR, "course_feed.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SECRET_KEY = secrets.token_hex(32)
    TOKEN_SECRET = os.environ.get("COURSE_FEED_TOKEN_SECRET") or secrets.token_hex(32)

    DEFAULT_ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")
    DEFAULT_ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "TikTokEdu@2024!")

    # 播放列表默认设置（仅保存在内存中）
    DEFAULT_INTRODUCE_FREQUENCY = 5
    DEFAULT_ENABLE_INTRODUCE = True
    DEFAULT_COURSE = "1200"


# 登录限制 / 会话 / 审计相关常量，单位统一为毫秒
MAX_LOGIN_ATTEMPTS = 5
LOCKOUT_DURATION_MS = 15 * 60 * 1000
SESSION_TIMEOUT_MS = 2 * 60 * 60 * 1000
REFRESH_TOKEN_TIMEOUT_MS = 7 * 24 * 60 * 60 * 1000
RENEWAL_WINDOW_MS = 15 * 60 * 1000
AUDIT_LOG_LIMIT = 1000

PASSWORD_MIN_LENGTH = 8
PASSWORD_SPECIAL_CHARS = '!@#$%^&*(),.?":{}|<>'
PASSWORD_HASH_METHOD = "pbkdf2:sha256:260000"

TOTP_ISSUER = "TikTok Education Platform"
TOTP_DIGITS = 6
TOTP_PERIOD = 30
